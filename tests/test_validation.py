"""
Maestro - Validation Tests
==========================
"""

import asyncio

import pytest
import pytest_asyncio

from maestro.core.execution import Orchestrator
from maestro.core.execution.agent import COMMIT_PROMPT, AgentResult
from maestro.core.execution.branches import branch_for_execution
from maestro.core.execution.errors import (
    ExecutionConflictError,
    GitCommandError,
    RecordNotFoundError,
    ValidationPreconditionError,
)
from maestro.core.execution.supervisor import TaskKind
from maestro.core.models import ExecutionStatus, ValidationStatus
from maestro.core.store import Store

from tests.helpers import FakeAgent, FakeWorkspace


@pytest_asyncio.fixture
async def completed(store: Store, prompt_set, revision, repositories, fake_workspace: FakeWorkspace):
    """A completed execution whose branch exists in the workspace."""
    execution = await store.create_execution(prompt_set.id, revision.id, repositories[0].id)
    execution = await store.update_execution(
        execution.id,
        status=ExecutionStatus.COMPLETED,
        session_id="T-1",
    )
    repo_path = fake_workspace.repo_path_for(repositories[0])
    fake_workspace.branches[repo_path] = {branch_for_execution(execution)}
    return execution


class TestPreconditions:
    async def test_requires_completed_execution(self, orchestrator: Orchestrator, store: Store, prompt_set, revision, repositories):
        execution = await store.create_execution(prompt_set.id, revision.id, repositories[0].id)

        with pytest.raises(ValidationPreconditionError, match="must be completed"):
            await orchestrator.validations.start_validation(execution.id)
        assert (await store.get_execution(execution.id)).validation_status is None

    async def test_requires_validation_prompt(self, orchestrator: Orchestrator, store: Store, completed, prompt_set):
        await store.update_prompt_set(prompt_set.id, validation_prompt=None)

        with pytest.raises(ValidationPreconditionError, match="no validation prompt"):
            await orchestrator.validations.start_validation(completed.id)

    async def test_missing_execution(self, orchestrator: Orchestrator):
        with pytest.raises(RecordNotFoundError):
            await orchestrator.validations.start_validation("missing")


class TestValidate:
    async def test_pass_spawns_commit(
        self,
        orchestrator: Orchestrator,
        store: Store,
        completed,
        fake_agent: FakeAgent,
        fake_workspace: FakeWorkspace,
    ):
        fake_agent.script(
            AgentResult("V-7", "VALIDATION: PASS"),
            AgentResult("T-1", "Committed"),
        )

        status = await orchestrator.validations.validate(completed.id)
        assert status == ValidationStatus.PASSED
        await orchestrator.supervisor.wait_all()

        assert [c["resume_session_id"] for c in fake_agent.calls] == [None, "T-1"]
        assert fake_agent.calls[1]["prompt"] == COMMIT_PROMPT

        checkouts = [op for op in fake_workspace.operations if op[0] == "checkout"]
        assert len(checkouts) == 2
        assert {op[2] for op in checkouts} == {branch_for_execution(completed)}

        worktree = fake_workspace.clone_root / ".worktrees" / "acme" / "api" / completed.id
        assert {op[3] for op in checkouts} == {worktree}
        assert [c["working_dir"] for c in fake_agent.calls] == [worktree, worktree]

    async def test_fail_records_without_commit(
        self,
        orchestrator: Orchestrator,
        store: Store,
        completed,
        fake_agent: FakeAgent,
    ):
        fake_agent.script(AgentResult("V-8", "found a regression\nVALIDATION: FAIL"))

        assert await orchestrator.validations.validate(completed.id) == ValidationStatus.FAILED
        await orchestrator.supervisor.wait_all()

        execution = await store.get_execution(completed.id)
        assert execution.validation_status == ValidationStatus.FAILED
        assert execution.validation_thread_url == "https://agent.test/threads/V-8"
        assert len(fake_agent.calls) == 1

    async def test_missing_sentinel_fails(self, orchestrator: Orchestrator, completed, fake_agent: FakeAgent):
        fake_agent.script(AgentResult("V-9"))
        assert await orchestrator.validations.validate(completed.id) == ValidationStatus.FAILED

    async def test_checkout_failure_marks_failed(
        self,
        orchestrator: Orchestrator,
        store: Store,
        completed,
        fake_agent: FakeAgent,
        fake_workspace: FakeWorkspace,
    ):
        fake_workspace.branches.clear()

        with pytest.raises(GitCommandError):
            await orchestrator.validations.validate(completed.id)

        assert (await store.get_execution(completed.id)).validation_status == ValidationStatus.FAILED
        assert fake_agent.calls == []

    async def test_background_failure_is_recorded(
        self,
        orchestrator: Orchestrator,
        store: Store,
        completed,
        fake_workspace: FakeWorkspace,
    ):
        fake_workspace.branches.clear()

        await orchestrator.validations.start_validation(completed.id)
        await orchestrator.supervisor.wait_all()

        assert (await store.get_execution(completed.id)).validation_status == ValidationStatus.FAILED


class TestStopValidation:
    async def test_stop_running_validation(
        self,
        orchestrator: Orchestrator,
        store: Store,
        completed,
        fake_agent: FakeAgent,
    ):
        fake_agent.gate = asyncio.Event()
        await orchestrator.validations.start_validation(completed.id)
        await fake_agent.started.wait()

        assert (await store.get_execution(completed.id)).validation_status == ValidationStatus.RUNNING
        with pytest.raises(ExecutionConflictError):
            await orchestrator.validations.start_validation(completed.id)

        assert await orchestrator.validations.stop_validation(completed.id) is True
        assert (await store.get_execution(completed.id)).validation_status == ValidationStatus.CANCELLED
        assert not orchestrator.supervisor.is_active(TaskKind.VALIDATION, completed.id)

    async def test_stop_idle_validation(self, orchestrator: Orchestrator, completed):
        assert await orchestrator.validations.stop_validation(completed.id) is False

    async def test_stop_all_for_revision(
        self,
        orchestrator: Orchestrator,
        completed,
        revision,
        fake_agent: FakeAgent,
    ):
        fake_agent.gate = asyncio.Event()
        await orchestrator.validations.start_validation(completed.id)
        await fake_agent.started.wait()

        assert await orchestrator.validations.stop_all_validations(revision.id) == 1


class TestCommit:
    async def test_commit_requires_session(self, orchestrator: Orchestrator, store: Store, completed):
        await store.update_execution(completed.id, session_id=None)

        with pytest.raises(ValidationPreconditionError):
            await orchestrator.validations.commit_changes(completed.id)

    async def test_pass_without_session_skips_commit(
        self,
        orchestrator: Orchestrator,
        store: Store,
        completed,
        fake_agent: FakeAgent,
    ):
        await store.update_execution(completed.id, session_id=None)
        fake_agent.script(AgentResult("V-1", "VALIDATION: PASS"))

        assert await orchestrator.validations.validate(completed.id) == ValidationStatus.PASSED
        await orchestrator.supervisor.wait_all()
        assert len(fake_agent.calls) == 1
