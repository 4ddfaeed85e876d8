"""
Validation Controller
=====================

Second agent pass over a completed execution's branch. A fresh agent
session reviews the pending changes against the prompt-set's validation
prompt; a pass resumes the primary session to commit the changes.
"""

import asyncio
from typing import Optional

import structlog

from maestro.core.execution.agent import (
    COMMIT_PROMPT,
    AgentAdapter,
    build_validation_prompt,
    classify_validation,
)
from maestro.core.execution.branches import branch_for_execution
from maestro.core.execution.errors import RecordNotFoundError, ValidationPreconditionError
from maestro.core.execution.supervisor import TaskKind, TaskSupervisor
from maestro.core.execution.workspace import WorkspaceManager
from maestro.core.models import (
    Execution,
    ExecutionStatus,
    PromptSet,
    Repository,
    ValidationStatus,
)
from maestro.core.store import Store

logger = structlog.get_logger()


class ValidationController:
    """Runs validation passes and the commit that follows a pass."""

    def __init__(
        self,
        store: Store,
        workspace: WorkspaceManager,
        agent: AgentAdapter,
        supervisor: TaskSupervisor,
    ):
        self.store = store
        self.workspace = workspace
        self.agent = agent
        self.supervisor = supervisor

    async def check_preconditions(
        self,
        execution_id: str,
    ) -> tuple[Execution, PromptSet, Repository]:
        """
        Load everything a validation needs.

        Raises:
            RecordNotFoundError: Execution, prompt-set or repository missing
            ValidationPreconditionError: Execution not completed, or no
                validation prompt on the prompt-set
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise RecordNotFoundError("Execution", execution_id)

        if execution.status != ExecutionStatus.COMPLETED:
            raise ValidationPreconditionError(
                f"Cannot validate execution {execution_id} - execution must be completed first "
                f"(current status: {execution.status.value})"
            )

        prompt_set = await self.store.get_prompt_set(execution.promptset_id)
        if prompt_set is None:
            raise RecordNotFoundError("PromptSet", execution.promptset_id)
        if not prompt_set.validation_prompt:
            raise ValidationPreconditionError(
                f"PromptSet {execution.promptset_id} has no validation prompt"
            )

        repository = await self.store.get_repository(execution.repository_id)
        if repository is None:
            raise RecordNotFoundError("Repository", execution.repository_id)

        return execution, prompt_set, repository

    # ==========================================================================
    # Validation
    # ==========================================================================

    async def validate(self, execution_id: str) -> ValidationStatus:
        """
        Validate an execution and persist the outcome.

        Raises:
            RecordNotFoundError, ValidationPreconditionError: Before any
                state is touched
            GitCommandError: If the branch cannot be checked out
        """
        execution, prompt_set, repository = await self.check_preconditions(execution_id)

        await self.store.update_execution(execution_id, validation_status=ValidationStatus.RUNNING)
        logger.info("Validation started", execution_id=execution_id)

        try:
            repo_path = self.workspace.repo_path_for(repository)
            branch = branch_for_execution(execution)
            prompt = build_validation_prompt(branch, prompt_set.validation_prompt)

            worktree = self.workspace.worktree_path_for(repo_path, execution_id)

            async with self.workspace.lock_for(repo_path):
                await self.workspace.open_worktree(repo_path, branch, worktree)
                result = await self.agent.invoke(worktree, prompt)

            validation_status = classify_validation(result.result_message)
            await self.store.update_execution(
                execution_id,
                validation_status=validation_status,
                validation_thread_url=self.agent.thread_url(result.session_id),
                validation_result=result.result_message,
            )
        except asyncio.CancelledError:
            await self.store.update_execution(
                execution_id,
                validation_status=ValidationStatus.CANCELLED,
            )
            logger.info("Validation cancelled", execution_id=execution_id)
            raise
        except Exception as e:
            logger.error("Validation failed", execution_id=execution_id, error=str(e))
            await self.store.update_execution(
                execution_id,
                validation_status=ValidationStatus.FAILED,
            )
            raise

        logger.info(
            "Validation completed",
            execution_id=execution_id,
            validation_status=validation_status.value,
            session_id=result.session_id,
        )

        if validation_status == ValidationStatus.PASSED and execution.session_id:
            logger.info("Validation passed, committing changes", execution_id=execution_id)
            self.supervisor.spawn(TaskKind.COMMIT, execution_id, self.commit_changes(execution_id))

        return validation_status

    async def start_validation(self, execution_id: str) -> None:
        """
        Validate in the background.

        Preconditions are checked before spawning so callers see them.

        Raises:
            RecordNotFoundError, ValidationPreconditionError
            ExecutionConflictError: If a validation is already running
        """
        await self.check_preconditions(execution_id)
        self.supervisor.spawn(TaskKind.VALIDATION, execution_id, self.validate(execution_id))

    # ==========================================================================
    # Commit
    # ==========================================================================

    async def commit_changes(self, execution_id: str) -> Optional[str]:
        """
        Resume the primary session and ask the agent to commit.

        Returns:
            The agent's final message, if any

        Raises:
            ValidationPreconditionError: If the execution has no session
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise RecordNotFoundError("Execution", execution_id)
        if not execution.session_id:
            raise ValidationPreconditionError(
                f"Cannot commit {execution_id} - no session ID found"
            )

        repository = await self.store.get_repository(execution.repository_id)
        if repository is None:
            raise RecordNotFoundError("Repository", execution.repository_id)

        repo_path = self.workspace.repo_path_for(repository)
        worktree = self.workspace.worktree_path_for(repo_path, execution_id)
        async with self.workspace.lock_for(repo_path):
            await self.workspace.open_worktree(repo_path, branch_for_execution(execution), worktree)
            result = await self.agent.invoke(worktree, COMMIT_PROMPT, execution.session_id)

        logger.info("Changes committed", execution_id=execution_id, session_id=execution.session_id)
        return result.result_message

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    async def stop_validation(self, execution_id: str) -> bool:
        """Cancel a running validation; True if one was stopped."""
        stopped = await self.supervisor.cancel(TaskKind.VALIDATION, execution_id)

        execution = await self.store.get_execution(execution_id)
        if execution is not None and execution.validation_status == ValidationStatus.RUNNING:
            await self.store.update_execution(
                execution_id,
                validation_status=ValidationStatus.CANCELLED,
            )
            stopped = True

        if stopped:
            logger.info("Validation stopped", execution_id=execution_id)
        return stopped

    async def stop_all_validations(self, revision_id: str) -> int:
        count = 0
        for execution in await self.store.list_executions_by_revision(revision_id):
            if await self.stop_validation(execution.id):
                count += 1
        return count
