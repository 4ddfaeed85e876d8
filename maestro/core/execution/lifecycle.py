"""
Execution Lifecycle Controller
==============================

State machine of one execution::

    pending -> running -> completed | failed
                       -> cancelled (explicit stop)

A run holds its repository's workspace lock from clone/pull through
diff capture. Auto-validation starts after the lock is released.
"""

import asyncio
from typing import Optional

import structlog

from maestro.core.execution.agent import AgentAdapter, build_primary_prompt, classify_prompt
from maestro.core.execution.branches import branch_for_execution
from maestro.core.execution.diff_stats import ZERO_STATS, DiffStats, DiffStatsEngine
from maestro.core.execution.errors import (
    ExecutionConflictError,
    GitCommandError,
    OrchestratorError,
    RecordNotFoundError,
    UnsupportedProviderError,
)
from maestro.core.execution.supervisor import TaskKind, TaskSupervisor
from maestro.core.execution.validation import ValidationController
from maestro.core.execution.workspace import WorkspaceManager
from maestro.core.models import (
    Execution,
    ExecutionStatus,
    PromptStatus,
    ValidationStatus,
    utcnow,
)
from maestro.core.store import Store

logger = structlog.get_logger()


class ExecutionController:
    """Creates, runs, re-runs and stops executions."""

    def __init__(
        self,
        store: Store,
        workspace: WorkspaceManager,
        agent: AgentAdapter,
        diff_engine: DiffStatsEngine,
        supervisor: TaskSupervisor,
        validation: ValidationController,
    ):
        self.store = store
        self.workspace = workspace
        self.agent = agent
        self.diff_engine = diff_engine
        self.supervisor = supervisor
        self.validation = validation

    # ==========================================================================
    # Fan-out
    # ==========================================================================

    async def execute_prompt_set(self, promptset_id: str, revision_id: str) -> list[str]:
        """
        Create one execution per repository of the prompt-set and start
        them all in the background.

        Returns:
            Ids of the created executions, in repository order. None of
            them has finished when this returns.

        Raises:
            RecordNotFoundError: If the prompt-set or revision is missing
        """
        prompt_set = await self.store.get_prompt_set(promptset_id)
        if prompt_set is None:
            raise RecordNotFoundError("PromptSet", promptset_id)

        revision = await self.store.get_prompt_revision(revision_id)
        if revision is None:
            raise RecordNotFoundError("Revision", revision_id)

        execution_ids = []
        for repository_id in prompt_set.repository_ids:
            execution = await self.store.create_execution(promptset_id, revision_id, repository_id)
            execution_ids.append(execution.id)

        for execution_id in execution_ids:
            self.supervisor.spawn(TaskKind.EXECUTION, execution_id, self.run_execution(execution_id))

        logger.info(
            "Prompt set execution started",
            promptset_id=promptset_id,
            revision_id=revision_id[:8],
            executions=len(execution_ids),
        )
        return execution_ids

    async def start_execution(self, execution_id: str) -> None:
        """
        Run (or re-run) a single execution in the background.

        Raises:
            RecordNotFoundError: If the execution is missing
            ExecutionConflictError: If it is already running
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise RecordNotFoundError("Execution", execution_id)
        if execution.status == ExecutionStatus.RUNNING:
            raise ExecutionConflictError(f"Execution {execution_id} is already running")

        self.supervisor.spawn(TaskKind.EXECUTION, execution_id, self.run_execution(execution_id))

    # ==========================================================================
    # Run
    # ==========================================================================

    async def run_execution(self, execution_id: str) -> Execution:
        """
        Drive one execution to a terminal state.

        Returns:
            The completed execution record

        Raises:
            RecordNotFoundError: Before the record is touched
            OrchestratorError: After the record was marked failed
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise RecordNotFoundError("Execution", execution_id)

        repository = await self.store.get_repository(execution.repository_id)
        if repository is None:
            raise RecordNotFoundError("Repository", execution.repository_id)

        revision = await self.store.get_prompt_revision(execution.revision_id)
        if revision is None:
            raise RecordNotFoundError("Revision", execution.revision_id)

        # Counters reset so a re-run starts from a clean slate
        await self.store.update_execution(
            execution_id,
            status=ExecutionStatus.RUNNING,
            completed_at=None,
            **ZERO_STATS.as_fields(),
        )
        logger.info("Execution started", execution_id=execution_id, repository=repository.provider_id)

        try:
            repo_path = self.workspace.repo_path_for(repository)
            branch = branch_for_execution(execution)

            worktree = self.workspace.worktree_path_for(repo_path, execution_id)

            async with self.workspace.lock_for(repo_path):
                await self.workspace.ensure_clone(repository)
                base_commit = await self.workspace.prepare_branch(repo_path, branch, worktree)

                result = await self.agent.invoke(worktree, build_primary_prompt(revision.prompt_text))

                stats, measured = await self.diff_engine.compute_stats_detailed(worktree, base_commit)

            if not measured:
                logger.warning("Diff stats unavailable, recorded as zero", execution_id=execution_id)

            prompt_status = classify_prompt(result.result_message)
            completed = await self.store.update_execution(
                execution_id,
                status=ExecutionStatus.COMPLETED,
                session_id=result.session_id or None,
                thread_url=self.agent.thread_url(result.session_id),
                prompt_status=prompt_status,
                prompt_result=result.result_message,
                completed_at=utcnow(),
                **stats.as_fields(),
            )
        except asyncio.CancelledError:
            await self.store.update_execution(
                execution_id,
                status=ExecutionStatus.CANCELLED,
                completed_at=None,
            )
            logger.info("Execution cancelled", execution_id=execution_id)
            raise
        except Exception as e:
            logger.error("Execution failed", execution_id=execution_id, error=str(e))
            await self.store.update_execution(
                execution_id,
                status=ExecutionStatus.FAILED,
                completed_at=utcnow(),
            )
            raise

        logger.info(
            "Execution completed",
            execution_id=execution_id,
            branch=branch,
            session_id=result.session_id,
            prompt_status=prompt_status.value if prompt_status else None,
            thread_url=completed.thread_url,
        )

        await self._maybe_auto_validate(completed, prompt_status)
        return completed

    async def _maybe_auto_validate(
        self,
        execution: Execution,
        prompt_status: Optional[PromptStatus],
    ) -> None:
        prompt_set = await self.store.get_prompt_set(execution.promptset_id)
        if prompt_set is None or not prompt_set.validation_prompt:
            return

        if prompt_status != PromptStatus.PASSED:
            logger.info(
                "Skipping validation",
                execution_id=execution.id,
                prompt_status=prompt_status.value if prompt_status else None,
            )
            return

        if not prompt_set.auto_validate:
            logger.info("Auto-validation disabled for prompt set", execution_id=execution.id)
            return

        logger.info("Running validation", execution_id=execution.id)
        try:
            await self.validation.start_validation(execution.id)
        except OrchestratorError as e:
            logger.warning("Could not start validation", execution_id=execution.id, error=str(e))

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    async def stop_execution(self, execution_id: str) -> bool:
        """Cancel a running execution; True if one was stopped."""
        stopped = await self.supervisor.cancel(TaskKind.EXECUTION, execution_id)

        execution = await self.store.get_execution(execution_id)
        if execution is not None and execution.status == ExecutionStatus.RUNNING:
            await self.store.update_execution(
                execution_id,
                status=ExecutionStatus.CANCELLED,
                completed_at=None,
            )
            stopped = True

        if stopped:
            logger.info("Execution stopped", execution_id=execution_id)
        return stopped

    async def stop_all_executions(self, revision_id: str) -> int:
        count = 0
        for execution in await self.store.list_executions_by_revision(revision_id):
            if await self.stop_execution(execution.id):
                count += 1
        return count

    async def handle_task_failure(
        self,
        kind: TaskKind,
        execution_id: str,
        exc: BaseException,
    ) -> None:
        """Make sure a failed background task leaves a terminal record."""
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            return

        # Failures before the run began leave the record pending
        if kind == TaskKind.EXECUTION and execution.status == ExecutionStatus.RUNNING:
            await self.store.update_execution(
                execution_id,
                status=ExecutionStatus.FAILED,
                completed_at=utcnow(),
            )
        elif kind == TaskKind.VALIDATION and execution.validation_status == ValidationStatus.RUNNING:
            await self.store.update_execution(execution_id, validation_status=ValidationStatus.FAILED)

    async def reconcile_interrupted(self) -> int:
        """
        Mark work left running by a previous process as cancelled.

        Call on startup, before any task is spawned.
        """
        count = 0
        for prompt_set in await self.store.list_prompt_sets():
            for execution in await self.store.list_executions_by_prompt_set(prompt_set.id):
                fields = {}
                if (
                    execution.status == ExecutionStatus.RUNNING
                    and not self.supervisor.is_active(TaskKind.EXECUTION, execution.id)
                ):
                    fields.update(status=ExecutionStatus.CANCELLED, completed_at=None)
                if (
                    execution.validation_status == ValidationStatus.RUNNING
                    and not self.supervisor.is_active(TaskKind.VALIDATION, execution.id)
                ):
                    fields["validation_status"] = ValidationStatus.CANCELLED
                if fields:
                    await self.store.update_execution(execution.id, **fields)
                    count += 1

        if count:
            logger.info("Reconciled interrupted executions", count=count)
        return count

    # ==========================================================================
    # Backfill
    # ==========================================================================

    async def backfill_diff_stats(self, execution_id: str) -> Optional[DiffStats]:
        """
        Compute missing diff stats for a completed execution.

        The base commit is not persisted, so it is recovered as the
        merge-base of the branch and the remote default branch.

        Returns:
            The stored stats, or None when the execution was skipped
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise RecordNotFoundError("Execution", execution_id)

        short_id = execution_id[:8]
        if execution.status != ExecutionStatus.COMPLETED or execution.has_diff_stats:
            logger.debug("Skipping backfill", execution_id=short_id, status=execution.status.value)
            return None

        repository = await self.store.get_repository(execution.repository_id)
        if repository is None:
            raise RecordNotFoundError("Repository", execution.repository_id)

        try:
            repo_path = self.workspace.repo_path_for(repository)
        except UnsupportedProviderError:
            logger.info("Skipping backfill, unsupported provider", execution_id=short_id)
            return None

        if not self.workspace.is_clone(repo_path):
            logger.info("Skipping backfill, repo not cloned", execution_id=short_id, repo_path=str(repo_path))
            return None

        branch = branch_for_execution(execution)
        worktree = self.workspace.worktree_path_for(repo_path, execution_id)
        async with self.workspace.lock_for(repo_path):
            try:
                await self.workspace.open_worktree(repo_path, branch, worktree)
            except GitCommandError:
                logger.info("Skipping backfill, branch not found", execution_id=short_id, branch=branch)
                return None

            default_branch = await self.workspace.resolve_default_branch(repo_path)
            base_commit = await self.workspace.merge_base(repo_path, branch, default_branch)
            if base_commit is None:
                logger.info("Skipping backfill, no merge base", execution_id=short_id, branch=branch)
                return None

            stats, measured = await self.diff_engine.compute_stats_detailed(worktree, base_commit)

        if not measured:
            logger.warning("Diff stats unavailable, recorded as zero", execution_id=short_id)

        await self.store.update_execution(execution_id, **stats.as_fields())
        logger.info("Diff stats backfilled", execution_id=short_id, **stats.as_fields())
        return stats
