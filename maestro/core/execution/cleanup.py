"""
Cleanup / Deletion Controller.

Branch removal is best effort: a missing clone, a missing branch or an
unsupported provider is logged and skipped, and the record is deleted
regardless.
"""

import structlog

from maestro.core.execution.branches import branch_for_execution
from maestro.core.execution.errors import RecordNotFoundError, UnsupportedProviderError
from maestro.core.execution.workspace import WorkspaceManager
from maestro.core.models import Execution
from maestro.core.store import Store

logger = structlog.get_logger()


class CleanupController:
    """Deletes executions and prompt-sets together with their branches."""

    def __init__(self, store: Store, workspace: WorkspaceManager):
        self.store = store
        self.workspace = workspace

    async def delete_execution(self, execution_id: str) -> None:
        """
        Raises:
            RecordNotFoundError: If the execution does not exist
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise RecordNotFoundError("Execution", execution_id)

        await self._delete_branch(execution)
        await self.store.delete_execution(execution_id)
        logger.info("Execution deleted", execution_id=execution_id)

    async def delete_prompt_set(self, promptset_id: str) -> None:
        """
        Raises:
            RecordNotFoundError: If the prompt-set does not exist
        """
        prompt_set = await self.store.get_prompt_set(promptset_id)
        if prompt_set is None:
            raise RecordNotFoundError("PromptSet", promptset_id)

        executions = await self.store.list_executions_by_prompt_set(promptset_id)
        for execution in executions:
            await self._delete_branch(execution)

        await self.store.delete_prompt_set(promptset_id)
        logger.info("Prompt set deleted", promptset_id=promptset_id, executions=len(executions))

    async def _delete_branch(self, execution: Execution) -> bool:
        branch = branch_for_execution(execution)

        repository = await self.store.get_repository(execution.repository_id)
        if repository is None:
            logger.warning("Repository missing, skipping branch deletion", branch=branch)
            return False

        try:
            repo_path = self.workspace.repo_path_for(repository)
        except UnsupportedProviderError:
            logger.warning(
                "Unsupported provider, skipping branch deletion",
                branch=branch,
                provider=repository.provider,
            )
            return False

        async with self.workspace.lock_for(repo_path):
            return await self.workspace.delete_branch(
                repo_path, branch, self.workspace.worktree_path_for(repo_path, execution.id)
            )
