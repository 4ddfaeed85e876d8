"""
Execution Orchestrator
======================

Wires the components into one object graph, built once per process
(the API keeps it on ``app.state``).
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from maestro.core.config import Settings, get_settings
from maestro.core.execution.agent import AgentAdapter
from maestro.core.execution.cleanup import CleanupController
from maestro.core.execution.diff_stats import DiffStatsEngine
from maestro.core.execution.git import Git
from maestro.core.execution.lifecycle import ExecutionController
from maestro.core.execution.scanner import BranchScanner, ScanCache
from maestro.core.execution.supervisor import TaskKind, TaskSupervisor
from maestro.core.execution.validation import ValidationController
from maestro.core.execution.workspace import WorkspaceManager
from maestro.core.store import Store

logger = structlog.get_logger()


@dataclass
class Orchestrator:
    store: Store
    workspace: WorkspaceManager
    agent: AgentAdapter
    diff_engine: DiffStatsEngine
    supervisor: TaskSupervisor
    executions: ExecutionController
    validations: ValidationController
    cleanup: CleanupController
    scanner: BranchScanner

    @classmethod
    def build(
        cls,
        store: Store,
        settings: Optional[Settings] = None,
        *,
        workspace: Optional[WorkspaceManager] = None,
        agent: Optional[AgentAdapter] = None,
        diff_engine: Optional[DiffStatsEngine] = None,
    ) -> "Orchestrator":
        """
        Assemble the graph from settings.

        workspace, agent and diff_engine may be supplied to replace the
        subprocess-backed defaults.
        """
        settings = settings or get_settings()
        git = Git(settings.GIT_BINARY)

        workspace = workspace or WorkspaceManager(git, settings.clone_root, settings.GITHUB_TOKEN)
        agent = agent or AgentAdapter(
            settings.AGENT_COMMAND,
            settings.AGENT_RESUME_ARGS,
            settings.AGENT_THREAD_BASE_URL,
        )
        diff_engine = diff_engine or DiffStatsEngine(git)

        supervisor = TaskSupervisor()
        validations = ValidationController(store, workspace, agent, supervisor)
        executions = ExecutionController(store, workspace, agent, diff_engine, supervisor, validations)
        supervisor.on_failure = executions.handle_task_failure

        return cls(
            store=store,
            workspace=workspace,
            agent=agent,
            diff_engine=diff_engine,
            supervisor=supervisor,
            executions=executions,
            validations=validations,
            cleanup=CleanupController(store, workspace),
            scanner=BranchScanner(store, workspace, ScanCache(settings.SCAN_CACHE_TTL_SECONDS)),
        )

    async def delete_execution(self, execution_id: str) -> None:
        """Stop any work on the execution, then delete it and its branch."""
        await self.supervisor.cancel(TaskKind.COMMIT, execution_id)
        await self.validations.stop_validation(execution_id)
        await self.executions.stop_execution(execution_id)
        await self.cleanup.delete_execution(execution_id)

    async def delete_prompt_set(self, promptset_id: str) -> None:
        for execution in await self.store.list_executions_by_prompt_set(promptset_id):
            await self.supervisor.cancel(TaskKind.COMMIT, execution.id)
            await self.validations.stop_validation(execution.id)
            await self.executions.stop_execution(execution.id)
        await self.cleanup.delete_prompt_set(promptset_id)

    async def startup(self) -> None:
        await self.executions.reconcile_interrupted()

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()
        logger.info("Orchestrator stopped")
