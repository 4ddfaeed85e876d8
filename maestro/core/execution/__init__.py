"""
Maestro Execution Orchestrator
==============================

Turns a (prompt-set, revision) pair into per-repository executions,
each isolated on its own branch, driven through the coding agent,
measured from the git diff and optionally validated and committed.

Components:
- ExecutionController: Execution state machine and fan-out
- ValidationController: Validation pass and post-validation commit
- CleanupController: Branch-aware deletion
- WorkspaceManager: Clones, branches, per-path locking
- AgentAdapter: Agent CLI subprocess and stream parsing
- DiffStatsEngine: Change statistics from git diff
- BranchScanner: Disk/store reconciliation with a TTL cache
- TaskSupervisor: Tracked background tasks
- Orchestrator: Wires all of the above
"""

from maestro.core.execution.agent import AgentAdapter, AgentResult
from maestro.core.execution.cleanup import CleanupController
from maestro.core.execution.diff_stats import DiffStats, DiffStatsEngine
from maestro.core.execution.lifecycle import ExecutionController
from maestro.core.execution.orchestrator import Orchestrator
from maestro.core.execution.scanner import BranchScanner, ScanCache
from maestro.core.execution.supervisor import TaskKind, TaskSupervisor
from maestro.core.execution.validation import ValidationController
from maestro.core.execution.workspace import WorkspaceManager

__all__ = [
    "AgentAdapter",
    "AgentResult",
    "BranchScanner",
    "CleanupController",
    "DiffStats",
    "DiffStatsEngine",
    "ExecutionController",
    "Orchestrator",
    "ScanCache",
    "TaskKind",
    "TaskSupervisor",
    "ValidationController",
    "WorkspaceManager",
]
