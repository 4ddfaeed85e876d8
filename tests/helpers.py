"""
Maestro - Test Helpers
======================

Fakes for the subprocess-backed components and git repository helpers.
"""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Optional

import pytest

from maestro.core.execution.agent import AgentAdapter, AgentResult
from maestro.core.execution.diff_stats import DiffStats, DiffStatsEngine
from maestro.core.execution.errors import GitCommandError
from maestro.core.execution.git import Git
from maestro.core.execution.workspace import WorkspaceManager
from maestro.core.models import Repository

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


# ==========================================================================
# Fakes
# ==========================================================================

class FakeAgent(AgentAdapter):
    """
    Scripted agent.

    Results are consumed in order; when the script runs out the last
    result is repeated. Setting ``gate`` makes every invocation wait
    for it, which lets tests observe the running state and cancel.
    """

    def __init__(self, results: Optional[list[AgentResult]] = None):
        super().__init__(["fake-agent"], ["threads", "continue"], "https://agent.test/threads")
        self.results = list(results or [AgentResult("T-1", "done\nPROMPT: PASS")])
        self.calls: list[dict] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.on_invoke = None

    def script(self, *results: AgentResult) -> None:
        self.results = list(results)

    async def invoke(self, working_dir, prompt, resume_session_id=None) -> AgentResult:
        self.calls.append({
            "working_dir": Path(working_dir),
            "prompt": prompt,
            "resume_session_id": resume_session_id,
        })
        self.started.set()
        if self.on_invoke is not None:
            self.on_invoke(Path(working_dir), prompt)
        if self.gate is not None:
            await self.gate.wait()
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeWorkspace(WorkspaceManager):
    """Workspace that records git operations instead of running them."""

    def __init__(self, clone_root: Path):
        super().__init__(Git("git"), clone_root)
        self.branches: dict[Path, set[str]] = {}
        self.operations: list[tuple] = []
        self.fail_clone = False

    async def ensure_clone(self, repository: Repository) -> Path:
        repo_path = self.repo_path_for(repository)
        if self.fail_clone:
            raise GitCommandError("clone repository", ["clone"], 128, "repository not found")
        (repo_path / ".git").mkdir(parents=True, exist_ok=True)
        self.operations.append(("clone", repo_path))
        return repo_path

    async def prepare_branch(self, repo_path: Path, branch: str, worktree_path: Path) -> str:
        self.branches.setdefault(repo_path, set()).add(branch)
        self.operations.append(("branch", repo_path, branch, worktree_path))
        return "base0000"

    async def open_worktree(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        if branch not in self.branches.get(repo_path, set()):
            raise GitCommandError(
                "checkout branch", ["worktree", "add", branch], 128, f"invalid reference: {branch}"
            )
        self.operations.append(("checkout", repo_path, branch, worktree_path))

    async def delete_branch(self, repo_path: Path, branch: str, worktree_path: Optional[Path] = None) -> bool:
        self.operations.append(("delete", repo_path, branch))
        existing = self.branches.get(repo_path, set())
        if branch not in existing:
            return False
        existing.discard(branch)
        return True

    async def resolve_default_branch(self, repo_path: Path) -> str:
        return "origin/main"

    async def merge_base(self, repo_path: Path, branch: str, other: str) -> Optional[str]:
        return "base0000"

    async def list_maestro_branches(self, repo_path: Path) -> list[str]:
        return sorted(self.branches.get(repo_path, set()))


class FakeDiffEngine(DiffStatsEngine):
    def __init__(self, stats: Optional[DiffStats] = None, measured: bool = True):
        self.stats = stats or DiffStats(1, 0, 2, 10, 3)
        self.measured = measured
        self.calls: list[tuple[Path, Optional[str]]] = []

    async def compute_stats_detailed(self, repo_path, base_commit=None):
        self.calls.append((Path(repo_path), base_commit))
        if not self.measured:
            return DiffStats(), False
        return self.stats, True


# ==========================================================================
# Async Helpers
# ==========================================================================

async def until(predicate, timeout: float = 5.0) -> None:
    """Poll predicate on the event loop until it holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


# ==========================================================================
# Git Helpers
# ==========================================================================

def git(repo: Path, *args: str) -> str:
    """Run git synchronously in a test repository."""
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def make_repo(path: Path, files: Optional[dict[str, str]] = None) -> Path:
    """Initialise a repository with one commit containing files."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", "main")
    for name, content in (files or {"README.md": "hello\n"}).items():
        target = path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    git(path, "add", "-A")
    git(path, "commit", "-q", "-m", "initial")
    return path
