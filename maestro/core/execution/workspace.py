"""
Repository Workspace Manager
============================

Owns the local clones under the clone root (``<root>/<owner>/<repo>``).

Clone paths are shared by every execution against the same repository,
so all mutating work on a clone happens under that path's lock. Each
execution works in its own git worktree below ``<root>/.worktrees``; the
clone itself stays on the default branch.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Optional

import structlog

from maestro.core.execution.branches import BRANCH_NAMESPACE
from maestro.core.execution.errors import GitCommandError
from maestro.core.execution.git import Git, redact
from maestro.core.execution.providers import remote_for
from maestro.core.models import Repository

logger = structlog.get_logger()

DEFAULT_BRANCH_FALLBACK = "origin/main"
WORKTREE_DIR = ".worktrees"


class WorkspaceManager:
    """Clone, branch and inspect repository workspaces."""

    def __init__(self, git: Git, clone_root: Path, token: Optional[str] = None):
        self.git = git
        self.clone_root = Path(clone_root)
        self.token = token
        self._locks: dict[Path, asyncio.Lock] = {}

    # ==========================================================================
    # Paths and locking
    # ==========================================================================

    def repo_path_for(self, repository: Repository) -> Path:
        """
        Local clone location for a repository.

        Raises:
            UnsupportedProviderError: For non-GitHub repositories
        """
        remote = remote_for(repository)
        return self.clone_root.joinpath(*remote.relative_path.parts)

    def lock_for(self, repo_path: Path) -> asyncio.Lock:
        key = Path(repo_path).resolve()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @staticmethod
    def is_clone(repo_path: Path) -> bool:
        return (Path(repo_path) / ".git").exists()

    # ==========================================================================
    # Clone / update
    # ==========================================================================

    async def ensure_clone(self, repository: Repository) -> Path:
        """
        Guarantee an up-to-date clone exists and return its path.

        Caller must hold lock_for(path).

        Raises:
            GitCommandError: If a fresh clone fails
        """
        remote = remote_for(repository)
        repo_path = self.clone_root.joinpath(*remote.relative_path.parts)

        if repo_path.exists():
            if self.is_clone(repo_path):
                result = await self.git.run("pull", cwd=repo_path)
                if not result.ok:
                    # Stale state is acceptable
                    logger.warning(
                        "Pull failed, continuing with local state",
                        repo_path=str(repo_path),
                        error=result.error[:500],
                    )
                return repo_path

            logger.warning("Removing invalid clone", repo_path=str(repo_path))
            await asyncio.to_thread(shutil.rmtree, repo_path)

        repo_path.parent.mkdir(parents=True, exist_ok=True)
        clone_url = remote.clone_url(self.token)
        logger.info("Cloning repository", url=redact(clone_url), repo_path=str(repo_path))

        result = await self.git.run("clone", clone_url, str(repo_path))
        if not result.ok:
            raise GitCommandError(
                "clone repository",
                [redact(a) for a in result.args],
                result.returncode,
                result.error,
            )
        return repo_path

    # ==========================================================================
    # Branches and worktrees
    # ==========================================================================

    def worktree_path_for(self, repo_path: Path, execution_id: str) -> Path:
        """Working copy for one execution: ``<root>/.worktrees/<owner>/<repo>/<id>``."""
        relative = Path(repo_path).relative_to(self.clone_root)
        return self.clone_root / WORKTREE_DIR / relative / execution_id

    async def create_branch(self, repo_path: Path, branch: str, worktree_path: Path) -> str:
        """
        Create branch from the default branch in a fresh worktree.

        Falls back to the clone's HEAD when the remote default branch
        cannot be resolved.

        Returns:
            The base commit the branch was created from

        Raises:
            GitCommandError: If no base commit resolves or the worktree cannot be added
        """
        default_branch = await self.resolve_default_branch(repo_path)
        base = await self.git.run("rev-parse", "--verify", "--quiet", f"{default_branch}^{{commit}}", cwd=repo_path)
        if not base.ok:
            base = await self.git.run("rev-parse", "HEAD", cwd=repo_path)
            if not base.ok:
                raise GitCommandError("resolve base commit", base.args, base.returncode, base.error)

        result = await self.git.run(
            "worktree", "add", "-b", branch, str(worktree_path.absolute()), base.text, cwd=repo_path
        )
        if not result.ok:
            raise GitCommandError("create branch", result.args, result.returncode, result.error)

        logger.info("Branch created", branch=branch, base_commit=base.text[:12], worktree=str(worktree_path))
        return base.text

    async def branch_exists(self, repo_path: Path, branch: str) -> bool:
        result = await self.git.run(
            "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}", cwd=repo_path
        )
        return result.ok

    async def prepare_branch(self, repo_path: Path, branch: str, worktree_path: Path) -> str:
        """
        Give the branch a clean worktree of its own.

        A branch left behind by an earlier run is reused and diffed from
        its merge-base with the default branch. Any previous worktree at
        worktree_path is discarded first.

        Returns:
            The base commit for diff statistics

        Raises:
            GitCommandError: If the branch or its worktree cannot be set up
        """
        await self.remove_worktree(repo_path, worktree_path)
        worktree_path.parent.mkdir(parents=True, exist_ok=True)

        if not await self.branch_exists(repo_path, branch):
            return await self.create_branch(repo_path, branch, worktree_path)

        await self._add_worktree(repo_path, branch, worktree_path)
        default_branch = await self.resolve_default_branch(repo_path)
        base_commit = await self.merge_base(repo_path, branch, default_branch)
        if base_commit is None:
            raise GitCommandError(
                "resolve base commit",
                ["merge-base", branch, default_branch],
                1,
                f"no merge base between {branch} and {default_branch}",
            )
        logger.info("Reusing existing branch", branch=branch, base_commit=base_commit[:12])
        return base_commit

    async def open_worktree(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        """
        Make sure branch is checked out at worktree_path, keeping its pending changes.

        Raises:
            GitCommandError: If the branch cannot be checked out
        """
        if self.is_clone(worktree_path):
            return
        await self.remove_worktree(repo_path, worktree_path)
        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        await self._add_worktree(repo_path, branch, worktree_path)

    async def _add_worktree(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        result = await self.git.run("worktree", "add", str(worktree_path.absolute()), branch, cwd=repo_path)
        if not result.ok:
            raise GitCommandError("checkout branch", result.args, result.returncode, result.error)

    async def remove_worktree(self, repo_path: Path, worktree_path: Path) -> None:
        """Best-effort removal of a worktree and its administrative entry."""
        if worktree_path.exists():
            result = await self.git.run(
                "worktree", "remove", "--force", str(worktree_path.absolute()), cwd=repo_path
            )
            if not result.ok:
                logger.warning(
                    "Failed to remove worktree",
                    worktree=str(worktree_path),
                    error=result.error[:500],
                )
                await asyncio.to_thread(shutil.rmtree, worktree_path, ignore_errors=True)
        if self.is_clone(repo_path):
            await self.git.run("worktree", "prune", cwd=repo_path)

    async def delete_branch(self, repo_path: Path, branch: str, worktree_path: Optional[Path] = None) -> bool:
        """Best-effort ``branch -D``; never raises for git failures."""
        if not self.is_clone(repo_path):
            logger.warning("Clone missing, skipping branch deletion", branch=branch, repo_path=str(repo_path))
            return False

        # git refuses to delete a branch checked out anywhere
        if worktree_path is not None:
            await self.remove_worktree(repo_path, worktree_path)
        current = await self.git.run("rev-parse", "--abbrev-ref", "HEAD", cwd=repo_path)
        if current.ok and current.text == branch:
            await self.git.run("checkout", "--detach", cwd=repo_path)

        result = await self.git.run("branch", "-D", branch, cwd=repo_path)
        if not result.ok:
            logger.warning(
                "Failed to delete branch",
                branch=branch,
                repo_path=str(repo_path),
                error=result.error[:500],
            )
            return False

        logger.info("Branch deleted", branch=branch, repo_path=str(repo_path))
        return True

    async def resolve_default_branch(self, repo_path: Path) -> str:
        """Remote default branch (e.g. ``origin/main``)."""
        result = await self.git.run("symbolic-ref", "refs/remotes/origin/HEAD", cwd=repo_path)
        if not result.ok or not result.text:
            return DEFAULT_BRANCH_FALLBACK
        return result.text.removeprefix("refs/remotes/")

    async def merge_base(self, repo_path: Path, branch: str, other: str) -> Optional[str]:
        result = await self.git.run("merge-base", branch, other, cwd=repo_path)
        if not result.ok or not result.text:
            return None
        return result.text

    async def list_maestro_branches(self, repo_path: Path) -> list[str]:
        result = await self.git.run(
            "for-each-ref",
            "--format=%(refname:short)",
            f"refs/heads/{BRANCH_NAMESPACE}",
            cwd=repo_path,
        )
        if not result.ok:
            logger.warning("Failed to list branches", repo_path=str(repo_path), error=result.error[:500])
            return []
        return [line.strip() for line in result.text.splitlines() if line.strip()]

    # ==========================================================================
    # Disk inventory
    # ==========================================================================

    def list_clones_on_disk(self) -> list[tuple[str, Path]]:
        """
        All ``owner/repo`` directories below the clone root.

        Returns:
            (provider_id, path) pairs sorted by provider_id
        """
        if not self.clone_root.is_dir():
            return []

        found = []
        for owner_dir in sorted(self.clone_root.iterdir()):
            if not owner_dir.is_dir() or owner_dir.name.startswith("."):
                continue
            for repo_dir in sorted(owner_dir.iterdir()):
                if not repo_dir.is_dir() or repo_dir.name.startswith("."):
                    continue
                found.append((f"{owner_dir.name}/{repo_dir.name}", repo_dir))
        return found

    async def remove_clone(self, repo_path: Path) -> None:
        worktrees = self.clone_root / WORKTREE_DIR / Path(repo_path).relative_to(self.clone_root)
        async with self.lock_for(repo_path):
            await asyncio.to_thread(shutil.rmtree, repo_path)
            if worktrees.exists():
                await asyncio.to_thread(shutil.rmtree, worktrees)
        logger.info("Clone removed", repo_path=str(repo_path))
