"""
Branch/Repository Scanner
=========================

Read-only reconciliation between the clone root and the store:

- every ``maestro/*`` branch on disk, decoded and resolved by id prefix
- repositories known to the store but missing on disk

Scans are cached for a short TTL. ``sync_repositories`` is the only
mutating operation and always invalidates the cache.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from maestro.core.execution.branches import BranchIds, parse_branch_name
from maestro.core.execution.workspace import WorkspaceManager
from maestro.core.models import ExecutionStatus, RepositoryProvider, ValidationStatus
from maestro.core.store import Store

logger = structlog.get_logger()


# ==========================================================================
# Results
# ==========================================================================

@dataclass
class PromptSetRef:
    id: str
    name: str


@dataclass
class RevisionRef:
    id: str
    created_at: datetime


@dataclass
class ExecutionRef:
    id: str
    status: ExecutionStatus
    thread_url: Optional[str]
    validation_status: Optional[ValidationStatus]
    validation_thread_url: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]


@dataclass
class BranchScan:
    name: str
    ids: Optional[BranchIds] = None
    prompt_set: Optional[PromptSetRef] = None
    revision: Optional[RevisionRef] = None
    execution: Optional[ExecutionRef] = None


@dataclass
class RepositoryScan:
    provider: str
    provider_id: str
    path: str
    exists_in_db: bool
    exists_on_disk: bool
    id: Optional[str] = None
    name: Optional[str] = None
    branches: list[BranchScan] = field(default_factory=list)


@dataclass
class SyncResult:
    deleted_from_disk: list[str] = field(default_factory=list)
    deleted_from_db: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# ==========================================================================
# Cache
# ==========================================================================

class ScanCache:
    """Holds the last scan for ttl_seconds."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entry: Optional[tuple[float, list[RepositoryScan]]] = None

    def get(self) -> Optional[list[RepositoryScan]]:
        if self._entry is None:
            return None
        stored_at, results = self._entry
        if self.clock() - stored_at >= self.ttl_seconds:
            return None
        return results

    def put(self, results: list[RepositoryScan]) -> None:
        self._entry = (self.clock(), results)

    def invalidate(self) -> None:
        self._entry = None


# ==========================================================================
# Scanner
# ==========================================================================

class BranchScanner:
    """Cross-references on-disk clones and branches with the store."""

    def __init__(self, store: Store, workspace: WorkspaceManager, cache: ScanCache):
        self.store = store
        self.workspace = workspace
        self.cache = cache

    async def scan(self, refresh: bool = False) -> list[RepositoryScan]:
        if not refresh:
            cached = self.cache.get()
            if cached is not None:
                return cached

        provider = RepositoryProvider.GITHUB.value
        results: list[RepositoryScan] = []

        for provider_id, repo_path in self.workspace.list_clones_on_disk():
            repository = await self.store.find_repository(provider, provider_id)
            branch_names = await self.workspace.list_maestro_branches(repo_path)
            results.append(RepositoryScan(
                provider=provider,
                provider_id=provider_id,
                path=str(repo_path),
                exists_in_db=repository is not None,
                exists_on_disk=True,
                id=repository.id if repository else None,
                name=repository.name if repository else None,
                branches=[await self._resolve_branch(name) for name in branch_names],
            ))

        on_disk = {r.provider_id for r in results}
        for repository in await self.store.list_repositories():
            if repository.provider != provider or repository.provider_id in on_disk:
                continue
            results.append(RepositoryScan(
                provider=provider,
                provider_id=repository.provider_id,
                path=str(self.workspace.clone_root / repository.provider_id),
                exists_in_db=True,
                exists_on_disk=False,
                id=repository.id,
                name=repository.name,
            ))

        self.cache.put(results)
        logger.debug("Branch scan complete", repositories=len(results))
        return results

    async def _resolve_branch(self, name: str) -> BranchScan:
        ids = parse_branch_name(name)
        scan = BranchScan(name=name, ids=ids)
        if ids is None:
            return scan

        prompt_set = await self.store.find_prompt_set_by_prefix(ids.promptset_id)
        if prompt_set:
            scan.prompt_set = PromptSetRef(id=prompt_set.id, name=prompt_set.name)

        revision = await self.store.find_prompt_revision_by_prefix(ids.revision_id)
        if revision:
            scan.revision = RevisionRef(id=revision.id, created_at=revision.created_at)

        execution = await self.store.find_execution_by_prefix(ids.execution_id)
        if execution:
            scan.execution = ExecutionRef(
                id=execution.id,
                status=execution.status,
                thread_url=execution.thread_url,
                validation_status=execution.validation_status,
                validation_thread_url=execution.validation_thread_url,
                created_at=execution.created_at,
                completed_at=execution.completed_at,
            )
        return scan

    async def sync_repositories(self) -> SyncResult:
        """
        Delete clones with no repository record, and repository records
        with no clone that no prompt-set references.
        """
        result = SyncResult()
        provider = RepositoryProvider.GITHUB.value

        on_disk: dict[str, Path] = dict(self.workspace.list_clones_on_disk())
        repositories = [
            r for r in await self.store.list_repositories() if r.provider == provider
        ]
        known = {r.provider_id for r in repositories}

        for provider_id, repo_path in on_disk.items():
            if provider_id in known:
                continue
            try:
                await self.workspace.remove_clone(repo_path)
                result.deleted_from_disk.append(provider_id)
            except OSError as e:
                result.errors.append(f"Failed to delete {provider_id} from disk: {e}")

        in_use = await self.store.repository_ids_in_use()
        for repository in repositories:
            if repository.provider_id in on_disk or repository.id in in_use:
                continue
            try:
                await self.store.delete_repository(repository.id)
                result.deleted_from_db.append(repository.provider_id)
            except SQLAlchemyError as e:
                result.errors.append(f"Failed to delete {repository.provider_id} from DB: {e}")

        self.cache.invalidate()
        logger.info(
            "Repositories synced",
            deleted_from_disk=len(result.deleted_from_disk),
            deleted_from_db=len(result.deleted_from_db),
            errors=len(result.errors),
        )
        return result
