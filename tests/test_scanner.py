"""
Maestro - Branch Scanner Tests
==============================
"""

from pathlib import Path

import pytest

from maestro.core.execution import Orchestrator
from maestro.core.execution.branches import branch_for_execution
from maestro.core.execution.scanner import BranchScanner, ScanCache
from maestro.core.models import ExecutionStatus
from maestro.core.store import Store

from tests.helpers import FakeWorkspace


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scanner(store: Store, fake_workspace: FakeWorkspace, clock: FakeClock) -> BranchScanner:
    return BranchScanner(store, fake_workspace, ScanCache(30, clock=clock))


def make_clone(clone_root: Path, provider_id: str) -> Path:
    path = clone_root.joinpath(*provider_id.split("/"))
    (path / ".git").mkdir(parents=True)
    return path


class TestScanCache:
    def test_expires_after_ttl(self, clock: FakeClock):
        cache = ScanCache(30, clock=clock)
        cache.put([])

        clock.now += 29
        assert cache.get() == []
        clock.now += 1
        assert cache.get() is None

    def test_invalidate(self, clock: FakeClock):
        cache = ScanCache(30, clock=clock)
        cache.put([])
        cache.invalidate()
        assert cache.get() is None


class TestScan:
    async def test_resolves_branches_by_prefix(
        self,
        orchestrator: Orchestrator,
        store: Store,
        prompt_set,
        revision,
        repositories,
        scanner: BranchScanner,
        fake_workspace: FakeWorkspace,
        clone_root: Path,
    ):
        ids = await orchestrator.executions.execute_prompt_set(prompt_set.id, revision.id)
        await orchestrator.supervisor.wait_all()
        execution = await store.get_execution(ids[0])

        repo_path = clone_root / "acme" / "api"
        fake_workspace.branches[repo_path].add("maestro/deadbeef/deadbeef/deadbeef")

        results = {r.provider_id: r for r in await scanner.scan()}
        api = results["acme/api"]

        assert api.exists_in_db and api.exists_on_disk
        assert api.id == repositories[0].id

        by_name = {b.name: b for b in api.branches}
        resolved = by_name[branch_for_execution(execution)]
        assert resolved.prompt_set.id == prompt_set.id
        assert resolved.prompt_set.name == prompt_set.name
        assert resolved.revision.id == revision.id
        assert resolved.execution.id == execution.id
        assert resolved.execution.status == ExecutionStatus.COMPLETED

        orphan = by_name["maestro/deadbeef/deadbeef/deadbeef"]
        assert orphan.ids is not None
        assert orphan.prompt_set is None and orphan.revision is None and orphan.execution is None

    async def test_database_only_repositories(self, scanner: BranchScanner, repositories):
        results = await scanner.scan()

        assert {r.provider_id for r in results} == {"acme/api", "acme/web"}
        assert all(r.exists_in_db and not r.exists_on_disk for r in results)
        assert all(r.branches == [] for r in results)

    async def test_disk_only_clone(self, scanner: BranchScanner, clone_root: Path):
        make_clone(clone_root, "other/tool")

        [result] = await scanner.scan()
        assert result.provider_id == "other/tool"
        assert result.exists_on_disk and not result.exists_in_db
        assert result.id is None

    async def test_cached_until_refresh(
        self,
        scanner: BranchScanner,
        store: Store,
        clock: FakeClock,
    ):
        assert await scanner.scan() == []
        await store.create_repository("github", "acme/new")

        assert await scanner.scan() == []
        assert len(await scanner.scan(refresh=True)) == 1

        await store.create_repository("github", "acme/newer")
        clock.now += 30
        assert len(await scanner.scan()) == 2


class TestSync:
    async def test_removes_orphans_on_both_sides(
        self,
        scanner: BranchScanner,
        store: Store,
        clone_root: Path,
    ):
        stray = make_clone(clone_root, "stray/clone")
        make_clone(clone_root, "acme/kept")
        await store.create_repository("github", "acme/kept")
        await store.create_repository("github", "acme/gone")

        result = await scanner.sync_repositories()

        assert result.deleted_from_disk == ["stray/clone"]
        assert result.deleted_from_db == ["acme/gone"]
        assert result.errors == []
        assert not stray.exists()
        assert await store.find_repository("github", "acme/gone") is None
        assert await store.find_repository("github", "acme/kept") is not None

    async def test_never_deletes_repository_in_use(self, scanner: BranchScanner, store: Store, prompt_set, repositories):
        result = await scanner.sync_repositories()

        assert result.deleted_from_db == []
        assert len(await store.list_repositories()) == 2

    async def test_invalidates_cache(self, scanner: BranchScanner, store: Store):
        await store.create_repository("github", "acme/gone")
        assert len(await scanner.scan()) == 1

        await scanner.sync_repositories()
        assert await scanner.scan() == []
