"""
Maestro - API Tests
===================

HTTP surface over a scripted orchestrator.
"""

import asyncio

from httpx import AsyncClient

from maestro.core.config import settings
from maestro.core.execution import Orchestrator
from maestro.core.models import ExecutionStatus
from maestro.core.store import Store

from tests.helpers import FakeAgent

API = "/api/v1"


class TestHealth:
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert "version" in data
        assert data["max_concurrent_executions"] == settings.MAX_CONCURRENT_EXECUTIONS

    async def test_root(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["api"] == API


class TestRepositoriesAPI:
    async def test_register_is_get_or_create(self, client: AsyncClient):
        first = await client.post(f"{API}/repositories", json={"provider_id": "acme/api"})
        second = await client.post(
            f"{API}/repositories",
            json={"provider": "github", "provider_id": "acme/api", "name": "API"},
        )

        assert first.status_code == 201
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["name"] == "API"

        listing = await client.get(f"{API}/repositories")
        assert len(listing.json()) == 1

    async def test_invalid_provider_id(self, client: AsyncClient):
        response = await client.post(f"{API}/repositories", json={"provider_id": "not-a-repo"})
        assert response.status_code == 422

    async def test_get_missing(self, client: AsyncClient):
        response = await client.get(f"{API}/repositories/missing")
        assert response.status_code == 404


class TestPromptSetsAPI:
    async def test_crud(self, client: AsyncClient, repositories):
        a, b = (r.id for r in repositories)
        created = await client.post(
            f"{API}/promptsets",
            json={"name": "Lint", "repository_ids": [a], "validation_prompt": "  "},
        )
        assert created.status_code == 201
        body = created.json()
        assert body["repository_ids"] == [a]
        assert body["validation_prompt"] is None
        assert body["auto_validate"] is True
        promptset_id = body["id"]

        patched = await client.patch(
            f"{API}/promptsets/{promptset_id}",
            json={"validation_prompt": "Lint is clean", "auto_validate": False},
        )
        assert patched.json()["validation_prompt"] == "Lint is clean"
        assert patched.json()["auto_validate"] is False

        added = await client.post(f"{API}/promptsets/{promptset_id}/repositories", json={"repository_ids": [b]})
        assert added.json()["repository_ids"] == [a, b]

        removed = await client.delete(f"{API}/promptsets/{promptset_id}/repositories/{a}")
        assert removed.json()["repository_ids"] == [b]
        again = await client.delete(f"{API}/promptsets/{promptset_id}/repositories/{a}")
        assert again.status_code == 404

        deleted = await client.delete(f"{API}/promptsets/{promptset_id}")
        assert deleted.status_code == 204
        assert (await client.get(f"{API}/promptsets/{promptset_id}")).status_code == 404

    async def test_unknown_repository(self, client: AsyncClient):
        response = await client.post(f"{API}/promptsets", json={"name": "X", "repository_ids": ["missing"]})
        assert response.status_code == 404

    async def test_listings(self, client: AsyncClient, prompt_set, revision):
        revisions = await client.get(f"{API}/promptsets/{prompt_set.id}/revisions")
        assert [r["id"] for r in revisions.json()] == [revision.id]

        executions = await client.get(f"{API}/promptsets/{prompt_set.id}/executions")
        assert executions.json() == []


class TestRevisionsAPI:
    async def test_create_is_idempotent(self, client: AsyncClient, prompt_set):
        payload = {"promptset_id": prompt_set.id, "prompt_text": "  keep my whitespace  "}
        first = await client.post(f"{API}/revisions", json=payload)
        second = await client.post(f"{API}/revisions", json=payload)

        assert first.status_code == 201
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["prompt_text"] == "  keep my whitespace  "
        assert len(first.json()["id"]) == 64

    async def test_create_for_missing_prompt_set(self, client: AsyncClient):
        response = await client.post(f"{API}/revisions", json={"promptset_id": "missing", "prompt_text": "x"})
        assert response.status_code == 404

    async def test_execute_returns_ids_immediately(
        self,
        client: AsyncClient,
        orchestrator: Orchestrator,
        store: Store,
        revision,
    ):
        response = await client.post(f"{API}/revisions/{revision.id}/execute")

        assert response.status_code == 202
        ids = response.json()["executionIds"]
        assert len(ids) == 2

        await orchestrator.supervisor.wait_all()
        listing = await client.get(f"{API}/revisions/{revision.id}/executions")
        assert {e["id"] for e in listing.json()} == set(ids)
        assert all(e["status"] == ExecutionStatus.COMPLETED.value for e in listing.json())

    async def test_execute_missing_revision(self, client: AsyncClient):
        response = await client.post(f"{API}/revisions/{'0' * 64}/execute")
        assert response.status_code == 404

    async def test_stop_all(self, client: AsyncClient, revision, fake_agent: FakeAgent):
        fake_agent.gate = asyncio.Event()
        await client.post(f"{API}/revisions/{revision.id}/execute")
        await fake_agent.started.wait()

        response = await client.post(f"{API}/revisions/{revision.id}/stop")
        assert response.status_code == 200
        assert response.json()["stopped"] >= 1

        response = await client.post(f"{API}/revisions/{revision.id}/stop-validations")
        assert response.json() == {"stopped": 0}


class TestExecutionsAPI:
    async def _completed_execution(self, client: AsyncClient, orchestrator: Orchestrator, revision) -> str:
        response = await client.post(f"{API}/revisions/{revision.id}/execute")
        await orchestrator.supervisor.wait_all()
        return response.json()["executionIds"][0]

    async def test_get(self, client: AsyncClient, orchestrator: Orchestrator, revision):
        execution_id = await self._completed_execution(client, orchestrator, revision)

        response = await client.get(f"{API}/executions/{execution_id}")
        body = response.json()
        assert body["status"] == "completed"
        assert body["prompt_status"] == "passed"
        assert body["thread_url"] == "https://agent.test/threads/T-1"
        assert body["files_modified"] == 2

    async def test_missing(self, client: AsyncClient):
        assert (await client.get(f"{API}/executions/missing")).status_code == 404
        assert (await client.post(f"{API}/executions/missing/start")).status_code == 404
        assert (await client.post(f"{API}/executions/missing/validate")).status_code == 404
        assert (await client.delete(f"{API}/executions/missing")).status_code == 404

    async def test_validate_requires_completed(
        self,
        client: AsyncClient,
        store: Store,
        prompt_set,
        revision,
        repositories,
    ):
        execution = await store.create_execution(prompt_set.id, revision.id, repositories[0].id)

        response = await client.post(f"{API}/executions/{execution.id}/validate")

        assert response.status_code == 400
        assert response.json()["code"] == "PRECONDITION_FAILED"

    async def test_start_while_running_conflicts(
        self,
        client: AsyncClient,
        orchestrator: Orchestrator,
        revision,
        fake_agent: FakeAgent,
    ):
        fake_agent.gate = asyncio.Event()
        response = await client.post(f"{API}/revisions/{revision.id}/execute")
        execution_id = response.json()["executionIds"][0]
        await fake_agent.started.wait()

        conflict = await client.post(f"{API}/executions/{execution_id}/start")
        assert conflict.status_code == 409
        assert conflict.json()["code"] == "CONFLICT"

        stopped = await client.post(f"{API}/executions/{execution_id}/stop")
        assert stopped.json() == {"stopped": 1}

    async def test_rerun_and_delete(self, client: AsyncClient, orchestrator: Orchestrator, revision):
        execution_id = await self._completed_execution(client, orchestrator, revision)

        rerun = await client.post(f"{API}/executions/{execution_id}/start")
        assert rerun.status_code == 202
        await orchestrator.supervisor.wait_all()

        deleted = await client.delete(f"{API}/executions/{execution_id}")
        assert deleted.status_code == 204
        assert (await client.get(f"{API}/executions/{execution_id}")).status_code == 404

    async def test_backfill_skipped_when_stats_present(
        self,
        client: AsyncClient,
        orchestrator: Orchestrator,
        revision,
    ):
        execution_id = await self._completed_execution(client, orchestrator, revision)

        response = await client.post(f"{API}/executions/{execution_id}/backfill-stats")
        assert response.json() == {"updated": False, "stats": None}


class TestBranchesAPI:
    async def test_scan_and_sync(self, client: AsyncClient, orchestrator: Orchestrator, revision):
        await client.post(f"{API}/revisions/{revision.id}/execute")
        await orchestrator.supervisor.wait_all()

        scan = await client.get(f"{API}/maestro/branches", params={"refresh": True})
        assert scan.status_code == 200
        repos = {r["provider_id"]: r for r in scan.json()}
        assert set(repos) == {"acme/api", "acme/web"}
        [branch] = repos["acme/api"]["branches"]
        assert branch["name"].startswith("maestro/")
        assert branch["prompt_set"]["id"]
        assert branch["execution"]["status"] == "completed"

        sync = await client.post(f"{API}/maestro/sync")
        assert sync.json() == {"deleted_from_disk": [], "deleted_from_db": [], "errors": []}
