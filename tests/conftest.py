"""
Maestro - Test Fixtures
=======================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

from maestro.api.main import create_app
from maestro.core.config import Settings
from maestro.core.database import Base, create_engine, create_session_factory
from maestro.core.execution import Orchestrator
from maestro.core.models import Repository
from maestro.core.store import Store

from tests.helpers import FakeAgent, FakeDiffEngine, FakeWorkspace


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_engine(TEST_DATABASE_URL, poolclass=StaticPool)

TestingSessionLocal = create_session_factory(test_engine)


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def store() -> AsyncGenerator[Store, None]:
    """
    Provide a Store over a clean database for each test.

    Creates all tables before test, drops after.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield Store(TestingSessionLocal)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clone_root(tmp_path: Path) -> Path:
    root = tmp_path / "repos"
    root.mkdir()
    return root


@pytest.fixture
def test_settings(clone_root: Path) -> Settings:
    return Settings(
        ENVIRONMENT="test",
        CLONE_DIR=str(clone_root),
        AGENT_THREAD_BASE_URL="https://agent.test/threads",
        SCAN_CACHE_TTL_SECONDS=30,
    )


@pytest.fixture
def fake_agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def fake_workspace(clone_root: Path) -> FakeWorkspace:
    return FakeWorkspace(clone_root)


@pytest.fixture
def fake_diff() -> FakeDiffEngine:
    return FakeDiffEngine()


@pytest_asyncio.fixture
async def orchestrator(
    store: Store,
    test_settings: Settings,
    fake_agent: FakeAgent,
    fake_workspace: FakeWorkspace,
    fake_diff: FakeDiffEngine,
) -> AsyncGenerator[Orchestrator, None]:
    orch = Orchestrator.build(
        store,
        test_settings,
        workspace=fake_workspace,
        agent=fake_agent,
        diff_engine=fake_diff,
    )
    yield orch
    if fake_agent.gate is not None:
        fake_agent.gate.set()
    await orch.shutdown()


@pytest_asyncio.fixture(scope="function")
async def client(orchestrator: Orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client bound to the test orchestrator.
    """
    app = create_app(orchestrator=orchestrator, create_tables=False)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ==========================================================================
# Record Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def repositories(store: Store) -> list[Repository]:
    return [
        await store.create_repository("github", "acme/api", "api"),
        await store.create_repository("github", "acme/web", "web"),
    ]


@pytest_asyncio.fixture
async def prompt_set(store: Store, repositories: list[Repository]):
    return await store.create_prompt_set(
        name="Upgrade logging",
        repository_ids=[r.id for r in repositories],
        validation_prompt="All tests still pass",
    )


@pytest_asyncio.fixture
async def revision(store: Store, prompt_set):
    return await store.create_prompt_revision(prompt_set.id, "Replace print with structlog")
