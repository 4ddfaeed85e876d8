"""
Maestro - Store
===============

Async persistence interface used by the orchestrator and the API.

Every operation opens its own short-lived session so that executions
running concurrently in background tasks never share one.
"""

import hashlib
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from typing import Any, Optional, TypeVar

import structlog
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maestro.core.models import (
    Analysis,
    AnalysisType,
    Execution,
    ExecutionStatus,
    PromptRevision,
    PromptSet,
    PromptSetRepository,
    Repository,
    utcnow,
)

logger = structlog.get_logger()

T = TypeVar("T")

# Fields of Execution that may be written through update_execution()
EXECUTION_UPDATABLE_FIELDS = frozenset({
    "status",
    "session_id",
    "thread_url",
    "prompt_status",
    "prompt_result",
    "validation_status",
    "validation_thread_url",
    "validation_result",
    "files_added",
    "files_removed",
    "files_modified",
    "lines_added",
    "lines_removed",
    "completed_at",
})


class Store:
    """CRUD, prefix lookup and content-addressed revisions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Round-trip to the database."""
        async with self._session() as session:
            await session.execute(text("SELECT 1"))

    async def _get(self, model: type[T], record_id: str) -> Optional[T]:
        async with self._session() as session:
            return await session.get(model, record_id)

    async def _find_by_prefix(self, model: type[T], prefix: str) -> Optional[T]:
        if not prefix:
            return None
        async with self._session() as session:
            result = await session.execute(
                select(model)
                .where(model.id.startswith(prefix, autoescape=True))
                .order_by(model.created_at)
                .limit(1)
            )
            return result.scalar_one_or_none()

    # ==========================================================================
    # Repositories
    # ==========================================================================

    async def create_repository(
        self,
        provider: str,
        provider_id: str,
        name: Optional[str] = None,
    ) -> Repository:
        repository = Repository(
            provider=provider,
            provider_id=provider_id,
            name=name,
            last_synced_at=utcnow() if name else None,
        )
        async with self._session() as session:
            session.add(repository)
        logger.info("Repository created", repository_id=repository.id, provider_id=provider_id)
        return repository

    async def get_or_create_repository(
        self,
        provider: str,
        provider_id: str,
        name: Optional[str] = None,
    ) -> Repository:
        existing = await self.find_repository(provider, provider_id)
        if existing:
            return existing
        return await self.create_repository(provider, provider_id, name)

    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        return await self._get(Repository, repository_id)

    async def find_repository(self, provider: str, provider_id: str) -> Optional[Repository]:
        async with self._session() as session:
            result = await session.execute(
                select(Repository).where(
                    Repository.provider == provider,
                    Repository.provider_id == provider_id,
                )
            )
            return result.scalar_one_or_none()

    async def find_repository_by_prefix(self, prefix: str) -> Optional[Repository]:
        return await self._find_by_prefix(Repository, prefix)

    async def list_repositories(self) -> list[Repository]:
        async with self._session() as session:
            result = await session.execute(
                select(Repository).order_by(Repository.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_repository_name(self, repository_id: str, name: str) -> None:
        async with self._session() as session:
            await session.execute(
                update(Repository)
                .where(Repository.id == repository_id)
                .values(name=name, last_synced_at=utcnow())
            )

    async def delete_repository(self, repository_id: str) -> bool:
        """Delete a repository with its memberships and executions."""
        async with self._session() as session:
            await session.execute(
                delete(Execution).where(Execution.repository_id == repository_id)
            )
            await session.execute(
                delete(PromptSetRepository).where(
                    PromptSetRepository.repository_id == repository_id
                )
            )
            result = await session.execute(
                delete(Repository).where(Repository.id == repository_id)
            )
            return result.rowcount > 0

    # ==========================================================================
    # Prompt Sets
    # ==========================================================================

    async def create_prompt_set(
        self,
        name: str,
        repository_ids: Iterable[str],
        validation_prompt: Optional[str] = None,
        auto_validate: bool = True,
    ) -> PromptSet:
        prompt_set = PromptSet(
            name=name,
            validation_prompt=validation_prompt,
            auto_validate=auto_validate,
        )
        # Ordered set: keep first occurrence
        ordered = list(dict.fromkeys(repository_ids))
        prompt_set.memberships = [
            PromptSetRepository(repository_id=repo_id, position=position)
            for position, repo_id in enumerate(ordered)
        ]
        async with self._session() as session:
            session.add(prompt_set)
        logger.info("Prompt set created", promptset_id=prompt_set.id, repositories=len(ordered))
        return prompt_set

    async def get_prompt_set(self, promptset_id: str) -> Optional[PromptSet]:
        return await self._get(PromptSet, promptset_id)

    async def find_prompt_set_by_prefix(self, prefix: str) -> Optional[PromptSet]:
        return await self._find_by_prefix(PromptSet, prefix)

    async def list_prompt_sets(self) -> list[PromptSet]:
        async with self._session() as session:
            result = await session.execute(
                select(PromptSet).order_by(PromptSet.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_prompt_set(
        self,
        promptset_id: str,
        **fields: Any,
    ) -> Optional[PromptSet]:
        """Partial update of name, validation_prompt and auto_validate."""
        allowed = {"name", "validation_prompt", "auto_validate"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update prompt set fields: {sorted(unknown)}")

        async with self._session() as session:
            if fields:
                await session.execute(
                    update(PromptSet).where(PromptSet.id == promptset_id).values(**fields)
                )
        return await self.get_prompt_set(promptset_id)

    async def add_repositories_to_prompt_set(
        self,
        promptset_id: str,
        repository_ids: Iterable[str],
    ) -> Optional[PromptSet]:
        async with self._session() as session:
            result = await session.execute(
                select(PromptSetRepository).where(
                    PromptSetRepository.promptset_id == promptset_id
                )
            )
            existing = {m.repository_id: m.position for m in result.scalars().all()}
            next_position = max(existing.values(), default=-1) + 1
            for repo_id in dict.fromkeys(repository_ids):
                if repo_id in existing:
                    continue
                session.add(PromptSetRepository(
                    promptset_id=promptset_id,
                    repository_id=repo_id,
                    position=next_position,
                ))
                existing[repo_id] = next_position
                next_position += 1
        return await self.get_prompt_set(promptset_id)

    async def remove_repository_from_prompt_set(
        self,
        promptset_id: str,
        repository_id: str,
    ) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(PromptSetRepository).where(
                    PromptSetRepository.promptset_id == promptset_id,
                    PromptSetRepository.repository_id == repository_id,
                )
            )
            return result.rowcount > 0

    async def repository_ids_in_use(self) -> set[str]:
        """Repository ids referenced by at least one prompt-set."""
        async with self._session() as session:
            result = await session.execute(
                select(PromptSetRepository.repository_id).distinct()
            )
            return set(result.scalars().all())

    async def delete_prompt_set(self, promptset_id: str) -> bool:
        """Delete a prompt-set with its revisions, executions and analyses."""
        async with self._session() as session:
            revision_ids = select(PromptRevision.id).where(
                PromptRevision.promptset_id == promptset_id
            )
            await session.execute(
                delete(Execution).where(Execution.promptset_id == promptset_id)
            )
            await session.execute(
                delete(Analysis).where(Analysis.revision_id.in_(revision_ids))
            )
            await session.execute(
                delete(PromptRevision).where(PromptRevision.promptset_id == promptset_id)
            )
            await session.execute(
                delete(PromptSetRepository).where(
                    PromptSetRepository.promptset_id == promptset_id
                )
            )
            result = await session.execute(
                delete(PromptSet).where(PromptSet.id == promptset_id)
            )
            return result.rowcount > 0

    # ==========================================================================
    # Prompt Revisions
    # ==========================================================================

    @staticmethod
    def hash_prompt(text: str) -> str:
        """Content address of a prompt: SHA-256 hex digest of its UTF-8 text."""
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    async def create_prompt_revision(
        self,
        promptset_id: str,
        prompt_text: str,
        parent_revision_id: Optional[str] = None,
    ) -> PromptRevision:
        """
        Create a revision, or return the existing one for identical text.

        Idempotent: the id is the content hash of prompt_text.
        """
        revision_id = self.hash_prompt(prompt_text)

        async with self._session() as session:
            existing = await session.get(PromptRevision, revision_id)
            if existing:
                return existing

            revision = PromptRevision(
                id=revision_id,
                promptset_id=promptset_id,
                prompt_text=prompt_text,
                parent_revision_id=parent_revision_id,
            )
            session.add(revision)

        logger.info("Prompt revision created", revision_id=revision_id[:8], promptset_id=promptset_id)
        return revision

    async def get_prompt_revision(self, revision_id: str) -> Optional[PromptRevision]:
        return await self._get(PromptRevision, revision_id)

    async def find_prompt_revision_by_prefix(self, prefix: str) -> Optional[PromptRevision]:
        return await self._find_by_prefix(PromptRevision, prefix)

    async def list_prompt_revisions(self, promptset_id: str) -> list[PromptRevision]:
        async with self._session() as session:
            result = await session.execute(
                select(PromptRevision)
                .where(PromptRevision.promptset_id == promptset_id)
                .order_by(PromptRevision.created_at.desc())
            )
            return list(result.scalars().all())

    # ==========================================================================
    # Executions
    # ==========================================================================

    async def create_execution(
        self,
        promptset_id: str,
        revision_id: str,
        repository_id: str,
    ) -> Execution:
        execution = Execution(
            promptset_id=promptset_id,
            revision_id=revision_id,
            repository_id=repository_id,
            status=ExecutionStatus.PENDING,
            files_added=0,
            files_removed=0,
            files_modified=0,
            lines_added=0,
            lines_removed=0,
        )
        async with self._session() as session:
            session.add(execution)
        return execution

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        return await self._get(Execution, execution_id)

    async def find_execution_by_prefix(self, prefix: str) -> Optional[Execution]:
        return await self._find_by_prefix(Execution, prefix)

    async def update_execution(self, execution_id: str, **fields: Any) -> Optional[Execution]:
        """
        Field-masked update: only the supplied fields are written.

        Raises:
            ValueError: If a field is not updatable
        """
        unknown = set(fields) - EXECUTION_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update execution fields: {sorted(unknown)}")

        async with self._session() as session:
            if fields:
                await session.execute(
                    update(Execution).where(Execution.id == execution_id).values(**fields)
                )
            return await session.get(Execution, execution_id, populate_existing=True)

    async def list_executions_by_revision(self, revision_id: str) -> list[Execution]:
        async with self._session() as session:
            result = await session.execute(
                select(Execution)
                .where(Execution.revision_id == revision_id)
                .order_by(Execution.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_executions_by_prompt_set(self, promptset_id: str) -> list[Execution]:
        async with self._session() as session:
            result = await session.execute(
                select(Execution)
                .where(Execution.promptset_id == promptset_id)
                .order_by(Execution.created_at.desc())
            )
            return list(result.scalars().all())

    async def delete_execution(self, execution_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(Execution).where(Execution.id == execution_id)
            )
            return result.rowcount > 0

    async def count_executions(self, revision_id: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count()).select_from(Execution).where(
                    Execution.revision_id == revision_id
                )
            )
            return int(result.scalar_one())

    # ==========================================================================
    # Analyses
    # ==========================================================================

    async def create_analysis(
        self,
        revision_id: str,
        analysis_type: AnalysisType,
        analysis_prompt: str,
    ) -> Analysis:
        analysis = Analysis(
            revision_id=revision_id,
            type=analysis_type,
            analysis_prompt=analysis_prompt,
            execution_count=await self.count_executions(revision_id),
        )
        async with self._session() as session:
            session.add(analysis)
        return analysis

    async def get_analysis(self, analysis_id: str) -> Optional[Analysis]:
        return await self._get(Analysis, analysis_id)

    async def list_analyses_by_revision(self, revision_id: str) -> list[Analysis]:
        async with self._session() as session:
            result = await session.execute(
                select(Analysis)
                .where(Analysis.revision_id == revision_id)
                .order_by(Analysis.created_at.desc())
            )
            return list(result.scalars().all())

