"""
Maestro - API Dependencies
==========================

Shared dependencies for FastAPI endpoints.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from maestro.core.execution import Orchestrator
from maestro.core.models import Execution, PromptRevision, PromptSet, Repository
from maestro.core.store import Store


# ==========================================================================
# Orchestrator
# ==========================================================================

def get_orchestrator(request: Request) -> Orchestrator:
    """Orchestrator built in the application lifespan."""
    return request.app.state.orchestrator


def get_store(orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)]) -> Store:
    return orchestrator.store


OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]
StoreDep = Annotated[Store, Depends(get_store)]


# ==========================================================================
# Lookups
# ==========================================================================

def _not_found(kind: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{kind} not found",
    )


async def get_repository_or_404(store: Store, repository_id: str) -> Repository:
    repository = await store.get_repository(repository_id)
    if not repository:
        raise _not_found("Repository")
    return repository


async def get_prompt_set_or_404(store: Store, promptset_id: str) -> PromptSet:
    prompt_set = await store.get_prompt_set(promptset_id)
    if not prompt_set:
        raise _not_found("Prompt set")
    return prompt_set


async def get_revision_or_404(store: Store, revision_id: str) -> PromptRevision:
    revision = await store.get_prompt_revision(revision_id)
    if not revision:
        raise _not_found("Revision")
    return revision


async def get_execution_or_404(store: Store, execution_id: str) -> Execution:
    execution = await store.get_execution(execution_id)
    if not execution:
        raise _not_found("Execution")
    return execution
