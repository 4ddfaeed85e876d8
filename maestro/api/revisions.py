"""
Maestro - Revisions API
=======================

Content-addressed prompt revisions and revision-wide execution control.
"""

from fastapi import APIRouter, status

from maestro.api.deps import (
    OrchestratorDep,
    StoreDep,
    get_prompt_set_or_404,
    get_revision_or_404,
)
from maestro.core.schemas import (
    ExecuteResponse,
    ExecutionResponse,
    RevisionCreate,
    RevisionResponse,
    StopResponse,
)

router = APIRouter(prefix="/revisions", tags=["Revisions"])


@router.post(
    "",
    response_model=RevisionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create revision",
    responses={404: {"description": "Prompt set not found"}},
)
async def create_revision(data: RevisionCreate, store: StoreDep) -> RevisionResponse:
    """
    Create a revision; identical prompt text returns the existing one.
    """
    await get_prompt_set_or_404(store, data.promptset_id)
    revision = await store.create_prompt_revision(
        data.promptset_id,
        data.prompt_text,
        data.parent_revision_id,
    )
    return RevisionResponse.model_validate(revision)


@router.get(
    "/{revision_id}",
    response_model=RevisionResponse,
    summary="Get revision",
    responses={404: {"description": "Revision not found"}},
)
async def get_revision(revision_id: str, store: StoreDep) -> RevisionResponse:
    revision = await get_revision_or_404(store, revision_id)
    return RevisionResponse.model_validate(revision)


@router.get(
    "/{revision_id}/executions",
    response_model=list[ExecutionResponse],
    summary="List executions",
)
async def list_executions(revision_id: str, store: StoreDep) -> list[ExecutionResponse]:
    await get_revision_or_404(store, revision_id)
    executions = await store.list_executions_by_revision(revision_id)
    return [ExecutionResponse.model_validate(e) for e in executions]


@router.post(
    "/{revision_id}/execute",
    response_model=ExecuteResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute revision",
    responses={404: {"description": "Revision not found"}},
)
async def execute_revision(revision_id: str, orchestrator: OrchestratorDep) -> ExecuteResponse:
    """
    Start one execution per repository of the revision's prompt set.

    Returns immediately; poll the executions for progress.
    """
    revision = await get_revision_or_404(orchestrator.store, revision_id)
    execution_ids = await orchestrator.executions.execute_prompt_set(
        revision.promptset_id,
        revision.id,
    )
    return ExecuteResponse(execution_ids=execution_ids)


@router.post(
    "/{revision_id}/stop",
    response_model=StopResponse,
    summary="Stop all executions",
)
async def stop_executions(revision_id: str, orchestrator: OrchestratorDep) -> StopResponse:
    await get_revision_or_404(orchestrator.store, revision_id)
    stopped = await orchestrator.executions.stop_all_executions(revision_id)
    return StopResponse(stopped=stopped)


@router.post(
    "/{revision_id}/stop-validations",
    response_model=StopResponse,
    summary="Stop all validations",
)
async def stop_validations(revision_id: str, orchestrator: OrchestratorDep) -> StopResponse:
    await get_revision_or_404(orchestrator.store, revision_id)
    stopped = await orchestrator.validations.stop_all_validations(revision_id)
    return StopResponse(stopped=stopped)
