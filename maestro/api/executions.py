"""
Maestro - Executions API
========================

Single-execution control: re-run, stop, validate, backfill, delete.
Orchestrator errors are mapped to HTTP statuses in main.
"""

from fastapi import APIRouter, Response, status

from maestro.api.deps import OrchestratorDep, StoreDep, get_execution_or_404
from maestro.core.schemas import (
    BackfillResponse,
    DiffStatsResponse,
    ExecutionResponse,
    StopResponse,
)

router = APIRouter(prefix="/executions", tags=["Executions"])


@router.get(
    "/{execution_id}",
    response_model=ExecutionResponse,
    summary="Get execution",
    responses={404: {"description": "Execution not found"}},
)
async def get_execution(execution_id: str, store: StoreDep) -> ExecutionResponse:
    execution = await get_execution_or_404(store, execution_id)
    return ExecutionResponse.model_validate(execution)


@router.delete(
    "/{execution_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete execution",
    responses={404: {"description": "Execution not found"}},
)
async def delete_execution(execution_id: str, orchestrator: OrchestratorDep) -> Response:
    """
    Stop any work on the execution, delete its branch, then the record.
    """
    await get_execution_or_404(orchestrator.store, execution_id)
    await orchestrator.delete_execution(execution_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{execution_id}/start",
    response_model=ExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start execution",
    responses={
        404: {"description": "Execution not found"},
        409: {"description": "Execution already running"},
    },
)
async def start_execution(execution_id: str, orchestrator: OrchestratorDep) -> ExecutionResponse:
    await orchestrator.executions.start_execution(execution_id)
    execution = await get_execution_or_404(orchestrator.store, execution_id)
    return ExecutionResponse.model_validate(execution)


@router.post(
    "/{execution_id}/stop",
    response_model=StopResponse,
    summary="Stop execution",
)
async def stop_execution(execution_id: str, orchestrator: OrchestratorDep) -> StopResponse:
    await get_execution_or_404(orchestrator.store, execution_id)
    stopped = await orchestrator.executions.stop_execution(execution_id)
    return StopResponse(stopped=int(stopped))


@router.post(
    "/{execution_id}/validate",
    response_model=ExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Validate execution",
    responses={
        400: {"description": "Execution cannot be validated"},
        404: {"description": "Execution not found"},
        409: {"description": "Validation already running"},
    },
)
async def validate_execution(execution_id: str, orchestrator: OrchestratorDep) -> ExecutionResponse:
    await orchestrator.validations.start_validation(execution_id)
    execution = await get_execution_or_404(orchestrator.store, execution_id)
    return ExecutionResponse.model_validate(execution)


@router.post(
    "/{execution_id}/stop-validation",
    response_model=StopResponse,
    summary="Stop validation",
)
async def stop_validation(execution_id: str, orchestrator: OrchestratorDep) -> StopResponse:
    await get_execution_or_404(orchestrator.store, execution_id)
    stopped = await orchestrator.validations.stop_validation(execution_id)
    return StopResponse(stopped=int(stopped))


@router.post(
    "/{execution_id}/backfill-stats",
    response_model=BackfillResponse,
    summary="Backfill diff stats",
    responses={404: {"description": "Execution not found"}},
)
async def backfill_stats(execution_id: str, orchestrator: OrchestratorDep) -> BackfillResponse:
    """
    Recompute diff stats for a completed execution that has none.
    """
    stats = await orchestrator.executions.backfill_diff_stats(execution_id)
    if stats is None:
        return BackfillResponse(updated=False)
    return BackfillResponse(updated=True, stats=DiffStatsResponse(**stats.as_fields()))
