"""
Maestro - Branches API
======================

Clone/branch inventory and repository sync.
"""

from fastapi import APIRouter, Query

from maestro.api.deps import OrchestratorDep
from maestro.core.schemas import RepositoryScanResponse, SyncResponse

router = APIRouter(prefix="/maestro", tags=["Branches"])


@router.get(
    "/branches",
    response_model=list[RepositoryScanResponse],
    summary="Scan isolation branches",
)
async def scan_branches(
    orchestrator: OrchestratorDep,
    refresh: bool = Query(False, description="Bypass the scan cache"),
) -> list[RepositoryScanResponse]:
    results = await orchestrator.scanner.scan(refresh=refresh)
    return [RepositoryScanResponse.model_validate(r) for r in results]


@router.post(
    "/sync",
    response_model=SyncResponse,
    summary="Sync repositories",
)
async def sync_repositories(orchestrator: OrchestratorDep) -> SyncResponse:
    """
    Delete clones without a repository record, and unused repository
    records without a clone.
    """
    result = await orchestrator.scanner.sync_repositories()
    return SyncResponse.model_validate(result)
