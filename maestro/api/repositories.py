"""
Maestro - Repositories API
==========================

Registered source repositories.
"""

from fastapi import APIRouter, status

from maestro.api.deps import StoreDep, get_repository_or_404
from maestro.core.schemas import RepositoryCreate, RepositoryResponse

router = APIRouter(prefix="/repositories", tags=["Repositories"])


@router.post(
    "",
    response_model=RepositoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register repository",
)
async def create_repository(data: RepositoryCreate, store: StoreDep) -> RepositoryResponse:
    """
    Get-or-create a repository by provider and provider id.
    """
    repository = await store.get_or_create_repository(
        data.provider.value,
        data.provider_id,
        data.name,
    )
    if data.name and repository.name != data.name:
        await store.update_repository_name(repository.id, data.name)
        repository = await store.get_repository(repository.id)
    return RepositoryResponse.model_validate(repository)


@router.get(
    "",
    response_model=list[RepositoryResponse],
    summary="List repositories",
)
async def list_repositories(store: StoreDep) -> list[RepositoryResponse]:
    return [RepositoryResponse.model_validate(r) for r in await store.list_repositories()]


@router.get(
    "/{repository_id}",
    response_model=RepositoryResponse,
    summary="Get repository",
    responses={404: {"description": "Repository not found"}},
)
async def get_repository(repository_id: str, store: StoreDep) -> RepositoryResponse:
    repository = await get_repository_or_404(store, repository_id)
    return RepositoryResponse.model_validate(repository)
