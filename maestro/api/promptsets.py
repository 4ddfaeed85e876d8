"""
Maestro - Prompt Sets API
=========================

Prompt-set CRUD, membership, and per-set revision/execution listings.
"""

from fastapi import APIRouter, HTTPException, Response, status

from maestro.api.deps import (
    OrchestratorDep,
    StoreDep,
    get_prompt_set_or_404,
    get_repository_or_404,
)
from maestro.core.schemas import (
    ExecutionResponse,
    PromptSetCreate,
    PromptSetRepositoriesAdd,
    PromptSetResponse,
    PromptSetUpdate,
    RevisionResponse,
)

router = APIRouter(prefix="/promptsets", tags=["Prompt Sets"])


# ==========================================================================
# CRUD
# ==========================================================================

@router.post(
    "",
    response_model=PromptSetResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create prompt set",
    responses={404: {"description": "Repository not found"}},
)
async def create_prompt_set(data: PromptSetCreate, store: StoreDep) -> PromptSetResponse:
    for repository_id in data.repository_ids:
        await get_repository_or_404(store, repository_id)

    prompt_set = await store.create_prompt_set(
        name=data.name,
        repository_ids=data.repository_ids,
        validation_prompt=data.validation_prompt,
        auto_validate=data.auto_validate,
    )
    return PromptSetResponse.model_validate(prompt_set)


@router.get(
    "",
    response_model=list[PromptSetResponse],
    summary="List prompt sets",
)
async def list_prompt_sets(store: StoreDep) -> list[PromptSetResponse]:
    return [PromptSetResponse.model_validate(p) for p in await store.list_prompt_sets()]


@router.get(
    "/{promptset_id}",
    response_model=PromptSetResponse,
    summary="Get prompt set",
    responses={404: {"description": "Prompt set not found"}},
)
async def get_prompt_set(promptset_id: str, store: StoreDep) -> PromptSetResponse:
    prompt_set = await get_prompt_set_or_404(store, promptset_id)
    return PromptSetResponse.model_validate(prompt_set)


@router.patch(
    "/{promptset_id}",
    response_model=PromptSetResponse,
    summary="Update prompt set",
    responses={404: {"description": "Prompt set not found"}},
)
async def update_prompt_set(
    promptset_id: str,
    data: PromptSetUpdate,
    store: StoreDep,
) -> PromptSetResponse:
    await get_prompt_set_or_404(store, promptset_id)

    fields = data.model_dump(exclude_unset=True)
    if fields.get("name") is None:
        fields.pop("name", None)
    if fields.get("auto_validate") is None:
        fields.pop("auto_validate", None)
    if "validation_prompt" in fields:
        # Empty string clears the validation prompt
        fields["validation_prompt"] = fields["validation_prompt"] or None

    prompt_set = await store.update_prompt_set(promptset_id, **fields)
    return PromptSetResponse.model_validate(prompt_set)


@router.delete(
    "/{promptset_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete prompt set",
    responses={404: {"description": "Prompt set not found"}},
)
async def delete_prompt_set(promptset_id: str, orchestrator: OrchestratorDep) -> Response:
    """
    Delete a prompt set, its revisions and executions, and every
    execution branch in the local clones.
    """
    await get_prompt_set_or_404(orchestrator.store, promptset_id)
    await orchestrator.delete_prompt_set(promptset_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==========================================================================
# Membership
# ==========================================================================

@router.post(
    "/{promptset_id}/repositories",
    response_model=PromptSetResponse,
    summary="Add repositories",
    responses={404: {"description": "Prompt set or repository not found"}},
)
async def add_repositories(
    promptset_id: str,
    data: PromptSetRepositoriesAdd,
    store: StoreDep,
) -> PromptSetResponse:
    await get_prompt_set_or_404(store, promptset_id)
    for repository_id in data.repository_ids:
        await get_repository_or_404(store, repository_id)

    prompt_set = await store.add_repositories_to_prompt_set(promptset_id, data.repository_ids)
    return PromptSetResponse.model_validate(prompt_set)


@router.delete(
    "/{promptset_id}/repositories/{repository_id}",
    response_model=PromptSetResponse,
    summary="Remove repository",
    responses={404: {"description": "Prompt set or membership not found"}},
)
async def remove_repository(
    promptset_id: str,
    repository_id: str,
    store: StoreDep,
) -> PromptSetResponse:
    await get_prompt_set_or_404(store, promptset_id)
    removed = await store.remove_repository_from_prompt_set(promptset_id, repository_id)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Repository is not part of this prompt set",
        )
    prompt_set = await store.get_prompt_set(promptset_id)
    return PromptSetResponse.model_validate(prompt_set)


# ==========================================================================
# Listings
# ==========================================================================

@router.get(
    "/{promptset_id}/revisions",
    response_model=list[RevisionResponse],
    summary="List revisions",
)
async def list_revisions(promptset_id: str, store: StoreDep) -> list[RevisionResponse]:
    await get_prompt_set_or_404(store, promptset_id)
    revisions = await store.list_prompt_revisions(promptset_id)
    return [RevisionResponse.model_validate(r) for r in revisions]


@router.get(
    "/{promptset_id}/executions",
    response_model=list[ExecutionResponse],
    summary="List executions",
)
async def list_executions(promptset_id: str, store: StoreDep) -> list[ExecutionResponse]:
    await get_prompt_set_or_404(store, promptset_id)
    executions = await store.list_executions_by_prompt_set(promptset_id)
    return [ExecutionResponse.model_validate(e) for e in executions]
