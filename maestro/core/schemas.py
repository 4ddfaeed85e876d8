"""
Maestro - Pydantic Schemas
==========================

Request and response schemas for API validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from maestro.core.models import (
    ExecutionStatus,
    PromptStatus,
    RepositoryProvider,
    ValidationStatus,
)


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ==========================================================================
# Repository Schemas
# ==========================================================================

class RepositoryCreate(BaseSchema):
    """Register a repository (get-or-create on provider + provider_id)."""

    provider: RepositoryProvider = RepositoryProvider.GITHUB
    provider_id: str = Field(min_length=3, max_length=255, pattern=r"^[^/\s]+/[^/\s]+$")
    name: Optional[str] = Field(None, max_length=255)


class RepositoryResponse(BaseSchema):
    id: str
    provider: str
    provider_id: str
    name: Optional[str]
    last_synced_at: Optional[datetime]
    created_at: datetime


# ==========================================================================
# Prompt Set Schemas
# ==========================================================================

class PromptSetCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=255)
    repository_ids: list[str] = Field(default_factory=list)
    validation_prompt: Optional[str] = None
    auto_validate: bool = True

    @field_validator("validation_prompt")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class PromptSetUpdate(BaseSchema):
    """Partial update; omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    validation_prompt: Optional[str] = None
    auto_validate: Optional[bool] = None


class PromptSetRepositoriesAdd(BaseSchema):
    repository_ids: list[str] = Field(min_length=1)


class PromptSetResponse(BaseSchema):
    id: str
    name: str
    validation_prompt: Optional[str]
    auto_validate: bool
    repository_ids: list[str]
    created_at: datetime


# ==========================================================================
# Revision Schemas
# ==========================================================================

class RevisionCreate(BaseSchema):
    promptset_id: str
    prompt_text: str = Field(min_length=1)
    parent_revision_id: Optional[str] = None

    # Whitespace is part of the content address
    model_config = ConfigDict(str_strip_whitespace=False)


class RevisionResponse(BaseSchema):
    id: str
    promptset_id: str
    prompt_text: str
    parent_revision_id: Optional[str]
    created_at: datetime


# ==========================================================================
# Execution Schemas
# ==========================================================================

class ExecutionResponse(BaseSchema):
    id: str
    promptset_id: str
    revision_id: str
    repository_id: str
    session_id: Optional[str]
    thread_url: Optional[str]
    status: ExecutionStatus
    prompt_status: Optional[PromptStatus]
    prompt_result: Optional[str]
    validation_status: Optional[ValidationStatus]
    validation_thread_url: Optional[str]
    validation_result: Optional[str]
    files_added: int
    files_removed: int
    files_modified: int
    lines_added: int
    lines_removed: int
    created_at: datetime
    completed_at: Optional[datetime]


class ExecuteResponse(BaseSchema):
    """Ids of the executions started for a revision."""

    execution_ids: list[str] = Field(alias="executionIds")


class StopResponse(BaseSchema):
    stopped: int


class DiffStatsResponse(BaseSchema):
    files_added: int
    files_removed: int
    files_modified: int
    lines_added: int
    lines_removed: int


class BackfillResponse(BaseSchema):
    updated: bool
    stats: Optional[DiffStatsResponse] = None


# ==========================================================================
# Branch Scan Schemas
# ==========================================================================

class BranchIdsResponse(BaseSchema):
    promptset_id: str
    revision_id: str
    execution_id: str


class PromptSetRefResponse(BaseSchema):
    id: str
    name: str


class RevisionRefResponse(BaseSchema):
    id: str
    created_at: datetime


class ExecutionRefResponse(BaseSchema):
    id: str
    status: ExecutionStatus
    thread_url: Optional[str]
    validation_status: Optional[ValidationStatus]
    validation_thread_url: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]


class BranchScanResponse(BaseSchema):
    name: str
    ids: Optional[BranchIdsResponse] = None
    prompt_set: Optional[PromptSetRefResponse] = None
    revision: Optional[RevisionRefResponse] = None
    execution: Optional[ExecutionRefResponse] = None


class RepositoryScanResponse(BaseSchema):
    provider: str
    provider_id: str
    id: Optional[str] = None
    name: Optional[str] = None
    exists_in_db: bool
    exists_on_disk: bool
    path: str
    branches: list[BranchScanResponse]


class SyncResponse(BaseSchema):
    deleted_from_disk: list[str]
    deleted_from_db: list[str]
    errors: list[str]


# ==========================================================================
# Common Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
    max_concurrent_executions: int
