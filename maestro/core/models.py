"""
Maestro - Database Models
=========================

SQLAlchemy models for repositories, prompt-sets, revisions,
executions and analyses.
"""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from maestro.core.database import Base


def _new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================================================
# Enums
# ==========================================================================

class RepositoryProvider(str, enum.Enum):
    """Hosting provider of a repository."""
    GITHUB = "github"


class ExecutionStatus(str, enum.Enum):
    """Execution lifecycle state."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PromptStatus(str, enum.Enum):
    """Outcome self-reported by the agent on the primary run."""
    PASSED = "passed"
    FAILED = "failed"


class ValidationStatus(str, enum.Enum):
    """Validation pass state."""
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AnalysisType(str, enum.Enum):
    EXECUTION = "execution"
    VALIDATION = "validation"


class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_EXECUTION_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    # Persist the lowercase values, not the member names
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


# ==========================================================================
# Repository
# ==========================================================================

class Repository(Base):
    """
    A source repository the agent can be pointed at.

    Identity is (provider, provider_id); provider_id is "owner/repo".
    """

    __tablename__ = "repositories"
    __table_args__ = (UniqueConstraint("provider", "provider_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Repository {self.provider}:{self.provider_id}>"


# ==========================================================================
# Prompt Sets
# ==========================================================================

class PromptSetRepository(Base):
    """Ordered membership of a repository in a prompt-set."""

    __tablename__ = "promptset_repositories"

    promptset_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("promptsets.id", ondelete="CASCADE"),
        primary_key=True,
    )
    repository_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class PromptSet(Base):
    """A named group of repositories sharing one evolving instruction."""

    __tablename__ = "promptsets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    validation_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auto_validate: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    memberships: Mapped[list["PromptSetRepository"]] = relationship(
        order_by="PromptSetRepository.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def repository_ids(self) -> list[str]:
        return [m.repository_id for m in self.memberships]

    def __repr__(self) -> str:
        return f"<PromptSet {self.name}>"


class PromptRevision(Base):
    """
    A content-addressed version of a prompt-set's instruction.

    The id is the SHA-256 hex digest of prompt_text.
    """

    __tablename__ = "prompt_revisions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    promptset_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("promptsets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    parent_revision_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("prompt_revisions.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<PromptRevision {self.id[:8]}>"


# ==========================================================================
# Executions
# ==========================================================================

class Execution(Base):
    """
    One application of one revision to one repository.

    Lives on its own isolation branch; see execution.branches.
    """

    __tablename__ = "executions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    promptset_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("promptsets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    revision_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("prompt_revisions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    repository_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Agent session
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    thread_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Primary run
    status: Mapped[ExecutionStatus] = mapped_column(
        _enum(ExecutionStatus),
        default=ExecutionStatus.PENDING,
        nullable=False,
        index=True,
    )
    prompt_status: Mapped[Optional[PromptStatus]] = mapped_column(
        _enum(PromptStatus),
        nullable=True,
    )
    prompt_result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Validation pass
    validation_status: Mapped[Optional[ValidationStatus]] = mapped_column(
        _enum(ValidationStatus),
        nullable=True,
    )
    validation_thread_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    validation_result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Diff statistics
    files_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_modified: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lines_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lines_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def has_diff_stats(self) -> bool:
        return any((
            self.files_added,
            self.files_removed,
            self.files_modified,
            self.lines_added,
            self.lines_removed,
        ))

    def __repr__(self) -> str:
        return f"<Execution {self.id[:8]} [{self.status.value}]>"


# ==========================================================================
# Analyses
# ==========================================================================

class Analysis(Base):
    """Downstream analysis over a revision's executions."""

    __tablename__ = "analyses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    revision_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("prompt_revisions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[AnalysisType] = mapped_column(_enum(AnalysisType), nullable=False)
    status: Mapped[AnalysisStatus] = mapped_column(
        _enum(AnalysisStatus),
        default=AnalysisStatus.PENDING,
        nullable=False,
    )
    analysis_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    analysis_result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    execution_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
