"""
Orchestrator exceptions.

Fatal errors raised by the controllers; the caller (usually the
task supervisor) is responsible for surfacing them.
"""

from collections.abc import Sequence


class OrchestratorError(RuntimeError):
    """Base class for orchestrator failures."""


class RecordNotFoundError(OrchestratorError):
    """A required record is missing from the store."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class UnsupportedProviderError(OrchestratorError):
    """Repository provider has no workspace support."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported repository provider: {provider!r} (only GitHub is supported)")


class GitCommandError(OrchestratorError):
    """A git invocation the workflow cannot continue without failed."""

    def __init__(self, action: str, args: Sequence[str], returncode: int, stderr: str):
        self.action = action
        self.args_ = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Failed to {action}: {stderr.strip() or f'exit code {returncode}'}")


class ValidationPreconditionError(OrchestratorError):
    """Validation was requested for an execution that cannot be validated."""


class ExecutionConflictError(OrchestratorError):
    """Work of the same kind is already active for this execution."""
