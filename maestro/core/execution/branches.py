"""
Isolation branch naming.

Every execution works on ``maestro/<promptset:8>/<revision:8>/<execution:8>``.
The name is a pure function of the three ids, and the scanner decodes it
back into the three prefixes, so the format must stay stable.
"""

from dataclasses import dataclass
from typing import Optional

BRANCH_NAMESPACE = "maestro"
ID_PREFIX_LENGTH = 8


@dataclass(frozen=True)
class BranchIds:
    """Id prefixes carried by an isolation branch name."""

    promptset_id: str
    revision_id: str
    execution_id: str


def branch_name(promptset_id: str, revision_id: str, execution_id: str) -> str:
    return "/".join((
        BRANCH_NAMESPACE,
        promptset_id[:ID_PREFIX_LENGTH],
        revision_id[:ID_PREFIX_LENGTH],
        execution_id[:ID_PREFIX_LENGTH],
    ))


def branch_for_execution(execution) -> str:
    """Branch name for an Execution record."""
    return branch_name(execution.promptset_id, execution.revision_id, execution.id)


def parse_branch_name(name: str) -> Optional[BranchIds]:
    """Decode a branch name; None if it is not an isolation branch."""
    parts = name.strip().split("/")
    if len(parts) != 4 or parts[0] != BRANCH_NAMESPACE:
        return None
    promptset_id, revision_id, execution_id = parts[1:]
    if not (promptset_id and revision_id and execution_id):
        return None
    return BranchIds(
        promptset_id=promptset_id,
        revision_id=revision_id,
        execution_id=execution_id,
    )
