"""
Diff Statistics Engine
======================

Reconstructs per-file and aggregate change counts from two git queries
over the same range:

- ``--name-status -z``: what happened to each file (A/M/D/R)
- ``--numstat -z``: how many lines were added/removed per file

Both are NUL-delimited so file names with whitespace or newlines survive.
A rename counts as one modified file, never as an add plus a delete.
"""

import asyncio
import enum
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Union

import structlog

from maestro.core.execution.git import Git

logger = structlog.get_logger()

DIFF_BASE_ARGS = ("diff", "--no-ext-diff", "--no-color", "-M", "--diff-filter=AMDR")


class FileStatus(str, enum.Enum):
    ADDED = "A"
    MODIFIED = "M"
    DELETED = "D"
    RENAMED = "R"


@dataclass(frozen=True)
class DiffEntry:
    """One file from the name-status listing."""
    status: FileStatus
    old_path: Optional[str] = None
    new_path: Optional[str] = None


@dataclass(frozen=True)
class LineCounts:
    added: int
    removed: int


@dataclass(frozen=True)
class DiffStats:
    files_added: int = 0
    files_removed: int = 0
    files_modified: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    def as_fields(self) -> dict[str, int]:
        """Execution column values."""
        return asdict(self)


ZERO_STATS = DiffStats()


# ==========================================================================
# Parsing
# ==========================================================================

def _split_records(output: str) -> list[str]:
    return output.split("\0")


def parse_name_status(output: str) -> tuple[list[DiffEntry], dict[str, str]]:
    """
    Parse ``git diff --name-status -z`` output.

    Returns:
        (entries, renames) where renames maps old path -> new path
    """
    tokens = [t for t in _split_records(output) if t]
    entries: list[DiffEntry] = []
    renames: dict[str, str] = {}

    i = 0
    while i < len(tokens):
        code = tokens[i][0]
        i += 1

        if code == FileStatus.RENAMED.value:
            # R<score> old new
            old_path = tokens[i] if i < len(tokens) else ""
            new_path = tokens[i + 1] if i + 1 < len(tokens) else ""
            i += 2
            renames[old_path] = new_path
            entries.append(DiffEntry(FileStatus.RENAMED, old_path=old_path, new_path=new_path))
            continue

        path = tokens[i] if i < len(tokens) else ""
        i += 1
        if code == FileStatus.DELETED.value:
            entries.append(DiffEntry(FileStatus.DELETED, old_path=path))
        elif code in (FileStatus.ADDED.value, FileStatus.MODIFIED.value):
            entries.append(DiffEntry(FileStatus(code), new_path=path))
        else:
            logger.debug("Ignoring name-status entry", code=code, path=path)

    return entries, renames


def _count(field: str) -> int:
    # Binary files report "-"
    return 0 if field == "-" else int(field)


def parse_numstat(output: str, renames: Mapping[str, str]) -> dict[str, LineCounts]:
    """
    Parse ``git diff --numstat -z`` output into path -> line counts.

    Renamed files appear as ``added<TAB>removed<TAB><NUL>old<NUL>new<NUL>``.
    Counts are keyed by the old path, and duplicated under the new path
    for every rename known from the name-status listing.
    """
    records = _split_records(output)
    counts: dict[str, LineCounts] = {}

    i = 0
    while i < len(records):
        record = records[i]
        i += 1
        if not record:
            continue

        fields = record.split("\t", 2)
        if len(fields) != 3:
            continue
        added, removed, path = fields
        if not _is_count(added) or not _is_count(removed):
            continue

        entry = LineCounts(added=_count(added), removed=_count(removed))
        if path:
            counts[path] = entry
            continue

        # Rename form: both paths follow as separate records
        old_path = records[i] if i < len(records) else ""
        new_path = records[i + 1] if i + 1 < len(records) else ""
        i += 2
        if old_path:
            counts[old_path] = entry
        if new_path:
            counts[new_path] = entry

    for old_path, new_path in renames.items():
        if old_path in counts:
            counts[new_path] = counts[old_path]

    return counts


def _is_count(field: str) -> bool:
    return field == "-" or field.isdigit()


def aggregate(entries: Sequence[DiffEntry], counts: Mapping[str, LineCounts]) -> DiffStats:
    """
    Fold name-status entries and line counts into totals.

    Lines are looked up by the entry's new path, falling back to its old path.
    """
    files_added = files_removed = files_modified = 0
    lines_added = lines_removed = 0

    for entry in entries:
        if entry.status == FileStatus.ADDED:
            files_added += 1
        elif entry.status == FileStatus.DELETED:
            files_removed += 1
        else:
            files_modified += 1

        key = entry.new_path if entry.new_path is not None else entry.old_path
        line_counts = counts.get(key) if key is not None else None
        if line_counts is None and entry.old_path is not None:
            line_counts = counts.get(entry.old_path)
        if line_counts:
            lines_added += line_counts.added
            lines_removed += line_counts.removed

    return DiffStats(
        files_added=files_added,
        files_removed=files_removed,
        files_modified=files_modified,
        lines_added=lines_added,
        lines_removed=lines_removed,
    )


# ==========================================================================
# Engine
# ==========================================================================

class DiffStatsEngine:
    """Runs the two diff queries and aggregates them."""

    def __init__(self, git: Optional[Git] = None):
        self.git = git or Git()

    async def compute_stats(
        self,
        repo_path: Union[str, Path],
        base_commit: Optional[str] = None,
    ) -> DiffStats:
        stats, _ = await self.compute_stats_detailed(repo_path, base_commit)
        return stats

    async def compute_stats_detailed(
        self,
        repo_path: Union[str, Path],
        base_commit: Optional[str] = None,
    ) -> tuple[DiffStats, bool]:
        """
        Compute stats against base_commit (HEAD when not given).

        Returns:
            (stats, measured). When either git call fails the stats are
            all zero and measured is False; callers must not read that
            as "no changes".
        """
        target = base_commit or "HEAD"
        base = (*DIFF_BASE_ARGS, target)

        name_status, numstat = await asyncio.gather(
            self.git.run(*base, "--name-status", "-z", cwd=repo_path),
            self.git.run(*base, "--numstat", "-z", cwd=repo_path),
        )

        if not (name_status.ok and numstat.ok):
            logger.warning(
                "Failed to get diff stats, using zeros",
                repo_path=str(repo_path),
                base_commit=target,
                error=(name_status.error or numstat.error)[:500],
            )
            return ZERO_STATS, False

        ns_text = name_status.stdout.decode("utf-8", errors="surrogateescape")
        num_text = numstat.stdout.decode("utf-8", errors="surrogateescape")

        entries, renames = parse_name_status(ns_text)
        counts = parse_numstat(num_text, renames)
        return aggregate(entries, counts), True
