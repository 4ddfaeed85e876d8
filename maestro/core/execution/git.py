"""
Async git subprocess runner.

Every git call is a suspension point; none of them block the loop.
"""

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import structlog

from maestro.core.config import settings

logger = structlog.get_logger()

_CREDENTIALS_IN_URL = re.compile(r"(https?://)[^/@\s]+@")


def redact(text: str) -> str:
    """Strip credentials embedded in URLs."""
    return _CREDENTIALS_IN_URL.sub(r"\1***@", text)


@dataclass
class GitResult:
    """Outcome of one git invocation."""
    args: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace").strip()

    @property
    def error(self) -> str:
        return redact(self.stderr.decode("utf-8", errors="replace").strip())


class Git:
    """Thin async wrapper around the git executable."""

    def __init__(self, binary: Optional[str] = None):
        self.binary = binary or settings.GIT_BINARY

    async def run(self, *args: str, cwd: Optional[Union[str, Path]] = None) -> GitResult:
        proc = await asyncio.create_subprocess_exec(
            self.binary, *args,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        result = GitResult(
            args=list(args),
            returncode=proc.returncode,
            stdout=stdout or b"",
            stderr=stderr or b"",
        )
        if not result.ok:
            logger.debug(
                "git exited non-zero",
                args=redact(" ".join(args)),
                cwd=str(cwd) if cwd else None,
                returncode=result.returncode,
                stderr=result.error[:500],
            )
        return result
