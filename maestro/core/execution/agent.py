"""
Agent Invocation Adapter
========================

Runs the coding agent CLI in a working directory and reads its
``--stream-json`` output: one JSON message per line.

- ``{"type": "system", "subtype": "init", "session_id": ...}`` carries the session id
- ``{"type": "result", "is_error": false, "result": ...}`` carries the final text

A run that never produces a result message is a normal outcome
(``result_message is None``), not an error.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import structlog

from maestro.core.models import PromptStatus, ValidationStatus

logger = structlog.get_logger()

# Stream lines can carry whole tool outputs
STREAM_LIMIT = 16 * 1024 * 1024


# ==========================================================================
# Prompts and sentinels
# ==========================================================================

PROMPT_PASS = "PROMPT: PASS"
PROMPT_FAIL = "PROMPT: FAIL"
VALIDATION_PASS = "VALIDATION: PASS"
VALIDATION_FAIL = "VALIDATION: FAIL"

PROMPT_FORMAT_INSTRUCTIONS = (
    "\n\nIMPORTANT: You MUST end your final response with exactly one of these lines "
    "on the final line to reflect if the above prompt is considered successful or not:\n"
    f"{PROMPT_PASS}\n"
    f"{PROMPT_FAIL}"
)

VALIDATION_FORMAT_INSTRUCTIONS = (
    "\n\nIMPORTANT: You MUST end your response with exactly one of these lines on the final line:\n"
    f"{VALIDATION_PASS}\n"
    f"{VALIDATION_FAIL}"
)

VALIDATION_PREAMBLE = (
    "You are a code change validation reviewer\n"
    "You are tasked with ensuring the current changes in {branch}.\n"
    "You are to review the pending changes in the current branch with the oracle, librarian, "
    "and any other tools that will not make any further code changes to ensure that the "
    "following is true:\n\n"
)

COMMIT_PROMPT = "Please commit the current changes with an appropriate commit message."


def build_primary_prompt(prompt_text: str) -> str:
    return prompt_text + PROMPT_FORMAT_INSTRUCTIONS


def build_validation_prompt(branch: str, validation_prompt: str) -> str:
    return VALIDATION_PREAMBLE.format(branch=branch) + validation_prompt + VALIDATION_FORMAT_INSTRUCTIONS


def classify_prompt(result_message: Optional[str]) -> Optional[PromptStatus]:
    """PASS wins over FAIL; neither present is indeterminate (None)."""
    if not result_message:
        return None
    if PROMPT_PASS in result_message:
        return PromptStatus.PASSED
    if PROMPT_FAIL in result_message:
        return PromptStatus.FAILED
    return None


def classify_validation(result_message: Optional[str]) -> ValidationStatus:
    """Anything short of an explicit PASS fails."""
    if result_message and VALIDATION_PASS in result_message:
        return ValidationStatus.PASSED
    return ValidationStatus.FAILED


# ==========================================================================
# Adapter
# ==========================================================================

@dataclass
class AgentResult:
    session_id: str
    result_message: Optional[str] = None


class AgentAdapter:
    """Invokes the agent CLI as a subprocess and collects its stream."""

    def __init__(
        self,
        command: Sequence[str],
        resume_args: Sequence[str] = (),
        thread_base_url: str = "",
    ):
        if not command:
            raise ValueError("Agent command must not be empty")
        self.command = list(command)
        self.resume_args = list(resume_args)
        self.thread_base_url = thread_base_url.rstrip("/")

    def thread_url(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id:
            return None
        return f"{self.thread_base_url}/{session_id}"

    def build_argv(self, resume_session_id: Optional[str] = None) -> list[str]:
        if not resume_session_id:
            return list(self.command)
        executable, *options = self.command
        return [executable, *self.resume_args, resume_session_id, *options]

    async def invoke(
        self,
        working_dir: Union[str, Path],
        prompt: str,
        resume_session_id: Optional[str] = None,
    ) -> AgentResult:
        """
        Run one agent turn.

        The session id from an init message replaces resume_session_id
        when present, so session drift is visible to the caller.
        Cancelling the awaiting task kills the subprocess.
        """
        argv = self.build_argv(resume_session_id)
        logger.info(
            "Invoking agent",
            working_dir=str(working_dir),
            resume_session_id=resume_session_id,
            prompt_chars=len(prompt),
        )

        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(working_dir),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )

        result = AgentResult(session_id=resume_session_id or "")
        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            await self._feed_prompt(proc, prompt)

            async for raw in proc.stdout:
                message = self._decode(raw)
                if message is not None:
                    self._apply(message, result)

            stderr = await stderr_task
            returncode = await proc.wait()
        except asyncio.CancelledError:
            logger.info("Agent invocation cancelled", working_dir=str(working_dir))
            raise
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()
            try:
                await stderr_task
            except asyncio.CancelledError:
                pass

        if returncode != 0:
            logger.warning(
                "Agent exited non-zero",
                returncode=returncode,
                session_id=result.session_id,
                stderr=stderr.decode("utf-8", errors="replace")[-1000:],
            )

        logger.info(
            "Agent finished",
            session_id=result.session_id,
            has_result=result.result_message is not None,
        )
        return result

    @staticmethod
    async def _feed_prompt(proc: asyncio.subprocess.Process, prompt: str) -> None:
        try:
            proc.stdin.write(prompt.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("Agent closed stdin before reading the prompt")
        finally:
            proc.stdin.close()

    @staticmethod
    def _decode(raw: bytes) -> Optional[dict]:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return None
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON agent output", line=line[:200])
            return None
        return message if isinstance(message, dict) else None

    @staticmethod
    def _apply(message: dict, result: AgentResult) -> None:
        msg_type = message.get("type")
        if msg_type == "system" and message.get("subtype") == "init":
            session_id = message.get("session_id")
            if session_id:
                result.session_id = session_id
        elif msg_type == "result" and not message.get("is_error"):
            result.result_message = message.get("result")
