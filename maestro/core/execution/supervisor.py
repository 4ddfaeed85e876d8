"""
Background task supervision.

Every piece of background work (an execution run, a validation pass, a
post-validation commit) is an asyncio.Task registered under
``(kind, execution_id)``. Failures are logged and handed to an
``on_failure`` hook instead of disappearing with a detached task.
"""

import asyncio
import enum
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Optional

import structlog

from maestro.core.execution.errors import ExecutionConflictError

logger = structlog.get_logger()


class TaskKind(str, enum.Enum):
    EXECUTION = "execution"
    VALIDATION = "validation"
    COMMIT = "commit"


FailureHook = Callable[[TaskKind, str, BaseException], Awaitable[None]]


class TaskSupervisor:
    """Tracks background tasks by kind and execution id."""

    def __init__(self, on_failure: Optional[FailureHook] = None):
        self.on_failure = on_failure
        self._tasks: dict[tuple[TaskKind, str], asyncio.Task] = {}
        # Failure hooks run as tasks too; keep references until done
        self._hooks: set[asyncio.Task] = set()

    def spawn(
        self,
        kind: TaskKind,
        execution_id: str,
        coro: Coroutine[Any, Any, Any],
    ) -> asyncio.Task:
        """
        Start coro in the background.

        Raises:
            ExecutionConflictError: If a task of this kind is already
                active for the execution
        """
        key = (kind, execution_id)
        current = self._tasks.get(key)
        if current is not None and not current.done():
            coro.close()
            raise ExecutionConflictError(
                f"{kind.value.capitalize()} already running for execution {execution_id}"
            )

        task = asyncio.create_task(coro, name=f"{kind.value}:{execution_id}")
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._on_done(key, t))
        logger.debug("Task spawned", kind=kind.value, execution_id=execution_id)
        return task

    def _on_done(self, key: tuple[TaskKind, str], task: asyncio.Task) -> None:
        kind, execution_id = key
        if self._tasks.get(key) is task:
            del self._tasks[key]

        if task.cancelled():
            logger.info("Task cancelled", kind=kind.value, execution_id=execution_id)
            return

        exc = task.exception()
        if exc is None:
            logger.debug("Task finished", kind=kind.value, execution_id=execution_id)
            return

        logger.error(
            "Background task failed",
            kind=kind.value,
            execution_id=execution_id,
            error=str(exc),
            exc_info=exc,
        )
        if self.on_failure is not None:
            hook = asyncio.ensure_future(self._run_hook(kind, execution_id, exc))
            self._hooks.add(hook)
            hook.add_done_callback(self._hooks.discard)

    async def _run_hook(self, kind: TaskKind, execution_id: str, exc: BaseException) -> None:
        try:
            await self.on_failure(kind, execution_id, exc)
        except Exception as hook_exc:
            logger.error(
                "Failure hook raised",
                kind=kind.value,
                execution_id=execution_id,
                error=str(hook_exc),
            )

    def is_active(self, kind: TaskKind, execution_id: str) -> bool:
        task = self._tasks.get((kind, execution_id))
        return task is not None and not task.done()

    def active(self, kind: TaskKind) -> list[str]:
        return [
            execution_id
            for (task_kind, execution_id), task in self._tasks.items()
            if task_kind == kind and not task.done()
        ]

    async def cancel(self, kind: TaskKind, execution_id: str) -> bool:
        """Cancel and await the task; True if one was active."""
        task = self._tasks.get((kind, execution_id))
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def wait(self, kind: TaskKind, execution_id: str) -> None:
        """Wait for the task (if any) to settle; never raises its error."""
        task = self._tasks.get((kind, execution_id))
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        # Let done callbacks and failure hooks run
        await asyncio.sleep(0)
        if self._hooks:
            await asyncio.gather(*list(self._hooks), return_exceptions=True)

    async def wait_all(self) -> None:
        """Wait until no task is active, including tasks spawned meanwhile."""
        while self._tasks or self._hooks:
            pending = [*self._tasks.values(), *self._hooks]
            await asyncio.gather(*pending, return_exceptions=True)
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Background tasks cancelled", count=len(tasks))
