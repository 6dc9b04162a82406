"""Detached background task runner for fire-and-forget cache and click writes.

Cache repopulation, click tracking and session cache writes happen after the
response has been decided. They are submitted here instead of being awaited
on the request path.

Flow Diagram — submit()
=======================
::
    ┌─────────────┐
    │  Request     │
    │  task        │
    └──────┬──────┘
           │ submit(coro)
           ▼
    ┌─────────────┐      ┌─────────────┐
    │ create_task  │────▶│ _pending set │
    │ (own task)   │      │ (strong ref)│
    └──────┬──────┘      └─────────────┘
           ▼
    ┌─────────────┐
    │ done callback│
    │ discard +    │
    │ log failure  │
    └─────────────┘

Key Behaviours
===============
- Tasks are top-level event loop tasks, not children of the request task;
  cancelling the request (client disconnect, deadline) leaves them running.
- No deadline is applied to background work.
- Failures are only logged and counted; they never reach the caller.
- drain() lets shutdown and tests wait for outstanding work.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from prometheus_client import Counter

__all__ = ["BackgroundTaskRunner"]

BACKGROUND_TASKS_SUBMITTED_TOTAL = Counter(
    "zipway_background_tasks_submitted_total",
    "Background tasks submitted",
    ["name"],
)
BACKGROUND_TASK_FAILURES_TOTAL = Counter(
    "zipway_background_task_failures_total",
    "Background tasks that raised",
    ["name"],
)


class BackgroundTaskRunner:
    def __init__(self, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self._logger = logger or logging.getLogger("zipway")
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Schedule coro on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        BACKGROUND_TASKS_SUBMITTED_TOTAL.labels(name=name).inc()
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self._logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            BACKGROUND_TASK_FAILURES_TOTAL.labels(name=task.get_name()).inc()
            self._logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every outstanding task, cancelling whatever is left after timeout."""
        while self._pending:
            pending = list(self._pending)
            _, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                self._logger.warning(f"Cancelling {len(not_done)} background tasks still running after {timeout}s")
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                return
