"""Fire-and-forget tasks with an explicit error channel.

Work that must not hold up a response (request logging, mostly) is spawned
here instead of being awaited. The loop only keeps weak references to tasks,
so pending ones are held in ``_PENDING`` until they finish. A failed task is
logged and dropped; it is never retried and never re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Set

LOG = logging.getLogger("weathervis.detached")

_PENDING: Set["asyncio.Task[Any]"] = set()


def spawn_detached(aw: Awaitable[Any], *, name: str) -> "asyncio.Task[Any]":
    task = asyncio.ensure_future(aw)
    task.set_name(name)
    _PENDING.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: "asyncio.Task[Any]") -> None:
    _PENDING.discard(task)
    if task.cancelled():
        LOG.warning("detached_task_cancelled", extra={"task": task.get_name()})
        return
    exc = task.exception()
    if exc is not None:
        LOG.warning(
            "detached_task_failed",
            extra={"task": task.get_name(), "err": str(exc), "err_type": type(exc).__name__},
        )


def pending_count() -> int:
    return len(_PENDING)


async def drain() -> None:
    """Wait for every detached task spawned so far (tests and shutdown)."""

    loop = asyncio.get_running_loop()
    while True:
        pending = [t for t in _PENDING if not t.done() and t.get_loop() is loop]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
