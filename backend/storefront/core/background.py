"""
Fire-and-forget task dispatch

Notifications and analytics run after the response path has committed.
Task references are held until completion so they are not garbage
collected mid-flight, and failures are logged instead of surfacing.
"""
import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)

_pending: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc!r}", exc_info=exc)


def spawn(coro: Awaitable, name: str) -> asyncio.Task:
    """Schedule `coro` without awaiting it."""
    task = asyncio.ensure_future(coro)
    task.set_name(name)
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: float = 10.0) -> None:
    """Wait for outstanding background tasks (shutdown, tests)."""
    if not _pending:
        return
    await asyncio.wait(list(_pending), timeout=timeout)


def pending_count() -> int:
    return len(_pending)
