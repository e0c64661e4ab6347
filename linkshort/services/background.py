"""Detached tasks that must outlive the request which started them.

Tasks are created with ``asyncio.create_task`` and referenced from a module
level set, so they are neither garbage collected mid-flight nor cancelled
when the originating request is.
"""
import asyncio
import logging
from typing import Coroutine, Set

logger = logging.getLogger(__name__)

_pending: Set[asyncio.Task] = set()


def _finished(task: asyncio.Task):
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"Background task {task.get_name()} failed: {exc!r}")


def spawn_detached(coro: Coroutine, name: str = None) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    _pending.add(task)
    task.add_done_callback(_finished)
    return task


def pending_count() -> int:
    return len(_pending)


async def drain(timeout: float = None):
    """Wait for in-flight detached tasks, cancelling whatever outlives ``timeout``."""
    if not _pending:
        return
    tasks = set(_pending)
    done, still_running = await asyncio.wait(tasks, timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        logger.warning(f"Cancelled {len(still_running)} background tasks at shutdown")
        await asyncio.gather(*still_running, return_exceptions=True)
