"""Fire-and-forget background tasks.

Bookkeeping that must not add latency to a request (usage-stat bumps, cache
writes, next-page prefetch) runs as a detached asyncio task. Tasks are
best-effort: failures are logged and swallowed, and work still pending when
the process dies is lost.

Usage:
    from cinemirror.core.tasks import spawn_background

    spawn_background(self._bump_usage(key), name="cache_usage_bump")
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from cinemirror.core.logging import get_logger, task_name_ctx

logger = get_logger(__name__)

# Strong references; the event loop only keeps weak ones to running tasks
_background_tasks: set[asyncio.Task[Any]] = set()


async def _run_guarded(coro: Coroutine[Any, Any, Any], name: str) -> None:
    task_name_ctx.set(name)
    try:
        await coro
    except asyncio.CancelledError:
        logger.debug("background_task_cancelled", task=name)
        raise
    except Exception as e:
        logger.warning(
            "background_task_failed",
            task=name,
            error_type=type(e).__name__,
            error=str(e),
        )


def spawn_background(
    coro: Coroutine[Any, Any, Any], *, name: str
) -> asyncio.Task[None]:
    """Schedule a coroutine without awaiting it.

    The caller never sees the coroutine's result or its exceptions.

    Args:
        coro: Coroutine to run
        name: Short task name used in log entries

    Returns:
        The scheduled task (mostly useful for tests)
    """
    task = asyncio.create_task(_run_guarded(coro, name), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def pending_background_tasks() -> int:
    """Number of background tasks that have not finished yet."""
    return len(_background_tasks)


async def drain_background_tasks(timeout: float | None = None) -> None:
    """Wait for all currently scheduled background tasks.

    Used at shutdown and in tests. Tasks spawned while draining are awaited
    too. Anything still running after ``timeout`` seconds is cancelled.
    """
    while _background_tasks:
        pending = list(_background_tasks)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("background_tasks_cancelled", count=len(not_done))
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)
            return
