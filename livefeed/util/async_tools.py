"""
Async hygiene tools.
Supervised task management so transport I/O tasks are tracked and cancelled on shutdown.
"""

import asyncio
import logging
from typing import Awaitable, Dict, TypeVar

logger = logging.getLogger(__name__)

# Global registry for supervised tasks
_supervised_tasks: Dict[str, asyncio.Task] = {}

T = TypeVar('T')


def create_supervised_task(coro: Awaitable[T], *, name: str) -> "asyncio.Task[T]":
    """
    Create a supervised task that will be cancelled on shutdown.

    Args:
        coro: The coroutine to run
        name: Unique name for the task (used for tracking)

    Returns:
        The created task

    Raises:
        ValueError: If a live task with the same name already exists
    """
    existing = _supervised_tasks.get(name)
    if existing is not None and not existing.done():
        raise ValueError(f"Task '{name}' already exists")

    async def _supervised_wrapper():
        try:
            return await coro
        except asyncio.CancelledError:
            logger.debug(f"[async_tools] Task '{name}' cancelled")
            raise
        except Exception as e:
            logger.error(f"[async_tools] Task '{name}' failed: {e}")
            raise

    task = asyncio.get_running_loop().create_task(_supervised_wrapper(), name=name)
    _supervised_tasks[name] = task

    def _forget(done: asyncio.Task) -> None:
        if _supervised_tasks.get(name) is done:
            del _supervised_tasks[name]

    task.add_done_callback(_forget)
    return task


async def shutdown_supervised_tasks():
    """Cancel all supervised tasks and wait for them to complete."""
    if not _supervised_tasks:
        return

    tasks = list(_supervised_tasks.values())
    logger.info(f"[async_tools] Shutting down {len(tasks)} supervised tasks")

    for task in tasks:
        if not task.done():
            task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)
    _supervised_tasks.clear()
    logger.info("[async_tools] All supervised tasks shut down")


def get_supervised_tasks() -> Dict[str, asyncio.Task]:
    """Get the current supervised tasks registry."""
    return _supervised_tasks.copy()
