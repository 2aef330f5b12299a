"""
Background Task Helpers
Detached side effects (tenant webhooks, notifications) that must never
fail or delay the caller.
"""
import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set

logger = logging.getLogger(__name__)

# Strong references; the event loop only keeps weak ones
_background_tasks: Set[asyncio.Task] = set()
_task_failures: Dict[str, int] = {}


async def _safe_wrapper(coro: Coroutine, task_name: str) -> Any:
    try:
        return await coro
    except asyncio.CancelledError:
        logger.debug(f"Background task cancelled: {task_name}")
        raise
    except Exception as e:
        _task_failures[task_name] = _task_failures.get(task_name, 0) + 1
        logger.error(f"Background task '{task_name}' failed: {e}", exc_info=True)
        return None


def fire_and_forget(coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
    """
    Run a coroutine detached from the caller.

    Errors are logged and swallowed.

    Args:
        coro: Coroutine to run
        name: Task name used in logs
    """
    task_name = name or getattr(coro, "__qualname__", "background_task")
    task = asyncio.create_task(_safe_wrapper(coro, task_name), name=task_name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks(timeout: Optional[float] = None) -> None:
    """Wait for outstanding background tasks, e.g. on shutdown."""
    pending = [task for task in _background_tasks if not task.done()]
    if not pending:
        return
    done, still_pending = await asyncio.wait(pending, timeout=timeout)
    if still_pending:
        logger.warning(f"{len(still_pending)} background tasks still running after drain")


def get_task_failure_counts() -> Dict[str, int]:
    return _task_failures.copy()


def reset_task_failure_counts() -> None:
    """Reset counters (tests)."""
    _task_failures.clear()
