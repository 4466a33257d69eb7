"""Background task manager for fire-and-forget work.

Interaction telemetry and the startup embedding build run as tracked tasks:
the request returns immediately, failures are logged instead of lost, and
shutdown cancels whatever is still running.
"""

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Keep strong references to background tasks until they finish.

    Usage:
        task_manager = TaskManager.get_instance()
        task_manager.create_task(some_coroutine(), name="my_task")

        # On shutdown
        await task_manager.cancel_all()
    """

    _instance: "TaskManager | None" = None

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._failures = 0

    @classmethod
    def get_instance(cls) -> "TaskManager":
        """Get the singleton TaskManager instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None

    @property
    def failure_count(self) -> int:
        return self._failures

    def create_task(self, coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        """Schedule `coro` in the background. Exceptions are logged, not raised."""
        task_name = name or "unnamed"

        async def wrapped():
            try:
                return await coro
            except asyncio.CancelledError:
                logger.info(f"Background task cancelled: {task_name}")
                raise
            except Exception as e:
                self._failures += 1
                logger.error(f"Background task failed: {task_name} - {type(e).__name__}: {e}")
                return None

        task = asyncio.create_task(wrapped(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def get_running_tasks(self) -> list[asyncio.Task]:
        """Get all currently running (non-done) tasks."""
        return [t for t in self._tasks if not t.done()]

    async def cancel_all(self, timeout: float = 5.0) -> dict:
        """
        Cancel all tracked tasks and wait for them to finish.

        Returns:
            Counts of cancelled and timed-out tasks
        """
        running = self.get_running_tasks()
        if not running:
            return {"cancelled": 0, "timed_out": 0}

        logger.info(f"Cancelling {len(running)} background tasks...")
        for task in running:
            task.cancel()

        done, pending = await asyncio.wait(running, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} tasks did not finish within {timeout}s timeout")
        return {"cancelled": len(done), "timed_out": len(pending)}
