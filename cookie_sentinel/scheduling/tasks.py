"""Supervised, cancellable background tasks keyed by name.

Recurring triggers and one-shot retries are plain asyncio tasks owned by a
``TaskSupervisor``. Replacing a key cancels the task previously registered
under it, so a domain never has two live triggers.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class DelayedTask:
    """A callback due once after a delay; started and owned by a TaskSupervisor."""

    def __init__(
        self,
        name: str,
        delay_seconds: float,
        callback: Callable[[], Awaitable[None]]
    ):
        self.name = name
        self.delay_seconds = max(0.0, delay_seconds)
        self.callback = callback
        self.created_at = datetime.now(timezone.utc)
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        await self.callback()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def due_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.delay_seconds)


class TaskSupervisor:
    """Owns named background tasks and logs their failures."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, key: str, coro_factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Start a task under key, cancelling any task already registered there.

        A task that replaces itself, such as a retry scheduling the next
        retry, is left running.
        """
        if self._tasks.get(key) is not asyncio.current_task():
            self.cancel(key)
        task = asyncio.create_task(self._supervise(key, coro_factory), name=key)
        self._tasks[key] = task
        return task

    def schedule_once(
        self,
        key: str,
        delay_seconds: float,
        callback: Callable[[], Awaitable[None]]
    ) -> DelayedTask:
        """Run callback once after delay_seconds under key."""
        delayed = DelayedTask(key, delay_seconds, callback)
        self.spawn(key, delayed._run)
        delayed._task = self._tasks[key]
        return delayed

    async def _supervise(self, key: str, coro_factory: Callable[[], Awaitable[None]]) -> None:
        try:
            await coro_factory()
        except asyncio.CancelledError:
            logger.debug(f"Task {key} cancelled")
            raise
        except Exception as e:
            logger.error(f"Task {key} failed: {e}", exc_info=True)
        finally:
            current = asyncio.current_task()
            if self._tasks.get(key) is current:
                del self._tasks[key]

    def cancel(self, key: str) -> bool:
        """Cancel the task registered under key.

        A task cancelling its own key is unregistered but left to finish.
        """
        task = self._tasks.pop(key, None)
        if task is None or task.done() or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    def has(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def keys(self) -> List[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        """Cancel all tasks and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
