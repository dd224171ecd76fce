import asyncio
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Coroutine, Iterable, Iterator, Optional

from channel_bridge.logging_config import get_logger

logger = get_logger("background")

_current_scope: ContextVar[Optional[set]] = ContextVar("background_scope", default=None)


class BackgroundWork:
    """Bounded set of tracked fire-and-forget tasks.

    Work that must not delay the caller (mirroring to the monitoring inbox)
    is spawned here instead of as a bare task, so it can be awaited at a
    known point. When the set is full new work is dropped with a warning.

    ``scope()`` collects the tasks spawned by one unit of work, including
    tasks started from inside it, so that unit can wait for its own
    mirroring without waiting on everyone else's.
    """

    def __init__(self, max_pending: int = 1000):
        self.max_pending = max_pending
        self._tasks: set[asyncio.Task] = set()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: str = "background") -> Optional[asyncio.Task]:
        if len(self._tasks) >= self.max_pending:
            coro.close()
            self.dropped += 1
            logger.warning(
                "Background work dropped, queue full",
                extra={"context": {"name": name, "pending": len(self._tasks), "dropped": self.dropped}},
            )
            return None

        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        scope = _current_scope.get()
        if scope is not None:
            scope.add(task)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background task failed", extra={"context": {"error": str(exc)}})

    @contextmanager
    def scope(self) -> Iterator[set]:
        """Collect every task spawned in this context until the block exits.

        Tasks created inside the block copy the context, so work they spawn
        later lands in the same set.
        """
        spawned: set[asyncio.Task] = set()
        token = _current_scope.set(spawned)
        try:
            yield spawned
        finally:
            _current_scope.reset(token)

    async def wait_for(self, tasks: Iterable[asyncio.Task], timeout: Optional[float] = None) -> None:
        pending = [task for task in tasks if not task.done()]
        if not pending:
            return
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning(
                "Background work still pending after wait timeout",
                extra={"context": {"pending": len(not_done)}},
            )

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the tasks spawned so far. Work spawned meanwhile is not awaited."""
        await self.wait_for(list(self._tasks), timeout=timeout)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
