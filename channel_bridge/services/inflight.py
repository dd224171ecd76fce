import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class InflightCoalescer(Generic[T]):
    """Collapse concurrent calls for the same key into one computation.

    The first caller for a key starts ``factory()``; every caller that arrives
    before it settles awaits the same task and sees the same result or
    exception. The key is released when the task settles, so a later call after
    a failure starts a fresh attempt.
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def coalesce(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, factory))
            self._pending[key] = task
        # A cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    async def _run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            self._pending.pop(key, None)
