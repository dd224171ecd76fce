import time
from typing import Callable, Optional


class WebhookDedupTracker:
    """In-memory "already processed" guard keyed by provider event id.

    Memory only: a redelivery that arrives after ``ttl_seconds`` is processed
    again.
    """

    def __init__(
        self,
        ttl_seconds: float = 600.0,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._seen)

    def seen(self, event_id: Optional[str]) -> bool:
        if not event_id:
            return False
        self._maybe_sweep()
        first_seen = self._seen.get(event_id)
        if first_seen is None:
            return False
        if self._clock() - first_seen >= self.ttl_seconds:
            del self._seen[event_id]
            return False
        return True

    def mark_seen(self, event_id: Optional[str]) -> None:
        if not event_id:
            return
        now = self._clock()
        first_seen = self._seen.get(event_id)
        if first_seen is None or now - first_seen >= self.ttl_seconds:
            self._seen[event_id] = now

    def check_and_mark(self, event_id: Optional[str]) -> bool:
        """Return True when the event should be processed now."""
        if not event_id:
            return True
        if self.seen(event_id):
            return False
        self.mark_seen(event_id)
        return True

    def sweep(self) -> int:
        now = self._clock()
        self._last_sweep = now
        expired = [event_id for event_id, ts in self._seen.items() if now - ts >= self.ttl_seconds]
        for event_id in expired:
            del self._seen[event_id]
        return len(expired)

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.sweep_interval_seconds:
            self.sweep()
