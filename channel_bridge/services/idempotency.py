"""Durable at-most-once ledger of outbound deliveries.

Callers look up their idempotency key before sending and record the result
after a successful send. A replay within the TTL returns the recorded result
with no network call. The whole table lives in memory and is flushed to
``idempotency.json`` on every change; losing the file only weakens the
guarantee across restarts.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from channel_bridge.logging_config import get_logger
from channel_bridge.services.state_file import read_json, write_json_atomic

logger = get_logger("idempotency")

IDEMPOTENCY_FILE_NAME = "idempotency.json"
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    channel: str
    result_id: str
    recorded_at_ms: int

    def to_json(self) -> dict:
        return {"resultId": self.result_id, "channel": self.channel, "timestamp": self.recorded_at_ms}


class IdempotencyLedger:
    def __init__(
        self,
        path: Path,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = path
        self.ttl_ms = int(ttl_seconds * 1000)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._records: dict[str, IdempotencyRecord] = {}
        self._last_sweep = clock()
        self._load()

    @classmethod
    def in_dir(cls, state_dir: Path, **kwargs) -> "IdempotencyLedger":
        return cls(state_dir / IDEMPOTENCY_FILE_NAME, **kwargs)

    def __len__(self) -> int:
        return len(self._records)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_expired(self, record: IdempotencyRecord, now_ms: int) -> bool:
        return now_ms - record.recorded_at_ms >= self.ttl_ms

    def lookup(self, key: Optional[str]) -> Optional[IdempotencyRecord]:
        if not key:
            return None
        self._maybe_sweep()
        record = self._records.get(key)
        if record is None:
            return None
        if self._is_expired(record, self._now_ms()):
            del self._records[key]
            self._flush()
            return None
        return record

    def record(self, key: str, channel: str, result_id: str) -> IdempotencyRecord:
        entry = IdempotencyRecord(key=key, channel=channel, result_id=result_id, recorded_at_ms=self._now_ms())
        self._records[key] = entry
        self._flush()
        return entry

    def sweep(self) -> int:
        now_ms = self._now_ms()
        self._last_sweep = self._clock()
        expired = [key for key, record in self._records.items() if self._is_expired(record, now_ms)]
        for key in expired:
            del self._records[key]
        if expired:
            self._flush()
            logger.info("Idempotency ledger swept", extra={"context": {"removed": len(expired)}})
        return len(expired)

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.sweep_interval_seconds:
            self.sweep()

    def _load(self) -> None:
        data = read_json(self.path)
        if data is None:
            return
        if not isinstance(data, dict):
            logger.warning("Idempotency file is not an object, ignoring", extra={"context": {"path": str(self.path)}})
            return

        now_ms = self._now_ms()
        for key, raw in data.items():
            if not isinstance(raw, dict):
                continue
            result_id = raw.get("resultId") or raw.get("messageId")
            timestamp = raw.get("timestamp")
            if not result_id or not isinstance(timestamp, (int, float)):
                continue
            record = IdempotencyRecord(
                key=key,
                channel=str(raw.get("channel") or "unknown"),
                result_id=str(result_id),
                recorded_at_ms=int(timestamp),
            )
            if not self._is_expired(record, now_ms):
                self._records[key] = record

        logger.info("Idempotency ledger loaded", extra={"context": {"entries": len(self._records)}})

    def _flush(self) -> None:
        data = {key: record.to_json() for key, record in self._records.items()}
        try:
            write_json_atomic(self.path, data)
        except OSError as exc:
            logger.warning(
                "Failed to persist idempotency ledger",
                extra={"context": {"path": str(self.path), "error": str(exc)}},
            )
