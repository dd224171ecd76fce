"""Durable "pause the agent for this number until T" entries.

A handoff pauses a phone number regardless of which agent would answer it.
The store is shared by the text command, the admin REST router and the
Chatwoot webhook. Every operation runs under a lock, picks up edits made to
the file by another process and mutations rewrite it atomically.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from channel_bridge.logging_config import get_logger
from channel_bridge.services.errors import InvalidInputError
from channel_bridge.services.identity import is_valid_phone, mask_phone, normalize_phone, to_e164
from channel_bridge.services.state_file import read_json, write_json_atomic

logger = get_logger("handoff_store")

HANDOFF_FILE_NAME = "handoff.json"


class HandoffEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: str
    activated_by: str = Field(alias="activatedBy")
    activated_at: int = Field(alias="activatedAt")
    expires_at: int = Field(alias="expiresAt")

    @property
    def canonical_number(self) -> str:
        return normalize_phone(self.number)

    def remaining_minutes(self, now_ms: int) -> int:
        remaining = max(self.expires_at - now_ms, 0)
        return -(-remaining // 60_000)


class HandoffStore:
    def __init__(self, path: Path, clock: Callable[[], float] = time.time):
        self.path = path
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[list[HandoffEntry]] = None
        self._cached_stamp: Optional[tuple[int, int]] = None

    @classmethod
    def in_dir(cls, state_dir: Path, **kwargs) -> "HandoffStore":
        return cls(state_dir / HANDOFF_FILE_NAME, **kwargs)

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _canonical(number: str) -> str:
        canonical = normalize_phone(number)
        if not is_valid_phone(canonical):
            raise InvalidInputError(f"Invalid phone number: {mask_phone(canonical)}")
        return canonical

    def _file_stamp(self) -> Optional[tuple[int, int]]:
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _read(self) -> list[HandoffEntry]:
        data = read_json(self.path)
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            return []

        entries: list[HandoffEntry] = []
        for raw in data["entries"]:
            try:
                entries.append(HandoffEntry.model_validate(raw))
            except ValidationError:
                continue
        return entries

    def _load(self) -> list[HandoffEntry]:
        """Unexpired entries. The file is parsed again only when its mtime or size changes."""
        stamp = self._file_stamp()
        if self._cached is None or stamp is None or stamp != self._cached_stamp:
            self._cached = self._read()
            self._cached_stamp = stamp

        now_ms = self.now_ms()
        return [entry for entry in self._cached if entry.expires_at > now_ms]

    def _save(self, entries: list[HandoffEntry]) -> None:
        payload = {"entries": [entry.model_dump(by_alias=True) for entry in entries]}
        write_json_atomic(self.path, payload)
        self._cached = list(entries)
        self._cached_stamp = self._file_stamp()

    def is_active(self, number: str) -> Optional[HandoffEntry]:
        canonical = normalize_phone(number)
        if not canonical:
            return None
        with self._lock:
            for entry in self._load():
                if entry.canonical_number == canonical:
                    return entry
        return None

    def activate(self, number: str, activated_by: str, duration_minutes: int) -> HandoffEntry:
        canonical = self._canonical(number)
        if duration_minutes <= 0:
            raise InvalidInputError("Handoff duration must be positive")

        now_ms = self.now_ms()
        entry = HandoffEntry(
            number=to_e164(canonical),
            activated_by=activated_by,
            activated_at=now_ms,
            expires_at=now_ms + duration_minutes * 60_000,
        )
        with self._lock:
            entries = [e for e in self._load() if e.canonical_number != canonical]
            entries.append(entry)
            self._save(entries)

        logger.info(
            "Handoff activated",
            extra={
                "context": {
                    "number": mask_phone(canonical),
                    "activated_by": activated_by,
                    "minutes": duration_minutes,
                }
            },
        )
        return entry

    def deactivate(self, number: str) -> bool:
        canonical = normalize_phone(number)
        if not canonical:
            return False
        with self._lock:
            entries = self._load()
            remaining = [e for e in entries if e.canonical_number != canonical]
            if len(remaining) == len(entries):
                return False
            self._save(remaining)

        logger.info("Handoff deactivated", extra={"context": {"number": mask_phone(canonical)}})
        return True

    def list_active(self) -> list[HandoffEntry]:
        with self._lock:
            return self._load()
