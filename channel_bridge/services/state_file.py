"""Atomic JSON state files shared by the handoff store and idempotency ledger."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from channel_bridge.logging_config import get_logger

logger = get_logger("state_file")

STATE_FILE_MODE = 0o600


def read_json(path: Path) -> Optional[Any]:
    """Load a JSON state file. Missing or unreadable files yield None."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning(
            "State file unreadable, starting empty",
            extra={"context": {"path": str(path), "error": str(exc)}},
        )
        return None


def write_json_atomic(path: Path, data: Any) -> None:
    """Write to a temp file in the same directory, then rename over ``path``.

    A crash mid-write leaves the previous file intact.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, STATE_FILE_MODE)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
