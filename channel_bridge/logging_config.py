"""Structured JSON logging for the bridge.

Every line is one JSON object. Callers attach structured fields with
``extra={"context": {...}}``; phone numbers in context must already be masked.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TextIO

SERVICE_NAME = "channel-bridge"
LOGGER_PREFIX = "bridge"

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _current_task_name() -> Optional[str]:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task is not None else None


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }

        task_name = _current_task_name()
        if task_name:
            log_data["task"] = task_name

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            log_data["exception"] = self.formatException(record.exc_info)

        # Context values may be Paths, enums or exceptions
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Route the root logger to one JSON handler on stdout."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


class ContextAdapter(logging.LoggerAdapter):
    """Logger bound to fixed context fields.

    ``log.info("...", context={...})`` merges per-call fields over the bound
    ones, so every line about one inbound message carries the same masked
    sender and message id.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        merged = {**(self.extra or {}), **(context or {})}
        if merged:
            kwargs["extra"] = {"context": merged}
        return msg, kwargs


def bind_context(logger: logging.Logger, **fields: Any) -> ContextAdapter:
    return ContextAdapter(logger, fields)
