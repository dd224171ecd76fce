"""Retry with exponential backoff for outbound HTTP calls."""

import asyncio
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Mapping, Optional, TypeVar

import httpx

from channel_bridge.logging_config import get_logger
from channel_bridge.services.errors import UpstreamHTTPError

logger = get_logger("retry")

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_TRANSIENT_STATUS_IN_MESSAGE = re.compile(r"\b(429|500|502|503|504)\b")
_TRANSIENT_MESSAGE = re.compile(
    r"ETIMEDOUT|ECONNRESET|ECONNREFUSED|timed out|timeout|connection reset|connection refused|rate\s*limit",
    re.IGNORECASE,
)


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, UpstreamHTTPError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _headers_of(exc: BaseException) -> Mapping[str, str]:
    if isinstance(exc, UpstreamHTTPError):
        return exc.headers
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.headers
    return {}


def is_transient_error(exc: BaseException) -> bool:
    """429/5xx, timeouts and connection failures are worth retrying."""
    status_code = _status_of(exc)
    if status_code is not None:
        return status_code in TRANSIENT_STATUS_CODES
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, httpx.TransportError):
        # UnsupportedProtocol, LocalProtocolError: retrying cannot help
        return False
    message = str(exc)
    return bool(_TRANSIENT_STATUS_IN_MESSAGE.search(message) or _TRANSIENT_MESSAGE.search(message))


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(seconds, 0.0)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((when - now).total_seconds(), 0.0)


class RetryExecutor:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def compute_delay(self, attempt: int, exc: BaseException) -> float:
        retry_after = parse_retry_after(_headers_of(exc).get("retry-after"))
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        return min(self.base_delay * (2**attempt), self.max_delay)

    async def execute(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Run ``operation`` until it succeeds, fails permanently or runs out of attempts.

        Permanent errors and the final transient error are re-raised as is.
        """
        for attempt in range(self.max_attempts):
            try:
                result = await operation()
            except Exception as exc:
                last_attempt = attempt == self.max_attempts - 1
                if not is_transient_error(exc) or last_attempt:
                    if last_attempt and is_transient_error(exc):
                        logger.error(
                            f"{description} failed after {self.max_attempts} attempts",
                            extra={"context": {"error": str(exc), "attempts": self.max_attempts}},
                        )
                    raise

                delay = self.compute_delay(attempt, exc)
                logger.warning(
                    f"{description} failed, retry {attempt + 1}/{self.max_attempts - 1} in {delay:.2f}s",
                    extra={
                        "context": {
                            "attempt": attempt + 1,
                            "delay_seconds": delay,
                            "status_code": _status_of(exc),
                            "error": str(exc),
                        }
                    },
                )
                await self._sleep(delay)
                continue

            if attempt > 0:
                logger.info(
                    f"{description} succeeded after {attempt} retries",
                    extra={"context": {"attempt": attempt}},
                )
            return result

        raise RuntimeError("unreachable")  # pragma: no cover
