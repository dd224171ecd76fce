import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from channel_bridge.services.errors import InvalidInputError, UpstreamHTTPError
from channel_bridge.services.retry import RetryExecutor, is_transient_error, parse_retry_after


def _upstream(status_code, headers=None):
    return UpstreamHTTPError(f"graph -> {status_code}", status_code=status_code, headers=headers)


class TestIsTransientError:
    @pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status_code):
        assert is_transient_error(_upstream(status_code))

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422])
    def test_client_errors_are_permanent(self, status_code):
        assert not is_transient_error(_upstream(status_code))

    def test_network_failures(self):
        assert is_transient_error(httpx.ConnectTimeout("connect timed out"))
        assert is_transient_error(httpx.ConnectError("refused"))
        assert is_transient_error(asyncio.TimeoutError())
        assert is_transient_error(httpx.RemoteProtocolError("server disconnected without sending a response"))

    def test_client_side_transport_errors_are_permanent(self):
        assert not is_transient_error(httpx.UnsupportedProtocol("Request URL has an unsupported protocol 'ftp://'"))
        assert not is_transient_error(httpx.LocalProtocolError("connection reset while sending headers"))

    def test_message_patterns(self):
        assert is_transient_error(RuntimeError("read ETIMEDOUT"))
        assert is_transient_error(RuntimeError("socket hang up: ECONNRESET"))
        assert is_transient_error(RuntimeError("Rate limit exceeded"))
        assert is_transient_error(RuntimeError("upstream returned 503"))
        assert not is_transient_error(RuntimeError("invalid recipient"))

    def test_status_wins_over_message(self):
        assert not is_transient_error(UpstreamHTTPError("timeout in template", status_code=400))

    def test_bridge_validation_errors_are_permanent(self):
        assert not is_transient_error(InvalidInputError("Invalid phone number"))


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("7") == 7.0
        assert parse_retry_after("-3") == 0.0

    def test_http_date(self):
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert parse_retry_after("Mon, 01 Jan 2024 12:00:30 GMT", now=now) == 30.0

    def test_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_transient_then_success(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[_upstream(503), _upstream(503), "wamid.1"])
        executor = RetryExecutor(max_attempts=3, base_delay=1.0, sleep=sleep)

        result = await executor.execute(operation, "Send message")

        assert result == "wamid.1"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=_upstream(400))
        executor = RetryExecutor(sleep=sleep)

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await executor.execute(operation, "Send message")

        assert exc_info.value.status_code == 400
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_misconfigured_url_is_not_retried(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=httpx.UnsupportedProtocol("Request URL is missing a protocol"))
        executor = RetryExecutor(sleep=sleep)

        with pytest.raises(httpx.UnsupportedProtocol):
            await executor.execute(operation, "Send message")

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_transient_error_is_raised(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[_upstream(500), _upstream(502), _upstream(504)])
        executor = RetryExecutor(max_attempts=3, sleep=sleep)

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await executor.execute(operation, "Send message")

        assert exc_info.value.status_code == 504
        assert operation.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_after_header_sets_delay(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[_upstream(429, {"retry-after": "5"}), "ok"])
        executor = RetryExecutor(base_delay=1.0, sleep=sleep)

        assert await executor.execute(operation, "Send message") == "ok"
        sleep.assert_awaited_once_with(5.0)

    def test_delay_is_capped(self):
        executor = RetryExecutor(base_delay=10.0, max_delay=30.0)
        assert executor.compute_delay(0, _upstream(503)) == 10.0
        assert executor.compute_delay(1, _upstream(503)) == 20.0
        assert executor.compute_delay(5, _upstream(503)) == 30.0
        assert executor.compute_delay(0, _upstream(429, {"retry-after": "600"})) == 30.0

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self):
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=_upstream(503))
        executor = RetryExecutor(max_attempts=1, sleep=sleep)

        with pytest.raises(UpstreamHTTPError):
            await executor.execute(operation, "Send message")
        sleep.assert_not_awaited()
