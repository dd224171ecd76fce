import io
import json
import logging
from pathlib import Path

import pytest

from channel_bridge.logging_config import bind_context, get_logger, setup_logging


@pytest.fixture
def log_stream():
    root = logging.getLogger()
    # pytest's own capture handlers come and go per test phase
    previous_handlers = [h for h in root.handlers if not type(h).__module__.startswith("_pytest")]
    previous_level = root.level
    stream = io.StringIO()
    setup_logging("DEBUG", stream=stream)
    installed = root.handlers[:]
    yield stream
    for handler in installed:
        root.removeHandler(handler)
    for handler in previous_handlers:
        root.addHandler(handler)
    root.setLevel(previous_level)


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestJSONLogging:
    def test_context_is_serialised(self, log_stream):
        get_logger("test").info("Delivered", extra={"context": {"to": "5511****87777", "path": Path("/tmp/x")}})

        [line] = _lines(log_stream)
        assert line["logger"] == "bridge.test"
        assert line["service"] == "channel-bridge"
        assert line["message"] == "Delivered"
        assert line["context"] == {"to": "5511****87777", "path": "/tmp/x"}

    def test_bound_context_merges_per_call_fields(self, log_stream):
        log = bind_context(get_logger("inbound"), sender="5511****87777", message_id="wamid.1")

        log.warning("Agent failed", context={"error": "boom"})

        [line] = _lines(log_stream)
        assert line["level"] == "WARNING"
        assert line["context"] == {"sender": "5511****87777", "message_id": "wamid.1", "error": "boom"}

    def test_exception_type_recorded(self, log_stream):
        try:
            raise ValueError("bad input")
        except ValueError:
            get_logger("test").error("Failed", exc_info=True)

        [line] = _lines(log_stream)
        assert line["error_type"] == "ValueError"
        assert "bad input" in line["exception"]

    def test_noisy_client_loggers_quietened(self, log_stream):
        assert logging.getLogger("httpx").level == logging.WARNING
