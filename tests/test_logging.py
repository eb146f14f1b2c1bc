"""Tests for structlog configuration."""
import json

import pytest
import structlog

from config.settings import LoggingConfig
from utils.logging import configure_logging

pytestmark = pytest.mark.usefixtures("restore_logging")


def _records(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def test_json_lines_written_to_file(tmp_path):
    log_file = tmp_path / "logs" / "sync.log"
    configure_logging(LoggingConfig(format="json", log_file=str(log_file)))

    structlog.get_logger().info("queue_message_enqueued", key="abc", attempts=0)

    [record] = _records(log_file)
    assert record["event"] == "queue_message_enqueued"
    assert record["key"] == "abc"
    assert record["level"] == "info"
    assert "timestamp" in record


def test_json_mode_renders_traceback(tmp_path):
    log_file = tmp_path / "sync.log"
    configure_logging(LoggingConfig(format="json", log_file=str(log_file)))

    try:
        raise RuntimeError("serializer blew up")
    except RuntimeError:
        structlog.get_logger().error("delivery_attempt_crashed", exc_info=True)

    [record] = _records(log_file)
    assert "exc_info" not in record
    assert "Traceback" in record["exception"]
    assert "RuntimeError: serializer blew up" in record["exception"]
