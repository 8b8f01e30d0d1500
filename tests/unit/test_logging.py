import io
import json

import pytest
import structlog
from pydantic import ValidationError

from funnel_analytics.core.config import Settings
from funnel_analytics.main import configure_logging


def test_logs_follow_current_stderr(monkeypatch):
    configure_logging("INFO")

    first, second = io.StringIO(), io.StringIO()
    monkeypatch.setattr("sys.stderr", first)
    structlog.get_logger().info("first_event")

    # stderr replaced after configuration, e.g. by a test runner
    monkeypatch.setattr("sys.stderr", second)
    structlog.get_logger().info("second_event", rows=3)

    assert json.loads(first.getvalue())["event"] == "first_event"
    line = json.loads(second.getvalue())
    assert line["event"] == "second_event"
    assert line["rows"] == 3
    assert line["level"] == "info"


def test_log_level_filters(monkeypatch):
    configure_logging("WARNING")
    out = io.StringIO()
    monkeypatch.setattr("sys.stderr", out)

    structlog.get_logger().info("dropped")
    structlog.get_logger().warning("kept")

    assert [json.loads(l)["event"] for l in out.getvalue().splitlines()] == ["kept"]


def test_log_level_setting_is_validated():
    assert Settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        Settings(log_level="verbose")
