"""
Tests for logging setup and formatters.
"""

import json
import logging

from server_sync.logging_config import (
    HumanFormatter,
    JSONFormatter,
    setup_logging,
    verbosity_to_level,
)


def _record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("server_sync.engine.sync", level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_formatter(self):
        data = json.loads(JSONFormatter().format(_record(run_id="R-1", stage="deployed")))

        assert data["level"] == "INFO"
        assert data["logger"] == "server_sync.engine.sync"
        assert data["message"] == "hello"
        assert data["run_id"] == "R-1"
        assert data["stage"] == "deployed"

    def test_json_formatter_without_extras(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert "run_id" not in data

    def test_human_formatter(self):
        line = HumanFormatter().format(_record("Selected 3 file(s)"))

        assert "[sync" in line
        assert line.endswith("Selected 3 file(s)")


class TestSetupLogging:
    def test_level_and_format_from_arguments(self):
        setup_logging(level="debug", format_type="json")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        setup_logging()

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, HumanFormatter)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(level="chatty")

        assert logging.getLogger().level == logging.INFO

    def test_verbosity(self):
        assert verbosity_to_level(0) is None
        assert verbosity_to_level(1) == "DEBUG"
        assert verbosity_to_level(3) == "DEBUG"
