"""Tests for logger.py: setup_logging() and JsonFormatter.

basicConfig is mocked because pytest's log capture plugin already owns
the root logger.
"""

import json
import logging
import os
import sys
from unittest.mock import patch

import pytest

from kanban_sync.logger import (
    DEFAULT_SERVICE_LOG_FILE,
    JsonFormatter,
    resolve_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)


def _record(msg="Synced %s", args=("e1",), level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="kanban_sync.sync.queue",
        level=level,
        pathname="queue.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        setup_logging(mode="cli")

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_service_mode_logs_to_file(self, mock_basic):
        setup_logging(mode="service")

        kwargs = mock_basic.call_args[1]
        handlers = kwargs["handlers"]
        assert len(handlers) == 1
        assert handlers[0].baseFilename == os.path.abspath(DEFAULT_SERVICE_LOG_FILE)
        assert handlers[0].mode == "a"
        assert kwargs["level"] == logging.WARNING
        handlers[0].close()

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_service_log_file_precedence(self, mock_basic, monkeypatch, tmp_path):
        """log_file argument beats LOG_FILE, which beats the default."""
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "env.log"))

        setup_logging(mode="service")
        handler = mock_basic.call_args[1]["handlers"][0]
        assert handler.baseFilename == str(tmp_path / "env.log")
        handler.close()

        setup_logging(mode="service", log_file=str(tmp_path / "arg.log"))
        handler = mock_basic.call_args[1]["handlers"][0]
        assert handler.baseFilename == str(tmp_path / "arg.log")
        handler.close()

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_service_file_is_opened_lazily(self, mock_basic, tmp_path):
        path = tmp_path / "lazy.log"

        setup_logging(mode="service", log_file=str(path))

        assert not path.exists()
        mock_basic.call_args[1]["handlers"][0].close()

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_env_level_and_debug_override(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")

        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_configured_level(self, mock_basic, monkeypatch):
        """A configured level beats the mode default but not LOG_LEVEL."""
        setup_logging(mode="service", level="debug")
        assert mock_basic.call_args[1]["level"] == logging.DEBUG
        mock_basic.call_args[1]["handlers"][0].close()

        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", level="DEBUG")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        for h in file_handlers:
            h.close()

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_json_format(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("kanban_sync.logger.logging.basicConfig")
    def test_http_stack_silenced(self, _mock_basic):
        setup_logging(mode="cli")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_fields(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "kanban_sync.sync.queue"
        assert data["msg"] == "Synced e1"
        assert "ts" in data

    def test_exception_is_single_line(self):
        try:
            raise ValueError("bad snapshot")
        except ValueError:
            exc_info = sys.exc_info()

        output = JsonFormatter().format(
            _record("Load failed", (), logging.ERROR, exc_info)
        )

        assert "\n" not in output
        assert "bad snapshot" in json.loads(output)["exc"]

    def test_sync_context_fields(self):
        record = _record()
        record.entry_id = "e1"
        record.mutation = "COLUMN_RENAME"
        record.version = 3

        data = json.loads(JsonFormatter().format(record))

        assert data["entry_id"] == "e1"
        assert data["mutation"] == "COLUMN_RENAME"
        assert data["version"] == 3

    def test_context_fields_omitted_when_unset(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert "entry_id" not in data
        assert "mutation" not in data


class TestResolveLevel:
    """Tests for resolve_level()."""

    @pytest.mark.parametrize(
        "mode,expected", [("cli", logging.INFO), ("service", logging.WARNING)]
    )
    def test_mode_defaults(self, mode, expected):
        assert resolve_level(mode) == expected

    def test_unknown_name_falls_back_to_info(self):
        assert resolve_level("cli", level="chatty") == logging.INFO

    def test_debug_beats_everything(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")

        assert resolve_level("service", debug=True, level="WARNING") == logging.DEBUG
