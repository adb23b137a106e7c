"""Unit tests for the logging configuration module."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from unittest.mock import MagicMock, patch

import pytest
import structlog

from napoleon_ai.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger state before and after each test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    logging.root.handlers.clear()
    logging.root.setLevel(logging.WARNING)
    yield
    for handler in logging.root.handlers:
        handler.close()
    logging.root.handlers.clear()
    logging.root.handlers.extend(original_handlers)
    logging.root.setLevel(original_level)


def _settings(tmp_path=None, **overrides) -> MagicMock:
    """Mock settings with console-only logging unless overridden."""
    settings = MagicMock()
    settings.log_level = "INFO"
    settings.log_to_file = False
    settings.is_development = False
    settings.log_error_file_enabled = False
    settings.log_file_max_bytes = 1048576
    settings.log_file_backup_count = 3
    if tmp_path is not None:
        log_dir = tmp_path / "logs"
        settings.log_directory = str(log_dir)
        settings.log_file_path = str(log_dir / "napoleon_ai.log")
        settings.error_log_file_path = str(log_dir / "napoleon_ai_error.log")
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def _file_handlers() -> list[RotatingFileHandler]:
    return [h for h in logging.root.handlers if isinstance(h, RotatingFileHandler)]


class TestSetupLogging:
    """Tests for console logging configuration."""

    @pytest.mark.parametrize(
        ("level_name", "expected"),
        [("DEBUG", logging.DEBUG), ("WARNING", logging.WARNING), ("bogus", logging.INFO)],
    )
    def test_basic_config_level(self, level_name, expected):
        """Test the root level passed to basicConfig, with INFO as the fallback."""
        with patch("napoleon_ai.logging.get_settings", return_value=_settings(log_level=level_name)):
            with patch("napoleon_ai.logging.logging.basicConfig") as mock_basic:
                setup_logging()

        mock_basic.assert_called_once_with(format="%(message)s", level=expected, handlers=[])

    def test_console_handler_uses_processor_formatter(self):
        """Test that stderr gets a structlog ProcessorFormatter."""
        with patch("napoleon_ai.logging.get_settings", return_value=_settings()):
            setup_logging()

        console = [h for h in logging.root.handlers if type(h) is logging.StreamHandler]
        assert len(console) == 1
        assert isinstance(console[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert console[0].stream is sys.stderr

    def test_third_party_loggers_quietened(self):
        """Test that HTTP, database and SDK loggers are raised to WARNING."""
        with patch("napoleon_ai.logging.get_settings", return_value=_settings(log_level="DEBUG")):
            setup_logging()

        for name in ("httpx", "httpcore", "asyncpg", "openai"):
            assert logging.getLogger(name).level == logging.WARNING

    def test_structlog_configured_once(self):
        """Test the structlog configuration flags."""
        with patch("napoleon_ai.logging.get_settings", return_value=_settings()):
            with patch("napoleon_ai.logging.structlog.configure") as mock_configure:
                setup_logging()

        mock_configure.assert_called_once()
        kwargs = mock_configure.call_args.kwargs
        assert kwargs["context_class"] is dict
        assert kwargs["cache_logger_on_first_use"] is True

    def test_development_uses_console_renderer(self):
        """Test that development output is colourised."""
        with patch("napoleon_ai.logging.get_settings", return_value=_settings(is_development=True)):
            with patch("napoleon_ai.logging.structlog.dev.ConsoleRenderer") as mock_renderer:
                setup_logging()

        mock_renderer.assert_called_once_with(colors=True)

    def test_production_renders_json(self):
        """Test that production uses JSON for console and file formatters."""
        with patch("napoleon_ai.logging.get_settings", return_value=_settings()):
            with patch("napoleon_ai.logging.structlog.processors.JSONRenderer") as mock_renderer:
                setup_logging()

        assert mock_renderer.call_count == 2


class TestFileLogging:
    """Tests for rotating file handlers."""

    def test_file_handler_added(self, tmp_path):
        """Test that enabling file logging adds one rotating handler."""
        settings = _settings(tmp_path, log_to_file=True)
        with patch("napoleon_ai.logging.get_settings", return_value=settings):
            setup_logging()

        handlers = _file_handlers()
        assert len(handlers) == 1
        assert handlers[0].maxBytes == 1048576
        assert handlers[0].backupCount == 3
        assert (tmp_path / "logs").exists()

    def test_error_file_handler_at_warning(self, tmp_path):
        """Test that the error file only receives WARNING and above."""
        settings = _settings(tmp_path, log_to_file=True, log_error_file_enabled=True)
        with patch("napoleon_ai.logging.get_settings", return_value=settings):
            setup_logging()

        handlers = _file_handlers()
        assert len(handlers) == 2
        assert [h.level for h in handlers].count(logging.WARNING) == 1

    def test_directory_failure_disables_file_logging(self, tmp_path):
        """Test that an unwritable log directory falls back to console only."""
        settings = _settings(tmp_path, log_to_file=True)
        with patch("napoleon_ai.logging.get_settings", return_value=settings):
            with patch("napoleon_ai.logging.Path.mkdir", side_effect=PermissionError("denied")):
                setup_logging()

        assert settings.log_to_file is False
        assert _file_handlers() == []

    def test_handler_failure_is_not_fatal(self, tmp_path):
        """Test that a failing RotatingFileHandler does not raise."""
        settings = _settings(tmp_path, log_to_file=True)
        with patch("napoleon_ai.logging.get_settings", return_value=settings):
            with patch(
                "napoleon_ai.logging.RotatingFileHandler",
                side_effect=PermissionError("cannot write"),
            ):
                setup_logging()

        assert _file_handlers() == []


class TestGetLogger:
    """Tests for get_logger."""

    def test_get_logger_binds_and_logs(self):
        """Test that a named logger accepts keyword context."""
        logger = get_logger("napoleon_ai.tests")
        assert logger is not None
        logger.bind(message_id="m1")
