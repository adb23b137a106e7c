"""Logging configuration for Napoleon AI."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from napoleon_ai.config import get_settings

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg", "openai")


def setup_logging() -> None:
    """Configure structured logging.

    structlog renders through the standard library so that records from
    third-party packages end up in the same handlers. Console output is
    colourised in development and JSON elsewhere; files are always JSON.
    """
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if settings.is_development
        else structlog.processors.JSONRenderer()
    )
    console_formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            console_renderer,
        ],
    )
    json_formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[])

    root = logging.getLogger()
    root.setLevel(log_level)

    # stdout carries the JSON-lines replies
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)
    root.addHandler(console_handler)

    if settings.log_to_file:
        try:
            Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        except OSError:
            settings.log_to_file = False
            root.warning("log directory %s unavailable, file logging disabled", settings.log_directory)

    if settings.log_to_file:
        try:
            file_handler = RotatingFileHandler(
                settings.log_file_path,
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(json_formatter)
            root.addHandler(file_handler)

            if settings.log_error_file_enabled:
                error_handler = RotatingFileHandler(
                    settings.error_log_file_path,
                    maxBytes=settings.log_file_max_bytes,
                    backupCount=settings.log_file_backup_count,
                    encoding="utf-8",
                )
                error_handler.setLevel(logging.WARNING)
                error_handler.setFormatter(json_formatter)
                root.addHandler(error_handler)
        except OSError:
            root.warning("could not open log file %s, file logging disabled", settings.log_file_path)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
