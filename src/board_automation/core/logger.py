"""Logging setup for the automation engine.

Every engine module logs through ``get_logger("<area>")``, which hands out
children of the ``board_automation`` logger. ``setup_logging`` installs a rich
console handler on stderr, keeping stdout free for command output, plus an
optional rotating file.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig

LOGGER_NAMESPACE = "board_automation"

_loggers: dict[str, logging.Logger] = {}
_current_level: int = logging.INFO


def _release_root_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        with suppress(Exception):
            handler.flush()
            handler.close()
    root.handlers.clear()


def _build_handlers(config: LoggingConfig, level: int) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            show_path=config.level == "DEBUG",
            markup=False,
            rich_tracebacks=True,
        )
    ]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setFormatter(logging.Formatter(config.format))
        handlers.append(file_handler)
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Route engine logging to the console and, if configured, a rotating file.

    Calling it again replaces the previous handlers, so the CLI can apply
    ``--log-level`` on top of the loaded configuration.
    """
    global _current_level

    config = config or LoggingConfig()
    level = getattr(logging, config.level)

    root = logging.getLogger()
    _release_root_handlers(root)
    root.setLevel(level)
    for handler in _build_handlers(config, level):
        root.addHandler(handler)

    _current_level = level
    logging.getLogger(LOGGER_NAMESPACE).setLevel(level)
    for existing in _loggers.values():
        existing.setLevel(level)

    get_logger("setup").debug(
        "Logging configured: level=%s file=%s", config.level, config.log_file or "-"
    )


def get_logger(name: str) -> logging.Logger:
    """Cached ``board_automation.<name>`` logger at the configured level."""
    if name not in _loggers:
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
        logger.setLevel(_current_level)
        _loggers[name] = logger
    return _loggers[name]


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log ``exc`` with its traceback, prefixed by what was being attempted."""
    logger.exception("%s: %s", context or "Unexpected error", exc)
