"""Logging configuration for the API process."""
from __future__ import annotations

import logging
import logging.handlers

from palavras.config import LOG_FILE, LOG_FORMAT, LOG_LEVEL

# Handlers attached by setup_logging, detached again when it runs a second time.
_installed_handlers: list[logging.Handler] = []


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Attach console (and optional rotating file) handlers to the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level or LOG_LEVEL)

    formatter = logging.Formatter(LOG_FORMAT)

    while _installed_handlers:
        handler = _installed_handlers.pop()
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    _install(root_logger, console_handler)

    target = log_file or LOG_FILE
    if target:
        file_handler = logging.handlers.RotatingFileHandler(
            target,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        _install(root_logger, file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured at level %s", root_logger.level)


def _install(root_logger: logging.Logger, handler: logging.Handler) -> None:
    root_logger.addHandler(handler)
    _installed_handlers.append(handler)
