"""Logging setup for the ``godot_debug`` package.

Modules log through ``logging.getLogger(__name__)``; this module only wires
handlers onto the package logger:

* a rotating plain-text file with ``[<timestamp>] <LEVEL>: <message>`` lines;
* optionally, a mirror into the ``"Godot Debug Log"`` view.
"""

from __future__ import annotations

import logging
import logging.handlers
import os

from godot_debug.config import DebugConfig
from godot_debug.views import DEBUG_LOG_VIEW, OutputViews

PACKAGE_LOGGER = "godot_debug"

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ViewLogHandler(logging.Handler):
    """Appends formatted records to a named view."""

    def __init__(self, views: OutputViews, view_name: str = DEBUG_LOG_VIEW) -> None:
        super().__init__()
        self._views = views
        self._view_name = view_name

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._views.append(self._view_name, [self.format(record)])
        except Exception:  # noqa: BLE001
            self.handleError(record)


def setup_logging(
    config: DebugConfig,
    views: OutputViews | None = None,
) -> logging.Logger:
    """Install the file (and view) handlers on the package logger.

    Calling it again replaces the handlers installed by a previous call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    for handler in list(logger.handlers):
        if getattr(handler, "_godot_debug", False):
            logger.removeHandler(handler)
            handler.close()

    assert config.log_file is not None
    os.makedirs(os.path.dirname(config.log_file) or ".", exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        config.log_file,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler._godot_debug = True  # type: ignore[attr-defined]
    logger.addHandler(file_handler)

    if views is not None:
        view_handler = ViewLogHandler(views)
        view_handler.setFormatter(formatter)
        view_handler._godot_debug = True  # type: ignore[attr-defined]
        logger.addHandler(view_handler)

    set_log_level(config.log_level)
    return logger


def set_log_level(level: int | str) -> bool:
    """Set the package log level.  Returns ``False`` for an invalid level."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            logger.error("Invalid log level: %s", level)
            return False
        level = resolved
    elif level < 0:
        logger.error("Invalid log level: %s", level)
        return False

    logger.setLevel(level)
    logger.info("Log level set to %s", logging.getLevelName(level))
    return True
