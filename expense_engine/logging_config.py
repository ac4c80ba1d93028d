from __future__ import annotations

import logging

LOGGER_NAME = "expense_engine"
HANDLER_NAME = "expense_engine.console"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach one console handler to the package logger; safe to call twice."""
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(_resolve_level(level))
    if not any(handler.get_name() == HANDLER_NAME for handler in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
    return package_logger


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO
