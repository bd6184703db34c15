"""Named loggers whose output is prefixed with the logger's name."""

from __future__ import annotations

import logging
import os
import sys

_BOLD = "\x1b[1m"
_RESET = "\x1b[0m"
_NAMESPACE = "sopskit"

LOGGERS: dict[str, logging.Logger] = {}
"""Loggers created by :func:`new_logger`, keyed by name."""


def _color_enabled() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    stream = sys.stderr
    return bool(getattr(stream, "isatty", None)) and stream.isatty()


class NameFormatter(logging.Formatter):
    """Formatter that prefixes each record with a bold ``[name]`` tag."""

    def __init__(self, logger_name: str, color: bool | None = None) -> None:
        super().__init__("level=%(levelname)s msg=%(message)s")
        self.logger_name = logger_name
        self.color = _color_enabled() if color is None else color

    def format(self, record: logging.LogRecord) -> str:
        body = super().format(record)
        tag = f"[{self.logger_name}]"
        if self.color:
            tag = f"{_BOLD}{tag}{_RESET}"
        return f"{tag}\t {body}"


def new_logger(name: str) -> logging.Logger:
    """Create (or reset) the logger called ``name`` at warning level and register it."""
    logger = logging.getLogger(f"{_NAMESPACE}.{name}")
    logger.setLevel(logging.WARNING)
    handler = logging.StreamHandler()
    handler.setFormatter(NameFormatter(name))
    logger.handlers = [handler]
    logger.propagate = False
    LOGGERS[name] = logger
    return logger


def set_level(level: int | str) -> None:
    """Set ``level`` on every logger created so far."""
    for logger in LOGGERS.values():
        logger.setLevel(level)