"""
Logging setup for lane-dispatch.

Library modules log through ``logging.getLogger(__name__)`` under the
``lane_dispatch`` namespace. This module provides:
- A JSON formatter for structured output
- A compact, colored text formatter for terminals
- ``configure_logging`` to attach one of them to the package logger
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from .config.logging import LoggingConfig

ROOT_LOGGER_NAME = "lane_dispatch"

# Attributes passed through ``extra=`` that are lifted into JSON output
CONTEXT_FIELDS = ("job_id", "lane_index", "status", "operation")


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        # Parse JSON message if present
        try:
            message_data = json.loads(record.getMessage())
        except (json.JSONDecodeError, TypeError):
            message_data = None
        if isinstance(message_data, dict):
            log_data.update(message_data)
        else:
            log_data["message"] = record.getMessage()

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "") if self.use_color else ""
        reset = self.RESET if color else ""

        line = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# =============================================================================
# Setup
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the package logger.

    Replaces any handler previously installed by this function, so calling
    it twice does not duplicate output.

    Args:
        level: Log level name
        json_output: Emit JSON lines instead of text
        stream: Output stream (defaults to stdout)

    Returns:
        The configured ``lane_dispatch`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in list(logger.handlers):
        if getattr(handler, "_lane_dispatch_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter(use_color=stream is None))
    handler._lane_dispatch_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


def configure_from_settings(config: LoggingConfig, stream: TextIO | None = None) -> logging.Logger:
    """Configure the package logger from a ``LoggingConfig``."""
    return configure_logging(
        level=config.level,
        json_output=config.format == "json",
        stream=stream,
    )


__all__ = [
    "ROOT_LOGGER_NAME",
    "JSONFormatter",
    "TextFormatter",
    "configure_logging",
    "configure_from_settings",
]
