"""
Depstree - Logging Setup.

============================================================
RESPONSIBILITY
============================================================
Optional log output for the package logger.

- Text or JSON lines, stamped with a correlation ID
- Attached to the "depstree" logger only, the root logger is
  left to the application
- Safe to call repeatedly, the previous depstree handler is replaced

============================================================
"""

import json
import logging
import sys
from typing import Any, Dict, Optional, TextIO


PACKAGE_LOGGER = "depstree"


class JsonFormatter(logging.Formatter):
    """Formats each record as one JSON object."""

    def __init__(self, correlation_id: Optional[str] = None):
        super().__init__()
        self._correlation_id = correlation_id or ""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self._correlation_id,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class _PackageHandler(logging.StreamHandler):
    """Marks the handler installed by setup_logging."""


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Set up package logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing
        stream: Output stream, stdout by default

    Returns:
        The package logger
    """
    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(correlation_id)
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, _PackageHandler):
            logger.removeHandler(handler)

    handler = _PackageHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    return logger


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "PACKAGE_LOGGER",
    "JsonFormatter",
    "setup_logging",
]
