"""
Logging setup for the application.

One logger hierarchy, rooted at "wiredhttp", is configured once by the
composition root. The configured root logger is then handed to every
component that logs (handlers, server, lifecycle); low-level modules use
``logging.getLogger(__name__)`` and inherit the same handler and level.

Two output formats:

    text   2026-01-01 12:00:00 [INFO] wiredhttp: Starting HTTP server
    json   {"timestamp": "...", "level": "INFO", "logger": "wiredhttp",
            "message": "Starting HTTP server", "addr": "0.0.0.0:8080"}

Structured fields are passed with ``extra=`` and show up as top-level keys
in JSON output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO


LOGGER_NAME = "wiredhttp"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord has; anything else came in through extra=.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Classic text format with structured fields appended as key=value."""

    def __init__(self):
        super().__init__(TEXT_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        ]
        if fields:
            first, sep, rest = line.partition("\n")
            line = f"{first} ({', '.join(fields)}){sep}{rest}"
        return line


def configure_logging(
    level: str = "INFO",
    log_format: str = "text",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure and return the application logger.

    Safe to call more than once: handlers installed by a previous call are
    replaced, not duplicated.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "text" or "json".
        stream: Where to write (default: stderr).

    Returns:
        The "wiredhttp" logger, ready to be passed to components.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    logger.addHandler(handler)

    # Our handler is authoritative; don't double-print through the root logger
    logger.propagate = False
    return logger
