"""
Structured JSON logging configuration for the exporter.

Provides a JSON formatter and a ``setup_logging()`` function that replaces
the default logging configuration with structured output. Each log record
is emitted as a single JSON line containing ``ts``, ``level``, ``logger``
and ``msg``, plus ``exception`` when the record carries a traceback.

uvicorn is started with ``log_config=None`` so its access and error loggers
propagate to the same root handler.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime


class JSONFormatter(logging.Formatter):
    """Logging formatter that outputs a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger with structured JSON output on stderr.

    Removes any existing handlers on the root logger and installs a single
    ``StreamHandler`` using :class:`JSONFormatter`.

    Args:
        level: Level for the root logger, as a number or a level name.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
