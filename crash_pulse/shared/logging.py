"""
Crash Pulse - Logging Setup

Configures the root logger from ``Settings.logging``:
- ``text``: human-readable lines for local runs
- ``json``: one JSON object per record, including any ``extra={...}`` context

Modules log through ``logging.getLogger(__name__)`` and attach structured
context with ``extra``; only entry points call ``setup_logging``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from crash_pulse.shared.config import Settings, get_config

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SHORT_TEXT_FORMAT = "%(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came from ``extra``
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render a log record, and its ``extra`` context, as a JSON line."""

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_timestamp:
            payload["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat()

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(config: Settings | None = None) -> logging.Logger:
    """
    Configure and return the root logger.

    Replaces any handlers already installed on the root logger, so calling it
    twice does not duplicate output.
    """
    config = config or get_config()
    log_config = config.logging

    handler = logging.StreamHandler(sys.stderr)
    if log_config.format == "json":
        handler.setFormatter(JsonFormatter(include_timestamp=log_config.include_timestamp))
    else:
        fmt = TEXT_FORMAT if log_config.include_timestamp else SHORT_TEXT_FORMAT
        handler.setFormatter(logging.Formatter(fmt))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_config.level.upper())

    return root
