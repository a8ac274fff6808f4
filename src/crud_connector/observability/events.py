"""Structured JSON log events.

Every component logs through :func:`log_event`, which renders one JSON object
per line with an ``event`` name, a UTC ``timestamp`` and the given context.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(UTC).isoformat()


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log a structured event if the logger is enabled for ``level``.

    Args:
        logger: Destination logger.
        level: Logging level, e.g. ``logging.INFO``.
        event: Event name, e.g. ``"connection_opened"``.
        **fields: Context fields; values that are not JSON-serializable are
            rendered with ``str()``.
    """
    if not logger.isEnabledFor(level):
        return
    log_entry = {"event": event, "timestamp": utc_timestamp(), **fields}
    logger.log(level, json.dumps(log_entry, default=str))
