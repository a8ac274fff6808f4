"""Structured logging helpers."""

from crud_connector.observability.events import log_event, utc_timestamp

__all__ = [
    "log_event",
    "utc_timestamp",
]
