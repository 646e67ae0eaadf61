"""Observability helpers."""

from lifesync.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_sync_run,
    record_issues,
    record_reasoning_call,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_sync_run",
    "record_issues",
    "record_reasoning_call",
]
