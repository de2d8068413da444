"""Observability helpers."""

from font_inspector.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_inspection,
    record_link_operation,
    record_rebuild,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_inspection",
    "record_link_operation",
    "record_rebuild",
]
