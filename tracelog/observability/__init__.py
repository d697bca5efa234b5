"""Observability helpers."""

from tracelog.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_parse,
    record_parser_failure,
    record_step_failures,
    record_token_usage,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_parse",
    "record_parser_failure",
    "record_step_failures",
    "record_token_usage",
]
