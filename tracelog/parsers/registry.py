"""Entry points that turn raw payloads and files into ParseResult models."""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from tracelog import config
from tracelog.errors import INVALID_FORMAT, PARSING_ERROR, LogParseError
from tracelog.models import ParseResult
from tracelog.observability import (
    record_parse,
    record_parser_failure,
    record_step_failures,
    record_token_usage,
    start_span,
)
from tracelog.parsers.run_log import failure_result, parse_run_log

logger = logging.getLogger("tracelog.parser")

FILE_TOO_LARGE_ERROR = "File too large"


def _resolve_limit(max_bytes: int | None) -> int:
    return config.MAX_LOG_SIZE_BYTES if max_bytes is None else max_bytes


def payload_size(payload: str | bytes) -> int:
    if isinstance(payload, bytes):
        return len(payload)
    return len(payload.encode("utf-8"))


def check_log_size(payload: str | bytes, max_bytes: int) -> bool:
    """True when the serialized payload is non-empty and within ``max_bytes``."""
    if not payload:
        return False
    return payload_size(payload) <= max_bytes


def oversized_result(max_bytes: int) -> ParseResult:
    return failure_result(
        FILE_TOO_LARGE_ERROR,
        f"The provided log file exceeds the maximum size limit of {max_bytes} bytes.",
    )


def _record_outcome(result: ParseResult, duration_ms: float) -> None:
    record_parse(result.overview.format, "success" if result.overview.success else "failure", duration_ms)
    failures: dict[str, int] = {}
    for error in result.errors:
        if error.stepType:
            failures[error.stepType] = failures.get(error.stepType, 0) + 1
    for step_type, count in failures.items():
        record_step_failures(step_type, count)
    for step in result.steps:
        tokens = step.get("tokens")
        if isinstance(tokens, dict):
            record_token_usage(str(step.get("modelName") or ""), tokens.get("input"), tokens.get("output"))


def parse_log_data(log_data: Any) -> ParseResult:
    """Parse an already decoded run log."""
    if not isinstance(log_data, dict):
        record_parser_failure("run_log")
        raise LogParseError(INVALID_FORMAT, "Log data must be a JSON object")

    started = time.perf_counter()
    with start_span("tracelog.parse", {"tracelog.top_level_keys": len(log_data)}) as span:
        result = parse_run_log(log_data)
        if span is not None:
            span.set_attribute("tracelog.format", result.overview.format)
            span.set_attribute("tracelog.step_count", len(result.steps))
    duration_ms = (time.perf_counter() - started) * 1000.0

    _record_outcome(result, duration_ms)
    logger.info(
        "Parsed run log (format=%s steps=%d errors=%d)",
        result.overview.format,
        len(result.steps),
        len(result.errors),
    )
    return result


def parse_log_text(payload: str | bytes, *, max_bytes: int | None = None) -> ParseResult:
    """Size-guard, decode, and parse a serialized run log.

    Oversized payloads return a failure result rather than raising.
    """
    limit = _resolve_limit(max_bytes)
    if payload and not check_log_size(payload, limit):
        logger.warning("Rejected run log of %d bytes (limit %d)", payload_size(payload), limit)
        record_parser_failure("size_guard")
        return oversized_result(limit)

    try:
        log_data = json.loads(payload)
    except (TypeError, ValueError, RecursionError) as exc:
        record_parser_failure("json")
        raise LogParseError(PARSING_ERROR, f"Invalid JSON: {exc}") from exc
    return parse_log_data(log_data)


def parse_log_file(path: Path, *, max_bytes: int | None = None) -> ParseResult:
    limit = _resolve_limit(max_bytes)
    if path.stat().st_size > limit:
        logger.warning("Rejected %s (%d bytes, limit %d)", path, path.stat().st_size, limit)
        record_parser_failure("size_guard")
        return oversized_result(limit)
    return parse_log_text(path.read_bytes(), max_bytes=limit)


def scan_logs(logs_dir: Path, max_files: int = 50, *, max_bytes: int | None = None) -> list[tuple[Path, ParseResult]]:
    """Parse the most recently modified ``*.json`` run logs in a directory."""
    parsed: list[tuple[Path, ParseResult]] = []
    if not logs_dir.exists():
        return parsed

    json_files = sorted(
        logs_dir.glob("*.json"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )[:max_files]

    for path in json_files:
        try:
            parsed.append((path, parse_log_file(path, max_bytes=max_bytes)))
        except LogParseError as exc:
            logger.warning("Skipping %s: %s", path, exc.message)
    return parsed
