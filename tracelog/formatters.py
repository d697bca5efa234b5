"""Shared timestamp parsing and display formatting helpers."""
from __future__ import annotations

import json
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

NOT_APPLICABLE = "N/A"

_FRACTION_PATTERN = re.compile(r"\.(\d+)")
_BASIC_OFFSET_PATTERN = re.compile(r"(?<=\d)([+-]\d{2})(\d{2})$")
_CAMEL_BOUNDARY_PATTERN = re.compile(r"([A-Z])")
_DISPLAY_FORMAT = "%m/%d/%Y, %H:%M:%S"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _microseconds(match: re.Match[str]) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    # Producers emit up to 7 fractional digits; datetime keeps exactly six.
    # Basic offsets (+0000) are rewritten to +00:00 for 3.10 fromisoformat.
    iso_token = _FRACTION_PATTERN.sub(_microseconds, cleaned.replace("Z", "+00:00"))
    iso_token = _BASIC_OFFSET_PATTERN.sub(r"\1:\2", iso_token)
    try:
        return _as_utc(datetime.fromisoformat(iso_token))
    except (ValueError, OverflowError):
        pass
    for fmt in ("%Y/%m/%d %H:%M:%S", "%m/%d/%Y, %H:%M:%S", "%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a raw timestamp into an aware UTC datetime, or None when it is not a date.

    Numbers are read as epoch milliseconds.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return _parse_datetime_token(value)
    return None


def timestamp_to_epoch_ms(value: Any) -> int | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return (parsed - _EPOCH) // _MILLISECOND


def format_datetime(value: Any) -> Any:
    """Render a timestamp for display.

    Empty input gives "N/A"; input that is not a date comes back unchanged.
    """
    if not value:
        return NOT_APPLICABLE
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    return parsed.strftime(_DISPLAY_FORMAT)


def format_label(key: Any) -> str:
    """Turn a camelCase key into a title: ``executionId`` -> ``Execution Id``."""
    if not isinstance(key, str):
        return ""
    return key[:1].upper() + _CAMEL_BOUNDARY_PATTERN.sub(r" \1", key[1:])


def sanitize_string(value: Any) -> str:
    if not isinstance(value, str):
        return str(value)
    result = (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#039;")
        .replace("\\", "\\\\")
    )
    # Markup goes in last so the inserted tags are never escaped.
    return "<br>".join(result.split("\n"))


def format_bytes(value: Any) -> str:
    if not value or isinstance(value, bool):
        return "0 B"
    try:
        count = float(value)
    except (TypeError, ValueError):
        return "0 B"
    if count < 1024:
        return f"{int(count)} B"
    return f"{count / 1024:.1f} KB"


def _coerce_milliseconds(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        token = value.strip()
        if token.endswith("ms"):
            token = token[:-2]
        match = re.match(r"^-?\d+", token)
        if match:
            return float(match.group(0))
    return None


def format_duration(value: Any) -> str:
    """Render a millisecond duration (number or ``"1500ms"`` string)."""
    if not value:
        return NOT_APPLICABLE
    ms = _coerce_milliseconds(value)
    if not ms:
        return NOT_APPLICABLE
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60000:
        return f"{ms / 1000:.2f}s"
    minutes = int(ms // 60000)
    seconds = (ms % 60000) / 1000
    return f"{minutes}m {seconds:.1f}s"


def format_json_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed.startswith(("{", "[")):
            try:
                return json.dumps(json.loads(trimmed), indent=2)
            except ValueError:
                pass
    return str(value)
