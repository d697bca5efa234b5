"""Run-log format detection, schema-aware field access, and run metadata extraction."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from tracelog.formatters import format_datetime, parse_timestamp, timestamp_to_epoch_ms

FORMAT_STANDARD = "STANDARD"
FORMAT_DIRECT = "DIRECT"
FORMAT_UNKNOWN = "UNKNOWN"

# Wrapper property holding the step map in the standard (capitalized) schema.
STEPS_CONTAINER_KEY = "StepsExecutionContext"

# Fallback policy shared by every extractor.
MISSING = "N/A"
NUMERIC_DEFAULT = "0"
TEXT_DEFAULT = ""


@dataclass(frozen=True)
class FieldAccessor:
    """Reads step fields through one schema convention.

    Field names are given in their lowercase (direct) spelling. The standard
    schema capitalizes them, and also tolerates producers that mix in the
    lowercase spelling.
    """

    capitalized: bool

    def key(self, name: str) -> str:
        if self.capitalized:
            return name[:1].upper() + name[1:]
        return name

    def get(self, record: Any, name: str) -> Any:
        if not isinstance(record, dict):
            return None
        value = record.get(self.key(name))
        if value is None and self.capitalized:
            value = record.get(name)
        return value

    def section(self, record: Any, name: str) -> dict[str, Any]:
        value = self.get(record, name)
        return value if isinstance(value, dict) else {}

    def entries(self, record: Any, name: str) -> list[Any]:
        value = self.get(record, name)
        return value if isinstance(value, list) else []

    def value(self, record: Any) -> Any:
        return self.get(record, "value")


STANDARD_FIELDS = FieldAccessor(capitalized=True)
DIRECT_FIELDS = FieldAccessor(capitalized=False)


@dataclass
class DetectedFormat:
    format: str
    steps: dict[str, Any] = field(default_factory=dict)

    @property
    def known(self) -> bool:
        return self.format != FORMAT_UNKNOWN

    @property
    def fields(self) -> FieldAccessor:
        return STANDARD_FIELDS if self.format == FORMAT_STANDARD else DIRECT_FIELDS

    def iter_steps(self) -> Iterator[tuple[str, dict[str, Any]]]:
        for step_key, raw_step in self.steps.items():
            yield step_key, raw_step if isinstance(raw_step, dict) else {}


@dataclass
class RunMetadata:
    executionId: str = MISSING
    userId: str = MISSING
    projectId: str = MISSING
    duration: str = MISSING
    startedAt: str = MISSING
    finishedAt: str = MISSING


def detect_log_format(log_data: Any) -> DetectedFormat:
    """Classify a decoded run log as standard, direct, or unknown. Never raises."""
    if not isinstance(log_data, dict) or not log_data:
        return DetectedFormat(FORMAT_UNKNOWN)

    wrapped = log_data.get(STEPS_CONTAINER_KEY)
    if isinstance(wrapped, dict):
        return DetectedFormat(FORMAT_STANDARD, wrapped)

    first_entry = next(iter(log_data.values()))
    if isinstance(first_entry, dict) and first_entry.get("stepId") and first_entry.get("stepType"):
        return DetectedFormat(FORMAT_DIRECT, log_data)

    return DetectedFormat(FORMAT_UNKNOWN)


def display_text(value: Any) -> str:
    if value is None or value == "":
        return MISSING
    return value if isinstance(value, str) else str(value)


def display_timestamp(value: Any) -> str:
    return display_text(format_datetime(value))


def _step_time_span(detected: DetectedFormat) -> tuple[Any, Any]:
    fields = detected.fields
    earliest: tuple[int, Any] | None = None
    latest: tuple[int, Any] | None = None
    for _, raw_step in detected.iter_steps():
        timing = fields.section(raw_step, "timeTrackingData")
        if not timing:
            continue
        started = parse_timestamp(timing.get("startedAt"))
        finished = parse_timestamp(timing.get("finishedAt"))
        if started is not None:
            started_ms = timestamp_to_epoch_ms(started)
            if earliest is None or started_ms < earliest[0]:
                earliest = (started_ms, started)
        if finished is not None:
            finished_ms = timestamp_to_epoch_ms(finished)
            if latest is None or finished_ms > latest[0]:
                latest = (finished_ms, finished)
    return earliest, latest


def extract_run_metadata(log_data: dict[str, Any], detected: DetectedFormat) -> RunMetadata:
    """Derive run identifiers and timing.

    The standard schema carries them at the top level. The direct schema has
    no run-level block, so its span is computed from the earliest step start to
    the latest step finish, reported as ``"<n>ms"``.
    """
    if detected.format == FORMAT_STANDARD:
        timing = log_data.get("TimeTrackingData")
        timing = timing if isinstance(timing, dict) else {}
        return RunMetadata(
            executionId=display_text(log_data.get("ExecutionId")),
            userId=display_text(log_data.get("UserId")),
            projectId=display_text(log_data.get("ProjectId")),
            duration=display_text(timing.get("duration")),
            startedAt=display_timestamp(timing.get("startedAt")),
            finishedAt=display_timestamp(timing.get("finishedAt")),
        )

    metadata = RunMetadata()
    earliest, latest = _step_time_span(detected)
    if earliest is not None:
        metadata.startedAt = display_timestamp(earliest[1])
    if latest is not None:
        metadata.finishedAt = display_timestamp(latest[1])
    if earliest is not None and latest is not None:
        metadata.duration = f"{latest[0] - earliest[0]}ms"
    return metadata
