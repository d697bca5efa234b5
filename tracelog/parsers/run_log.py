"""Assemble a normalized ParseResult from a decoded run log."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from tracelog.models import ParseResult, RunOverview, RunStats, RunSummary, StepError
from tracelog.parsers.formats import (
    FORMAT_STANDARD,
    FORMAT_UNKNOWN,
    MISSING,
    TEXT_DEFAULT,
    DetectedFormat,
    detect_log_format,
    extract_run_metadata,
)
from tracelog.parsers.steps import (
    AI_OPERATION,
    INPUT_STEP,
    OUTPUT_STEP,
    ROUTER_STEP,
    normalize_step,
    step_sort_key,
)

logger = logging.getLogger("tracelog.parser")

UNKNOWN_FORMAT_ERROR = "Unknown log format"
UNKNOWN_FORMAT_MESSAGE = "Could not parse log data. Unknown format."


@dataclass
class StepScan:
    userInput: Any = TEXT_DEFAULT
    inputStepIds: list[str] = field(default_factory=list)
    outputStepIds: list[str] = field(default_factory=list)
    overallSuccess: bool = True


def failure_result(error: str, message: str) -> ParseResult:
    return ParseResult(
        overview=RunOverview(success=False, format=FORMAT_UNKNOWN, error=error),
        summary=RunSummary(),
        steps=[],
        errors=[StepError(message=message)],
    )


def scan_steps(detected: DetectedFormat) -> StepScan:
    """First pass: user input, input/output step ids, and the AND of step success flags."""
    fields = detected.fields
    scan = StepScan()
    for step_key, raw_step in detected.iter_steps():
        if not fields.get(raw_step, "success"):
            scan.overallSuccess = False
        step_type = fields.get(raw_step, "stepType")
        if step_type == INPUT_STEP:
            scan.inputStepIds.append(step_key)
            value = fields.value(fields.section(raw_step, "result"))
            if value and not scan.userInput:
                scan.userInput = value
        elif step_type == OUTPUT_STEP:
            scan.outputStepIds.append(step_key)
    return scan


def find_final_output(steps: list[dict[str, Any]]) -> Any:
    """Resolve the run's final output from chronologically sorted steps.

    The last output step wins when it has a value; otherwise the last model
    call with a non-empty response; otherwise empty.
    """
    output_steps = [step for step in steps if step.get("type") == OUTPUT_STEP]
    if output_steps and output_steps[-1].get("output"):
        return output_steps[-1]["output"]

    responding = [step for step in steps if step.get("type") == AI_OPERATION and step.get("response")]
    if responding:
        return responding[-1]["response"]
    return TEXT_DEFAULT


def parse_run_log(log_data: dict[str, Any]) -> ParseResult:
    """Normalize a decoded run log into overview, summary, sorted steps, and errors.

    Structurally odd input degrades to defaults instead of raising; only a
    non-object payload is rejected.
    """
    if not isinstance(log_data, dict):
        raise TypeError(f"run log must be a JSON object, got {type(log_data).__name__}")

    detected = detect_log_format(log_data)
    if not detected.known:
        logger.warning("Unknown log format (top-level keys: %s)", list(log_data)[:5])
        return failure_result(UNKNOWN_FORMAT_ERROR, UNKNOWN_FORMAT_MESSAGE)

    fields = detected.fields
    scan = scan_steps(detected)
    metadata = extract_run_metadata(log_data, detected)

    if detected.format == FORMAT_STANDARD:
        success = bool(fields.get(log_data, "success"))
    else:
        success = scan.overallSuccess

    keyed_steps: list[tuple[int, dict[str, Any]]] = []
    errors: list[StepError] = []
    for _, raw_step in detected.iter_steps():
        canonical = normalize_step(raw_step, fields)
        exception_message = fields.get(raw_step, "exceptionMessage")
        if not canonical["success"] and exception_message:
            message = exception_message if isinstance(exception_message, str) else str(exception_message)
            canonical["error"] = message
            errors.append(
                StepError(
                    stepId=str(canonical["id"]),
                    stepType=str(canonical["type"]),
                    message=message,
                )
            )
        keyed_steps.append((step_sort_key(raw_step, fields), canonical))

    # sorted() is stable: equal start times keep encounter order.
    keyed_steps = sorted(keyed_steps, key=lambda item: item[0])
    steps = [canonical for _, canonical in keyed_steps]

    return ParseResult(
        overview=RunOverview(
            success=success,
            executionId=metadata.executionId,
            userId=metadata.userId,
            projectId=metadata.projectId,
            duration=metadata.duration,
            startedAt=metadata.startedAt,
            finishedAt=metadata.finishedAt,
            format=detected.format,
        ),
        summary=RunSummary(userInput=scan.userInput, finalOutput=find_final_output(steps)),
        steps=steps,
        errors=errors,
    )


def _coerce_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def summarize_run(result: ParseResult) -> RunStats:
    """Count steps by type, failures, and token usage across model-backed steps."""
    stats = RunStats(stepCount=len(result.steps))
    models: list[str] = []
    for step in result.steps:
        step_type = str(step.get("type") or "")
        stats.stepsByType[step_type] = stats.stepsByType.get(step_type, 0) + 1
        if not step.get("success"):
            stats.failedStepCount += 1
        if step_type not in {AI_OPERATION, ROUTER_STEP}:
            continue
        tokens = step.get("tokens") if isinstance(step.get("tokens"), dict) else {}
        stats.totalTokens += max(0, _coerce_int(tokens.get("total")))
        model_name = step.get("modelName")
        if isinstance(model_name, str) and model_name and model_name != MISSING and model_name not in models:
            models.append(model_name)
    stats.models = models
    return stats
