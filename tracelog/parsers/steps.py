"""Normalize raw run-log steps into canonical step records."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable
from urllib.parse import urlsplit

from tracelog.formatters import format_datetime, timestamp_to_epoch_ms
from tracelog.parsers.formats import (
    MISSING,
    NUMERIC_DEFAULT,
    TEXT_DEFAULT,
    FieldAccessor,
)

logger = logging.getLogger("tracelog.parser")

INPUT_STEP = "InputStep"
OUTPUT_STEP = "OutputStep"
MEMORY_LOAD_STEP = "MemoryLoadStep"
MEMORY_STORE_STEP = "MemoryStoreStep"
PYTHON_STEP = "PythonStep"
AI_OPERATION = "AIOperation"
API_TOOL_STEP = "APIToolStep"
WEB_API_PLUGIN_STEP = "WebAPIPluginStep"
DATA_SEARCH = "DataSearch"
EXECUTE_PIPELINE_STEP = "ExecutePipelineStep"
ROUTER_STEP = "RouterStep"

UNKNOWN_TOOL = "Unknown Tool"
UNKNOWN_API_TOOL = "Unknown API Tool"
DEFAULT_HTTP_METHOD = "GET"

# Hostnames we can name when a model-call tool carries only its request URL.
_TOOL_NAME_BY_HOST: tuple[tuple[str, str], ...] = (
    ("bing.microsoft.com", "Microsoft Bing Search"),
    ("api.openai.com", "OpenAI API"),
    ("maps.googleapis.com", "Google Maps"),
)

_PIPELINE_FIELDS = (
    "pipelineName",
    "pipelineId",
    "pipelineVersion",
    "executionMode",
    "configuration",
    "parameters",
    "stepsCount",
    "childSteps",
)

StepNormalizer = Callable[[dict[str, Any], FieldAccessor], dict[str, Any]]


def _first(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value:
            return value
    return default


def _first_entry(step: dict[str, Any], fields: FieldAccessor, name: str = "input") -> dict[str, Any] | None:
    entries = fields.entries(step, name)
    if not entries:
        return None
    head = entries[0]
    return head if isinstance(head, dict) else {}


def _typed_value(entry: Any, fields: FieldAccessor, default_type: str) -> dict[str, Any]:
    record = entry if isinstance(entry, dict) else {}
    return {
        "type": _first(record.get("$type"), default=default_type),
        "value": _first(fields.value(record), default=TEXT_DEFAULT),
    }


def _lower_text(value: Any) -> str:
    return value.lower() if isinstance(value, str) else ""


def step_sort_key(step: dict[str, Any], fields: FieldAccessor) -> int:
    """Epoch milliseconds of the step start; untimed or unparseable starts count as the epoch."""
    timing = fields.section(step, "timeTrackingData")
    started = timing.get("startedAt")
    if not started:
        return 0
    epoch_ms = timestamp_to_epoch_ms(started)
    return 0 if epoch_ms is None else epoch_ms


def normalize_step_common(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    timing = fields.section(step, "timeTrackingData")
    return {
        "id": _first(fields.get(step, "stepId"), default=MISSING),
        "type": _first(fields.get(step, "stepType"), default=MISSING),
        "success": bool(fields.get(step, "success")),
        "duration": _first(timing.get("duration"), default=MISSING),
        "startedAt": format_datetime(timing.get("startedAt")),
        "finishedAt": format_datetime(timing.get("finishedAt")),
    }


def _normalize_input_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    result = fields.section(step, "result")
    return {"input": _first(fields.value(result), default=TEXT_DEFAULT)}


def _normalize_output_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    # Outputs carry the previous step's result as their first input.
    head = _first_entry(step, fields)
    if head is None:
        return {"output": TEXT_DEFAULT}
    return {"output": _first(fields.value(head), default=TEXT_DEFAULT)}


def _memory_fields(record: dict[str, Any], fields: FieldAccessor, operation: str) -> dict[str, Any]:
    return {
        "memoryKey": _first(fields.get(record, "key"), default=TEXT_DEFAULT),
        "memoryValue": _first(fields.value(record), default=TEXT_DEFAULT),
        "memoryType": _first(record.get("$type"), default=TEXT_DEFAULT),
        "memoryOp": operation,
    }


def _normalize_memory_load_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    return _memory_fields(fields.section(step, "result"), fields, "load")


def _normalize_memory_store_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    head = _first_entry(step, fields)
    if head is None:
        return {"memoryOp": "store"}
    return _memory_fields(head, fields, "store")


def _normalize_python_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    normalized: dict[str, Any] = {
        "pythonOutput": _typed_value(fields.section(step, "result"), fields, "python"),
    }
    inputs = fields.entries(step, "input")
    if inputs:
        normalized["pythonInputs"] = [_typed_value(entry, fields, "unknown") for entry in inputs]
    outputs = fields.entries(step, "output")
    if outputs:
        normalized["additionalOutputs"] = [_typed_value(entry, fields, "unknown") for entry in outputs]
    return normalized


def _model_fields(debug: dict[str, Any]) -> dict[str, Any]:
    return {
        "modelName": _first(debug.get("modelDisplayName"), debug.get("modelName"), default=MISSING),
        "modelProvider": _first(debug.get("modelProviderType"), default=MISSING),
        "tokens": {
            "input": _first(debug.get("inputTokens"), default=NUMERIC_DEFAULT),
            "output": _first(debug.get("outputTokens"), default=NUMERIC_DEFAULT),
            "total": _first(debug.get("totalTokens"), default=NUMERIC_DEFAULT),
        },
    }


def _message_prompt(message: Any) -> dict[str, Any]:
    record = message if isinstance(message, dict) else {}
    return {
        "role": _first(_lower_text(record.get("Role")), _lower_text(record.get("role")), default="user"),
        "content": _first(
            record.get("TextContent"),
            record.get("textContent"),
            record.get("content"),
            record.get("text"),
            default=TEXT_DEFAULT,
        ),
    }


def _extract_prompts(step: dict[str, Any], debug: dict[str, Any], fields: FieldAccessor) -> list[dict[str, Any]] | None:
    messages = debug.get("messages")
    if isinstance(messages, list) and messages:
        prompts = [_message_prompt(message) for message in messages]
    else:
        inputs = fields.entries(step, "input")
        if not inputs:
            return None
        prompts = [
            {"role": "user", "content": _first(fields.value(entry), default=TEXT_DEFAULT)}
            for entry in inputs
        ]
    return [prompt for prompt in prompts if prompt["content"]]


def infer_tool_name(request_url: Any) -> str:
    """Name a tool from its request URL host; empty when the host is not a known service."""
    if not isinstance(request_url, str) or not request_url:
        return ""
    try:
        parts = urlsplit(request_url)
    except ValueError:
        return ""
    hostname = parts.hostname or ""
    if not parts.scheme or not hostname:
        return ""
    for host_marker, tool_name in _TOOL_NAME_BY_HOST:
        if host_marker in hostname:
            return tool_name
    return ""


def _model_tool(tool: Any) -> dict[str, Any]:
    record = tool if isinstance(tool, dict) else {}
    inferred = ""
    if not record.get("name") and not record.get("ToolName"):
        inferred = infer_tool_name(record.get("RequestUrl"))
    return {
        "name": _first(record.get("ToolName"), inferred, record.get("name"), default=UNKNOWN_TOOL),
        "id": _first(record.get("id"), record.get("ToolId"), default=TEXT_DEFAULT),
        "arguments": _first(record.get("ToolParameters"), record.get("arguments"), default=TEXT_DEFAULT),
        "result": _first(record.get("ResponseContent"), record.get("result"), default=TEXT_DEFAULT),
        "requestContent": _first(record.get("RequestContent"), default=TEXT_DEFAULT),
        "requestUrl": _first(record.get("RequestUrl"), default=TEXT_DEFAULT),
        "totalBytesSent": _first(record.get("TotalBytesSent"), default=0),
        "totalBytesReceived": _first(record.get("TotalBytesReceived"), default=0),
        "durationMs": _first(record.get("DurationMilliseconds"), default=0),
        "method": _first(record.get("RequestMethod"), default=DEFAULT_HTTP_METHOD),
    }


def _normalize_ai_operation_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    debug = fields.section(step, "debugInformation")
    normalized = _model_fields(debug)

    prompts = _extract_prompts(step, debug, fields)
    if prompts is not None:
        normalized["prompts"] = prompts

    tools = debug.get("tools")
    if isinstance(tools, list) and tools:
        normalized["tools"] = [_model_tool(tool) for tool in tools]

    result = fields.section(step, "result")
    normalized["response"] = _first(fields.value(result), default=TEXT_DEFAULT)
    return normalized


def _api_tool(tool: Any) -> dict[str, Any]:
    record = tool if isinstance(tool, dict) else {}
    return {
        "name": _first(record.get("ToolName"), record.get("name"), default=UNKNOWN_TOOL),
        "parameters": _first(record.get("ToolParameters"), record.get("RequestParameters"), default={}),
        "url": _first(record.get("RequestUrl"), default=TEXT_DEFAULT),
        "method": _first(record.get("RequestMethod"), default=DEFAULT_HTTP_METHOD),
        "statusCode": _first(record.get("ResponseStatusCode"), default=0),
        "responseContent": _first(record.get("ResponseContent"), default=TEXT_DEFAULT),
        "responseHeaders": _first(record.get("ResponseHeaders"), default={}),
        "requestHeaders": _first(record.get("RequestHeaders"), default={}),
        "requestContent": _first(record.get("RequestContent"), default=TEXT_DEFAULT),
        "totalBytesSent": _first(record.get("TotalBytesSent"), default=0),
        "totalBytesReceived": _first(record.get("TotalBytesReceived"), default=0),
        "durationMs": _first(record.get("DurationMilliseconds"), default=0),
        "error": _first(record.get("ErrorMessage"), default=TEXT_DEFAULT),
    }


def _normalize_api_tool_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    debug = fields.section(step, "debugInformation")
    debug_tools = debug.get("tools")
    if isinstance(debug_tools, list) and debug_tools:
        tools = debug_tools
    else:
        tools = fields.entries(step, "tools")
    return {
        "apiToolName": _first(debug.get("toolName"), default=UNKNOWN_API_TOOL),
        "apiTools": [_api_tool(tool) for tool in tools],
    }


def _normalize_data_search_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    raw_value = fields.value(fields.section(step, "result"))
    if not raw_value:
        return {}
    if isinstance(raw_value, (dict, list)):
        return {"searchResults": raw_value}
    try:
        return {"searchResults": json.loads(raw_value)}
    except (TypeError, ValueError, RecursionError) as exc:
        logger.warning("Could not decode DataSearch results for step %s: %s", fields.get(step, "stepId"), exc)
        return {
            "searchError": f"Error parsing search results: {exc}",
            "rawData": raw_value,
        }


def _decode_route_decision(raw_response: Any) -> Any:
    if not isinstance(raw_response, str):
        return raw_response
    try:
        return json.loads(raw_response)
    except (ValueError, RecursionError):
        return raw_response


def _normalize_router_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    debug = fields.section(step, "debugInformation")
    result = fields.section(step, "result")
    head = _first_entry(step, fields)
    branch_ids = fields.get(result, "branchIds")

    normalized = _model_fields(debug)
    normalized["routeDecision"] = _decode_route_decision(debug.get("response"))
    normalized["branchIds"] = list(branch_ids) if isinstance(branch_ids, list) else []
    normalized["input"] = _first(fields.value(head), default=TEXT_DEFAULT) if head is not None else TEXT_DEFAULT
    return normalized


def _normalize_execute_pipeline_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    debug = fields.section(step, "debugInformation")
    normalized: dict[str, Any] = {name: debug.get(name) for name in _PIPELINE_FIELDS}
    normalized["pipelineOutput"] = fields.value(fields.section(step, "result"))
    return normalized


_NORMALIZER_BY_STEP_TYPE: dict[str, StepNormalizer] = {
    INPUT_STEP: _normalize_input_step,
    OUTPUT_STEP: _normalize_output_step,
    MEMORY_LOAD_STEP: _normalize_memory_load_step,
    MEMORY_STORE_STEP: _normalize_memory_store_step,
    PYTHON_STEP: _normalize_python_step,
    AI_OPERATION: _normalize_ai_operation_step,
    API_TOOL_STEP: _normalize_api_tool_step,
    WEB_API_PLUGIN_STEP: _normalize_api_tool_step,
    DATA_SEARCH: _normalize_data_search_step,
    EXECUTE_PIPELINE_STEP: _normalize_execute_pipeline_step,
    ROUTER_STEP: _normalize_router_step,
}

KNOWN_STEP_TYPES = frozenset(_NORMALIZER_BY_STEP_TYPE)


def normalizer_for(step_type: Any) -> StepNormalizer | None:
    if not isinstance(step_type, str):
        return None
    return _NORMALIZER_BY_STEP_TYPE.get(step_type)


def normalize_step(step: dict[str, Any], fields: FieldAccessor) -> dict[str, Any]:
    """Build the canonical record for one raw step.

    Type matching is exact and case-sensitive; unrecognized types keep only the
    common fields.
    """
    canonical = normalize_step_common(step, fields)
    normalizer = normalizer_for(canonical["type"])
    if normalizer is None:
        logger.debug("No normalizer for step type %r; keeping common fields", canonical["type"])
        return canonical
    canonical.update(normalizer(step, fields))
    return canonical
