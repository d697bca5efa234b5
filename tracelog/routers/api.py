"""API router for run-log parsing."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from tracelog import config
from tracelog.errors import FILE_TOO_LARGE, SERVER_ERROR, ERROR_TYPES, LogParseError, create_error_response
from tracelog.parsers.registry import check_log_size, oversized_result, parse_log_text
from tracelog.parsers.run_log import summarize_run

logger = logging.getLogger("tracelog.api")

parse_router = APIRouter(prefix="/api", tags=["parse"])


async def _parse_request(request: Request):
    body = await request.body()
    limit = config.MAX_LOG_SIZE_BYTES
    if body and not check_log_size(body, limit):
        logger.warning("Rejected %d byte payload from %s", len(body), request.url)
        return None, JSONResponse(
            status_code=int(ERROR_TYPES[FILE_TOO_LARGE]["status"]),
            content=oversized_result(limit).to_dict(),
        )
    try:
        return parse_log_text(body, max_bytes=limit), None
    except LogParseError as exc:
        raise HTTPException(
            status_code=exc.status,
            detail=create_error_response(exc.error_type, exc.message, str(request.url)),
        )
    except Exception as exc:
        logger.exception("Unexpected failure while parsing run log")
        raise HTTPException(
            status_code=int(ERROR_TYPES[SERVER_ERROR]["status"]),
            detail=create_error_response(SERVER_ERROR, request_url=str(request.url), exc=exc),
        )


@parse_router.post("/parse")
async def parse_log(request: Request):
    """Parse a run log posted as a JSON body into the normalized result."""
    result, rejection = await _parse_request(request)
    if rejection is not None:
        return rejection
    return result.to_dict()


@parse_router.post("/parse/summary")
async def parse_log_summary(request: Request):
    """Parse a run log and return only its step statistics."""
    result, rejection = await _parse_request(request)
    if rejection is not None:
        return rejection
    return {
        "overview": result.overview.model_dump(exclude_none=True),
        "stats": summarize_run(result).model_dump(),
    }
