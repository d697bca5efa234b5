"""Tracelog FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracelog import __version__, config
from tracelog.routers.api import parse_router
from tracelog.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("tracelog")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire telemetry for the lifetime of the app."""
    logger.info("Tracelog API starting up (max payload %d bytes)", config.MAX_LOG_SIZE_BYTES)
    initialize_observability(app)

    yield

    logger.info("Tracelog API shutting down")
    shutdown_observability(app)


app = FastAPI(
    title="Tracelog API",
    description="Normalizes agent pipeline execution logs into renderable step sequences",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(parse_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


def run() -> None:
    """Serve the API with uvicorn (installed with the ``server`` extra)."""
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
