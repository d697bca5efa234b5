"""Tracelog configuration."""
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default

# Size guard applied before a payload reaches the parser (10 MiB)
MAX_LOG_SIZE_BYTES = _env_int("TRACELOG_MAX_LOG_SIZE_BYTES", 10 * 1024 * 1024)

# Logging
LOG_LEVEL = os.getenv("TRACELOG_LOG_LEVEL", "INFO").upper()

# Observability
OTEL_ENABLED = _env_bool("TRACELOG_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("TRACELOG_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("TRACELOG_OTEL_SERVICE_NAME", "tracelog-api")
PROM_PORT = _env_int("TRACELOG_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("TRACELOG_HOST", "0.0.0.0")
PORT = _env_int("TRACELOG_PORT", 8000)

# CORS
FRONTEND_ORIGIN = os.getenv("TRACELOG_FRONTEND_ORIGIN", "http://localhost:3000")
