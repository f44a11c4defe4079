"""Health check endpoints.

- /health - Liveness plus Gemini credential readiness (presence only, no API call)
- /health/db - Order store schema check
"""

from __future__ import annotations

import os
import sqlite3
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from ordersync.config import APP_VERSION, ENV
from ordersync.infrastructure.database import get_db_connection
from ordersync.infrastructure.database_schema import validate_schema
from ordersync.observability.logging import get_logger
from ordersync.utils.redaction import sanitize_error

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health")
async def health_check() -> dict[str, Any]:
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "Order Sync API",
        "version": APP_VERSION,
        "environment": ENV,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
    }


@router.get("/health/db")
def database_health() -> dict[str, Any]:
    """Report whether the order store is reachable and has every table."""
    try:
        with get_db_connection() as conn:
            validate_schema(conn)
    except (sqlite3.Error, FileNotFoundError, ValueError) as e:
        logger.warning("Database health check failed: %s", e)
        return {"status": "degraded", "error": sanitize_error(e)}

    return {"status": "healthy"}
