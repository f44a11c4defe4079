"""FastAPI server for the order sync engine"""

from __future__ import annotations

import sqlite3
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ordersync.api.routes.health import router as health_router
from ordersync.api.routes.orders import router as orders_router
from ordersync.api.routes.sync import router as sync_router
from ordersync.config import API_HOST, API_PORT, APP_VERSION
from ordersync.infrastructure.database import init_database
from ordersync.observability.logging import configure_logging, get_logger
from ordersync.observability.telemetry import counter, log_event
from ordersync.utils.redaction import redact

# Load environment variables from .env file
load_dotenv()
configure_logging()

app = FastAPI(title="Order Sync API", version=APP_VERSION)

logger = get_logger(__name__)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return field names only; validation rules stay server-side."""
    logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


try:
    logger.info("Initializing database schema...")
    init_database()
    logger.info("Database initialization complete")
except sqlite3.Error as e:
    logger.critical("Database schema error: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e
except OSError as e:
    logger.critical("Database path unavailable: %s", e)
    raise RuntimeError(f"Database initialization failed: {e}") from e

app.include_router(health_router)
app.include_router(sync_router)
app.include_router(orders_router)

log_event("api.startup", service="ordersync", version=APP_VERSION)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "Order Sync API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "sync": "/api/sync",
            "sync_status": "/api/sync/status",
            "orders": "/api/orders",
        },
    }


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
