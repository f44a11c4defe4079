"""Sync endpoints: trigger a sync pass and read a user's checkpoint."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ordersync.api.dependencies import get_checkpoint_store, get_orchestrator
from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter
from ordersync.orders.interfaces import CheckpointStore
from ordersync.orders.models import SyncSummary
from ordersync.orders.relevance_classifier import ClassificationError
from ordersync.orders.sync import OrderSyncOrchestrator

router = APIRouter(prefix="/api", tags=["sync"])
logger = get_logger(__name__)

USER_ID_PATTERN = r"^[\w.@+\-]{1,128}$"


class SyncRequest(BaseModel):
    user_id: str = Field(..., pattern=USER_ID_PATTERN)


class SyncStatusResponse(BaseModel):
    user_id: str
    last_synced_at: datetime | None = None


@router.post("/sync", response_model=SyncSummary)
def run_sync(
    request: SyncRequest,
    orchestrator: OrderSyncOrchestrator = Depends(get_orchestrator),
) -> SyncSummary:
    """
    Run one sync pass for the user.

    Returns 503 when relevance classification is unavailable; the user's
    checkpoint is left unchanged so the next call retries the same window.
    """
    try:
        summary = orchestrator.run(request.user_id)
    except ClassificationError as e:
        counter("api.sync.classification_unavailable")
        logger.warning("Sync for user %s unavailable: %s", request.user_id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order classification temporarily unavailable. Please retry later.",
        ) from e

    counter(f"api.sync.{summary.status}")
    return summary


@router.get("/sync/status", response_model=SyncStatusResponse)
def sync_status(
    user_id: str = Query(..., pattern=USER_ID_PATTERN),
    checkpoints: CheckpointStore = Depends(get_checkpoint_store),
) -> SyncStatusResponse:
    return SyncStatusResponse(
        user_id=user_id,
        last_synced_at=checkpoints.get_last_synced_at(user_id),
    )
