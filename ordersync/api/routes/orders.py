"""Read-only order listing for the presentation layer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ordersync.api.dependencies import get_order_store
from ordersync.api.routes.sync import USER_ID_PATTERN
from ordersync.config import API_LIST_LIMIT_DEFAULT, API_LIST_LIMIT_MAX
from ordersync.observability.logging import get_logger
from ordersync.orders.interfaces import OrderStore
from ordersync.orders.models import StoredOrder
from ordersync.storage.order_repository import OrderStoreError

router = APIRouter(prefix="/api", tags=["orders"])
logger = get_logger(__name__)


class OrderListResponse(BaseModel):
    user_id: str
    count: int
    orders: list[StoredOrder]


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    user_id: str = Query(..., pattern=USER_ID_PATTERN),
    limit: int = Query(API_LIST_LIMIT_DEFAULT, ge=1, le=API_LIST_LIMIT_MAX),
    store: OrderStore = Depends(get_order_store),
) -> OrderListResponse:
    """List the user's stored orders, newest order_date first."""
    try:
        orders = store.list_by_user(user_id, limit=limit)
    except OrderStoreError as e:
        logger.error("Failed to list orders for user %s: %s", user_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load orders.",
        ) from e

    return OrderListResponse(user_id=user_id, count=len(orders), orders=orders)
