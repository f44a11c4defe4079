"""Within-pass deduplication of extracted orders by order_id."""

from __future__ import annotations

from collections.abc import Iterable

from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter
from ordersync.orders.models import ExtractedOrder
from ordersync.orders.types import DedupResult

logger = get_logger(__name__)


def deduplicate(orders: Iterable[ExtractedOrder]) -> DedupResult:
    """
    Keep the first occurrence of each order_id, preserving order.

    Later copies are reported in DedupResult.duplicates and never reach the
    reconciler, so their history entries are not merged.
    """
    seen: set[str] = set()
    unique: list[ExtractedOrder] = []
    duplicates: list[ExtractedOrder] = []

    for order in orders:
        if order.order_id in seen:
            duplicates.append(order)
            continue
        seen.add(order.order_id)
        unique.append(order)

    if duplicates:
        counter("dedup.duplicates", len(duplicates))
        logger.info("Dropped %d duplicate order(s) within pass", len(duplicates))

    return DedupResult(orders=unique, duplicates=duplicates)
