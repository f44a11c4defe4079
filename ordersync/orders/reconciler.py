"""
Reconciler - fold extracted orders into the durable per-user order store.

Recency policy (is_newer):
    1. Later email_received_at wins.
    2. On an exact tie, a terminal status on either side (cancelled,
       payment_failed, returned) means the incoming record does not win.
    3. Otherwise the strictly higher lifecycle rank wins.

When the incoming record wins, the stored pre-update status is preserved as
a history entry before the scalars are overwritten. When it loses, only its
history entries are appended.

Storage failures are isolated per order: the failing order is reported as a
SyncError and the remaining orders are still reconciled.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter, log_event
from ordersync.orders.interfaces import OrderStore
from ordersync.orders.models import (
    OPTIONAL_SCALAR_FIELDS,
    SCALAR_FIELDS,
    ExtractedOrder,
    OrderFields,
    StatusHistoryEntry,
    StoredOrder,
    SyncError,
)
from ordersync.orders.types import ReconcileAction, ReconcileReport, ReconcileResult
from ordersync.storage.order_repository import OrderStoreError
from ordersync.utils.redaction import sanitize_error

logger = get_logger(__name__)


def is_newer(incoming: OrderFields, stored: OrderFields) -> bool:
    """True if incoming describes a more current state than stored."""
    if incoming.email_received_at > stored.email_received_at:
        return True
    if incoming.email_received_at < stored.email_received_at:
        return False

    if incoming.latest_status.is_terminal or stored.latest_status.is_terminal:
        return False
    return incoming.latest_status.lifecycle_rank > stored.latest_status.lifecycle_rank


def superseded_entry(stored: StoredOrder) -> StatusHistoryEntry:
    """History entry recording the stored state an incoming record replaces."""
    epoch_ms = int(stored.email_received_at.timestamp() * 1000)
    return StatusHistoryEntry(
        status=stored.latest_status,
        timestamp=stored.email_received_at,
        source_message_id=f"existing_{epoch_ms}",
    )


def scalar_updates(incoming: ExtractedOrder) -> dict[str, Any]:
    """Scalars to overwrite; empty optional values keep what is stored."""
    fields = incoming.model_dump(include=SCALAR_FIELDS)
    for name in OPTIONAL_SCALAR_FIELDS:
        if fields.get(name) is None:
            fields.pop(name, None)
    if not fields.get("metadata"):
        fields.pop("metadata", None)
    return fields


class Reconciler:
    def __init__(self, store: OrderStore):
        self.store = store

    def reconcile(self, user_id: str, orders: Iterable[ExtractedOrder]) -> ReconcileReport:
        """
        Reconcile each order against the store, sequentially.

        Side Effects:
            - Inserts/updates rows through the OrderStore
            - Telemetry counters reconciler.inserted / .updated / .history_only / .error
        """
        report = ReconcileReport()

        for order in orders:
            try:
                action = self._reconcile_one(user_id, order)
            except OrderStoreError as e:
                counter("reconciler.error")
                logger.error("Failed to reconcile order %s: %s", order.order_id, e)
                report.errors.append(
                    SyncError(
                        stage="reconcile",
                        order_id=order.order_id,
                        message_id=order.source_message_id,
                        error=sanitize_error(e),
                    )
                )
                continue

            counter(f"reconciler.{action.value}")
            report.results.append(ReconcileResult(order_id=order.order_id, action=action))

        log_event(
            "reconciler.result",
            inserted=report.count(ReconcileAction.INSERTED),
            updated=report.count(ReconcileAction.UPDATED),
            history_only=report.count(ReconcileAction.HISTORY_ONLY),
            errors=len(report.errors),
        )
        return report

    def _reconcile_one(self, user_id: str, order: ExtractedOrder) -> ReconcileAction:
        stored = self.store.get_by_order_id(user_id, order.order_id)

        if stored is None:
            self.store.insert(StoredOrder.from_extracted(user_id, order))
            logger.debug("Inserted order %s", order.order_id)
            return ReconcileAction.INSERTED

        if is_newer(order, stored):
            self.store.update(
                user_id,
                order.order_id,
                scalar_updates(order),
                [superseded_entry(stored), *order.status_history],
                return_upsert=order.return_info,
            )
            logger.debug(
                "Updated order %s: %s -> %s",
                order.order_id,
                stored.latest_status.value,
                order.latest_status.value,
            )
            return ReconcileAction.UPDATED

        self.store.update(user_id, order.order_id, {}, list(order.status_history))
        logger.debug(
            "Order %s not newer; appended %d history entries",
            order.order_id,
            len(order.status_history),
        )
        return ReconcileAction.HISTORY_ONLY
