"""
Module: types
Purpose: Stage result types for the order sync pipeline.
Dependencies: ordersync.orders.models

Leaf module shared by the extractor, deduplicator, reconciler and
orchestrator so none of them import each other for result shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ordersync.orders.models import ExtractedOrder, RawMessage, SyncError

# ---------------------------------------------------------------------------
# Extraction results (from order_extractor.py)
# ---------------------------------------------------------------------------


class ExtractionStatus(str, Enum):
    EXTRACTED = "extracted"
    REJECTED = "rejected"
    FAILED = "failed"


class RejectionReason(str, Enum):
    """Why an oracle payload was discarded without retry."""

    NOT_ORDER = "not_order"
    SCHEMA_VIOLATION = "schema_violation"
    MISSING_ORDER_ID = "missing_order_id"
    PAYMENT_REFERENCE = "payment_reference"
    INVALID_STATUS = "invalid_status"
    INVALID_AMOUNT = "invalid_amount"
    UNPARSEABLE_DATE = "unparseable_date"


class PayloadRejected(ValueError):
    """Raised inside payload validation; carries the rejection reason."""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


@dataclass
class ExtractionOutcome:
    """Result of extracting one message."""

    message: RawMessage
    status: ExtractionStatus
    order: ExtractedOrder | None = None
    rejection: RejectionReason | None = None
    detail: str | None = None

    @classmethod
    def extracted(cls, message: RawMessage, order: ExtractedOrder) -> ExtractionOutcome:
        return cls(message=message, status=ExtractionStatus.EXTRACTED, order=order)

    @classmethod
    def rejected(
        cls, message: RawMessage, reason: RejectionReason, detail: str = ""
    ) -> ExtractionOutcome:
        return cls(
            message=message,
            status=ExtractionStatus.REJECTED,
            rejection=reason,
            detail=detail or None,
        )

    @classmethod
    def failed(cls, message: RawMessage, error: str) -> ExtractionOutcome:
        return cls(message=message, status=ExtractionStatus.FAILED, detail=error)


@dataclass
class ExtractionBatch:
    """Per-message outcomes, in input order."""

    outcomes: list[ExtractionOutcome] = field(default_factory=list)

    @property
    def orders(self) -> list[ExtractedOrder]:
        return [o.order for o in self.outcomes if o.order is not None]

    @property
    def rejected(self) -> list[ExtractionOutcome]:
        return [o for o in self.outcomes if o.status is ExtractionStatus.REJECTED]

    @property
    def failed(self) -> list[ExtractionOutcome]:
        return [o for o in self.outcomes if o.status is ExtractionStatus.FAILED]


# ---------------------------------------------------------------------------
# Deduplication result (from deduplicator.py)
# ---------------------------------------------------------------------------


@dataclass
class DedupResult:
    orders: list[ExtractedOrder]
    duplicates: list[ExtractedOrder] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Reconciliation results (from reconciler.py)
# ---------------------------------------------------------------------------


class ReconcileAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    HISTORY_ONLY = "history_only"


@dataclass
class ReconcileResult:
    order_id: str
    action: ReconcileAction


@dataclass
class ReconcileReport:
    results: list[ReconcileResult] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)

    @property
    def stored(self) -> int:
        return len(self.results)

    def count(self, action: ReconcileAction) -> int:
        return sum(1 for r in self.results if r.action is action)
