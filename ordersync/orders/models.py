"""
Order domain models for the sync engine.

RawMessage and RelevantEmail describe mailbox input; ExtractedOrder is the
oracle's validated reading of one message; StoredOrder is the durable
per-user aggregate the reconciler folds extracted orders into.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_absolute_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Lifecycle states carry a rank used for the recency tie-break. Terminal
    states (cancelled, payment_failed, returned) are reachable from anywhere
    and have no rank.
    """

    ORDERED = "ordered"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    PACKED = "packed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    RETURNED = "returned"

    @property
    def lifecycle_rank(self) -> int | None:
        return _LIFECYCLE_RANK.get(self)

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle_rank is None

    @classmethod
    def parse(cls, value: str | None) -> OrderStatus | None:
        """Lenient lookup: case-insensitive, spaces/hyphens as underscores."""
        if not value:
            return None
        normalized = re.sub(r"[\s\-]+", "_", value.strip().lower())
        try:
            return cls(normalized)
        except ValueError:
            return None


_LIFECYCLE_RANK: dict[OrderStatus, int] = {
    OrderStatus.ORDERED: 1,
    OrderStatus.CONFIRMED: 2,
    OrderStatus.PROCESSING: 2,
    OrderStatus.PACKED: 3,
    OrderStatus.SHIPPED: 4,
    OrderStatus.OUT_FOR_DELIVERY: 5,
    OrderStatus.DELIVERED: 6,
}


class ReturnStatus(str, Enum):
    """Status of a return; upserted wholesale, never compared."""

    INITIATED = "initiated"
    RETURN_LABEL_CREATED = "return_label_created"
    PICKUP_SCHEDULED = "pickup_scheduled"
    IN_TRANSIT = "in_transit"
    PICKED_UP = "picked_up"
    RECEIVED = "received"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value: str | None) -> ReturnStatus | None:
        if not value:
            return None
        normalized = re.sub(r"[\s\-]+", "_", value.strip().lower())
        try:
            return cls(normalized)
        except ValueError:
            return None


class RawMessage(BaseModel):
    """One message as returned by the mail source. Never mutated."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    thread_id: str = ""
    subject: str = ""
    body_text: str = ""
    sender_address: str = ""
    received_at: datetime

    @field_validator("received_at")
    @classmethod
    def received_at_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RelevantEmail(BaseModel):
    """Audit record for a message the classifier judged order-related."""

    model_config = ConfigDict(frozen=True)

    subject: str
    message_id: str
    received_at: datetime

    @classmethod
    def from_message(cls, message: RawMessage) -> RelevantEmail:
        return cls(
            subject=message.subject,
            message_id=message.message_id,
            received_at=message.received_at,
        )


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    source_message_id: str

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ReturnInfo(BaseModel):
    status: ReturnStatus
    initiated_date: datetime | None = None
    tracking_url: str | None = None

    @field_validator("tracking_url")
    @classmethod
    def tracking_url_absolute(cls, v: str | None) -> str | None:
        if v is not None and not is_absolute_url(v):
            raise ValueError("tracking_url must be an absolute http(s) URL")
        return v


class OrderFields(BaseModel):
    """Scalar order fields shared by extracted and stored orders."""

    order_id: str = Field(..., description="Vendor order/confirmation number")
    vendor: str
    total_amount: Decimal | None = None
    currency: str = "USD"
    order_date: datetime
    latest_status: OrderStatus
    tracking_url: str | None = None
    email_received_at: datetime
    sender_address: str = ""
    source_message_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("order_id")
    @classmethod
    def order_id_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("order_id cannot be empty")
        return v.strip()

    @field_validator("vendor")
    @classmethod
    def vendor_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("vendor cannot be empty")
        return v.strip()

    @field_validator("total_amount")
    @classmethod
    def amount_non_negative(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v < 0:
            raise ValueError("total_amount cannot be negative")
        return v

    @field_validator("currency")
    @classmethod
    def currency_iso_shaped(cls, v: str) -> str:
        code = v.strip().upper()
        if not _CURRENCY_RE.match(code):
            raise ValueError(f"currency must be a 3-letter ISO 4217 code, got {v!r}")
        return code

    @field_validator("tracking_url")
    @classmethod
    def tracking_url_absolute(cls, v: str | None) -> str | None:
        if v is not None and not is_absolute_url(v):
            raise ValueError("tracking_url must be an absolute http(s) URL")
        return v

    @field_validator("order_date", "email_received_at")
    @classmethod
    def dates_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ExtractedOrder(OrderFields):
    """The oracle's structured reading of one relevant email."""

    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    return_info: ReturnInfo | None = None


class StoredOrder(OrderFields):
    """Durable per-user aggregate; at most one per (user_id, order_id)."""

    user_id: str
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    return_info: ReturnInfo | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_extracted(cls, user_id: str, order: ExtractedOrder) -> StoredOrder:
        """First sighting: the extracted record becomes the stored aggregate."""
        data = order.model_dump()
        return cls(user_id=user_id, **data)

    def scalar_fields(self) -> dict[str, Any]:
        return self.model_dump(include=SCALAR_FIELDS)

    def to_db_dict(self) -> dict[str, Any]:
        """Convert scalar fields to a row dict for the orders table."""
        return {
            "user_id": self.user_id,
            "order_id": self.order_id,
            "vendor": self.vendor,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
            "currency": self.currency,
            "order_date": self.order_date.isoformat(),
            "latest_status": self.latest_status.value,
            "tracking_url": self.tracking_url,
            "email_received_at": self.email_received_at.isoformat(),
            "sender_address": self.sender_address,
            "source_message_id": self.source_message_id,
            "metadata": json.dumps(self.metadata, default=str),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_db_row(
        cls,
        row: dict[str, Any],
        history: list[StatusHistoryEntry] | None = None,
        return_info: ReturnInfo | None = None,
    ) -> StoredOrder:
        """Create StoredOrder from an orders row plus its child rows."""
        return cls(
            user_id=row["user_id"],
            order_id=row["order_id"],
            vendor=row["vendor"],
            total_amount=Decimal(row["total_amount"]) if row.get("total_amount") else None,
            currency=row["currency"],
            order_date=datetime.fromisoformat(row["order_date"]),
            latest_status=OrderStatus(row["latest_status"]),
            tracking_url=row.get("tracking_url"),
            email_received_at=datetime.fromisoformat(row["email_received_at"]),
            sender_address=row.get("sender_address") or "",
            source_message_id=row.get("source_message_id"),
            metadata=json.loads(row["metadata"]) if row.get("metadata") else {},
            status_history=history or [],
            return_info=return_info,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


# Fields overwritten when a newer record wins reconciliation
SCALAR_FIELDS: frozenset[str] = frozenset(
    {
        "vendor",
        "total_amount",
        "currency",
        "order_date",
        "latest_status",
        "tracking_url",
        "email_received_at",
        "sender_address",
        "source_message_id",
        "metadata",
    }
)

# Scalars an incoming record may leave empty without erasing stored values
OPTIONAL_SCALAR_FIELDS: frozenset[str] = frozenset(
    {"total_amount", "tracking_url", "source_message_id"}
)


class SyncError(BaseModel):
    """One per-record failure surfaced in the pass summary."""

    stage: str  # "extract" | "reconcile"
    error: str
    order_id: str | None = None
    message_id: str | None = None


class QueryWindowModel(BaseModel):
    start: datetime
    end: datetime


class SyncSummary(BaseModel):
    """Serializable result of one sync pass."""

    user_id: str
    window: QueryWindowModel
    messages_seen: int = 0
    relevant: int = 0
    extracted: int = 0
    rejected: int = 0
    extraction_failures: int = 0
    deduplicated: int = 0
    stored: int = 0
    relevant_emails: list[RelevantEmail] = Field(default_factory=list)
    order_details: list[ExtractedOrder] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)
    checkpoint_advanced: bool = False

    @computed_field
    @property
    def status(self) -> str:
        if self.messages_seen == 0:
            return "empty"
        if not self.errors:
            return "ok"
        if self.stored == 0:
            return "failed"
        return "partial"

    @computed_field
    @property
    def error_count(self) -> int:
        return len(self.errors)
