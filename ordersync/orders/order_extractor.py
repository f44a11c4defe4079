"""
Order Extractor - structured order records from relevant emails.

Stage 2 of the sync pipeline. The oracle reads one email and returns a JSON
object (or null). This module is the boundary where that dynamic payload
becomes a typed ExtractedOrder:

- Schema check with pydantic (camelCase aliases, lenient scalars)
- Business validation: order id present and not a payment reference,
  known status, non-negative amount, parseable required dates
- Normalization: amounts to cents, currency fallback, UTC dates,
  tracking URL must be absolute, vendor guessed from sender when blank

Three outcomes per message: extracted, rejected (semantic, never retried),
failed (transient oracle errors after all retries).
"""

from __future__ import annotations

import concurrent.futures
import re
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, ValidationError
from pydantic import Field as PydanticField

from ordersync.config import (
    DEFAULT_CURRENCY,
    EXTRACT_GROUP_PAUSE_SECONDS,
    EXTRACT_GROUP_SIZE,
    PIPELINE_ORDER_ID_MAX_LEN,
)
from ordersync.infrastructure.retry import RetryPolicy
from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter, log_event, time_block
from ordersync.orders.interfaces import LanguageOracle
from ordersync.orders.models import (
    ExtractedOrder,
    OrderStatus,
    RawMessage,
    ReturnInfo,
    ReturnStatus,
    StatusHistoryEntry,
    ensure_utc,
    is_absolute_url,
)
from ordersync.orders.types import (
    ExtractionBatch,
    ExtractionOutcome,
    PayloadRejected,
    RejectionReason,
)
from ordersync.utils.redaction import redact_subject, sanitize_error

logger = get_logger(__name__)

CENTS = Decimal("0.01")

_NULL_LIKE_IDS = frozenset({"null", "none", "n/a", "na", "unknown", "undefined", "-", "0"})
_PAYMENT_REF_RE = re.compile(r"^(?:(?:txn|pay|trans|ref)[\s#:_\-]*\d|transaction\b)", re.IGNORECASE)
_CURRENCY_CODE_RE = re.compile(r"^[A-Za-z]{3}$")
_THOUSANDS_RE = re.compile(r"^-?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_DECIMAL_COMMA_RE = re.compile(r"^-?\d+,\d{1,2}$")
_NUMBER_RUN_RE = re.compile(r"\d[\d.,]*")
_SENDER_NAME_SUFFIX_RE = re.compile(
    r"\s*(Customer Service|Support|Orders?|Shipping|Notifications?)\b.*$", re.IGNORECASE
)

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y")


# ---------------------------------------------------------------------------
# Oracle payload schema
# ---------------------------------------------------------------------------


class _PayloadModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StatusHistorySchema(_PayloadModel):
    status: str | None = None
    timestamp: str | None = None
    email_id: str | None = PydanticField(default=None, alias="emailId")


class ReturnInfoSchema(_PayloadModel):
    status: str | None = None
    initiated_date: str | None = PydanticField(default=None, alias="initiatedDate")
    tracking_url: str | None = PydanticField(default=None, alias="trackingUrl")


class OrderExtractionSchema(_PayloadModel):
    """Shape of the oracle's extraction JSON."""

    order_id: str | int | None = PydanticField(default=None, alias="orderId")
    vendor: str | None = None
    total_amount: float | str | None = PydanticField(default=None, alias="totalAmount")
    currency: str | None = None
    order_date: str | None = PydanticField(default=None, alias="orderDate")
    latest_status: str | None = PydanticField(default=None, alias="latestStatus")
    tracking_url: str | None = PydanticField(default=None, alias="trackingUrl")
    status_history: list[StatusHistorySchema] | None = PydanticField(
        default=None, alias="statusHistory"
    )
    return_info: ReturnInfoSchema | None = PydanticField(
        default=None, validation_alias=AliasChoices("returnInfo", "return", "return_info")
    )
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Field normalizers
# ---------------------------------------------------------------------------


def parse_date(value: str | None) -> datetime | None:
    """Parse ISO-8601 (with Z), YYYY-MM-DD, MM/DD/YYYY or 'Month D, YYYY'; naive means UTC."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return ensure_utc(datetime.fromisoformat(iso))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return ensure_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def parse_amount(value: float | str | None) -> Decimal | None:
    """
    Normalize an amount to a non-negative Decimal quantized to cents.

    Accepts numbers or strings such as "$1,299.00", "1299 USD", "12,50".

    Raises:
        PayloadRejected: INVALID_AMOUNT for negative or unparseable values
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"boolean amount {value!r}")

    if isinstance(value, (int, float)):
        text = repr(value) if isinstance(value, float) else str(value)
    else:
        stripped = re.sub(r"[A-Za-z]{3}", "", value).strip()
        runs = _NUMBER_RUN_RE.findall(stripped)
        if not runs:
            if value.strip():
                raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"no digits in {value!r}")
            return None
        # "1e30" or "$10 + $5 shipping" must not be glued into one number
        if len(runs) > 1:
            raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"several numbers in {value!r}")
        text = runs[0].rstrip(".,")
        if stripped.startswith("-"):
            text = "-" + text
        if _THOUSANDS_RE.match(text):
            text = text.replace(",", "")
        elif _DECIMAL_COMMA_RE.match(text):
            text = text.replace(",", ".")
        elif "," in text:
            raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"ambiguous separators in {value!r}")

    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"unparseable amount {value!r}") from e

    if not amount.is_finite():
        raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"non-finite amount {value!r}")
    if amount < 0:
        raise PayloadRejected(RejectionReason.INVALID_AMOUNT, f"negative amount {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_order_id(value: str | int | None) -> str:
    """
    Raises:
        PayloadRejected: MISSING_ORDER_ID or PAYMENT_REFERENCE
    """
    order_id = "" if value is None else str(value).strip().lstrip("#").strip()
    if not order_id or order_id.lower() in _NULL_LIKE_IDS:
        raise PayloadRejected(RejectionReason.MISSING_ORDER_ID)
    if len(order_id) > PIPELINE_ORDER_ID_MAX_LEN:
        raise PayloadRejected(RejectionReason.MISSING_ORDER_ID, "order id too long")
    if _PAYMENT_REF_RE.match(order_id):
        raise PayloadRejected(RejectionReason.PAYMENT_REFERENCE, order_id)
    return order_id


def normalize_currency(value: str | None, default: str = DEFAULT_CURRENCY) -> str:
    if value is None or not value.strip():
        return default
    code = value.strip()
    if not _CURRENCY_CODE_RE.match(code):
        counter("extractor.currency_fallback")
        logger.warning("Currency %r is not an ISO 4217 code; using %s", code, default)
        return default
    return code.upper()


def guess_vendor(sender: str) -> str:
    """Vendor from the sender display name, else the sender's domain."""
    if "<" in sender:
        name = sender.split("<", 1)[0].strip().strip('"').strip()
        name = _SENDER_NAME_SUFFIX_RE.sub("", name).strip()
        if len(name) > 2:
            return name

    domain_match = re.search(r"@([\w.\-]+)", sender)
    if domain_match:
        labels = [label for label in domain_match.group(1).split(".") if label]
        if len(labels) >= 2:
            return labels[-2].title()
        if labels:
            return labels[0].title()

    return "Unknown"


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class OrderExtractor:
    """
    Turn relevant messages into validated ExtractedOrder records.

    extract() handles one message; extract_many() fans out in small
    concurrent groups with a pause between groups to stay under oracle
    rate limits.
    """

    def __init__(
        self,
        oracle: LanguageOracle,
        retry_policy: RetryPolicy | None = None,
        default_currency: str = DEFAULT_CURRENCY,
        group_size: int = EXTRACT_GROUP_SIZE,
        group_pause: float = EXTRACT_GROUP_PAUSE_SECONDS,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy(stage="extractor", sleep_fn=sleep_fn)
        self.default_currency = default_currency
        self.group_size = group_size
        self.group_pause = group_pause
        self.sleep_fn = sleep_fn

    def extract(self, message: RawMessage) -> ExtractionOutcome:
        """
        Extract one order from one message.

        Never raises for oracle or payload problems; they become failed or
        rejected outcomes.

        Side Effects:
            - Oracle calls (up to retry_policy.max_attempts)
            - Telemetry counters extractor.extracted / .rejected / .failed
        """
        try:
            payload = self.retry_policy.execute(
                self.oracle.extract,
                message.subject,
                message.body_text,
                message.sender_address,
                message.received_at.isoformat(),
            )
        except self.retry_policy.retry_on as e:
            counter("extractor.failed")
            logger.error(
                "Extraction failed after %d attempts for message %s: %s",
                self.retry_policy.max_attempts,
                message.message_id,
                e,
            )
            log_event("extractor.failed", message_id=message.message_id, error=type(e).__name__)
            return ExtractionOutcome.failed(message, sanitize_error(e))

        try:
            order = self.build_order(message, payload)
        except PayloadRejected as rejection:
            counter("extractor.rejected")
            counter(f"extractor.rejected.{rejection.reason.value}")
            logger.info(
                "Rejected extraction for %s (%s): %s",
                message.message_id,
                redact_subject(message.subject),
                rejection,
            )
            return ExtractionOutcome.rejected(message, rejection.reason, rejection.detail)

        counter("extractor.extracted")
        logger.info(
            "Extracted order %s from %s (vendor=%s, status=%s)",
            order.order_id,
            message.message_id,
            order.vendor,
            order.latest_status.value,
        )
        return ExtractionOutcome.extracted(message, order)

    def extract_many(self, messages: Sequence[RawMessage]) -> ExtractionBatch:
        """
        Extract a batch in groups of group_size, preserving input order.

        Side Effects:
            - Sleeps group_pause seconds between groups
        """
        messages = list(messages)
        outcomes: list[ExtractionOutcome] = []

        with time_block("extractor.batch.latency"):
            for start in range(0, len(messages), self.group_size):
                if start > 0 and self.group_pause > 0:
                    self.sleep_fn(self.group_pause)
                group = messages[start : start + self.group_size]
                outcomes.extend(self._extract_group(group))

        batch = ExtractionBatch(outcomes=outcomes)
        log_event(
            "extractor.batch",
            total=len(messages),
            extracted=len(batch.orders),
            rejected=len(batch.rejected),
            failed=len(batch.failed),
        )
        return batch

    def _extract_group(self, group: list[RawMessage]) -> list[ExtractionOutcome]:
        indexed: list[tuple[int, ExtractionOutcome]] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(group)) as executor:
            future_to_idx = {
                executor.submit(self.extract, message): idx for idx, message in enumerate(group)
            }
            for future in concurrent.futures.as_completed(future_to_idx):
                idx = future_to_idx[future]
                try:
                    indexed.append((idx, future.result()))
                except Exception as exc:
                    counter("extractor.unexpected_error")
                    logger.exception("Unexpected extraction error for %s", group[idx].message_id)
                    indexed.append((idx, ExtractionOutcome.failed(group[idx], sanitize_error(exc))))

        # Restore input order
        indexed.sort(key=lambda pair: pair[0])
        return [outcome for _, outcome in indexed]

    def build_order(self, message: RawMessage, payload: Any) -> ExtractedOrder:
        """
        Validate an oracle payload and build an ExtractedOrder.

        Raises:
            PayloadRejected: With the first rejection reason that applies
        """
        if payload is None or not isinstance(payload, dict) or not payload:
            raise PayloadRejected(RejectionReason.NOT_ORDER)

        try:
            data = OrderExtractionSchema.model_validate(payload)
        except ValidationError as e:
            raise PayloadRejected(
                RejectionReason.SCHEMA_VIOLATION, f"{e.error_count()} field error(s)"
            ) from e

        order_id = normalize_order_id(data.order_id)

        status = OrderStatus.parse(data.latest_status)
        if status is None:
            raise PayloadRejected(RejectionReason.INVALID_STATUS, repr(data.latest_status))

        total_amount = parse_amount(data.total_amount)
        currency = normalize_currency(data.currency, self.default_currency)

        if data.order_date is None or not data.order_date.strip():
            order_date = message.received_at
        else:
            order_date = parse_date(data.order_date)
            if order_date is None:
                raise PayloadRejected(
                    RejectionReason.UNPARSEABLE_DATE, f"orderDate {data.order_date!r}"
                )

        tracking_url = self._clean_url(data.tracking_url, message)
        history = self._build_history(message, data.status_history or [])
        return_info = self._build_return(message, data.return_info)
        vendor = (data.vendor or "").strip() or guess_vendor(message.sender_address)

        try:
            return ExtractedOrder(
                order_id=order_id,
                vendor=vendor,
                total_amount=total_amount,
                currency=currency,
                order_date=order_date,
                latest_status=status,
                tracking_url=tracking_url,
                email_received_at=message.received_at,
                sender_address=message.sender_address,
                source_message_id=message.message_id,
                metadata=data.metadata or {},
                status_history=history,
                return_info=return_info,
            )
        except ValidationError as e:
            raise PayloadRejected(
                RejectionReason.SCHEMA_VIOLATION, f"{e.error_count()} field error(s)"
            ) from e

    def _clean_url(self, url: str | None, message: RawMessage) -> str | None:
        if url is None or not url.strip():
            return None
        url = url.strip()
        if not is_absolute_url(url):
            counter("extractor.tracking_url_dropped")
            logger.warning("Dropping non-absolute tracking URL for message %s", message.message_id)
            return None
        return url

    def _build_history(
        self, message: RawMessage, entries: list[StatusHistorySchema]
    ) -> list[StatusHistoryEntry]:
        history: list[StatusHistoryEntry] = []
        for entry in entries:
            status = OrderStatus.parse(entry.status)
            if status is None:
                counter("extractor.history_entry_dropped")
                logger.debug("Dropping history entry with unknown status %r", entry.status)
                continue
            timestamp = parse_date(entry.timestamp) if entry.timestamp else message.received_at
            if timestamp is None:
                raise PayloadRejected(
                    RejectionReason.UNPARSEABLE_DATE, f"statusHistory timestamp {entry.timestamp!r}"
                )
            history.append(
                StatusHistoryEntry(
                    status=status,
                    timestamp=timestamp,
                    source_message_id=(entry.email_id or "").strip() or message.message_id,
                )
            )
        return history

    def _build_return(
        self, message: RawMessage, data: ReturnInfoSchema | None
    ) -> ReturnInfo | None:
        if data is None:
            return None
        status = ReturnStatus.parse(data.status)
        if status is None:
            counter("extractor.return_dropped")
            logger.debug("Dropping return info with unknown status %r", data.status)
            return None
        return ReturnInfo(
            status=status,
            initiated_date=parse_date(data.initiated_date),
            tracking_url=self._clean_url(data.tracking_url, message),
        )
