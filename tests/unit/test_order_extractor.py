"""
Unit tests for the OrderExtractor stage.

Covers the payload boundary (schema + business validation), field
normalization, retry behavior, and grouped concurrent extraction.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from ordersync.orders.models import OrderStatus, ReturnStatus
from ordersync.orders.order_extractor import (
    OrderExtractor,
    guess_vendor,
    parse_amount,
    parse_date,
)
from ordersync.orders.types import ExtractionStatus, PayloadRejected, RejectionReason

SUBJECT = "Your order has shipped"


@pytest.fixture
def extractor(fake_oracle_cls, fast_retry, no_sleep):
    def make(extractions=None, **kwargs):
        oracle = fake_oracle_cls(extractions=extractions or {})
        kwargs.setdefault("retry_policy", fast_retry("extractor"))
        kwargs.setdefault("sleep_fn", no_sleep)
        return OrderExtractor(oracle, **kwargs), oracle

    return make


def _outcome(extractor, make_message, payload, **kwargs):
    ext, _ = extractor({SUBJECT: payload}, **kwargs)
    return ext.extract(make_message("m1", SUBJECT))


# =============================================================================
# Happy path
# =============================================================================


class TestExtractValid:
    def test_valid_payload(self, extractor, make_message, order_payload, base_time):
        outcome = _outcome(extractor, make_message, order_payload("ORD-1001", "shipped"))

        assert outcome.status is ExtractionStatus.EXTRACTED
        order = outcome.order
        assert order.order_id == "ORD-1001"
        assert order.vendor == "Acme"
        assert order.total_amount == Decimal("42.50")
        assert order.currency == "USD"
        assert order.latest_status is OrderStatus.SHIPPED
        assert order.order_date == datetime(2025, 3, 9, 8, 0, tzinfo=UTC)
        assert order.email_received_at == base_time
        assert order.sender_address == "Acme Store <orders@acme.com>"
        assert order.source_message_id == "m1"
        assert order.metadata == {"itemCount": 1}

    def test_numeric_order_id_becomes_string(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(order_id=55512))
        assert outcome.order.order_id == "55512"

    def test_status_parsing_is_lenient(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(status="Out for Delivery"))
        assert outcome.order.latest_status is OrderStatus.OUT_FOR_DELIVERY


# =============================================================================
# Semantic rejections (never retried)
# =============================================================================


class TestRejections:
    @pytest.mark.parametrize("payload", [None, {}, [], "not an order"])
    def test_not_an_order(self, extractor, make_message, payload):
        # One-element script so list payloads are returned as-is
        outcome = _outcome(extractor, make_message, [payload])
        assert outcome.status is ExtractionStatus.REJECTED
        assert outcome.rejection is RejectionReason.NOT_ORDER

    @pytest.mark.parametrize("order_id", ["", "   ", None, "null", "N/A"])
    def test_missing_order_id(self, extractor, make_message, order_payload, order_id):
        outcome = _outcome(extractor, make_message, order_payload(order_id=order_id))
        assert outcome.rejection is RejectionReason.MISSING_ORDER_ID
        assert outcome.order is None

    @pytest.mark.parametrize("order_id", ["TXN123456", "PAY-789", "ref#5521", "transaction 5591"])
    def test_payment_reference(self, extractor, make_message, order_payload, order_id):
        outcome = _outcome(extractor, make_message, order_payload(order_id=order_id))
        assert outcome.rejection is RejectionReason.PAYMENT_REFERENCE

    def test_order_ids_resembling_prefixes_are_kept(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(order_id="PAYLESS-ORDER-77"))
        assert outcome.status is ExtractionStatus.EXTRACTED

    def test_unknown_status(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(status="teleported"))
        assert outcome.rejection is RejectionReason.INVALID_STATUS

    def test_schema_violation(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(totalAmount={"value": 3}))
        assert outcome.rejection is RejectionReason.SCHEMA_VIOLATION

    def test_negative_amount(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(totalAmount=-5))
        assert outcome.rejection is RejectionReason.INVALID_AMOUNT

    def test_exponent_amount_not_glued(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(totalAmount="1e30"))
        assert outcome.rejection is RejectionReason.INVALID_AMOUNT
        assert outcome.order is None

    def test_unparseable_order_date(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(orderDate="sometime soon"))
        assert outcome.rejection is RejectionReason.UNPARSEABLE_DATE

    def test_unparseable_history_timestamp(self, extractor, make_message, order_payload):
        payload = order_payload(
            statusHistory=[{"status": "shipped", "timestamp": "yesterday-ish", "emailId": "m0"}]
        )
        outcome = _outcome(extractor, make_message, payload)
        assert outcome.rejection is RejectionReason.UNPARSEABLE_DATE

    def test_rejection_not_retried(self, extractor, make_message):
        ext, oracle = extractor({SUBJECT: None})
        ext.extract(make_message("m1", SUBJECT))
        assert oracle.extract_calls == [SUBJECT]


# =============================================================================
# Normalization
# =============================================================================


class TestNormalization:
    def test_missing_currency_uses_default(self, extractor, make_message, order_payload):
        outcome = _outcome(
            extractor, make_message, order_payload(currency=None), default_currency="EUR"
        )
        assert outcome.order.currency == "EUR"

    def test_lowercase_currency_upcased(self, extractor, make_message, order_payload):
        assert _outcome(extractor, make_message, order_payload(currency="gbp")).order.currency == "GBP"

    def test_malformed_currency_falls_back(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(currency="dollars"))
        assert outcome.order.currency == "USD"

    def test_missing_order_date_uses_received_at(
        self, extractor, make_message, order_payload, base_time
    ):
        outcome = _outcome(extractor, make_message, order_payload(orderDate=None))
        assert outcome.order.order_date == base_time

    def test_relative_tracking_url_dropped(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(trackingUrl="www.ups.com/track/1Z"))
        assert outcome.status is ExtractionStatus.EXTRACTED
        assert outcome.order.tracking_url is None

    def test_absolute_tracking_url_kept(self, extractor, make_message, order_payload):
        url = "https://www.ups.com/track?num=1Z999"
        assert _outcome(extractor, make_message, order_payload(trackingUrl=url)).order.tracking_url == url

    def test_history_entries(self, extractor, make_message, order_payload):
        payload = order_payload(
            statusHistory=[
                {"status": "ordered", "timestamp": "2025-03-08T10:00:00Z", "emailId": "m0"},
                {"status": "warp_speed", "timestamp": "2025-03-09T10:00:00Z", "emailId": "m0"},
                {"status": "shipped", "timestamp": "2025-03-10", "emailId": None},
            ]
        )
        history = _outcome(extractor, make_message, payload).order.status_history

        assert [h.status for h in history] == [OrderStatus.ORDERED, OrderStatus.SHIPPED]
        assert history[0].source_message_id == "m0"
        assert history[1].source_message_id == "m1"
        assert history[1].timestamp == datetime(2025, 3, 10, tzinfo=UTC)

    def test_return_info(self, extractor, make_message, order_payload):
        payload = order_payload(
            status="returned",
            returnInfo={
                "status": "Refunded",
                "initiatedDate": "not a date",
                "trackingUrl": "https://returns.acme.com/r/9",
            },
        )
        info = _outcome(extractor, make_message, payload).order.return_info

        assert info.status is ReturnStatus.REFUNDED
        assert info.initiated_date is None
        assert info.tracking_url == "https://returns.acme.com/r/9"

    def test_return_alias(self, extractor, make_message, order_payload):
        payload = order_payload()
        del payload["returnInfo"]
        payload["return"] = {"status": "pickup scheduled", "initiatedDate": "2025-03-11"}
        info = _outcome(extractor, make_message, payload).order.return_info

        assert info.status is ReturnStatus.PICKUP_SCHEDULED
        assert info.initiated_date == datetime(2025, 3, 11, tzinfo=UTC)

    def test_return_with_unknown_status_dropped(self, extractor, make_message, order_payload):
        payload = order_payload(returnInfo={"status": "lost_in_space"})
        outcome = _outcome(extractor, make_message, payload)

        assert outcome.status is ExtractionStatus.EXTRACTED
        assert outcome.order.return_info is None

    def test_blank_vendor_guessed_from_sender(self, extractor, make_message, order_payload):
        outcome = _outcome(extractor, make_message, order_payload(vendor=""))
        assert outcome.order.vendor == "Acme Store"


class TestFieldParsers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (42.5, Decimal("42.50")),
            (19, Decimal("19.00")),
            ("$1,299.00", Decimal("1299.00")),
            ("USD 12.345", Decimal("12.35")),
            ("12,50", Decimal("12.50")),
            (None, None),
            ("", None),
        ],
    )
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize(
        "raw", ["-3.00", "abc", "1.234,56", True, "1e30", "$1,299.00 + $5 shipping"]
    )
    def test_parse_amount_invalid(self, raw):
        with pytest.raises(PayloadRejected) as exc_info:
            parse_amount(raw)
        assert exc_info.value.reason is RejectionReason.INVALID_AMOUNT

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2025-03-05T14:30:00Z", datetime(2025, 3, 5, 14, 30, tzinfo=UTC)),
            ("2025-03-05T14:30:00+02:00", datetime(2025, 3, 5, 12, 30, tzinfo=UTC)),
            ("2025-03-05", datetime(2025, 3, 5, tzinfo=UTC)),
            ("03/05/2025", datetime(2025, 3, 5, tzinfo=UTC)),
            ("March 5, 2025", datetime(2025, 3, 5, tzinfo=UTC)),
            ("Mar 5, 2025", datetime(2025, 3, 5, tzinfo=UTC)),
        ],
    )
    def test_parse_date(self, raw, expected):
        assert parse_date(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "soon", "2025-13-45"])
    def test_parse_date_invalid(self, raw):
        assert parse_date(raw) is None

    @pytest.mark.parametrize(
        ("sender", "expected"),
        [
            ("Nike <nikeonline@nike.com>", "Nike"),
            ('"Target Orders" <orders@target.com>', "Target"),
            ("ship-confirm@shipment.amazon.com", "Amazon"),
            ("no address", "Unknown"),
        ],
    )
    def test_guess_vendor(self, sender, expected):
        assert guess_vendor(sender) == expected


# =============================================================================
# Transient failures
# =============================================================================


class TestExtractRetries:
    def test_max_minus_one_failures_then_success(self, extractor, make_message, order_payload):
        ext, oracle = extractor(
            {SUBJECT: [TimeoutError("slow"), ConnectionError("reset"), order_payload()]}
        )
        outcome = ext.extract(make_message("m1", SUBJECT))

        assert outcome.status is ExtractionStatus.EXTRACTED
        assert len(oracle.extract_calls) == 3

    def test_max_failures_is_failed_outcome(self, extractor, make_message):
        ext, oracle = extractor({SUBJECT: [OSError("429")]})
        outcome = ext.extract(make_message("m1", SUBJECT))

        assert outcome.status is ExtractionStatus.FAILED
        assert "429" in outcome.detail
        assert len(oracle.extract_calls) == 3


# =============================================================================
# Grouped extraction
# =============================================================================


class TestExtractMany:
    def test_groups_preserve_order_and_pause(
        self, extractor, make_message, order_payload, no_sleep
    ):
        messages = [make_message(f"m{i}", f"Order {i} shipped", minutes=i) for i in range(7)]
        extractions = {m.subject: order_payload(order_id=f"ORD-{i}") for i, m in enumerate(messages)}
        ext, oracle = extractor(extractions, group_size=3, group_pause=0.5)

        batch = ext.extract_many(messages)

        assert [o.message.message_id for o in batch.outcomes] == [m.message_id for m in messages]
        assert [o.order_id for o in batch.orders] == [f"ORD-{i}" for i in range(7)]
        assert no_sleep.delays == [0.5, 0.5]
        assert len(oracle.extract_calls) == 7

    def test_mixed_outcomes(self, extractor, make_message, order_payload):
        messages = [
            make_message("a", "Order A"),
            make_message("b", "Order B", minutes=1),
            make_message("c", "Order C", minutes=2),
        ]
        ext, _ = extractor(
            {"Order A": order_payload("A-1"), "Order B": None, "Order C": [TimeoutError()]}
        )
        batch = ext.extract_many(messages)

        assert [o.order_id for o in batch.orders] == ["A-1"]
        assert [o.message.message_id for o in batch.rejected] == ["b"]
        assert [o.message.message_id for o in batch.failed] == ["c"]

    def test_empty_batch(self, extractor, no_sleep):
        ext, oracle = extractor()
        assert ext.extract_many([]).outcomes == []
        assert no_sleep.delays == []

    def test_group_size_validated(self, fake_oracle_cls):
        with pytest.raises(ValueError):
            OrderExtractor(fake_oracle_cls(), group_size=0)
