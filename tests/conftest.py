"""
Pytest configuration for the order sync tests

Provides:
- a fresh SQLite database per test (ORDERSYNC_DB_PATH -> tmp_path)
- a scripted fake oracle, an in-memory mail source and checkpoint store
- factories for RawMessage objects and oracle extraction payloads
"""

from __future__ import annotations

import copy
import threading
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from ordersync.infrastructure.database import close_pools, init_database
from ordersync.infrastructure.retry import RetryPolicy
from ordersync.observability.telemetry import reset_telemetry
from ordersync.orders.models import ExtractedOrder, OrderStatus, RawMessage

BASE_TIME = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class FakeOracle:
    """
    Scripted LanguageOracle.

    verdicts: dict of index -> bool (or a callable taking the items)
    extractions: subject -> payload, exception, or a list of those consumed
        one per call (the last element repeats)
    classify_script: exceptions raised by successive classify calls before
        verdicts are returned
    """

    def __init__(self, verdicts=None, extractions=None, classify_script=None):
        self.verdicts = verdicts if verdicts is not None else {}
        self.extractions = extractions or {}
        self.classify_script = list(classify_script or [])
        self.classify_calls: list[list[tuple[str, str]]] = []
        self.extract_calls: list[str] = []
        self._lock = threading.Lock()

    def classify(self, items):
        self.classify_calls.append(list(items))
        if self.classify_script:
            raise self.classify_script.pop(0)
        if callable(self.verdicts):
            return self.verdicts(items)
        return dict(self.verdicts)

    def extract(self, subject, body, sender, timestamp):
        with self._lock:
            self.extract_calls.append(subject)
            script = self.extractions.get(subject)
            if isinstance(script, list):
                item = script.pop(0) if len(script) > 1 else script[0]
            else:
                item = script
        if isinstance(item, BaseException):
            raise item
        return copy.deepcopy(item)


class InMemoryMailSource:
    def __init__(self, messages=None):
        self.messages: list[RawMessage] = list(messages or [])
        self.searches: list[tuple[datetime, datetime]] = []

    def search(self, start_time, end_time, predicate):
        self.searches.append((start_time, end_time))
        return [
            m
            for m in self.messages
            if start_time < m.received_at <= end_time and predicate(m.subject)
        ]


class InMemoryCheckpointStore:
    def __init__(self, initial=None):
        self.values: dict[str, datetime] = dict(initial or {})
        self.writes: list[tuple[str, datetime]] = []

    def get_last_synced_at(self, user_id):
        return self.values.get(user_id)

    def set_last_synced_at(self, user_id, timestamp):
        self.values[user_id] = timestamp
        self.writes.append((user_id, timestamp))


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point the database layer at a fresh file for every test."""
    db_path = tmp_path / "ordersync.db"
    monkeypatch.setenv("ORDERSYNC_DB_PATH", str(db_path))
    init_database()
    reset_telemetry()
    yield db_path
    close_pools()


@pytest.fixture
def no_sleep():
    """Sleep stand-in that records requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def fast_retry(no_sleep):
    def make(stage: str, max_attempts: int = 3, base_delay: float = 1.0) -> RetryPolicy:
        return RetryPolicy(
            stage=stage, max_attempts=max_attempts, base_delay=base_delay, sleep_fn=no_sleep
        )

    return make


@pytest.fixture
def make_message():
    def make(
        message_id: str,
        subject: str = "Your order has shipped",
        minutes: int = 0,
        body: str = "Order details inside",
        sender: str = "Acme Store <orders@acme.com>",
    ) -> RawMessage:
        return RawMessage(
            message_id=message_id,
            thread_id=f"thread-{message_id}",
            subject=subject,
            body_text=body,
            sender_address=sender,
            received_at=BASE_TIME + timedelta(minutes=minutes),
        )

    return make


@pytest.fixture
def order_payload():
    def make(order_id: str = "ORD-1001", status: str = "ordered", **overrides) -> dict:
        payload = {
            "orderId": order_id,
            "vendor": "Acme",
            "totalAmount": 42.5,
            "currency": "USD",
            "orderDate": "2025-03-09T08:00:00Z",
            "latestStatus": status,
            "trackingUrl": None,
            "statusHistory": [],
            "returnInfo": None,
            "metadata": {"itemCount": 1},
        }
        payload.update(overrides)
        return payload

    return make


@pytest.fixture
def make_order():
    def make(
        order_id: str = "ORD-1001",
        status: OrderStatus = OrderStatus.ORDERED,
        minutes: int = 0,
        **overrides,
    ) -> ExtractedOrder:
        received_at = BASE_TIME + timedelta(minutes=minutes)
        fields = {
            "order_id": order_id,
            "vendor": "Acme",
            "total_amount": Decimal("42.50"),
            "currency": "USD",
            "order_date": BASE_TIME - timedelta(days=1),
            "latest_status": status,
            "email_received_at": received_at,
            "sender_address": "orders@acme.com",
            "source_message_id": f"msg-{order_id}-{minutes}",
        }
        fields.update(overrides)
        return ExtractedOrder(**fields)

    return make


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def fake_oracle_cls():
    return FakeOracle


@pytest.fixture
def mail_source_cls():
    return InMemoryMailSource


@pytest.fixture
def checkpoint_store_cls():
    return InMemoryCheckpointStore
