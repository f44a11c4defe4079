"""
Unit tests for the Reconciler and its recency policy.

Uses the real SQLite OrderRepository against the per-test database.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ordersync.infrastructure.database import close_pools
from ordersync.observability.telemetry import get_counter
from ordersync.orders.models import (
    OrderStatus,
    ReturnInfo,
    ReturnStatus,
    StatusHistoryEntry,
)
from ordersync.orders.reconciler import Reconciler, is_newer, scalar_updates, superseded_entry
from ordersync.orders.types import ReconcileAction
from ordersync.storage.order_repository import OrderRepository, OrderStoreError

USER = "user-1"


class FailingRepository(OrderRepository):
    """OrderRepository that fails inserts for chosen order ids."""

    def __init__(self, fail_ids):
        self.fail_ids = set(fail_ids)

    def insert(self, order):
        if order.order_id in self.fail_ids:
            raise OrderStoreError("disk I/O error", order_id=order.order_id)
        return OrderRepository.insert(order)


@pytest.fixture
def repo():
    return OrderRepository()


@pytest.fixture
def reconciler(repo):
    return Reconciler(repo)


def _existing_id(order):
    return f"existing_{int(order.email_received_at.timestamp() * 1000)}"


class TestIsNewer:
    def test_later_email_wins(self, make_order):
        stored = make_order(status=OrderStatus.DELIVERED, minutes=0)
        incoming = make_order(status=OrderStatus.ORDERED, minutes=1)
        assert is_newer(incoming, stored)
        assert not is_newer(stored, incoming)

    def test_tie_higher_rank_wins(self, make_order):
        stored = make_order(status=OrderStatus.SHIPPED)
        assert is_newer(make_order(status=OrderStatus.DELIVERED), stored)
        assert not is_newer(make_order(status=OrderStatus.PACKED), stored)

    def test_tie_same_rank_does_not_win(self, make_order):
        stored = make_order(status=OrderStatus.CONFIRMED)
        assert not is_newer(make_order(status=OrderStatus.PROCESSING), stored)
        assert not is_newer(make_order(status=OrderStatus.CONFIRMED), stored)

    @pytest.mark.parametrize(
        ("incoming", "stored"),
        [
            (OrderStatus.CANCELLED, OrderStatus.SHIPPED),
            (OrderStatus.DELIVERED, OrderStatus.RETURNED),
            (OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED),
        ],
    )
    def test_tie_with_terminal_status_does_not_win(self, make_order, incoming, stored):
        assert not is_newer(make_order(status=incoming), make_order(status=stored))

    def test_later_terminal_wins(self, make_order):
        stored = make_order(status=OrderStatus.DELIVERED, minutes=0)
        assert is_newer(make_order(status=OrderStatus.RETURNED, minutes=5), stored)


class TestScalarUpdates:
    def test_empty_optionals_are_not_written(self, make_order):
        incoming = make_order(
            total_amount=None, tracking_url=None, source_message_id=None, metadata={}
        )
        fields = scalar_updates(incoming)

        assert "total_amount" not in fields
        assert "tracking_url" not in fields
        assert "source_message_id" not in fields
        assert "metadata" not in fields
        assert fields["latest_status"] is OrderStatus.ORDERED

    def test_superseded_entry(self, make_order, reconciler, repo, base_time):
        order = make_order(status=OrderStatus.SHIPPED)
        reconciler.reconcile(USER, [order])

        entry = superseded_entry(repo.get_by_order_id(USER, order.order_id))
        assert entry.status is OrderStatus.SHIPPED
        assert entry.timestamp == base_time
        assert entry.source_message_id == f"existing_{int(base_time.timestamp() * 1000)}"


class TestReconcile:
    def test_new_order_inserted(self, reconciler, repo, make_order, base_time):
        history = [
            StatusHistoryEntry(status=OrderStatus.ORDERED, timestamp=base_time, source_message_id="m0")
        ]
        report = reconciler.reconcile(USER, [make_order("A-1", status_history=history)])

        assert [(r.order_id, r.action) for r in report.results] == [("A-1", ReconcileAction.INSERTED)]
        assert report.stored == 1
        stored = repo.get_by_order_id(USER, "A-1")
        assert stored.user_id == USER
        assert stored.total_amount == Decimal("42.50")
        assert stored.status_history == history
        assert get_counter("reconciler.inserted") == 1

    def test_newer_record_overwrites_and_preserves_prior_status(self, reconciler, repo, make_order):
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.ORDERED, minutes=0)])
        prior = repo.get_by_order_id(USER, "A-1")

        incoming_history = [
            StatusHistoryEntry(
                status=OrderStatus.SHIPPED,
                timestamp=prior.email_received_at + timedelta(minutes=10),
                source_message_id="m-ship",
            )
        ]
        incoming = make_order(
            "A-1",
            OrderStatus.SHIPPED,
            minutes=10,
            tracking_url="https://track.example.com/1",
            status_history=incoming_history,
        )
        report = reconciler.reconcile(USER, [incoming])

        assert report.results[0].action is ReconcileAction.UPDATED
        stored = repo.get_by_order_id(USER, "A-1")
        assert stored.latest_status is OrderStatus.SHIPPED
        assert stored.tracking_url == "https://track.example.com/1"
        assert stored.email_received_at == incoming.email_received_at
        assert stored.source_message_id == incoming.source_message_id
        assert [h.source_message_id for h in stored.status_history] == [_existing_id(prior), "m-ship"]
        assert stored.status_history[0].status is OrderStatus.ORDERED
        assert stored.created_at == prior.created_at

    def test_tie_higher_rank_updates(self, reconciler, repo, make_order):
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.SHIPPED)])
        report = reconciler.reconcile(USER, [make_order("A-1", OrderStatus.DELIVERED)])

        assert report.results[0].action is ReconcileAction.UPDATED
        stored = repo.get_by_order_id(USER, "A-1")
        assert stored.latest_status is OrderStatus.DELIVERED
        assert len(stored.status_history) == 1
        assert stored.status_history[0].status is OrderStatus.SHIPPED
        assert stored.status_history[0].source_message_id.startswith("existing_")

    def test_tie_lower_rank_appends_history_only(self, reconciler, repo, make_order, base_time):
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.SHIPPED)])
        before = repo.get_by_order_id(USER, "A-1")

        history = [
            StatusHistoryEntry(status=OrderStatus.ORDERED, timestamp=base_time, source_message_id="m-old")
        ]
        incoming = make_order(
            "A-1", OrderStatus.ORDERED, total_amount=Decimal("1.00"), status_history=history
        )
        report = reconciler.reconcile(USER, [incoming])

        assert report.results[0].action is ReconcileAction.HISTORY_ONLY
        after = repo.get_by_order_id(USER, "A-1")
        assert after.scalar_fields() == before.scalar_fields()
        assert after.status_history == history

    def test_older_record_never_overwrites(self, reconciler, repo, make_order):
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.SHIPPED, minutes=30)])
        report = reconciler.reconcile(USER, [make_order("A-1", OrderStatus.DELIVERED, minutes=0)])

        assert report.results[0].action is ReconcileAction.HISTORY_ONLY
        assert repo.get_by_order_id(USER, "A-1").latest_status is OrderStatus.SHIPPED

    def test_terminal_tie_keeps_stored(self, reconciler, repo, make_order):
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.CANCELLED)])
        report = reconciler.reconcile(USER, [make_order("A-1", OrderStatus.DELIVERED)])

        assert report.results[0].action is ReconcileAction.HISTORY_ONLY
        assert repo.get_by_order_id(USER, "A-1").latest_status is OrderStatus.CANCELLED

    def test_empty_optionals_keep_stored_values(self, reconciler, repo, make_order):
        reconciler.reconcile(
            USER,
            [make_order("A-1", tracking_url="https://track.example.com/9", metadata={"items": 2})],
        )
        reconciler.reconcile(
            USER,
            [
                make_order(
                    "A-1",
                    OrderStatus.SHIPPED,
                    minutes=5,
                    total_amount=None,
                    tracking_url=None,
                    metadata={},
                )
            ],
        )

        stored = repo.get_by_order_id(USER, "A-1")
        assert stored.latest_status is OrderStatus.SHIPPED
        assert stored.total_amount == Decimal("42.50")
        assert stored.tracking_url == "https://track.example.com/9"
        assert stored.metadata == {"items": 2}

    def test_return_info_upserted_wholesale(self, reconciler, repo, make_order, base_time):
        first = ReturnInfo(
            status=ReturnStatus.INITIATED,
            initiated_date=base_time,
            tracking_url="https://returns.example.com/1",
        )
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.RETURNED, return_info=first)])
        assert repo.get_by_order_id(USER, "A-1").return_info == first

        second = ReturnInfo(status=ReturnStatus.REFUNDED)
        reconciler.reconcile(
            USER, [make_order("A-1", OrderStatus.RETURNED, minutes=60, return_info=second)]
        )
        assert repo.get_by_order_id(USER, "A-1").return_info == second

    def test_losing_record_does_not_touch_return(self, reconciler, repo, make_order):
        info = ReturnInfo(status=ReturnStatus.PICKED_UP)
        stale = ReturnInfo(status=ReturnStatus.INITIATED)
        reconciler.reconcile(
            USER, [make_order("A-1", OrderStatus.RETURNED, minutes=60, return_info=info)]
        )
        reconciler.reconcile(USER, [make_order("A-1", OrderStatus.RETURNED, return_info=stale)])
        assert repo.get_by_order_id(USER, "A-1").return_info == info

    def test_reapplying_same_order_is_stable(self, reconciler, repo, make_order):
        order = make_order("A-1", OrderStatus.SHIPPED)
        reconciler.reconcile(USER, [order])
        before = repo.get_by_order_id(USER, "A-1").scalar_fields()

        report = reconciler.reconcile(USER, [order])

        assert report.results[0].action is ReconcileAction.HISTORY_ONLY
        assert repo.get_by_order_id(USER, "A-1").scalar_fields() == before

    def test_orders_are_scoped_per_user(self, reconciler, repo, make_order):
        reconciler.reconcile("alice", [make_order("A-1")])
        report = reconciler.reconcile("bob", [make_order("A-1")])

        assert report.results[0].action is ReconcileAction.INSERTED
        assert repo.get_by_order_id("alice", "A-1") is not None
        assert repo.get_by_order_id("bob", "A-1") is not None

    def test_store_failure_isolated_per_order(self, repo, make_order):
        reconciler = Reconciler(FailingRepository(fail_ids={"B-2"}))
        orders = [make_order("A-1"), make_order("B-2"), make_order("C-3")]

        report = reconciler.reconcile(USER, orders)

        assert [r.order_id for r in report.results] == ["A-1", "C-3"]
        assert len(report.errors) == 1
        error = report.errors[0]
        assert error.stage == "reconcile"
        assert error.order_id == "B-2"
        assert error.message_id == orders[1].source_message_id
        assert "disk I/O error" in error.error
        assert repo.get_by_order_id(USER, "C-3") is not None
        assert get_counter("reconciler.error") == 1

    def test_missing_database_reported_per_order(self, temp_db, make_order):
        close_pools()
        temp_db.unlink()
        reconciler = Reconciler(OrderRepository())

        report = reconciler.reconcile(USER, [make_order("A-1"), make_order("B-2")])

        assert report.results == []
        assert [e.order_id for e in report.errors] == ["A-1", "B-2"]
        assert all(e.stage == "reconcile" for e in report.errors)
        assert get_counter("reconciler.error") == 2
