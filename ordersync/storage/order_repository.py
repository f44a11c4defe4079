"""
Order Repository - SQLite persistence for StoredOrder aggregates.

Follows the database patterns in ordersync/infrastructure/database.py:
pooled connections, db_transaction() for writes, retry_on_db_lock for
SQLITE_BUSY. Every sqlite3, pool or filesystem error that survives the lock
retry is re-raised as OrderStoreError so callers can isolate failures per
order.

Tables: orders, order_status_history, order_returns.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from ordersync.config import API_LIST_LIMIT_DEFAULT
from ordersync.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from ordersync.observability.logging import get_logger
from ordersync.orders.models import (
    OrderStatus,
    ReturnInfo,
    ReturnStatus,
    StatusHistoryEntry,
    StoredOrder,
    utc_now,
)

F = TypeVar("F", bound=Callable[..., Any])

_IMMUTABLE_COLUMNS = frozenset({"user_id", "order_id", "created_at"})

logger = get_logger(__name__)

_ORDER_COLUMNS = (
    "user_id",
    "order_id",
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
    "created_at",
    "updated_at",
)


class OrderStoreError(RuntimeError):
    """A storage operation on one order failed."""

    def __init__(self, message: str, order_id: str | None = None):
        super().__init__(message)
        self.order_id = order_id


def _store_errors(func: F) -> F:
    """Re-raise sqlite3, pool and filesystem errors as OrderStoreError."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except OrderStoreError:
            raise
        # A missing database file raises FileNotFoundError; pool exhaustion and
        # the corruption check raise RuntimeError
        except (sqlite3.Error, OSError, RuntimeError) as e:
            order_id = kwargs.get("order_id")
            if order_id is None and len(args) > 1 and isinstance(args[1], str):
                order_id = args[1]
            elif order_id is None and args and isinstance(args[0], StoredOrder):
                order_id = args[0].order_id
            logger.error("Order store operation %s failed: %s", func.__name__, e)
            raise OrderStoreError(f"{func.__name__} failed: {e}", order_id=order_id) from e

    return wrapper  # type: ignore[return-value]


def _history_rows(order_row_id: int, entries: list[StatusHistoryEntry]) -> list[tuple]:
    return [
        (order_row_id, entry.status.value, entry.timestamp.isoformat(), entry.source_message_id)
        for entry in entries
    ]


def _upsert_return(conn: sqlite3.Connection, order_row_id: int, info: ReturnInfo) -> None:
    conn.execute(
        """
        INSERT INTO order_returns (order_row_id, status, initiated_date, tracking_url, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(order_row_id) DO UPDATE SET
            status = excluded.status,
            initiated_date = excluded.initiated_date,
            tracking_url = excluded.tracking_url,
            updated_at = excluded.updated_at
        """,
        (
            order_row_id,
            info.status.value,
            info.initiated_date.isoformat() if info.initiated_date else None,
            info.tracking_url,
            utc_now().isoformat(),
        ),
    )


def _load_order(conn: sqlite3.Connection, row: sqlite3.Row) -> StoredOrder:
    history_rows = conn.execute(
        """
        SELECT status, timestamp, source_message_id FROM order_status_history
        WHERE order_row_id = ? ORDER BY id ASC
        """,
        (row["id"],),
    ).fetchall()
    history = [
        StatusHistoryEntry(
            status=OrderStatus(h["status"]),
            timestamp=h["timestamp"],
            source_message_id=h["source_message_id"],
        )
        for h in history_rows
    ]

    return_row = conn.execute(
        "SELECT status, initiated_date, tracking_url FROM order_returns WHERE order_row_id = ?",
        (row["id"],),
    ).fetchone()
    return_info = None
    if return_row:
        return_info = ReturnInfo(
            status=ReturnStatus(return_row["status"]),
            initiated_date=return_row["initiated_date"],
            tracking_url=return_row["tracking_url"],
        )

    return StoredOrder.from_db_row(dict(row), history=history, return_info=return_info)


class OrderRepository:
    """
    OrderStore backed by the shared SQLite database.

    Stateless; safe to share across concurrent sync passes.
    """

    @staticmethod
    @_store_errors
    @retry_on_db_lock()
    def get_by_order_id(user_id: str, order_id: str) -> StoredOrder | None:
        """Get the stored aggregate for (user_id, order_id), with history and return."""
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM orders WHERE user_id = ? AND order_id = ?",
                (user_id, order_id),
            ).fetchone()
            if not row:
                return None
            return _load_order(conn, row)

    @staticmethod
    @_store_errors
    @retry_on_db_lock()
    def insert(order: StoredOrder) -> StoredOrder:
        """
        Insert a new aggregate with its full history and optional return.

        Raises:
            OrderStoreError: If (user_id, order_id) already exists or SQLite fails

        Side Effects:
            - Inserts into orders, order_status_history, order_returns
            - Commits transaction
        """
        db_dict = order.to_db_dict()
        columns = ", ".join(_ORDER_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in _ORDER_COLUMNS)

        with db_transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO orders ({columns}) VALUES ({placeholders})",
                db_dict,
            )
            order_row_id = cursor.lastrowid
            if order.status_history:
                conn.executemany(
                    """
                    INSERT INTO order_status_history
                        (order_row_id, status, timestamp, source_message_id)
                    VALUES (?, ?, ?, ?)
                    """,
                    _history_rows(order_row_id, order.status_history),
                )
            if order.return_info is not None:
                _upsert_return(conn, order_row_id, order.return_info)

        logger.info("Stored new order %s for user %s", order.order_id, order.user_id)
        return order

    @staticmethod
    @_store_errors
    @retry_on_db_lock()
    def update(
        user_id: str,
        order_id: str,
        fields: dict[str, Any],
        new_history_entries: list[StatusHistoryEntry],
        return_upsert: ReturnInfo | None = None,
    ) -> StoredOrder:
        """
        Overwrite scalar fields, append history, upsert the return, atomically.

        Args:
            fields: Scalar field values keyed by StoredOrder attribute name
                (may be empty for a history-only update)
            new_history_entries: Appended after existing history, in order
            return_upsert: Replaces the stored return wholesale when given

        Raises:
            OrderStoreError: If the order does not exist or SQLite fails

        Side Effects:
            - Updates orders row, inserts history rows, upserts order_returns
            - Commits transaction
        """
        with db_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM orders WHERE user_id = ? AND order_id = ?",
                (user_id, order_id),
            ).fetchone()
            if not row:
                raise OrderStoreError(f"Order {order_id} not found for update", order_id=order_id)

            order_row_id = row["id"]
            current = StoredOrder.from_db_row(dict(row))
            updated = current.model_copy(update={**fields, "updated_at": utc_now()})
            db_dict = updated.to_db_dict()

            assignments = ", ".join(
                f"{c} = :{c}" for c in _ORDER_COLUMNS if c not in _IMMUTABLE_COLUMNS
            )
            conn.execute(
                f"UPDATE orders SET {assignments} WHERE id = :row_id",
                {**db_dict, "row_id": order_row_id},
            )

            if new_history_entries:
                conn.executemany(
                    """
                    INSERT INTO order_status_history
                        (order_row_id, status, timestamp, source_message_id)
                    VALUES (?, ?, ?, ?)
                    """,
                    _history_rows(order_row_id, new_history_entries),
                )
            if return_upsert is not None:
                _upsert_return(conn, order_row_id, return_upsert)

            result = _load_order(
                conn,
                conn.execute("SELECT * FROM orders WHERE id = ?", (order_row_id,)).fetchone(),
            )

        logger.debug(
            "Updated order %s (%d fields, %d history entries)",
            order_id,
            len(fields),
            len(new_history_entries),
        )
        return result

    @staticmethod
    @_store_errors
    @retry_on_db_lock()
    def list_by_user(user_id: str, limit: int = API_LIST_LIMIT_DEFAULT) -> list[StoredOrder]:
        """List a user's orders, newest order_date first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM orders WHERE user_id = ?
                ORDER BY order_date DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
            return [_load_order(conn, row) for row in rows]
