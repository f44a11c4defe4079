"""
Database schema initialization for the order store.

Tables:
- orders: one row per (user_id, order_id)
- order_status_history: append-only status entries per order
- order_returns: at most one return sub-record per order (upserted wholesale)
- sync_checkpoints: last_synced_at per user
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from ordersync.observability.logging import get_logger

logger = get_logger(__name__)

EXPECTED_TABLES = frozenset({"orders", "order_status_history", "order_returns", "sync_checkpoints"})


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
        - Creates the parent directory if needed
        - Creates tables and indexes if they don't exist
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                order_id TEXT NOT NULL CHECK (length(trim(order_id)) > 0),
                vendor TEXT NOT NULL,
                total_amount TEXT,
                currency TEXT NOT NULL,
                order_date TEXT NOT NULL,
                latest_status TEXT NOT NULL,
                tracking_url TEXT,
                email_received_at TEXT NOT NULL,
                sender_address TEXT NOT NULL DEFAULT '',
                source_message_id TEXT,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(user_id, order_id)
            );

            CREATE TABLE IF NOT EXISTS order_status_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_row_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                source_message_id TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS order_returns (
                order_row_id INTEGER PRIMARY KEY REFERENCES orders(id) ON DELETE CASCADE,
                status TEXT NOT NULL,
                initiated_date TEXT,
                tracking_url TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_checkpoints (
                user_id TEXT PRIMARY KEY,
                last_synced_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_orders_user_order_date
                ON orders(user_id, order_date DESC);
            CREATE INDEX IF NOT EXISTS idx_status_history_order
                ON order_status_history(order_row_id, id);
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database schema ready at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected tables

    Raises:
        ValueError: If tables are missing
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    present = {row[0] for row in rows}
    missing = EXPECTED_TABLES - present
    if missing:
        raise ValueError(f"Database missing tables: {', '.join(sorted(missing))}")
    return True
