"""Per-user sync checkpoint persistence (sync_checkpoints table)."""

from __future__ import annotations

from datetime import datetime

from ordersync.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from ordersync.observability.logging import get_logger
from ordersync.orders.models import ensure_utc, utc_now

logger = get_logger(__name__)


class SyncCheckpointRepository:
    """CheckpointStore backed by SQLite."""

    @staticmethod
    @retry_on_db_lock()
    def get_last_synced_at(user_id: str) -> datetime | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT last_synced_at FROM sync_checkpoints WHERE user_id = ?",
                (user_id,),
            ).fetchone()

        if not row:
            return None
        return ensure_utc(datetime.fromisoformat(row["last_synced_at"]))

    @staticmethod
    @retry_on_db_lock()
    def set_last_synced_at(user_id: str, timestamp: datetime) -> None:
        """
        Upsert the user's checkpoint.

        Side Effects:
            - Writes sync_checkpoints row
            - Commits transaction
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_checkpoints (user_id, last_synced_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    last_synced_at = excluded.last_synced_at,
                    updated_at = excluded.updated_at
                """,
                (user_id, ensure_utc(timestamp).isoformat(), utc_now().isoformat()),
            )
        logger.info("Checkpoint for user %s advanced to %s", user_id, timestamp.isoformat())
