"""Collaborator protocols injected into the sync pipeline."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Protocol

from ordersync.orders.models import RawMessage, ReturnInfo, StatusHistoryEntry, StoredOrder


class MailSource(Protocol):
    def search(
        self,
        start_time: datetime,
        end_time: datetime,
        predicate: Callable[[str], bool],
    ) -> list[RawMessage]:
        """Return messages received in the window whose subject passes predicate."""
        ...


class LanguageOracle(Protocol):
    def classify(self, items: Sequence[tuple[str, str]]) -> dict[int, bool]: ...

    def extract(self, subject: str, body: str, sender: str, timestamp: str) -> Any: ...


class OrderStore(Protocol):
    def get_by_order_id(self, user_id: str, order_id: str) -> StoredOrder | None: ...

    def insert(self, order: StoredOrder) -> StoredOrder: ...

    def update(
        self,
        user_id: str,
        order_id: str,
        fields: dict[str, Any],
        new_history_entries: list[StatusHistoryEntry],
        return_upsert: ReturnInfo | None = None,
    ) -> StoredOrder:
        """Apply scalar changes, append history, upsert return; one transaction."""
        ...

    def list_by_user(self, user_id: str, limit: int = ...) -> list[StoredOrder]: ...


class CheckpointStore(Protocol):
    def get_last_synced_at(self, user_id: str) -> datetime | None: ...

    def set_last_synced_at(self, user_id: str, timestamp: datetime) -> None: ...
