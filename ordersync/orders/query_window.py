"""
Query window builder.

Computes the half-open [start, end] receive-time range for one sync pass and
the subject keyword predicate used to pre-filter the mailbox search.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime

from ordersync.config import SYNC_FIRST_WINDOW_MONTHS
from ordersync.orders.models import QueryWindowModel, ensure_utc, utc_now

ORDER_SUBJECT_KEYWORDS: tuple[str, ...] = (
    "order",
    "shipped",
    "delivery",
    "tracking",
    "purchase",
    "confirmation",
    "your order",
    "has shipped",
    "order status",
    "order confirmed",
    "order received",
    "payment failed",
    "payment declined",
    "payment unsuccessful",
    "transaction failed",
)


@dataclass(frozen=True)
class SubjectPredicate:
    """Keyword match over subject lines (case-insensitive, word-bounded)."""

    keywords: tuple[str, ...] = ORDER_SUBJECT_KEYWORDS
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        alternation = "|".join(re.escape(k) for k in sorted(self.keywords, key=len, reverse=True))
        object.__setattr__(self, "_pattern", re.compile(rf"\b(?:{alternation})", re.IGNORECASE))

    def matches(self, subject: str | None) -> bool:
        return bool(subject) and bool(self._pattern.search(subject))

    __call__ = matches

    def to_gmail_query(self) -> str:
        """Render as a Gmail search clause: subject:(order OR "has shipped" ...)."""
        terms = [f'"{k}"' if " " in k else k for k in self.keywords]
        return f"subject:({' OR '.join(terms)})"


@dataclass(frozen=True)
class QueryWindow:
    start: datetime
    end: datetime
    predicate: SubjectPredicate = field(default_factory=SubjectPredicate)

    def contains(self, received_at: datetime) -> bool:
        """start < received_at <= end, so a message at the checkpoint is not re-read."""
        ts = ensure_utc(received_at)
        return self.start < ts <= self.end

    def to_model(self) -> QueryWindowModel:
        return QueryWindowModel(start=self.start, end=self.end)


def subtract_months(value: datetime, months: int) -> datetime:
    """Calendar-month subtraction; the day is clamped to the target month's length."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def build_query_window(
    last_synced_at: datetime | None,
    now: datetime | None = None,
    first_sync_months: int = SYNC_FIRST_WINDOW_MONTHS,
) -> QueryWindow:
    """
    Build the receive-time window for a sync pass.

    First sync (no checkpoint) looks back first_sync_months calendar months;
    later syncs start at the checkpoint. The window always ends at now.
    """
    end = ensure_utc(now) if now is not None else utc_now()
    if last_synced_at is None:
        start = subtract_months(end, first_sync_months)
    else:
        # A checkpoint ahead of the clock yields an empty window, not an inverted one
        start = min(ensure_utc(last_synced_at), end)
    return QueryWindow(start=start, end=end)
