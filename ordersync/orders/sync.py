"""
Sync Orchestrator - one end-to-end sync pass for one user.

Pipeline:
    checkpoint -> query window -> mail search -> relevance classifier ->
    order extractor -> deduplicator -> reconciler -> checkpoint advance

Failure policy:
    - Classification exhausted: ClassificationError propagates, checkpoint
      unchanged, the same window is retried next pass
    - Extraction failures and per-order storage failures: collected into
      SyncSummary.errors, the rest of the pass continues
    - Checkpoint advances to the pass's start time when messages were seen,
      unless the pass stored nothing and reported errors

The orchestrator keeps no per-pass state on self, so one instance can serve
concurrent passes for different users.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter, log_event, time_block
from ordersync.orders.deduplicator import deduplicate
from ordersync.orders.interfaces import CheckpointStore, LanguageOracle, MailSource, OrderStore
from ordersync.orders.models import RawMessage, SyncError, SyncSummary, utc_now
from ordersync.orders.order_extractor import OrderExtractor
from ordersync.orders.query_window import QueryWindow, build_query_window
from ordersync.orders.reconciler import Reconciler
from ordersync.orders.relevance_classifier import ClassificationError, RelevanceClassifier

logger = get_logger(__name__)


class OrderSyncOrchestrator:
    def __init__(
        self,
        mail_source: MailSource,
        oracle: LanguageOracle,
        order_store: OrderStore,
        checkpoints: CheckpointStore,
        *,
        classifier: RelevanceClassifier | None = None,
        extractor: OrderExtractor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.mail_source = mail_source
        self.order_store = order_store
        self.checkpoints = checkpoints
        self.classifier = classifier or RelevanceClassifier(oracle)
        self.extractor = extractor or OrderExtractor(oracle)
        self.reconciler = Reconciler(order_store)
        self.clock = clock

    def run(self, user_id: str) -> SyncSummary:
        """
        Execute one sync pass.

        Raises:
            ClassificationError: Relevance stage exhausted its retries

        Side Effects:
            - Reads the mailbox, calls the oracle, writes the order store
            - Advances the user's checkpoint (see module docstring)
        """
        now = self.clock()
        window = build_query_window(self.checkpoints.get_last_synced_at(user_id), now)
        logger.info(
            "Sync pass for user %s: window %s .. %s",
            user_id,
            window.start.isoformat(),
            window.end.isoformat(),
        )

        with time_block("sync.pass.latency"):
            messages = self._fetch(window)
            summary = SyncSummary(
                user_id=user_id,
                window=window.to_model(),
                messages_seen=len(messages),
            )

            if not messages:
                counter("sync.empty_pass")
                logger.info("No new messages for user %s; checkpoint unchanged", user_id)
                log_event("sync.pass", user_id=user_id, status=summary.status)
                return summary

            try:
                relevant = self.classifier.classify(messages)
            except ClassificationError:
                counter("sync.aborted")
                logger.error("Sync pass for user %s aborted at classification", user_id)
                log_event("sync.aborted", user_id=user_id, messages_seen=len(messages))
                raise

            relevant_ids = {r.message_id for r in relevant}
            to_extract = [m for m in messages if m.message_id in relevant_ids]
            summary.relevant = len(relevant)
            summary.relevant_emails = relevant

            batch = self.extractor.extract_many(to_extract)
            summary.extracted = len(batch.orders)
            summary.rejected = len(batch.rejected)
            summary.extraction_failures = len(batch.failed)
            summary.errors.extend(
                SyncError(
                    stage="extract",
                    message_id=outcome.message.message_id,
                    error=outcome.detail or "extraction failed",
                )
                for outcome in batch.failed
            )

            dedup = deduplicate(batch.orders)
            summary.deduplicated = len(dedup.orders)
            summary.order_details = dedup.orders

            report = self.reconciler.reconcile(user_id, dedup.orders)
            summary.stored = report.stored
            summary.errors.extend(report.errors)

            if summary.stored == 0 and summary.errors:
                counter("sync.failed_pass")
                logger.error(
                    "Sync pass for user %s stored nothing with %d error(s); checkpoint unchanged",
                    user_id,
                    summary.error_count,
                )
            else:
                self.checkpoints.set_last_synced_at(user_id, now)
                summary.checkpoint_advanced = True

        counter(f"sync.pass.{summary.status}")
        log_event(
            "sync.pass",
            user_id=user_id,
            status=summary.status,
            messages_seen=summary.messages_seen,
            relevant=summary.relevant,
            extracted=summary.extracted,
            rejected=summary.rejected,
            deduplicated=summary.deduplicated,
            stored=summary.stored,
            errors=summary.error_count,
        )
        return summary

    def _fetch(self, window: QueryWindow) -> list[RawMessage]:
        """Search the mailbox; keep in-window messages, first copy of each id."""
        fetched = self.mail_source.search(window.start, window.end, window.predicate)

        seen: set[str] = set()
        messages: list[RawMessage] = []
        for message in fetched:
            if message.message_id in seen or not window.contains(message.received_at):
                continue
            seen.add(message.message_id)
            messages.append(message)

        dropped = len(fetched) - len(messages)
        if dropped:
            counter("sync.messages_dropped", dropped)
            logger.debug("Dropped %d out-of-window or repeated message(s)", dropped)
        return messages
