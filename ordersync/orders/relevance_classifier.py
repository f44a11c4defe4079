"""
Relevance Classifier - batch oracle verdicts on which messages are orders.

Stage 1 of the sync pipeline. One oracle call judges every (subject, sender)
pair in the batch; the verdict is trusted verbatim. Indices the oracle omits
count as not relevant.

Relevance gates all downstream work, so once retries are exhausted the
failure propagates as ClassificationError instead of being swallowed.
"""

from __future__ import annotations

from collections.abc import Sequence

from ordersync.infrastructure.retry import RetryPolicy
from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter, log_event, time_block
from ordersync.orders.interfaces import LanguageOracle
from ordersync.orders.models import RawMessage, RelevantEmail
from ordersync.utils.redaction import redact_subject

logger = get_logger(__name__)


class ClassificationError(RuntimeError):
    """Relevance classification failed after all retries; the pass cannot continue."""


class RelevanceClassifier:
    def __init__(self, oracle: LanguageOracle, retry_policy: RetryPolicy | None = None):
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy(stage="classifier")

    def classify(self, messages: Sequence[RawMessage]) -> list[RelevantEmail]:
        """
        Return the order-related subset of messages, in input order.

        Raises:
            ClassificationError: If the oracle keeps failing transiently

        Side Effects:
            - One oracle call per attempt
            - Telemetry counters classifier.relevant / classifier.irrelevant
        """
        if not messages:
            return []

        items = [(m.subject, m.sender_address) for m in messages]

        try:
            with time_block("classifier.latency"):
                verdicts = self.retry_policy.execute(self.oracle.classify, items)
        except self.retry_policy.retry_on as e:
            counter("classifier.exhausted")
            logger.error(
                "Classification failed after %d attempts for %d messages: %s",
                self.retry_policy.max_attempts,
                len(messages),
                e,
            )
            log_event("classifier.exhausted", batch_size=len(messages), error=type(e).__name__)
            raise ClassificationError(
                f"Relevance classification failed after {self.retry_policy.max_attempts} attempts"
            ) from e

        relevant: list[RelevantEmail] = []
        for index, message in enumerate(messages):
            if verdicts.get(index) is True:
                relevant.append(RelevantEmail.from_message(message))
            else:
                logger.debug("Not order-related: %s", redact_subject(message.subject))

        missing = sum(1 for i in range(len(messages)) if i not in verdicts)
        if missing:
            counter("classifier.missing_verdict", missing)
            logger.warning(
                "Oracle omitted %d of %d verdicts; treated as irrelevant", missing, len(messages)
            )

        counter("classifier.relevant", len(relevant))
        counter("classifier.irrelevant", len(messages) - len(relevant))
        log_event("classifier.result", batch_size=len(messages), relevant=len(relevant))
        return relevant
