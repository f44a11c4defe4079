"""
Bounded retry with linear backoff for oracle calls.

Both pipeline stages that talk to the oracle (relevance classification and
order extraction) retry at their own call site through a RetryPolicy. The
wait before retry N is N x base_delay. The last exception is re-raised once
attempts are exhausted so each stage can apply its own final-failure rule
(classification aborts the pass, extraction skips the message).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ordersync.config import LLM_MAX_RETRIES, LLM_RETRY_BASE_DELAY
from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter, log_event

T = TypeVar("T")

logger = get_logger(__name__)


class TransientError(RuntimeError):
    """A failure expected to clear on its own; retried like a network error."""


# TimeoutError and ConnectionError are OSError subclasses; listed for clarity
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    OSError,
    TransientError,
)


@dataclass
class RetryPolicy:
    stage: str
    max_attempts: int = LLM_MAX_RETRIES
    base_delay: float = LLM_RETRY_BASE_DELAY
    sleep_fn: Callable[[float], None] = time.sleep
    retry_on: tuple[type[BaseException], ...] = field(default=TRANSIENT_ERRORS)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff slept after the given (1-based) failed attempt."""
        return attempt * self.base_delay

    def execute(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Call func, retrying transient errors; re-raises the last one.

        Side Effects:
            - Blocks the calling thread for the backoff duration
            - Logs and counts each scheduled retry
        """
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._before_sleep,
            sleep=self.sleep_fn,
            reraise=True,
        )
        return retryer(func, *args, **kwargs)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        counter(f"{self.stage}.retry")
        logger.warning(
            "%s attempt %d/%d failed (%s), retrying in %.1fs",
            self.stage,
            retry_state.attempt_number,
            self.max_attempts,
            error,
            delay,
        )
        log_event(
            "retry_scheduled",
            stage=self.stage,
            attempt=retry_state.attempt_number,
            delay=round(delay, 3),
        )
