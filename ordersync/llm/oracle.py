"""
Gemini-backed language oracle for order classification and extraction.

The oracle performs one model call per method invocation and returns the
model's JSON decoded into plain Python values. It never retries and never
validates business rules: retry policy belongs to the calling stage and
payload validation to the order extractor.

Side Effects:
    - Network calls to Gemini (via ordersync.llm.gemini.call_llm)
    - Telemetry counters for malformed responses
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from typing import Any

from ordersync.infrastructure.retry import TransientError
from ordersync.llm.gemini import call_llm
from ordersync.llm.prompts import (
    CLASSIFIER_KEY_PREFIX,
    CLASSIFIER_SYSTEM_INSTRUCTION,
    EXTRACTOR_SYSTEM_INSTRUCTION,
    build_classifier_prompt,
    build_extractor_prompt,
)
from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class OracleResponseError(TransientError):
    """Oracle returned an empty or non-JSON response. Treated as transient."""


def parse_json_response(text: str | None) -> Any:
    """
    Decode a model response, tolerating markdown code fences.

    Raises:
        OracleResponseError: If the response is empty or not valid JSON
    """
    if text is None or not text.strip():
        raise OracleResponseError("Empty response from oracle")

    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        counter("oracle.malformed_json")
        raise OracleResponseError(f"Oracle returned malformed JSON: {e.msg}") from e


def parse_classifier_verdicts(payload: Any) -> dict[int, bool]:
    """Map {"email_0": true, ...} to {0: True, ...}; unknown keys are ignored."""
    if not isinstance(payload, dict):
        raise OracleResponseError(
            f"Classifier response must be a JSON object, got {type(payload).__name__}"
        )

    verdicts: dict[int, bool] = {}
    for key, value in payload.items():
        raw_index = str(key)
        if raw_index.startswith(CLASSIFIER_KEY_PREFIX):
            raw_index = raw_index[len(CLASSIFIER_KEY_PREFIX) :]
        if not raw_index.isdigit():
            continue
        verdicts[int(raw_index)] = value is True
    return verdicts


class GeminiOracle:
    """LanguageOracle implementation on top of Gemini JSON-mode prompts."""

    def __init__(self, call: Callable[..., str] = call_llm):
        self._call = call

    def classify(self, items: Sequence[tuple[str, str]]) -> dict[int, bool]:
        """
        Judge a batch of (subject, sender) pairs in one model call.

        Raises:
            TimeoutError / ConnectionError / OSError: Transport failures
            OracleResponseError: Empty, malformed or non-object response
        """
        if not items:
            return {}

        text = self._call(
            build_classifier_prompt(list(items)),
            counter_prefix="oracle.classify",
            system_instruction=CLASSIFIER_SYSTEM_INSTRUCTION,
        )
        verdicts = parse_classifier_verdicts(parse_json_response(text))
        logger.debug("Classifier returned %d verdicts for %d items", len(verdicts), len(items))
        return verdicts

    def extract(self, subject: str, body: str, sender: str, timestamp: str) -> Any:
        """
        Ask the model for one order record.

        Returns the decoded JSON value: usually a dict, None when the model
        answers null. Shape checking is the extractor's job.

        Raises:
            TimeoutError / ConnectionError / OSError: Transport failures
            OracleResponseError: Empty or malformed response
        """
        text = self._call(
            build_extractor_prompt(subject, body, sender, timestamp),
            counter_prefix="oracle.extract",
            system_instruction=EXTRACTOR_SYSTEM_INSTRUCTION,
        )
        return parse_json_response(text)
