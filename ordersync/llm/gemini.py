"""
Gemini model manager and raw call wrapper.

Provides a shared Gemini model instance for the oracle's classify and
extract prompts.

Supports two backends:
  1. Vertex AI SDK (production) using GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) using GOOGLE_API_KEY

call_llm() performs exactly one model call. Retrying is owned by the
pipeline stage that issued the call (see ordersync.infrastructure.retry).
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from ordersync.config import LLM_TIMEOUT_SECONDS
from ordersync.infrastructure.settings import (
    GEMINI_LOCATION,
    GEMINI_MAX_TOKENS,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    GOOGLE_CLOUD_PROJECT,
)
from ordersync.observability.logging import get_logger
from ordersync.observability.telemetry import counter

logger = get_logger(__name__)

# "vertexai" or "genai"; set once the default model initializes
_backend: str | None = None


class GeminiInitializationError(RuntimeError):
    """Raised when Gemini model cannot be initialized."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create shared Gemini model instance (no system instruction).

    Tries Vertex AI SDK first. Falls back to google-generativeai with
    GOOGLE_API_KEY for local development.

    Raises:
        GeminiInitializationError: If model cannot be initialized
    """
    global _backend
    # Env read at call time; dotenv may load after settings import
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    location = os.getenv("GEMINI_LOCATION", "") or GEMINI_LOCATION or "us-central1"

    if project:
        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(project=project, location=location)
            model = GenerativeModel(GEMINI_MODEL)
            _backend = "vertexai"

            logger.info(
                "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
                project,
                location,
                GEMINI_MODEL,
            )
            return model

        except ImportError:
            logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")
        except Exception as e:
            logger.error("Failed to initialize Vertex AI model: %s", e)
            raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError(
            "Neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set."
        )

    try:
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(GEMINI_MODEL)
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    _backend = "genai"
    logger.info("Initialized Gemini model (google-generativeai): model=%s", GEMINI_MODEL)
    return model


def get_gemini_model_with_options(system_instruction: str | None = None) -> object:
    """Create a Gemini model instance with optional system instruction.

    System instructions are per-model-instance in the Gemini API, so a fresh
    GenerativeModel is built when one is provided.
    """
    if system_instruction is None:
        return get_gemini_model()

    get_gemini_model()

    if _backend == "vertexai":
        from vertexai.generative_models import GenerativeModel

        return GenerativeModel(GEMINI_MODEL, system_instruction=system_instruction)

    import google.generativeai as genai

    return genai.GenerativeModel(GEMINI_MODEL, system_instruction=system_instruction)


def _response_text(response: Any, counter_prefix: str) -> str:
    """Text of a response; "" when it was blocked or has no candidates.

    Both SDKs raise ValueError from .text in that case rather than
    returning None.
    """
    try:
        return response.text or ""
    except ValueError as e:
        counter(f"{counter_prefix}.empty_content")
        logger.warning("LLM returned no usable content: %s", e)
        return ""


def call_llm(
    prompt: str,
    counter_prefix: str = "oracle",
    system_instruction: str | None = None,
    json_output: bool = True,
) -> str:
    """Call the model once, converting Google API errors to builtin types.

    Returns:
        The model's response text (may be empty).

    Raises:
        TimeoutError: On deadline exceeded
        ConnectionError: On service unavailable or internal error
        OSError: On resource exhausted / rate limited
        Exception: On other errors (not transient, caller handles)
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = get_gemini_model_with_options(system_instruction=system_instruction)

    generation_config = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
    }
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    try:
        response = model.generate_content(prompt, generation_config=generation_config)
        counter(f"{counter_prefix}.calls")
        return _response_text(response, counter_prefix)
    except DeadlineExceeded as e:
        counter(f"{counter_prefix}.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except ServiceUnavailable as e:
        counter(f"{counter_prefix}.service_unavailable")
        logger.warning("LLM service unavailable: %s", e)
        raise ConnectionError(f"LLM service unavailable: {e}") from e
    except ResourceExhausted as e:
        counter(f"{counter_prefix}.rate_limited")
        logger.warning("LLM rate limited (429): %s", e)
        raise OSError(f"LLM rate limited: {e}") from e
    except InternalServerError as e:
        counter(f"{counter_prefix}.internal_error")
        logger.warning("LLM internal error (500): %s", e)
        raise ConnectionError(f"LLM internal error: {e}") from e
