"""
Redaction helpers for logs, prompts, and client-facing error strings.

Provides:
- redact(): Hash sensitive strings for correlation without exposure
- redact_subject(): Partially redact email subjects for debugging
- sanitize_for_prompt(): Remove potential prompt injection patterns
- sanitize_error(): Strip paths and long tokens from error text before it
  lands in a SyncSummary
"""

from __future__ import annotations

import re
from hashlib import sha256

# Patterns that could be used for prompt injection
INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"forget\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"system\s*:",
    r"assistant\s*:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE)

_PATH_RE = re.compile(r"(?:/[\w.\-]+){2,}")
_TOKEN_RE = re.compile(r"\b[A-Za-z0-9_\-]{32,}\b")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def redact_subject(subject: str | None, max_length: int = 30) -> str:
    """
    Partially redact email subject for logging while preserving debuggability.

    Shows first N characters + hash suffix for correlation.

    Example:
        "Your Amazon order #123-456 has shipped" ->
        "Your Amazon order #123-456 h... (h:7a8b9c)"
    """
    if not subject:
        return "(no subject)"

    visible = subject[:max_length] + "..." if len(subject) > max_length else subject

    digest = sha256(subject.encode("utf-8")).hexdigest()[:6]
    return f"{visible} (h:{digest})"


def sanitize_for_prompt(text: str | None, max_length: int = 500) -> str:
    """
    Sanitize mailbox text before including it in oracle prompts.

    Removes known injection patterns, truncates, and drops characters that
    could break the prompt's JSON framing. Order numbers, amounts and URLs
    survive untouched.
    """
    if not text:
        return ""

    text = text[:max_length]
    text = INJECTION_REGEX.sub("[REDACTED]", text)
    text = re.sub(r"[<>{}|\\]", "", text)

    return text.strip()


def sanitize_error(error: BaseException | str, max_length: int = 200) -> str:
    """Render an exception as a short string with paths, emails and tokens masked."""
    message = str(error) if not isinstance(error, str) else error
    if isinstance(error, BaseException) and not message:
        message = type(error).__name__
    message = _EMAIL_RE.sub("[EMAIL]", message)
    message = _PATH_RE.sub("[PATH]", message)
    message = _TOKEN_RE.sub("[TOKEN]", message)
    return message[:max_length]
