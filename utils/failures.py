"""
Failure classifier — maps a raw generator error to a FailureRecord.

Classification order:
  1. explicit kind field set by the generator adapter (``kind`` / ``failure_kind``)
  2. HTTP status or error code (``status``, ``status_code``, ``code``)
  3. builtin exception type (TimeoutError, ConnectionError)
  4. substring match on the lower-cased message
  5. Unknown, not retryable

classify() is pure and total: same input, same record, and it never raises.
"""

from __future__ import annotations

import logging
from typing import Any

from models.schemas import FailureKind, FailureRecord

log = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60

RETRYABLE_KINDS = {
    FailureKind.RATE_LIMIT,
    FailureKind.TIMEOUT,
    FailureKind.NETWORK_ERROR,
}

SUGGESTIONS: dict[FailureKind, tuple[str, ...]] = {
    FailureKind.RATE_LIMIT: (
        "Wait 60-120 seconds for rate limits to reset",
        "Or switch to a different AI provider",
        "Check your API usage limits",
    ),
    FailureKind.TIMEOUT: (
        "The request took too long to complete",
        "Try again with a different AI provider",
        "Check your internet connection",
    ),
    FailureKind.AUTH_ERROR: (
        "Check your API key configuration",
        "Verify the key has sufficient permissions",
        "Try a different AI provider",
    ),
    FailureKind.NETWORK_ERROR: (
        "Check your internet connection",
        "Try again in a few moments",
        "Verify your network settings",
    ),
    FailureKind.QUOTA_EXCEEDED: (
        "You have exceeded your API quota",
        "Wait for quota reset or upgrade your plan",
        "Try a different AI provider",
    ),
    FailureKind.UNKNOWN: (
        "Re-run with --resume to continue from the failed step",
        "Start fresh with --regenerate if the checkpoint looks wrong",
    ),
}

_CODE_KINDS = {
    "timeout": FailureKind.TIMEOUT,
    "etimedout": FailureKind.TIMEOUT,
    "econnreset": FailureKind.NETWORK_ERROR,
    "econnrefused": FailureKind.NETWORK_ERROR,
    "enotfound": FailureKind.NETWORK_ERROR,
    "eai_again": FailureKind.NETWORK_ERROR,
    "insufficient_quota": FailureKind.QUOTA_EXCEEDED,
    "rate_limit_exceeded": FailureKind.RATE_LIMIT,
    "invalid_api_key": FailureKind.AUTH_ERROR,
}

# Checked in order; first match wins
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], FailureKind], ...] = (
    (("rate limit",), FailureKind.RATE_LIMIT),
    (("timeout", "timed out"), FailureKind.TIMEOUT),
    (("unauthorized", "invalid key", "invalid api key"), FailureKind.AUTH_ERROR),
    (("network", "connection"), FailureKind.NETWORK_ERROR),
    (("quota",), FailureKind.QUOTA_EXCEEDED),
)


def classify(error: Any) -> FailureRecord:
    """Classify an exception (or any error-like value) into a FailureRecord."""
    try:
        message = _message_of(error)
        return _classify(error, message)
    except Exception:  # noqa: BLE001  classify() must never raise
        log.debug("Classifier could not inspect %r", type(error), exc_info=True)
        return _record(FailureKind.UNKNOWN, message="")


def _classify(error: Any, message: str) -> FailureRecord:
    # 1. Explicit kind
    kind = _explicit_kind(error)
    if kind is not None:
        retry_after = _retry_after(error) if kind is FailureKind.RATE_LIMIT else None
        return _record(kind, message=message, retry_after=retry_after)

    lowered = message.lower()

    # 2. Status / code
    status = _status_of(error)
    code = _code_of(error)
    if status is not None:
        if status == 429:
            if "quota" in lowered or code == "insufficient_quota":
                return _record(FailureKind.QUOTA_EXCEEDED, message=message)
            return _record(FailureKind.RATE_LIMIT, message=message, retry_after=_retry_after(error))
        if status in (401, 403):
            return _record(FailureKind.AUTH_ERROR, message=message)
        if status == 408:
            return _record(FailureKind.TIMEOUT, message=message)
        if 500 <= status <= 599:
            return _record(FailureKind.UNKNOWN, message=message, retryable=True)
    if code in _CODE_KINDS:
        kind = _CODE_KINDS[code]
        retry_after = _retry_after(error) if kind is FailureKind.RATE_LIMIT else None
        return _record(kind, message=message, retry_after=retry_after)

    # 3. Exception type
    if isinstance(error, TimeoutError):
        return _record(FailureKind.TIMEOUT, message=message)
    if isinstance(error, ConnectionError):
        return _record(FailureKind.NETWORK_ERROR, message=message)

    # 4. Message text
    for needles, kind in _MESSAGE_RULES:
        if any(n in lowered for n in needles):
            retry_after = DEFAULT_RETRY_AFTER_SECONDS if kind is FailureKind.RATE_LIMIT else None
            return _record(kind, message=message, retry_after=retry_after)

    # 5. Conservative default
    return _record(FailureKind.UNKNOWN, message=message)


def _record(
    kind: FailureKind,
    *,
    message: str,
    retry_after: int | None = None,
    retryable: bool | None = None,
) -> FailureRecord:
    return FailureRecord(
        kind=kind,
        retryable=kind in RETRYABLE_KINDS if retryable is None else retryable,
        retry_after_seconds=retry_after,
        suggestions=SUGGESTIONS[kind],
        message=message,
    )


def _explicit_kind(error: Any) -> FailureKind | None:
    for attr in ("kind", "failure_kind"):
        value = getattr(error, attr, None)
        if isinstance(value, FailureKind):
            return value
        if isinstance(value, str):
            try:
                return FailureKind(value.lower())
            except ValueError:
                continue
    return None


def _status_of(error: Any) -> int | None:
    for attr in ("status", "status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def _code_of(error: Any) -> str | None:
    value = getattr(error, "code", None)
    if isinstance(value, str) and not value.isdigit():
        return value.lower()
    return None


def _retry_after(error: Any) -> int:
    value = getattr(error, "retry_after", None)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return int(value)
    return DEFAULT_RETRY_AFTER_SECONDS


def _message_of(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)
