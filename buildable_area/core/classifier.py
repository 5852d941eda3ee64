"""Classification of transport failures into user-facing outcomes.

Maps every failure the transport can raise (and raw ``httpx`` errors, for
callers that use the client directly) to an ``ErrorOutcome`` carrying a
human-readable message, the HTTP status, retryability and the retry delay.

Retryability matches ``HttpError.retryable``: 429 and every 5xx.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from buildable_area.core.exceptions import (
    AuthError,
    BuildableAreaError,
    HttpError,
    NetworkError,
    RateLimitedError,
)

logger = logging.getLogger("buildable_area.core.classifier")

DEFAULT_RATE_LIMIT_RETRY_S = 60
DEFAULT_RETRY_DELAY_S = 5

UNEXPECTED_MESSAGE = "An unexpected error occurred"
NETWORK_MESSAGE = "Network error. Please check your internet connection."
AUTH_MESSAGE = "Authentication required. Please log in again."

_STATUS_MESSAGES: dict[int, str] = {
    401: AUTH_MESSAGE,
    403: "Access denied. You do not have permission to perform this action.",
    404: "Resource not found. It may have been deleted or moved.",
    500: "Server error. Please try again later.",
    503: "Service temporarily unavailable. Please try again in a few moments.",
}


@dataclass(frozen=True, slots=True)
class ErrorOutcome:
    """Classified failure.

    Attributes:
        message: Human-readable message suitable for display.
        status: HTTP status, or ``None`` when no response was received.
        retryable: Whether retrying may succeed.
        retry_after_s: Server-supplied delay (429 only).
        details: Decoded response body, if any.
    """

    message: str
    status: int | None = None
    retryable: bool = False
    retry_after_s: float | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Serialise for UI state and logging."""
        return {
            "message": self.message,
            "status": self.status,
            "retryable": self.retryable,
            "retry_after_s": self.retry_after_s,
            "details": dict(self.details),
        }


def classify_error(exc: BaseException) -> ErrorOutcome:
    """Classify *exc* into an ``ErrorOutcome``.

    Recognises the client exception taxonomy as well as raw
    ``httpx.HTTPStatusError`` / ``httpx.RequestError``.  Anything else is
    reported as non-retryable with its own message.
    """
    if isinstance(exc, AuthError):
        return ErrorOutcome(message=AUTH_MESSAGE, status=401, retryable=False)

    if isinstance(exc, RateLimitedError):
        return _classify_status(429, exc.payload, exc.message, retry_after=exc.retry_after_s)

    if isinstance(exc, HttpError):
        return _classify_status(exc.status, exc.payload, exc.message)

    if isinstance(exc, NetworkError | httpx.RequestError):
        return ErrorOutcome(message=NETWORK_MESSAGE, status=None, retryable=True)

    if isinstance(exc, httpx.HTTPStatusError):
        return _classify_status(
            exc.response.status_code,
            _decode_body(exc.response),
            str(exc),
        )

    if isinstance(exc, BuildableAreaError):
        return ErrorOutcome(
            message=exc.message or UNEXPECTED_MESSAGE,
            retryable=exc.retryable,
        )

    return ErrorOutcome(message=str(exc) or UNEXPECTED_MESSAGE, retryable=False)


def is_retryable(exc: BaseException) -> bool:
    """Return whether *exc* is worth retrying."""
    return classify_error(exc).retryable


def retry_delay_s(exc: BaseException) -> float:
    """Return the delay before retrying *exc* (server value or 5 s)."""
    outcome = classify_error(exc)
    if outcome.retry_after_s is not None:
        return outcome.retry_after_s
    return float(DEFAULT_RETRY_DELAY_S)


def format_validation_errors(errors: dict[str, Any] | None) -> str:
    """Format a backend ``{field: messages}`` mapping for display.

    ``{"site_name": ["is required"]}`` becomes ``"Site Name: is required"``.
    """
    if not errors or not isinstance(errors, dict):
        return "Validation failed"

    lines: list[str] = []
    for field_name, messages in errors.items():
        label = str(field_name).replace("_", " ").title()
        items = messages if isinstance(messages, list) else [messages]
        lines.append(f"{label}: {', '.join(str(m) for m in items)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _classify_status(
    status: int,
    payload: dict[str, Any],
    raw_message: str,
    *,
    retry_after: float | None = None,
) -> ErrorOutcome:
    detail = payload.get("detail") if isinstance(payload, dict) else None

    if status == 400:
        return ErrorOutcome(
            message=f"Invalid request: {detail or 'Please check your input'}",
            status=status,
            details=payload,
        )

    if status == 429:
        if retry_after is None:
            retry_after = _coerce_seconds(payload.get("retry_after"))
        delay = retry_after if retry_after is not None else float(DEFAULT_RATE_LIMIT_RETRY_S)
        return ErrorOutcome(
            message=f"Rate limit exceeded. Please try again in {delay:g} seconds.",
            status=status,
            retryable=True,
            retry_after_s=delay,
            details=payload,
        )

    known = _STATUS_MESSAGES.get(status)
    if known is not None:
        return ErrorOutcome(
            message=known,
            status=status,
            retryable=status >= 500,
            details=payload,
        )

    message = detail or payload.get("message") or f"Error {status}: {raw_message}"
    return ErrorOutcome(
        message=str(message), status=status, retryable=status >= 500, details=payload
    )


def _coerce_seconds(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable retry_after value: %r", value)
        return None
    return seconds if seconds >= 0 else None


def _decode_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
