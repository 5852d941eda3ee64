"""Unified client exception taxonomy.

Provides a shared base exception hierarchy for the transport, the pollers,
the result cache and the geometry helpers. Every domain exception inherits
from ``BuildableAreaError`` and carries structured context fields that
enable consistent retry decisions and user-facing messages.

Taxonomy categories
-------------------
- ``ValidationError``: local pre-flight violations, never retryable,
  never reach the network.
- ``TransientError``: temporary failures (network, throttle), retryable.
- ``PermanentError``: unrecoverable failures (auth), not retryable.
- ``ContractError``: backend payload drift (missing ids), never retryable.

Transport-level failures (``NetworkError``, ``HttpError``,
``RateLimitedError``, ``AuthError``) are classified into user-facing
outcomes by ``buildable_area.core.classifier``.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for logging and UI state.
"""

from __future__ import annotations

from typing import Any


class BuildableAreaError(Exception):
    """Base exception for all client-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Component where the error occurred
            (e.g. ``"transport"``, ``"batch"``).
        code: Machine-readable error code (e.g. ``"HTTP_ERROR"``).
        retryable: Whether the caller may retry the operation.
        correlation_id: Job or batch identifier the error relates to.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(BuildableAreaError):
    """Local input validation failure. Never retryable.

    Attributes:
        errors: Every individual violation, in discovery order.
    """

    default_stage = "validation"
    default_code = "VALIDATION_FAILED"

    def __init__(
        self,
        message: str = "",
        *,
        errors: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        self.errors = list(errors) if errors else ([message] if message else [])
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class TransientError(BuildableAreaError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class PermanentError(BuildableAreaError):
    """Unrecoverable failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class ContractError(BuildableAreaError):
    """Backend payload drift (missing or malformed fields). Never retryable."""

    default_stage = "contract"
    default_code = "CONTRACT_VIOLATION"

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


# ---------------------------------------------------------------------------
# Transport errors
# ---------------------------------------------------------------------------


class NetworkError(TransientError):
    """No response was received (connection refused, DNS, timeout)."""

    default_stage = "transport"
    default_code = "NETWORK_ERROR"


class HttpError(BuildableAreaError):
    """The server responded with a failure status.

    Attributes:
        status: HTTP status code.
        payload: Decoded response body (``{}`` when absent or not JSON).
    """

    default_stage = "transport"
    default_code = "HTTP_ERROR"

    def __init__(
        self,
        status: int,
        message: str = "",
        *,
        payload: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self.status = status
        self.payload = payload or {}
        kwargs.setdefault("retryable", status == 429 or status >= 500)
        super().__init__(message or f"HTTP {status}", **kwargs)


class RateLimitedError(HttpError):
    """HTTP 429 with the server-supplied retry delay."""

    default_code = "RATE_LIMITED"

    def __init__(
        self,
        retry_after_s: float,
        message: str = "",
        *,
        payload: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self.retry_after_s = retry_after_s
        super().__init__(429, message, payload=payload, **kwargs)


class AuthError(PermanentError):
    """A 401 could not be resolved by a single token refresh."""

    default_stage = "transport"
    default_code = "AUTH_REQUIRED"
    status = 401


class StorageError(BuildableAreaError):
    """Persistence failure in the cache backing store (quota, I/O, corruption).

    Always caught at the ``ResultCache`` boundary.
    """

    default_stage = "cache"
    default_code = "STORAGE_FAILED"


class StorageCorruptedError(StorageError):
    """The backing store holds bytes that cannot be decoded as text."""

    default_code = "STORAGE_CORRUPTED"
