"""Client configuration loaded from environment variables.

All configuration values have sensible defaults for a local backend on
port 8001.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any numeric
    value is out of its valid range.  This prevents latent runtime
    errors by catching bad configuration at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from buildable_area.core.constants import (
    DEFAULT_API_PREFIX,
    DEFAULT_BATCH_POLL_INTERVAL_S,
    DEFAULT_CACHE_DIR,
    DEFAULT_CACHE_EXPIRY_DAYS,
    DEFAULT_CACHE_STORAGE_KEY,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_POLL_MAX_ATTEMPTS,
    SECONDS_PER_DAY,
)
from buildable_area.core.exceptions import BuildableAreaError


class ConfigValidationError(BuildableAreaError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Immutable client configuration.

    Attributes:
        api_base_url: Backend origin (scheme, host and port).
        api_prefix: Path prefix shared by every analysis endpoint.
        request_timeout_s: Per-request timeout; long because DEM analysis
            submissions may block while the backend stages data.
        poll_interval_s: Delay between single-job status polls.
        poll_max_attempts: Attempt budget for a single job.
        batch_poll_interval_s: Delay between batch status polls.
        cache_expiry_days: Default TTL for cached analysis results.
        cache_storage_key: Namespaced key holding the cache map.
        cache_dir: Directory used by the file-backed cache store.
    """

    api_base_url: str = "http://localhost:8001"
    api_prefix: str = DEFAULT_API_PREFIX
    request_timeout_s: float = 600.0
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    batch_poll_interval_s: float = DEFAULT_BATCH_POLL_INTERVAL_S
    cache_expiry_days: float = DEFAULT_CACHE_EXPIRY_DAYS
    cache_storage_key: str = DEFAULT_CACHE_STORAGE_KEY
    cache_dir: str = DEFAULT_CACHE_DIR

    @property
    def cache_ttl_s(self) -> float:
        """Default cache TTL in seconds."""
        return self.cache_expiry_days * SECONDS_PER_DAY

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a numeric value is out of range
                or a required string value is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``BUILDABLE_AREA_POLL_INTERVAL_S=abc``).
        """
        config = cls(
            api_base_url=os.getenv("BUILDABLE_AREA_API_URL", "http://localhost:8001"),
            api_prefix=os.getenv("BUILDABLE_AREA_API_PREFIX", DEFAULT_API_PREFIX),
            request_timeout_s=float(os.getenv("BUILDABLE_AREA_REQUEST_TIMEOUT_S", "600")),
            poll_interval_s=float(
                os.getenv("BUILDABLE_AREA_POLL_INTERVAL_S", str(DEFAULT_POLL_INTERVAL_S))
            ),
            poll_max_attempts=int(
                os.getenv("BUILDABLE_AREA_POLL_MAX_ATTEMPTS", str(DEFAULT_POLL_MAX_ATTEMPTS))
            ),
            batch_poll_interval_s=float(
                os.getenv(
                    "BUILDABLE_AREA_BATCH_POLL_INTERVAL_S", str(DEFAULT_BATCH_POLL_INTERVAL_S)
                )
            ),
            cache_expiry_days=float(
                os.getenv("BUILDABLE_AREA_CACHE_EXPIRY_DAYS", str(DEFAULT_CACHE_EXPIRY_DAYS))
            ),
            cache_storage_key=os.getenv("BUILDABLE_AREA_CACHE_KEY", DEFAULT_CACHE_STORAGE_KEY),
            cache_dir=os.getenv("BUILDABLE_AREA_CACHE_DIR", DEFAULT_CACHE_DIR),
        )
        _validate(config)
        return config


def _validate(config: ClientConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not config.api_base_url:
        raise ConfigValidationError(
            "BUILDABLE_AREA_API_URL",
            config.api_base_url,
            "must not be empty",
        )

    if not config.api_base_url.startswith(("http://", "https://")):
        raise ConfigValidationError(
            "BUILDABLE_AREA_API_URL",
            config.api_base_url,
            "must start with http:// or https://",
        )

    if config.request_timeout_s <= 0:
        raise ConfigValidationError(
            "BUILDABLE_AREA_REQUEST_TIMEOUT_S",
            config.request_timeout_s,
            "must be > 0 (seconds)",
        )

    if config.poll_interval_s < 0:
        raise ConfigValidationError(
            "BUILDABLE_AREA_POLL_INTERVAL_S",
            config.poll_interval_s,
            "must be >= 0 (seconds)",
        )

    if config.batch_poll_interval_s < 0:
        raise ConfigValidationError(
            "BUILDABLE_AREA_BATCH_POLL_INTERVAL_S",
            config.batch_poll_interval_s,
            "must be >= 0 (seconds)",
        )

    if config.poll_max_attempts < 1:
        raise ConfigValidationError(
            "BUILDABLE_AREA_POLL_MAX_ATTEMPTS",
            config.poll_max_attempts,
            "must be >= 1",
        )

    if config.cache_expiry_days <= 0:
        raise ConfigValidationError(
            "BUILDABLE_AREA_CACHE_EXPIRY_DAYS",
            config.cache_expiry_days,
            "must be > 0 (days)",
        )

    if not config.cache_storage_key:
        raise ConfigValidationError(
            "BUILDABLE_AREA_CACHE_KEY",
            config.cache_storage_key,
            "must not be empty",
        )
