"""TTL cache for completed analysis payloads.

The whole cache lives under a single namespaced key of a ``KeyValueStore``
as a JSON map::

    {"<job_id>": {"data": {...}, "timestamp": 1718000000000, "expiresAt": 1718604800000}}

Timestamps are epoch milliseconds.  Expired entries are evicted lazily on
``get`` and in bulk by ``sweep_expired`` (run once at construction).

Failure policy:
    Every backing-store failure (quota, I/O, corrupted JSON) is caught,
    logged at WARNING and degraded to a no-op or a cache miss.  Callers
    never see a ``StorageError``.

Concurrency:
    Every write is a read-modify-write of the whole map.  Two processes
    sharing one store can lose each other's updates; this is accepted for
    a single active session.
"""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from buildable_area.core.constants import (
    DEFAULT_CACHE_EXPIRY_DAYS,
    DEFAULT_CACHE_STORAGE_KEY,
    SECONDS_PER_DAY,
)
from buildable_area.core.exceptions import StorageCorruptedError, StorageError
from buildable_area.storage.stores import FileStore, KeyValueStore

if TYPE_CHECKING:
    from buildable_area.core.config import ClientConfig

logger = logging.getLogger("buildable_area.storage.result_cache")

DEFAULT_STORAGE_KEY = DEFAULT_CACHE_STORAGE_KEY
DEFAULT_TTL_S = DEFAULT_CACHE_EXPIRY_DAYS * SECONDS_PER_DAY

_MS_PER_S = 1000


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One cached payload.  Invariant: ``expires_at > created_at``."""

    key: str
    payload: Any
    created_at: int
    expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the persisted wire format."""
        return {"data": self.payload, "timestamp": self.created_at, "expiresAt": self.expires_at}

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> CacheEntry:
        """Deserialise a persisted entry.

        Raises:
            KeyError, TypeError, ValueError: If the entry is malformed.
        """
        return cls(
            key=key,
            payload=data["data"],
            created_at=int(data.get("timestamp", 0)),
            expires_at=int(data["expiresAt"]),
        )


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Snapshot of cache occupancy."""

    total: int = 0
    valid: int = 0
    expired: int = 0
    size_kb: int = 0


class ResultCache:
    """TTL-keyed store for completed job payloads.

    Args:
        store: Persisted key-value backing store.
        storage_key: Namespaced key holding the cache map.
        default_ttl_s: TTL applied when ``set`` is called without one.
        clock: Returns the current time in seconds (``time.time``).
        sweep_on_start: Remove expired entries during construction.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        storage_key: str = DEFAULT_STORAGE_KEY,
        default_ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.time,
        sweep_on_start: bool = True,
    ) -> None:
        if not math.isfinite(default_ttl_s) or default_ttl_s <= 0:
            msg = f"default_ttl_s must be a finite number > 0, got {default_ttl_s}"
            raise ValueError(msg)
        self._store = store
        self._storage_key = storage_key
        self._default_ttl_s = default_ttl_s
        self._clock = clock
        if sweep_on_start:
            self.sweep_expired()

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        store: KeyValueStore | None = None,
        **kwargs: Any,
    ) -> ResultCache:
        """Build a cache using the configured key and TTL.

        Without an explicit *store*, entries persist in a ``FileStore`` under
        ``config.cache_dir``.
        """
        if store is None:
            store = FileStore(config.cache_dir)
        kwargs.setdefault("storage_key", config.cache_storage_key)
        kwargs.setdefault("default_ttl_s", config.cache_ttl_s)
        return cls(store, **kwargs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the cached payload for *key*, or ``None`` if absent or expired."""
        try:
            entries = self._load()
            raw = entries.get(key)
            if raw is None:
                return None

            entry = CacheEntry.from_dict(key, raw)
            if not entry.is_expired(self._now_ms()):
                return entry.payload

            del entries[key]
            self._save(entries)
            logger.debug("Cache entry expired | key=%s", key)
            return None
        except (StorageError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to read cached analysis | key=%s | error=%s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        """Cache *value* under *key* for *ttl_s* seconds (default TTL if omitted).

        Raises:
            ValueError: If *ttl_s* is not a positive finite number.
        """
        ttl = self._default_ttl_s if ttl_s is None else ttl_s
        if not math.isfinite(ttl) or ttl <= 0:
            msg = f"ttl_s must be a finite number > 0, got {ttl}"
            raise ValueError(msg)

        now_ms = self._now_ms()
        entry = CacheEntry(
            key=key,
            payload=value,
            created_at=now_ms,
            expires_at=now_ms + max(1, round(ttl * _MS_PER_S)),
        )
        try:
            entries = self._load()
            entries[key] = entry.to_dict()
            self._save(entries)
        except (StorageError, TypeError, ValueError) as exc:
            logger.warning("Failed to cache analysis | key=%s | error=%s", key, exc)

    def remove(self, key: str) -> None:
        """Remove *key* if present."""
        try:
            entries = self._load()
            if entries.pop(key, None) is not None:
                self._save(entries)
        except (StorageError, TypeError, ValueError) as exc:
            logger.warning("Failed to remove cached analysis | key=%s | error=%s", key, exc)

    def clear(self) -> None:
        """Drop the whole cache map."""
        try:
            self._store.remove_item(self._storage_key)
        except StorageError as exc:
            logger.warning("Failed to clear cache | error=%s", exc)

    def sweep_expired(self) -> int:
        """Remove every expired entry.  Returns the number removed."""
        try:
            entries = self._load()
            now_ms = self._now_ms()
            expired = [k for k, raw in entries.items() if _entry_expired(raw, now_ms)]
            for key in expired:
                del entries[key]
            if expired:
                self._save(entries)
                logger.info("Cache sweep removed %d expired entries", len(expired))
            return len(expired)
        except (StorageError, TypeError, ValueError) as exc:
            logger.warning("Failed to sweep cache | error=%s", exc)
            return 0

    def stats(self) -> CacheStats:
        """Return occupancy counts and the serialised size in KiB."""
        try:
            raw_text = self._store.get_item(self._storage_key) or "{}"
            entries = _decode(raw_text)
        except (StorageError, ValueError) as exc:
            logger.warning("Failed to read cache stats | error=%s", exc)
            return CacheStats()

        now_ms = self._now_ms()
        expired = sum(1 for raw in entries.values() if _entry_expired(raw, now_ms))
        return CacheStats(
            total=len(entries),
            valid=len(entries) - expired,
            expired=expired,
            size_kb=round(len(raw_text.encode("utf-8")) / 1024),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * _MS_PER_S)

    def _load(self) -> dict[str, Any]:
        try:
            raw_text = self._store.get_item(self._storage_key)
        except StorageCorruptedError:
            logger.warning("Cache store is unreadable; starting empty | key=%s", self._storage_key)
            return {}
        if not raw_text:
            return {}
        try:
            return _decode(raw_text)
        except ValueError:
            logger.warning("Cache store is corrupted; starting empty | key=%s", self._storage_key)
            return {}

    def _save(self, entries: dict[str, Any]) -> None:
        self._store.set_item(self._storage_key, json.dumps(entries, separators=(",", ":")))


def _decode(raw_text: str) -> dict[str, Any]:
    data = json.loads(raw_text)
    if not isinstance(data, dict):
        msg = f"cache map must be a JSON object, got {type(data).__name__}"
        raise ValueError(msg)
    return data


def _entry_expired(raw: object, now_ms: int) -> bool:
    """Malformed entries count as expired so a sweep clears them."""
    if not isinstance(raw, dict):
        return True
    try:
        return now_ms >= int(raw["expiresAt"])
    except (KeyError, TypeError, ValueError):
        return True
