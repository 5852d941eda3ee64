"""Local persistence for completed analysis results."""

from buildable_area.storage.result_cache import CacheEntry, CacheStats, ResultCache
from buildable_area.storage.stores import FileStore, KeyValueStore, MemoryStore

__all__ = [
    "CacheEntry",
    "CacheStats",
    "FileStore",
    "KeyValueStore",
    "MemoryStore",
    "ResultCache",
]
