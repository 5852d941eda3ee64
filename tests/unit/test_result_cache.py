"""Tests for the TTL result cache and its backing stores."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from buildable_area.core.config import ClientConfig
from buildable_area.core.exceptions import StorageCorruptedError, StorageError
from buildable_area.storage.result_cache import DEFAULT_STORAGE_KEY, CacheEntry, ResultCache
from buildable_area.storage.stores import FileStore, MemoryStore

DAY_S = 24 * 60 * 60


class TestGetSet:
    def test_round_trip(self, cache) -> None:
        cache.set("job-1", {"status": "completed", "result": {"acres": 12.5}})
        assert cache.get("job-1") == {"status": "completed", "result": {"acres": 12.5}}

    def test_missing_key(self, cache) -> None:
        assert cache.get("nope") is None

    def test_default_ttl_is_seven_days(self, cache, clock) -> None:
        cache.set("job-1", {"x": 1})

        clock.advance(7 * DAY_S - 1)
        assert cache.get("job-1") == {"x": 1}

        clock.advance(1)
        assert cache.get("job-1") is None

    def test_expired_entry_evicted_on_get(self, cache, clock, memory_store) -> None:
        cache.set("job-1", {"x": 1}, ttl_s=10)
        clock.advance(10)

        assert cache.get("job-1") is None
        assert json.loads(memory_store.get_item(DEFAULT_STORAGE_KEY)) == {}

    def test_short_ttl_has_positive_lifetime(self, cache) -> None:
        cache.set("job-1", {"x": 1}, ttl_s=0.0001)
        assert cache.get("job-1") == {"x": 1}

    @pytest.mark.parametrize("ttl", [0, -5, float("nan"), float("inf")])
    def test_non_positive_or_non_finite_ttl_rejected(self, cache, ttl) -> None:
        with pytest.raises(ValueError):
            cache.set("job-1", {"x": 1}, ttl_s=ttl)

    def test_wire_format(self, cache, clock, memory_store) -> None:
        cache.set("job-1", {"x": 1}, ttl_s=60)
        stored = json.loads(memory_store.get_item(DEFAULT_STORAGE_KEY))

        now_ms = int(clock.now * 1000)
        assert stored == {
            "job-1": {"data": {"x": 1}, "timestamp": now_ms, "expiresAt": now_ms + 60_000}
        }

    def test_remove_and_clear(self, cache) -> None:
        cache.set("a", 1)
        cache.set("b", 2)

        cache.remove("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.clear()
        assert cache.get("b") is None


class TestSweep:
    def test_sweep_removes_only_expired(self, cache, clock) -> None:
        cache.set("short", 1, ttl_s=5)
        cache.set("long", 2, ttl_s=500)
        clock.advance(10)

        assert cache.sweep_expired() == 1
        assert cache.get("long") == 2

    def test_sweep_on_construction(self, memory_store, clock) -> None:
        ResultCache(memory_store, clock=clock).set("old", 1, ttl_s=1)
        clock.advance(5)

        ResultCache(memory_store, clock=clock)

        assert json.loads(memory_store.get_item(DEFAULT_STORAGE_KEY)) == {}

    def test_malformed_entries_swept(self, memory_store, clock) -> None:
        memory_store.set_item(DEFAULT_STORAGE_KEY, json.dumps({"bad": "x", "worse": {}}))
        cache = ResultCache(memory_store, clock=clock, sweep_on_start=False)
        assert cache.sweep_expired() == 2

    def test_stats(self, cache, clock) -> None:
        cache.set("a", 1, ttl_s=5)
        cache.set("b", 2, ttl_s=500)
        clock.advance(10)

        stats = cache.stats()
        assert (stats.total, stats.valid, stats.expired) == (2, 1, 1)
        assert stats.size_kb >= 0


class TestDegradation:
    def test_quota_exceeded_is_swallowed(self, clock) -> None:
        cache = ResultCache(MemoryStore(quota_bytes=10), clock=clock)
        cache.set("job-1", {"payload": "x" * 100})
        assert cache.get("job-1") is None

    def test_corrupted_store_reads_as_empty(self, memory_store, clock) -> None:
        memory_store.set_item(DEFAULT_STORAGE_KEY, "{not json")
        cache = ResultCache(memory_store, clock=clock)

        assert cache.get("job-1") is None
        cache.set("job-1", 1)
        assert cache.get("job-1") == 1

    def test_unserialisable_value_is_swallowed(self, cache) -> None:
        cache.set("job-1", object())
        assert cache.get("job-1") is None

    @pytest.mark.parametrize("ttl", [0, float("nan"), float("inf")])
    def test_invalid_default_ttl_rejected(self, memory_store, ttl) -> None:
        with pytest.raises(ValueError):
            ResultCache(memory_store, default_ttl_s=ttl)

    def test_undecodable_file_is_overwritten(self, tmp_path: Path, clock) -> None:
        (tmp_path / f"{DEFAULT_STORAGE_KEY}.json").write_bytes(b"\xff\xfe garbage")
        cache = ResultCache(FileStore(tmp_path), clock=clock)

        assert cache.get("job-1") is None
        assert cache.sweep_expired() == 0
        cache.set("job-1", {"status": "completed"})

        assert cache.get("job-1") == {"status": "completed"}
        assert cache.stats().total == 1


class TestCacheEntry:
    def test_expiry_boundary(self) -> None:
        entry = CacheEntry(key="k", payload=1, created_at=0, expires_at=100)
        assert entry.is_expired(99) is False
        assert entry.is_expired(100) is True

    def test_from_dict_requires_expiry(self) -> None:
        with pytest.raises(KeyError):
            CacheEntry.from_dict("k", {"data": 1})


class TestStores:
    def test_memory_store(self) -> None:
        store = MemoryStore()
        store.set_item("k", "v")
        assert store.get_item("k") == "v"
        store.remove_item("k")
        store.remove_item("k")
        assert store.get_item("k") is None

    def test_memory_store_quota(self) -> None:
        store = MemoryStore(quota_bytes=4)
        store.set_item("k", "1234")
        with pytest.raises(StorageError):
            store.set_item("other", "5")

    def test_file_store_persists_across_instances(self, tmp_path: Path) -> None:
        FileStore(tmp_path / "cache").set_item("buildable/area", "{}")

        store = FileStore(tmp_path / "cache")
        assert store.get_item("buildable/area") == "{}"
        assert (tmp_path / "cache" / "buildable_area.json").exists()

        store.remove_item("buildable/area")
        assert store.get_item("buildable/area") is None

    def test_file_store_invalid_utf8(self, tmp_path: Path) -> None:
        (tmp_path / "k.json").write_bytes(b"\xff\xfe")
        with pytest.raises(StorageCorruptedError):
            FileStore(tmp_path).get_item("k")

    def test_file_store_read_error(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path)
        (tmp_path / "k.json").mkdir()
        with pytest.raises(StorageError):
            store.get_item("k")

    def test_cache_over_file_store(self, tmp_path: Path, clock) -> None:
        ResultCache(FileStore(tmp_path), clock=clock).set("job-1", {"x": 1})
        assert ResultCache(FileStore(tmp_path), clock=clock).get("job-1") == {"x": 1}


class TestFromConfig:
    def test_uses_configured_key_and_ttl(self, memory_store, clock) -> None:
        config = ClientConfig(cache_expiry_days=1, cache_storage_key="site_cache")
        cache = ResultCache.from_config(config, memory_store, clock=clock)

        cache.set("job-1", {"x": 1})
        assert json.loads(memory_store.get_item("site_cache"))["job-1"]["data"] == {"x": 1}
        assert memory_store.get_item(DEFAULT_STORAGE_KEY) is None

        clock.advance(DAY_S)
        assert cache.get("job-1") is None

    def test_defaults_to_file_store_in_cache_dir(self, tmp_path: Path, clock) -> None:
        config = ClientConfig(cache_dir=str(tmp_path / "results"))
        ResultCache.from_config(config, clock=clock).set("job-1", {"x": 1})

        assert (tmp_path / "results" / f"{DEFAULT_STORAGE_KEY}.json").exists()
        assert ResultCache.from_config(config, clock=clock).get("job-1") == {"x": 1}
