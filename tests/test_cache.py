from __future__ import annotations

import json

import pytest

from dupe_loader.cache import (
    CURRENT_KEY,
    RECORD_LOOKUP_KEY,
    STORAGE_KEY,
    CacheStore,
    dumps_snapshot,
    loads_snapshot,
)
from dupe_loader.config import CacheSettings
from dupe_loader.engine import BasicDetectionStrategy
from dupe_loader.infra import MemoryStore
from dupe_loader.models import ErrorHandling

RECORDS = [
    {"id": 1, "phone": "555-1234"},
    {"id": 2, "phone": "5551234"},
    {"id": 3, "phone": "777"},
]


def _info():
    return BasicDetectionStrategy(now=lambda: 1_000.0).detect(RECORDS)


def test_validity_boundary(fake_clock) -> None:
    cache = CacheStore(CacheSettings(timeout=300), None, fake_clock)
    cache.put("k", "v")

    fake_clock.advance(299)
    assert cache.get_valid("k") == "v"
    fake_clock.advance(1)
    assert cache.get_valid("k") is None
    # stale entries stay readable for fallbacks until the next write
    assert cache.get("k").data == "v"
    assert not cache.is_valid(cache.get("k"))


def test_put_drops_expired_entries(fake_clock) -> None:
    cache = CacheStore(CacheSettings(timeout=10), None, fake_clock)
    cache.put("old", 1)
    fake_clock.advance(11)
    cache.put("new", 2)
    assert cache.keys() == ["new"]


def test_eviction_removes_oldest_first(fake_clock) -> None:
    cache = CacheStore(CacheSettings(timeout=300, max_size=3), None, fake_clock)
    for key in ("a", "b", "c", "d"):
        cache.put(key, key)
        fake_clock.advance(1)
    assert len(cache) == 3
    assert "a" not in cache
    assert cache.evict_if_over_capacity(max_size=1) == 2
    assert cache.keys() == ["d"]


def test_put_duplicate_info_stores_lookup(fake_clock) -> None:
    cache = CacheStore(CacheSettings(), None, fake_clock)
    cache.put_duplicate_info(_info())

    lookup = cache.get_valid(RECORD_LOOKUP_KEY)
    assert set(lookup) == {"1", "2"}
    assert lookup["1"].duplicate_group == ("1", "2")
    assert cache.get(RECORD_LOOKUP_KEY).timestamp == cache.get(CURRENT_KEY).timestamp


def test_snapshot_format_and_roundtrip() -> None:
    info = _info()
    info.error_handling = ErrorHandling(fallback_method="cached_data", original_error="x", timestamp=5.0)

    blob = dumps_snapshot(info, 1_234.0)
    document = json.loads(blob)
    assert document["version"] == "1.0"
    assert document["timestamp"] == 1_234.0
    payload = document["duplicateInfo"]
    assert payload["duplicatePhoneNumbers"] == ["5551234"]
    assert payload["duplicateRecordMap"] == [["5551234", ["1", "2"]]]
    assert payload["errorHandling"]["fallbackMethod"] == "cached_data"

    restored, timestamp = loads_snapshot(blob)
    assert timestamp == 1_234.0
    assert restored.duplicate_phone_numbers == {"5551234"}
    assert restored.phone_map == info.phone_map
    assert restored.duplicate_count == info.duplicate_count
    assert restored.error_handling.original_error == "x"


def test_snapshot_without_payload_is_rejected() -> None:
    with pytest.raises(ValueError):
        loads_snapshot(b'{"version": "1.0", "timestamp": 1}')


@pytest.mark.asyncio
async def test_current_result_is_persisted_and_restored(fake_clock) -> None:
    store = MemoryStore()
    cache = CacheStore(CacheSettings(timeout=300), store, fake_clock)
    cache.put_duplicate_info(_info())
    await cache.drain()
    assert store.get(STORAGE_KEY) is not None

    fake_clock.advance(100)
    fresh = CacheStore(CacheSettings(timeout=300), store, fake_clock)
    assert fresh.restore()
    assert fresh.get_valid(CURRENT_KEY).duplicate_record_map == {"5551234": ["1", "2"]}
    assert "1" in fresh.get_valid(RECORD_LOOKUP_KEY)


def test_expired_or_corrupt_snapshot_is_ignored(fake_clock) -> None:
    store = MemoryStore()
    store.set(STORAGE_KEY, dumps_snapshot(_info(), fake_clock.now() - 301))
    cache = CacheStore(CacheSettings(timeout=300), store, fake_clock)
    assert not cache.restore()
    assert len(cache) == 0

    store.set(STORAGE_KEY, b"not json")
    assert not cache.restore()


def test_persistence_can_be_disabled(fake_clock) -> None:
    store = MemoryStore()
    cache = CacheStore(CacheSettings(persist_to_storage=False), store, fake_clock)
    cache.put_duplicate_info(_info())
    assert store.get(STORAGE_KEY) is None
    assert not cache.restore()


def test_clear_removes_both_tiers(fake_clock) -> None:
    store = MemoryStore()
    cache = CacheStore(CacheSettings(), store, fake_clock)
    # no running loop, so the snapshot is written synchronously
    cache.put_duplicate_info(_info())
    assert store.get(STORAGE_KEY) is not None

    cache.clear()
    assert len(cache) == 0
    assert store.get(STORAGE_KEY) is None


def test_failing_store_does_not_break_writes(fake_clock) -> None:
    class BrokenStore(MemoryStore):
        def set(self, key, value):
            raise OSError("disk full")

    cache = CacheStore(CacheSettings(), BrokenStore(), fake_clock)
    cache.put_duplicate_info(_info())
    assert cache.get_valid(CURRENT_KEY) is not None
