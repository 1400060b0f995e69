"""Two-tier cache: authoritative in-memory map plus a persistent snapshot."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from .config import CacheSettings
from .infra import Clock, PersistentStore, SystemClock
from .models import DetectionMetadata, DuplicateInfo, ErrorHandling

T = TypeVar("T")

CURRENT_KEY = "current"
RECORD_LOOKUP_KEY = "record_lookup"
RECORDS_KEY = "records"
STORAGE_KEY = "duplicatePhoneInfo"
SNAPSHOT_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    data: T
    timestamp: float


def serialize_duplicate_info(info: DuplicateInfo) -> dict[str, Any]:
    """JSON-safe mapping; sets become sorted lists and maps become pair lists."""

    payload: dict[str, Any] = {
        "duplicatePhoneNumbers": sorted(info.duplicate_phone_numbers),
        "duplicateRecordIds": list(info.duplicate_record_ids),
        "duplicateRecordMap": [[phone, list(ids)] for phone, ids in info.duplicate_record_map.items()],
        "phoneMap": [[phone, list(ids)] for phone, ids in info.phone_map.items()],
        "totalRecords": info.total_records,
        "duplicateCount": info.duplicate_count,
        "uniquePhoneCount": info.unique_phone_count,
        "duplicatePhoneCount": info.duplicate_phone_count,
        "metadata": {
            "processedAt": info.metadata.processed_at,
            "source": info.metadata.source,
            "recordCount": info.metadata.record_count,
            "processingTime": info.metadata.processing_time,
        },
    }
    if info.error_handling is not None:
        payload["errorHandling"] = info.error_handling.to_dict()
    return payload


def deserialize_duplicate_info(payload: dict[str, Any]) -> DuplicateInfo:
    metadata = payload.get("metadata") or {}
    error_payload = payload.get("errorHandling")
    error_handling = None
    if error_payload:
        error_handling = ErrorHandling(
            has_errors=bool(error_payload.get("hasErrors", True)),
            fallback_method=error_payload.get("fallbackMethod"),
            fallback_used=bool(error_payload.get("fallbackUsed", False)),
            graceful_degradation=bool(error_payload.get("gracefulDegradation", False)),
            original_error=error_payload.get("originalError"),
            error_type=error_payload.get("errorType"),
            timestamp=float(error_payload.get("timestamp") or 0.0),
            load_time=error_payload.get("loadTime"),
        )
    return DuplicateInfo(
        duplicate_phone_numbers=set(payload.get("duplicatePhoneNumbers") or []),
        duplicate_record_ids=[str(i) for i in payload.get("duplicateRecordIds") or []],
        duplicate_record_map={
            str(phone): [str(i) for i in ids] for phone, ids in payload.get("duplicateRecordMap") or []
        },
        phone_map={str(phone): [str(i) for i in ids] for phone, ids in payload.get("phoneMap") or []},
        total_records=int(payload.get("totalRecords", 0)),
        duplicate_count=int(payload.get("duplicateCount", 0)),
        unique_phone_count=int(payload.get("uniquePhoneCount", 0)),
        duplicate_phone_count=int(payload.get("duplicatePhoneCount", 0)),
        metadata=DetectionMetadata(
            processed_at=float(metadata.get("processedAt") or 0.0),
            source=str(metadata.get("source") or "persistent-cache"),
            record_count=int(metadata.get("recordCount") or 0),
            processing_time=metadata.get("processingTime"),
        ),
        error_handling=error_handling,
    )


def dumps_snapshot(info: DuplicateInfo, timestamp: float) -> bytes:
    document = {
        "version": SNAPSHOT_VERSION,
        "timestamp": timestamp,
        "duplicateInfo": serialize_duplicate_info(info),
    }
    return json.dumps(document, ensure_ascii=False).encode("utf-8")


def loads_snapshot(blob: bytes) -> tuple[DuplicateInfo, float]:
    document = json.loads(blob.decode("utf-8"))
    if not isinstance(document, dict) or "duplicateInfo" not in document:
        raise ValueError("Snapshot does not contain duplicateInfo")
    return deserialize_duplicate_info(document["duplicateInfo"]), float(document["timestamp"])


class CacheStore:
    """Keyed cache entries with expiry, size-bounded eviction and a snapshot tier.

    ``put`` is the only mutation path used by loads. Every put drops expired
    entries and trims the map back to ``max_size`` oldest-first; the current
    duplicate result is additionally written to the persistent store without
    blocking the caller.
    """

    def __init__(
        self,
        settings: CacheSettings | None = None,
        store: PersistentStore | None = None,
        clock: Clock | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings or CacheSettings()
        self.store = store if self.settings.persist_to_storage else None
        self.clock = clock or SystemClock()
        self.logger = logger or structlog.get_logger("dupe_loader.cache")
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._pending: set[asyncio.Future] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def is_valid(self, entry: CacheEntry[Any] | None) -> bool:
        if entry is None:
            return False
        return self.clock.now() - entry.timestamp < self.settings.timeout

    def get(self, key: str) -> CacheEntry[Any] | None:
        """Return the entry if present, valid or stale."""

        return self._entries.get(key)

    def get_valid(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        return entry.data if self.is_valid(entry) else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def put(self, key: str, value: Any, *, timestamp: float | None = None) -> CacheEntry[Any]:
        entry = CacheEntry(data=value, timestamp=self.clock.now() if timestamp is None else timestamp)
        self._entries[key] = entry
        self.invalidate_expired()
        self.evict_if_over_capacity()
        if key == CURRENT_KEY and isinstance(value, DuplicateInfo):
            self._schedule_persist(value, entry.timestamp)
        return entry

    def put_duplicate_info(self, info: DuplicateInfo) -> CacheEntry[DuplicateInfo]:
        """Store a result together with its per-record lookup map."""

        entry = self.put(CURRENT_KEY, info)
        self.put(RECORD_LOOKUP_KEY, info.record_lookup(), timestamp=entry.timestamp)
        return entry

    def invalidate_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if not self.is_valid(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            self.logger.debug("cache_entries_expired", keys=expired)
        return len(expired)

    def evict_if_over_capacity(self, max_size: int | None = None) -> int:
        limit = self.settings.max_size if max_size is None else max_size
        overflow = len(self._entries) - limit
        if overflow <= 0:
            return 0
        oldest = sorted(self._entries.items(), key=lambda item: item[1].timestamp)[:overflow]
        for key, _ in oldest:
            del self._entries[key]
        self.logger.info("cache_entries_evicted", count=overflow, max_size=limit)
        return overflow

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if key == CURRENT_KEY and self.store is not None:
            self._remove_persisted()
        return removed

    def clear(self, include_persistent: bool = True) -> None:
        self._entries.clear()
        if include_persistent and self.store is not None:
            self._remove_persisted()

    # ------------------------------------------------------------------
    # Persistent tier
    # ------------------------------------------------------------------
    def restore(self) -> bool:
        """Load the persisted snapshot if present and still within its validity window."""

        if self.store is None:
            return False
        try:
            blob = self.store.get(STORAGE_KEY)
            if blob is None:
                return False
            info, timestamp = loads_snapshot(blob)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("cache_restore_failed", error=str(exc))
            return False
        if self.clock.now() - timestamp >= self.settings.timeout:
            self.logger.info("cache_snapshot_expired", timestamp=timestamp)
            return False
        self._entries[CURRENT_KEY] = CacheEntry(data=info, timestamp=timestamp)
        self._entries[RECORD_LOOKUP_KEY] = CacheEntry(data=info.record_lookup(), timestamp=timestamp)
        self.logger.info("cache_restored", total_records=info.total_records)
        return True

    async def drain(self) -> None:
        """Wait for outstanding snapshot writes."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule_persist(self, info: DuplicateInfo, timestamp: float) -> None:
        if self.store is None:
            return
        blob = dumps_snapshot(info, timestamp)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(blob)
            return
        future = loop.run_in_executor(None, self._write, blob)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _write(self, blob: bytes) -> None:
        try:
            self.store.set(STORAGE_KEY, blob)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("cache_persist_failed", error=str(exc))

    def _remove_persisted(self) -> None:
        try:
            self.store.remove(STORAGE_KEY)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("cache_remove_failed", error=str(exc))


__all__ = [
    "CURRENT_KEY",
    "CacheEntry",
    "CacheStore",
    "RECORDS_KEY",
    "RECORD_LOOKUP_KEY",
    "STORAGE_KEY",
    "deserialize_duplicate_info",
    "dumps_snapshot",
    "loads_snapshot",
    "serialize_duplicate_info",
]
