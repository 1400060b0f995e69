"""Duplicate detection by normalized phone key."""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

import structlog

from ..errors import DetectionError
from ..models import DetectionMetadata, DuplicateInfo, Record, extract_phone, extract_record_id

_STRIP_PATTERN = re.compile(r"[\s()\-]")


def normalize_phone(raw: object) -> str:
    """Canonical duplicate key: drop whitespace, brackets, hyphens and leading ``+``."""

    if raw is None:
        return ""
    return _STRIP_PATTERN.sub("", str(raw)).lstrip("+").casefold()


class DetectionStrategy(Protocol):
    name: str

    def detect(self, records: Sequence[Record]) -> DuplicateInfo:
        """Group ``records`` by normalized phone."""


def build_duplicate_info(
    phone_map: dict[str, list[str]],
    total_records: int,
    source: str,
    processed_at: float,
    processing_time: float | None = None,
) -> DuplicateInfo:
    duplicate_phone_numbers: set[str] = set()
    duplicate_record_ids: list[str] = []
    duplicate_record_map: dict[str, list[str]] = {}
    for phone, record_ids in phone_map.items():
        if len(record_ids) > 1:
            duplicate_phone_numbers.add(phone)
            duplicate_record_ids.extend(record_ids)
            duplicate_record_map[phone] = list(record_ids)
    return DuplicateInfo(
        duplicate_phone_numbers=duplicate_phone_numbers,
        duplicate_record_ids=duplicate_record_ids,
        duplicate_record_map=duplicate_record_map,
        phone_map=phone_map,
        total_records=total_records,
        duplicate_count=len(duplicate_record_ids),
        unique_phone_count=len(phone_map),
        duplicate_phone_count=len(duplicate_phone_numbers),
        metadata=DetectionMetadata(
            processed_at=processed_at,
            source=source,
            record_count=total_records,
            processing_time=processing_time,
        ),
    )


class BasicDetectionStrategy:
    """Reference grouping: one pass, first-seen order kept within a phone."""

    name = "basic-detection"

    def __init__(self, now: Callable[[], float] = time.time) -> None:
        self._now = now

    def detect(self, records: Sequence[Record]) -> DuplicateInfo:
        phone_map: dict[str, list[str]] = {}
        try:
            for index, record in enumerate(records):
                phone = normalize_phone(extract_phone(record))
                if not phone:
                    continue
                phone_map.setdefault(phone, []).append(extract_record_id(record, index))
        except Exception as exc:  # noqa: BLE001
            raise DetectionError(f"Basic detection failed: {exc}", strategy=self.name) from exc
        return build_duplicate_info(phone_map, len(records), self.name, self._now())


@dataclass
class _MemoEntry:
    info: DuplicateInfo
    timestamp: float


class IndexedDetectionStrategy:
    """Richer detector with normalization memo, result memo and chunked passes.

    Records that fail individually are skipped and counted; the result memo is
    keyed by a hash of every record id and phone, and entries expire after
    ``memo_timeout`` seconds. Callers always receive a private copy.
    """

    name = "indexed-detection"

    def __init__(
        self,
        chunk_size: int = 500,
        memo_timeout: float = 300.0,
        max_memo_size: int = 10000,
        now: Callable[[], float] = time.time,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.chunk_size = max(1, chunk_size)
        self.memo_timeout = memo_timeout
        self.max_memo_size = max_memo_size
        self._now = now
        self.logger = logger or structlog.get_logger("dupe_loader.detection")
        self._normalized: dict[str, str] = {}
        self._results: dict[str, _MemoEntry] = {}
        self.metrics = {"detections": 0, "memo_hits": 0, "memo_misses": 0, "skipped_records": 0}

    def detect(self, records: Sequence[Record]) -> DuplicateInfo:
        started = time.perf_counter()
        key = self._fingerprint(records)
        cached = self._results.get(key)
        if cached is not None and self._now() - cached.timestamp < self.memo_timeout:
            self.metrics["memo_hits"] += 1
            return cached.info.copy()
        self.metrics["memo_misses"] += 1

        phone_map: dict[str, list[str]] = {}
        try:
            for offset in range(0, len(records), self.chunk_size):
                chunk = records[offset : offset + self.chunk_size]
                self._process_chunk(chunk, offset, phone_map)
        except Exception as exc:  # noqa: BLE001
            raise DetectionError(f"Indexed detection failed: {exc}", strategy=self.name) from exc

        elapsed = time.perf_counter() - started
        info = build_duplicate_info(
            phone_map, len(records), self.name, self._now(), processing_time=elapsed
        )
        self.metrics["detections"] += 1
        self._remember(key, info)
        self.logger.debug(
            "detection_completed",
            records=len(records),
            duplicate_phones=info.duplicate_phone_count,
            elapsed=round(elapsed, 4),
        )
        return info

    def _process_chunk(
        self, chunk: Sequence[Record], offset: int, phone_map: dict[str, list[str]]
    ) -> None:
        for position, record in enumerate(chunk, start=offset):
            try:
                raw_phone = extract_phone(record)
                record_id = extract_record_id(record, position)
            except (AttributeError, TypeError) as exc:
                self.metrics["skipped_records"] += 1
                self.logger.warning("detection_record_skipped", index=position, error=str(exc))
                continue
            if not raw_phone:
                continue
            phone = self._normalize(raw_phone)
            if phone:
                phone_map.setdefault(phone, []).append(record_id)

    def _normalize(self, raw: str) -> str:
        memo = self._normalized.get(raw)
        if memo is not None:
            return memo
        value = normalize_phone(raw)
        if len(self._normalized) < self.max_memo_size:
            self._normalized[raw] = value
        return value

    def _remember(self, key: str, info: DuplicateInfo) -> None:
        if len(self._results) >= self.max_memo_size:
            oldest = min(self._results, key=lambda k: self._results[k].timestamp)
            del self._results[oldest]
        self._results[key] = _MemoEntry(info=info.copy(), timestamp=self._now())

    @staticmethod
    def _fingerprint(records: Sequence[Record]) -> str:
        digest = hashlib.sha256(str(len(records)).encode("utf-8"))
        for index, record in enumerate(records):
            try:
                part = f"{extract_record_id(record, index)}={extract_phone(record)}"
            except (AttributeError, TypeError):
                part = "?"
            digest.update(b"\x1f" + part.encode("utf-8"))
        return digest.hexdigest()


def duplicate_statistics(info: DuplicateInfo) -> dict[str, float | int]:
    """Summary figures for reporting."""

    total = info.total_records
    largest = max((len(ids) for ids in info.duplicate_record_map.values()), default=0)
    return {
        "total_records": total,
        "unique_phone_numbers": info.unique_phone_count,
        "duplicate_phone_numbers": info.duplicate_phone_count,
        "duplicate_records": info.duplicate_count,
        "duplicate_percentage": round(info.duplicate_count / total * 100, 2) if total else 0.0,
        "unique_percentage": round((total - info.duplicate_count) / total * 100, 2) if total else 0.0,
        "largest_duplicate_group": largest,
    }


__all__ = [
    "BasicDetectionStrategy",
    "DetectionStrategy",
    "IndexedDetectionStrategy",
    "build_duplicate_info",
    "duplicate_statistics",
    "normalize_phone",
]
