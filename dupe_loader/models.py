"""Domain types produced by detection and held by the cache."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping

Record = Mapping[str, Any]

ID_FIELDS = ("id", "Id", "ID", "recordId", "record_id")
PHONE_FIELDS = (
    "phone",
    "Phone",
    "phoneNumber",
    "phone_number",
    "PhoneNumber",
    "mobile",
    "Mobile",
)


def extract_record_id(record: Record, index: int = 0) -> str:
    """Return the record id as a string, falling back to ``#<position>``.

    The ``#`` prefix keeps positional ids apart from real numeric ids.
    """

    for name in ID_FIELDS:
        value = record.get(name)
        if value not in (None, ""):
            return str(value)
    return f"#{record.get('index', index)}"


def extract_phone(record: Record) -> str:
    for name in PHONE_FIELDS:
        value = record.get(name)
        if value not in (None, ""):
            return str(value)
    return ""


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    phone: str
    record_ids: tuple[str, ...]


@dataclass(slots=True)
class ErrorHandling:
    """Annotation attached to every degraded result."""

    has_errors: bool = True
    fallback_method: str | None = None
    fallback_used: bool = False
    graceful_degradation: bool = False
    original_error: str | None = None
    error_type: str | None = None
    timestamp: float = field(default_factory=time.time)
    load_time: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hasErrors": self.has_errors,
            "fallbackMethod": self.fallback_method,
            "fallbackUsed": self.fallback_used,
            "gracefulDegradation": self.graceful_degradation,
            "originalError": self.original_error,
            "errorType": self.error_type,
            "timestamp": self.timestamp,
            "loadTime": self.load_time,
        }


@dataclass(slots=True)
class DetectionMetadata:
    processed_at: float
    source: str
    record_count: int = 0
    processing_time: float | None = None


@dataclass(frozen=True, slots=True)
class RecordDuplicateStatus:
    is_duplicate: bool
    duplicate_phone: str | None
    duplicate_group: tuple[str, ...]
    duplicate_count: int


@dataclass(slots=True)
class DuplicateInfo:
    """Aggregate duplicate detection result for one record batch.

    ``duplicate_count`` always equals the summed size of the groups in
    ``duplicate_record_map`` and ``unique_phone_count`` equals ``len(phone_map)``.
    """

    duplicate_phone_numbers: set[str] = field(default_factory=set)
    duplicate_record_ids: list[str] = field(default_factory=list)
    duplicate_record_map: dict[str, list[str]] = field(default_factory=dict)
    phone_map: dict[str, list[str]] = field(default_factory=dict)
    total_records: int = 0
    duplicate_count: int = 0
    unique_phone_count: int = 0
    duplicate_phone_count: int = 0
    metadata: DetectionMetadata = field(
        default_factory=lambda: DetectionMetadata(processed_at=time.time(), source="unknown")
    )
    error_handling: ErrorHandling | None = None

    @classmethod
    def empty(cls, source: str, *, processed_at: float | None = None) -> "DuplicateInfo":
        return cls(
            metadata=DetectionMetadata(
                processed_at=time.time() if processed_at is None else processed_at,
                source=source,
            )
        )

    @property
    def has_errors(self) -> bool:
        return bool(self.error_handling and self.error_handling.has_errors)

    def groups(self) -> Iterator[DuplicateGroup]:
        for phone, record_ids in self.duplicate_record_map.items():
            yield DuplicateGroup(phone=phone, record_ids=tuple(record_ids))

    def record_lookup(self) -> dict[str, RecordDuplicateStatus]:
        """Map every duplicate record id to its group status."""

        lookup: dict[str, RecordDuplicateStatus] = {}
        for phone, record_ids in self.duplicate_record_map.items():
            group = tuple(record_ids)
            for record_id in record_ids:
                lookup[record_id] = RecordDuplicateStatus(
                    is_duplicate=True,
                    duplicate_phone=phone,
                    duplicate_group=group,
                    duplicate_count=len(group),
                )
        return lookup

    def record_status(self, record_id: str) -> RecordDuplicateStatus:
        status = self.record_lookup().get(str(record_id))
        if status is not None:
            return status
        return not_duplicate(record_id)

    def copy(self) -> "DuplicateInfo":
        return replace(
            self,
            duplicate_phone_numbers=set(self.duplicate_phone_numbers),
            duplicate_record_ids=list(self.duplicate_record_ids),
            duplicate_record_map={k: list(v) for k, v in self.duplicate_record_map.items()},
            phone_map={k: list(v) for k, v in self.phone_map.items()},
            metadata=replace(self.metadata),
        )

    def annotated(self, error_handling: ErrorHandling | None) -> "DuplicateInfo":
        """Return a copy carrying ``error_handling``; cached instances stay untouched."""

        info = self.copy()
        info.error_handling = error_handling
        return info


def not_duplicate(record_id: str) -> RecordDuplicateStatus:
    return RecordDuplicateStatus(
        is_duplicate=False,
        duplicate_phone=None,
        duplicate_group=(str(record_id),),
        duplicate_count=1,
    )


@dataclass(slots=True)
class RecordsSnapshot:
    """Raw records retained in the cache next to the computed result."""

    records: list[dict[str, Any]]
    estimated_total: int = 0
    background_loading: bool = False
    complete: bool = True
    source: str = "record_source"


__all__ = [
    "DetectionMetadata",
    "DuplicateGroup",
    "DuplicateInfo",
    "ErrorHandling",
    "ID_FIELDS",
    "PHONE_FIELDS",
    "Record",
    "RecordDuplicateStatus",
    "RecordsSnapshot",
    "extract_phone",
    "extract_record_id",
    "not_duplicate",
]
