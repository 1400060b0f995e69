"""Authoritative load state shared by the active load and its observers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Callable


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    message: str
    timestamp: float
    context: str
    error_type: str


@dataclass(slots=True)
class LoadState:
    is_loading: bool = False
    load_progress: float = 0.0
    last_load_time: float | None = None
    last_refresh_time: float | None = None
    total_records: int = 0
    duplicate_records: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)


class LoadStateTracker:
    """Mutable state record; the running load writes, anyone may read a snapshot."""

    def __init__(self, now: Callable[[], float] = time.time) -> None:
        self._now = now
        self._state = LoadState()

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def errors(self) -> list[ErrorRecord]:
        return list(self._state.errors)

    def begin(self) -> None:
        self._state.is_loading = True
        self._state.load_progress = 0.0
        self._state.errors = []

    def set_progress(self, value: float) -> None:
        self._state.load_progress = max(0.0, min(100.0, float(value)))

    def record_error(self, error: BaseException, context: str) -> ErrorRecord:
        record = ErrorRecord(
            message=str(error),
            timestamp=self._now(),
            context=context,
            error_type=type(error).__name__,
        )
        self._state.errors.append(record)
        return record

    def finish(self, total_records: int, duplicate_records: int, now: float | None = None) -> None:
        self._state.is_loading = False
        self._state.last_load_time = self._now() if now is None else now
        self._state.total_records = total_records
        self._state.duplicate_records = duplicate_records

    def abort(self) -> None:
        self._state.is_loading = False

    def mark_refresh(self, now: float | None = None) -> None:
        self._state.last_refresh_time = self._now() if now is None else now

    def snapshot(self) -> LoadState:
        return replace(self._state, errors=list(self._state.errors))


__all__ = ["ErrorRecord", "LoadState", "LoadStateTracker"]
