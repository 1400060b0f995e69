"""Graceful degradation after a failed load: cached data, basic detection, empty result."""

from __future__ import annotations

from typing import Any, Sequence

import structlog

from ..cache import CURRENT_KEY, CacheStore
from ..errors import AuthorizationError, ConfigurationError
from ..events import EventBus, EventName
from ..infra import Clock, SystemClock
from ..models import DuplicateInfo, ErrorHandling
from .dedup import BasicDetectionStrategy, DetectionStrategy

CACHED_DATA = "cached_data"
BASIC_DETECTION = "basic_detection"
EMPTY_RESULT = "empty_result"

NEVER_DEGRADED = (ConfigurationError, AuthorizationError)


class FallbackChain:
    """Turn a load failure into a clearly flagged best-effort result."""

    def __init__(
        self,
        cache: CacheStore,
        events: EventBus,
        basic_strategy: DetectionStrategy | None = None,
        clock: Clock | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.cache = cache
        self.events = events
        self.clock = clock or SystemClock()
        self.basic_strategy = basic_strategy or BasicDetectionStrategy(now=self.clock.now)
        self.logger = logger or structlog.get_logger("dupe_loader.fallback")
        self.stats = {CACHED_DATA: 0, BASIC_DETECTION: 0, EMPTY_RESULT: 0}

    async def recover(
        self,
        error: Exception,
        *,
        partial_records: Sequence[dict[str, Any]] = (),
        enabled: bool = True,
        load_started: float | None = None,
    ) -> DuplicateInfo:
        if isinstance(error, NEVER_DEGRADED) or not enabled:
            raise error

        cached = self.cache.get(CURRENT_KEY)
        if cached is not None:
            result = cached.data.annotated(
                self._annotation(error, CACHED_DATA, load_started, fallback_used=True)
            )
            return self._emit(result, CACHED_DATA)

        if partial_records:
            try:
                detected = self.basic_strategy.detect(partial_records)
            except Exception as exc:  # noqa: BLE001
                self.logger.error("fallback_basic_detection_failed", error=str(exc))
            else:
                detected = detected.annotated(
                    self._annotation(error, BASIC_DETECTION, load_started, fallback_used=True)
                )
                return self._emit(detected, BASIC_DETECTION)

        empty = DuplicateInfo.empty("fallback-empty", processed_at=self.clock.now())
        empty.error_handling = self._annotation(
            error, EMPTY_RESULT, load_started, graceful_degradation=True
        )
        return self._emit(empty, EMPTY_RESULT)

    def _annotation(
        self,
        error: Exception,
        method: str,
        load_started: float | None,
        *,
        fallback_used: bool = False,
        graceful_degradation: bool = False,
    ) -> ErrorHandling:
        now = self.clock.now()
        return ErrorHandling(
            has_errors=True,
            fallback_method=method,
            fallback_used=fallback_used,
            graceful_degradation=graceful_degradation,
            original_error=str(error),
            error_type=type(error).__name__,
            timestamp=now,
            load_time=None if load_started is None else now - load_started,
        )

    def _emit(self, result: DuplicateInfo, method: str) -> DuplicateInfo:
        self.stats[method] += 1
        self.logger.warning(
            "fallback_applied",
            method=method,
            original_error=result.error_handling.original_error if result.error_handling else None,
        )
        self.events.publish(EventName.DUPLICATE_INFO_FALLBACK, result)
        return result


__all__ = ["BASIC_DETECTION", "CACHED_DATA", "EMPTY_RESULT", "FallbackChain", "NEVER_DEGRADED"]
