"""Top-level coordinator: cache lookup, strategy choice, loading, detection, degradation."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Any, Callable, Sequence

import structlog

from .cache import CURRENT_KEY, RECORD_LOOKUP_KEY, RECORDS_KEY, CacheStore
from .config import ManagerConfig
from .engine import (
    BasicDetectionStrategy,
    CancelToken,
    DetectionStrategy,
    FallbackChain,
    LoadStrategySelector,
    ProgressiveLoader,
    RecordSource,
    RetryingFetcher,
)
from .engine.fallback import BASIC_DETECTION
from .engine.loader import (
    BackgroundFailed,
    BackgroundFinished,
    BackgroundLoad,
    BackgroundMessage,
    LoadOutcome,
    PageLoaded,
)
from .errors import AuthorizationError, DetectionError
from .events import BackgroundComplete, BackgroundProgress, EventBus, EventName
from .infra import Clock, PersistentStore, SystemClock
from .logging_conf import component_logger
from .models import DuplicateInfo, ErrorHandling, RecordDuplicateStatus, RecordsSnapshot, not_duplicate
from .state import LoadStateTracker

PARTIAL_DATA = "partial_data"


class DuplicateDataManager:
    """Caller-owned manager for loading and serving duplicate phone information."""

    def __init__(
        self,
        config: ManagerConfig,
        source: RecordSource,
        *,
        store: PersistentStore | None = None,
        clock: Clock | None = None,
        detection_strategy: DetectionStrategy | None = None,
        basic_strategy: DetectionStrategy | None = None,
        events: EventBus | None = None,
        access_check: Callable[[], bool] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.clock = clock or SystemClock()
        self.logger = logger or component_logger("manager")
        self.events = events or EventBus()
        self.access_check = access_check
        self.tracker = LoadStateTracker(now=self.clock.now)
        self.cache = CacheStore(config.cache, store, self.clock)
        self.fetcher = RetryingFetcher(source, config.loading, self.clock)
        self.selector = LoadStrategySelector(self.fetcher, config.performance)
        self.loader = ProgressiveLoader(self.fetcher, self.tracker, config.performance, self.clock)
        self.basic_strategy = basic_strategy or BasicDetectionStrategy(now=self.clock.now)
        self.detection_strategy = detection_strategy or self.basic_strategy
        self.fallback = FallbackChain(self.cache, self.events, self.basic_strategy, self.clock)
        self._backgrounds: set[BackgroundLoad] = set()
        self._load_times: list[float] = []
        self._cache_hits = 0
        self._cache_misses = 0
        self.cache.restore()

    # ------------------------------------------------------------------
    def _authorize(self) -> None:
        if self.access_check is not None and not self.access_check():
            raise AuthorizationError("Caller is not allowed to load duplicate information")

    async def load_duplicate_info(
        self,
        *,
        force_refresh: bool = False,
        batch_size: int | None = None,
        enable_graceful_degradation: bool = True,
        cancel: CancelToken | None = None,
    ) -> DuplicateInfo:
        self._authorize()
        size = self.config.loading.batch_size if batch_size is None else batch_size
        started = self.clock.now()
        self.tracker.begin()
        records: list[dict[str, Any]] = []
        try:
            ProgressiveLoader._check_batch_size(size)
            if not force_refresh:
                cached = self.cache.get_valid(CURRENT_KEY)
                if cached is not None:
                    self._cache_hits += 1
                    self.tracker.set_progress(100)
                    self.tracker.abort()
                    self.logger.info("duplicate_info_cache_hit")
                    self.events.publish(EventName.DUPLICATE_INFO_LOADED, cached)
                    return cached
            self._cache_misses += 1

            outcome = await self._load_records(size, cancel)
            records = outcome.records
            self.tracker.set_progress(50)

            info = self._detect(records)
            if outcome.partial_error is not None and info.error_handling is None:
                info = info.annotated(
                    ErrorHandling(
                        fallback_method=PARTIAL_DATA,
                        original_error=str(outcome.partial_error),
                        error_type=type(outcome.partial_error).__name__,
                        timestamp=self.clock.now(),
                    )
                )
            self.tracker.set_progress(80)

            if not info.has_errors:
                self.cache.put_duplicate_info(info)
            self.tracker.set_progress(100)

            finished = self.clock.now()
            self.tracker.finish(len(records), len(info.duplicate_record_ids), finished)
            self._load_times.append(finished - started)
            self.logger.info(
                "duplicate_info_loaded",
                total_records=len(records),
                duplicate_records=info.duplicate_count,
                duplicate_phones=info.duplicate_phone_count,
                has_errors=info.has_errors,
                background=outcome.background is not None,
                elapsed=round(finished - started, 3),
            )
            self.events.publish(EventName.DUPLICATE_INFO_LOADED, info)
            return info
        except Exception as exc:  # noqa: BLE001
            return await self._handle_load_error(exc, records, enable_graceful_degradation, started)

    async def _handle_load_error(
        self,
        error: Exception,
        records: Sequence[dict[str, Any]],
        degrade: bool,
        started: float,
    ) -> DuplicateInfo:
        self.tracker.abort()
        self.tracker.record_error(error, "load_duplicate_info")
        self.logger.error(
            "duplicate_info_load_failed", error=str(error), error_type=type(error).__name__
        )
        self.events.publish(EventName.DUPLICATE_INFO_ERROR, error)
        return await self.fallback.recover(
            error, partial_records=records, enabled=degrade, load_started=started
        )

    async def _load_records(self, batch_size: int, cancel: CancelToken | None) -> LoadOutcome:
        if await self.selector.should_use_background():
            # Accumulator owned by the caching side; the background task keeps its own.
            snapshot: list[dict[str, Any]] = []

            def sink(message: BackgroundMessage) -> None:
                self._on_background_message(message, snapshot)

            outcome = await self.loader.load_progressive(batch_size, sink, cancel)
            snapshot.extend(outcome.records)
            if outcome.background is not None:
                self._track(outcome.background)
        else:
            outcome = await self.loader.load_all(batch_size, cancel)
        self.cache.put(
            RECORDS_KEY,
            RecordsSnapshot(
                records=list(outcome.records),
                estimated_total=outcome.estimated_total,
                background_loading=outcome.background is not None,
                complete=outcome.complete,
            ),
        )
        return outcome

    def _detect(self, records: Sequence[dict[str, Any]]) -> DuplicateInfo:
        try:
            return self.detection_strategy.detect(records)
        except Exception as exc:  # noqa: BLE001
            error = exc if isinstance(exc, DetectionError) else DetectionError(
                str(exc), strategy=getattr(self.detection_strategy, "name", "custom")
            )
            if self.detection_strategy is self.basic_strategy:
                if error is exc:
                    raise
                raise error from exc
            self.logger.warning(
                "detection_strategy_failed",
                strategy=getattr(self.detection_strategy, "name", "custom"),
                error=str(exc),
            )
        info = self.basic_strategy.detect(records).annotated(
            ErrorHandling(
                fallback_method=BASIC_DETECTION,
                fallback_used=True,
                original_error=str(error),
                error_type=type(error).__name__,
                timestamp=self.clock.now(),
            )
        )
        self.events.publish(EventName.DUPLICATE_INFO_FALLBACK, info)
        return info

    # ------------------------------------------------------------------
    # Background loading
    # ------------------------------------------------------------------
    def _track(self, background: BackgroundLoad) -> None:
        self._backgrounds.add(background)
        if background.task is not None:
            background.task.add_done_callback(lambda _task: self._backgrounds.discard(background))

    def _on_background_message(
        self, message: BackgroundMessage, snapshot: list[dict[str, Any]]
    ) -> None:
        if isinstance(message, PageLoaded):
            snapshot.extend(message.records)
            self.cache.put(
                RECORDS_KEY,
                RecordsSnapshot(
                    records=list(snapshot),
                    estimated_total=message.total,
                    background_loading=True,
                    complete=False,
                ),
            )
            progress = message.loaded / message.total * 100 if message.total else 0.0
            self.events.publish(
                EventName.BACKGROUND_LOADING_PROGRESS,
                BackgroundProgress(loaded=message.loaded, total=message.total, progress=progress),
            )
        elif isinstance(message, BackgroundFinished):
            self._finish_background(message)
        elif isinstance(message, BackgroundFailed):
            self.events.publish(EventName.BACKGROUND_LOADING_ERROR, message.error)

    def _finish_background(self, message: BackgroundFinished) -> None:
        self.cache.put(
            RECORDS_KEY,
            RecordsSnapshot(
                records=list(message.records),
                estimated_total=message.total,
                background_loading=False,
                complete=not (message.cancelled or message.halted or message.failed_pages),
            ),
        )
        if message.cancelled:
            self.logger.info("background_loading_cancelled", loaded=len(message.records))
            return
        self.events.publish(
            EventName.BACKGROUND_LOADING_COMPLETE,
            BackgroundComplete(total_records=len(message.records)),
        )
        try:
            info = self._detect(message.records)
        except DetectionError as exc:
            self.logger.error("background_detection_failed", error=str(exc))
            self.events.publish(EventName.BACKGROUND_LOADING_ERROR, exc)
            return
        if (message.failed_pages or message.halted) and info.error_handling is None:
            gap = (
                f"pages {', '.join(map(str, message.failed_pages))} failed"
                if message.failed_pages
                else "page limit reached before the reported total"
            )
            info = info.annotated(
                ErrorHandling(
                    fallback_method=PARTIAL_DATA,
                    original_error=f"Background load incomplete: {gap}",
                    error_type="PartialLoadError",
                    timestamp=self.clock.now(),
                )
            )
            self.logger.warning(
                "background_loading_partial",
                loaded=len(message.records),
                failed_pages=message.failed_pages,
                halted=message.halted,
            )
        if not info.has_errors:
            self.cache.put_duplicate_info(info)
        self.events.publish(EventName.DUPLICATE_INFO_LOADED, info)

    async def wait_for_background(self) -> None:
        for background in list(self._backgrounds):
            await background.wait()

    async def cancel_background(self, reason: str = "cancelled") -> None:
        backgrounds = list(self._backgrounds)
        for background in backgrounds:
            background.cancel(reason)
        for background in backgrounds:
            await background.wait()

    @property
    def background_active(self) -> bool:
        return any(not background.done for background in self._backgrounds)

    # ------------------------------------------------------------------
    async def refresh(self, reason: str = "manual-refresh", **options: Any) -> DuplicateInfo:
        self.tracker.mark_refresh(self.clock.now())
        self.logger.info("duplicate_info_refresh", reason=reason)
        options.setdefault("force_refresh", True)
        try:
            result = await self.load_duplicate_info(**options)
        except Exception as exc:
            self.logger.error("duplicate_info_refresh_failed", reason=reason, error=str(exc))
            self.events.publish(EventName.DUPLICATE_INFO_REFRESH_ERROR, exc)
            raise
        self.events.publish(EventName.DUPLICATE_INFO_REFRESHED, result)
        return result

    def should_refresh_on_visible(self) -> bool:
        last_refresh = self.tracker.snapshot().last_refresh_time
        if last_refresh is None:
            return True
        return self.clock.now() - last_refresh > self.config.cache.refresh_interval

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def is_cache_valid(self) -> bool:
        return self.cache.is_valid(self.cache.get(CURRENT_KEY))

    def get_cached_duplicate_info(self) -> DuplicateInfo | None:
        return self.cache.get_valid(CURRENT_KEY)

    def get_cached_records(self) -> RecordsSnapshot | None:
        return self.cache.get_valid(RECORDS_KEY)

    def get_record_duplicate_status(self, record_id: str) -> RecordDuplicateStatus | None:
        lookup = self.cache.get_valid(RECORD_LOOKUP_KEY)
        if lookup is None:
            return None
        return lookup.get(str(record_id)) or not_duplicate(record_id)

    def get_state(self) -> dict[str, Any]:
        state = asdict(self.tracker.snapshot())
        state.update(
            cache_size=len(self.cache),
            records_cached=RECORDS_KEY in self.cache,
            is_cache_valid=self.is_cache_valid(),
            background_active=self.background_active,
        )
        return state

    def get_metrics(self) -> dict[str, Any]:
        lookups = self._cache_hits + self._cache_misses
        snapshot = self.tracker.snapshot()
        return {
            "cache_hit_rate": round(self._cache_hits / lookups * 100, 2) if lookups else 0.0,
            "average_load_time": (
                sum(self._load_times) / len(self._load_times) if self._load_times else 0.0
            ),
            "total_loads": len(self._load_times),
            "last_load_time": snapshot.last_load_time,
            "last_refresh_time": snapshot.last_refresh_time,
            "error_count": len(snapshot.errors),
            "fallbacks": dict(self.fallback.stats),
        }

    async def close(self) -> None:
        await self.cancel_background("manager closed")
        await self.cache.drain()
        closer = getattr(self.source, "close", None)
        if closer is not None:
            result = closer()
            if asyncio.iscoroutine(result):
                await result
        store_closer = getattr(self.cache.store, "close", None)
        if store_closer is not None:
            store_closer()
        self.events.clear()
        self.logger.info("manager_closed")


__all__ = ["DuplicateDataManager", "PARTIAL_DATA"]
