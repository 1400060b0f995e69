"""Synchronous and progressive paginated loading on top of the retrying fetcher."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Union

import structlog

from ..config import PerformanceSettings
from ..errors import ConfigurationError, FetchCancelledError, PartialLoadError, TransportError
from ..infra import Clock, SystemClock
from ..state import LoadStateTracker
from .fetcher import CancelToken, Page, PageRequest, RetryingFetcher

# share of the progress bar reserved for retrieval; detection and caching take the rest
LOAD_PROGRESS_SHARE = 40.0
YIELD_EVERY_PAGES = 5
RUNAWAY_PAGE_MARGIN = 10


@dataclass(frozen=True, slots=True)
class PageLoaded:
    page: int
    records: list[dict[str, Any]]
    loaded: int
    total: int


@dataclass(slots=True)
class BackgroundFinished:
    records: list[dict[str, Any]]
    total: int
    failed_pages: list[int] = field(default_factory=list)
    halted: bool = False
    cancelled: bool = False


@dataclass(slots=True)
class BackgroundFailed:
    error: Exception
    records: list[dict[str, Any]]


BackgroundMessage = Union[PageLoaded, BackgroundFinished, BackgroundFailed]
BackgroundSink = Callable[[BackgroundMessage], None]


@dataclass(slots=True)
class LoadOutcome:
    """Records available to the caller once the foreground part of a load returns."""

    records: list[dict[str, Any]]
    estimated_total: int = 0
    background: "BackgroundLoad | None" = None
    partial_error: PartialLoadError | None = None

    @property
    def complete(self) -> bool:
        return self.background is None and self.partial_error is None


def _has_more(page: Page, loaded: int, total: int) -> bool:
    if page.is_short:
        return False
    if page.total_pages and page.page >= page.total_pages:
        return False
    if total and loaded >= total:
        return False
    return True


def _load_progress(loaded: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(LOAD_PROGRESS_SHARE, loaded / total * LOAD_PROGRESS_SHARE)


class BackgroundLoad:
    """Detached task loading the remaining pages of a progressive load.

    The task owns its accumulator and reports through ``sink`` only; callers
    never share a list with it. A failed page advances the cursor, and the task
    stops once the cursor runs ``RUNAWAY_PAGE_MARGIN`` pages past the expected
    last page or the cancel token is set.
    """

    def __init__(
        self,
        loader: "ProgressiveLoader",
        seed: list[dict[str, Any]],
        start_page: int,
        total: int,
        batch_size: int,
        sink: BackgroundSink,
        cancel: CancelToken | None = None,
    ) -> None:
        self.loader = loader
        self._records = list(seed)
        self.start_page = start_page
        self.total = total
        self.batch_size = batch_size
        self.sink = sink
        self.cancel_token = cancel or CancelToken()
        self.task: asyncio.Task | None = None
        self.result: BackgroundFinished | None = None

    @property
    def max_page(self) -> float:
        return self.total / self.batch_size + RUNAWAY_PAGE_MARGIN

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def start(self) -> asyncio.Task:
        if self.task is None:
            self.task = asyncio.get_running_loop().create_task(self._run())
        return self.task

    def cancel(self, reason: str = "cancelled") -> None:
        self.cancel_token.cancel(reason)

    async def wait(self) -> BackgroundFinished | None:
        if self.task is None:
            return self.result
        await asyncio.shield(self.task)
        return self.result

    async def _run(self) -> None:
        logger = self.loader.logger
        try:
            self.result = await self._load_pages()
        except Exception as exc:  # noqa: BLE001
            logger.error("background_loading_failed", error=str(exc), loaded=len(self._records))
            self.sink(BackgroundFailed(error=exc, records=list(self._records)))
            return
        logger.info(
            "background_loading_completed",
            loaded=len(self.result.records),
            failed_pages=len(self.result.failed_pages),
            halted=self.result.halted,
            cancelled=self.result.cancelled,
        )
        self.sink(self.result)

    async def _load_pages(self) -> BackgroundFinished:
        loader = self.loader
        finished = BackgroundFinished(records=[], total=self.total)
        page_no = self.start_page
        while True:
            if self.cancel_token.cancelled:
                finished.cancelled = True
                break
            if self.total and len(self._records) >= self.total:
                break
            if page_no > self.max_page:
                finished.halted = True
                loader.logger.warning("background_loading_halted", page=page_no, total=self.total)
                break
            try:
                page = await loader.fetcher.fetch(
                    PageRequest(page=page_no, limit=self.batch_size), cancel=self.cancel_token
                )
            except FetchCancelledError:
                finished.cancelled = True
                break
            except TransportError as exc:
                loader.logger.warning("background_page_failed", page=page_no, error=str(exc))
                finished.failed_pages.append(page_no)
                page_no += 1
                continue
            self._records.extend(page.records)
            self.sink(
                PageLoaded(
                    page=page_no,
                    records=list(page.records),
                    loaded=len(self._records),
                    total=self.total,
                )
            )
            if not _has_more(page, len(self._records), self.total):
                break
            page_no += 1
            await loader.clock.sleep(loader.settings.chunk_processing_delay)
        finished.records = list(self._records)
        return finished


class ProgressiveLoader:
    """Drive the fetcher across pages, either fully or progressively."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        tracker: LoadStateTracker,
        settings: PerformanceSettings | None = None,
        clock: Clock | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.tracker = tracker
        self.settings = settings or PerformanceSettings()
        self.clock = clock or SystemClock()
        self.logger = logger or structlog.get_logger("dupe_loader.loader")

    @staticmethod
    def _check_batch_size(batch_size: int) -> None:
        if not isinstance(batch_size, int) or batch_size <= 0:
            raise ConfigurationError(f"batch_size must be a positive integer, got {batch_size!r}")

    async def load_all(self, batch_size: int, cancel: CancelToken | None = None) -> LoadOutcome:
        """Load every page before returning; later-page failures truncate the result."""

        self._check_batch_size(batch_size)
        records: list[dict[str, Any]] = []
        total = 0
        page_no = 1
        partial: PartialLoadError | None = None
        while True:
            try:
                page = await self.fetcher.fetch(
                    PageRequest(page=page_no, limit=batch_size), cancel=cancel
                )
            except TransportError as exc:
                if page_no == 1:
                    raise
                partial = self._partial(exc, page_no, len(records), "load_all")
                break
            records.extend(page.records)
            total = page.total or total
            self.tracker.set_progress(_load_progress(len(records), total))
            if not _has_more(page, len(records), total):
                break
            page_no += 1
            await self.clock.sleep(self.settings.page_delay)
        self.logger.info("records_loaded", mode="synchronous", loaded=len(records), total=total)
        return LoadOutcome(records=records, estimated_total=total, partial_error=partial)

    async def load_progressive(
        self,
        batch_size: int,
        sink: BackgroundSink,
        cancel: CancelToken | None = None,
    ) -> LoadOutcome:
        """Return the first page at once and continue with the rest."""

        self._check_batch_size(batch_size)
        first = await self.fetcher.fetch(PageRequest(page=1, limit=batch_size), cancel=cancel)
        records = list(first.records)
        total = first.total
        self.tracker.set_progress(_load_progress(len(records), total))
        self.logger.info("initial_batch_loaded", loaded=len(records), total=total)
        if not _has_more(first, len(records), total):
            return LoadOutcome(records=records, estimated_total=total)

        if self.settings.enable_background_processing:
            background = BackgroundLoad(
                self,
                seed=records,
                start_page=2,
                total=total,
                batch_size=batch_size,
                sink=sink,
                cancel=cancel,
            )
            background.start()
            return LoadOutcome(records=records, estimated_total=total, background=background)

        remaining, partial = await self._load_inline(2, total, batch_size, len(records), cancel)
        records.extend(remaining)
        self.tracker.set_progress(_load_progress(len(records), total))
        return LoadOutcome(records=records, estimated_total=total, partial_error=partial)

    async def _load_inline(
        self,
        start_page: int,
        total: int,
        batch_size: int,
        already_loaded: int,
        cancel: CancelToken | None,
    ) -> tuple[list[dict[str, Any]], PartialLoadError | None]:
        remaining: list[dict[str, Any]] = []
        page_no = start_page
        while True:
            try:
                page = await self.fetcher.fetch(
                    PageRequest(page=page_no, limit=batch_size), cancel=cancel
                )
            except TransportError as exc:
                return remaining, self._partial(exc, page_no, already_loaded + len(remaining), "load_inline")
            remaining.extend(page.records)
            if not _has_more(page, already_loaded + len(remaining), total):
                break
            page_no += 1
            if page_no % YIELD_EVERY_PAGES == 0:
                await asyncio.sleep(0)
            await self.clock.sleep(self.settings.chunk_processing_delay)
        return remaining, None

    def _partial(self, exc: Exception, page: int, loaded: int, context: str) -> PartialLoadError:
        partial = PartialLoadError(
            f"Page {page} failed after {loaded} records were loaded: {exc}",
            page=page,
            loaded=loaded,
        )
        partial.__cause__ = exc
        self.tracker.record_error(partial, context)
        self.logger.warning("partial_load", page=page, loaded=loaded, error=str(exc))
        return partial


__all__ = [
    "BackgroundFailed",
    "BackgroundFinished",
    "BackgroundLoad",
    "BackgroundMessage",
    "BackgroundSink",
    "LoadOutcome",
    "PageLoaded",
    "ProgressiveLoader",
]
