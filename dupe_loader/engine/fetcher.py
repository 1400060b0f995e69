"""Paginated record retrieval with per-attempt timeout, cancellation and retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

import httpx
import structlog

from ..config import LoadingSettings, SourceSettings
from ..errors import ConfigurationError, FetchCancelledError, FetchTimeoutError, TransportError
from ..infra import Clock, SystemClock


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Input for the fetcher: one page of ``limit`` records."""

    page: int
    limit: int

    def params(self) -> dict[str, int]:
        return {"limit": self.limit, "page": self.page}


@dataclass(slots=True)
class Page:
    """Standardised page wrapper."""

    records: list[dict[str, Any]]
    page: int
    limit: int
    total: int = 0
    total_pages: int = 0
    raw: Dict[str, Any] | None = field(repr=False, default=None)

    @property
    def is_short(self) -> bool:
        """A page shorter than its limit marks the end of data."""

        return len(self.records) < self.limit


class RecordSource(Protocol):
    async def fetch_page(self, request: PageRequest) -> Page:
        """Return one page of records plus pagination metadata."""


class CancelToken:
    """Cooperative cancellation signal shared by fetch attempts and background loads."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def parse_page(payload: Any, request: PageRequest) -> Page:
    """Turn a ``{success, data: {records, pagination}}`` body into a :class:`Page`."""

    if not isinstance(payload, dict):
        raise TransportError("Response body is not an object", page=request.page)
    if not payload.get("success", False):
        message = payload.get("message") or payload.get("error") or "unsuccessful response"
        raise TransportError(f"Source reported failure: {message}", page=request.page)
    data = payload.get("data") or {}
    records = data.get("records")
    if not isinstance(records, list):
        raise TransportError("Response is missing data.records", page=request.page)
    pagination = data.get("pagination") or {}
    return Page(
        records=records,
        page=request.page,
        limit=request.limit,
        total=int(pagination.get("total") or 0),
        total_pages=int(pagination.get("totalPages") or 0),
        raw=payload,
    )


class HttpRecordSource:
    """Record source talking to the paginated HTTP endpoint through httpx."""

    def __init__(
        self,
        settings: SourceSettings,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url,
            follow_redirects=True,
            timeout=timeout,
            headers=settings.headers or None,
        )

    async def fetch_page(self, request: PageRequest) -> Page:
        try:
            response = await self._client.get(self.settings.records_path, params=request.params())
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Request timed out: {exc}", page=request.page) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}", page=request.page) from exc
        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                page=request.page,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError("Response body is not valid JSON", page=request.page) from exc
        return parse_page(payload, request)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RetryingFetcher:
    """Wrap single page requests with timeout, cancellation and linear backoff."""

    def __init__(
        self,
        source: RecordSource,
        settings: LoadingSettings | None = None,
        clock: Clock | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.source = source
        self.settings = settings or LoadingSettings()
        self.clock = clock or SystemClock()
        self.logger = logger or structlog.get_logger("dupe_loader.fetcher")

    async def fetch(
        self,
        request: PageRequest,
        *,
        max_retries: int | None = None,
        base_delay: float | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Page:
        attempts = self.settings.max_retries if max_retries is None else max_retries
        delay = self.settings.retry_delay if base_delay is None else base_delay
        limit = self.settings.timeout if timeout is None else timeout
        if attempts < 1:
            raise ConfigurationError("max_retries must be >= 1")
        if limit <= 0:
            raise ConfigurationError("timeout must be > 0")

        attempt = 1
        while True:
            if cancel is not None and cancel.cancelled:
                raise FetchCancelledError(
                    f"Fetch of page {request.page} cancelled", page=request.page, attempts=attempt - 1
                )
            try:
                return await self._attempt(request, limit, cancel)
            except FetchCancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                error = self._as_transport_error(exc, request, attempt)
                self.logger.warning(
                    "fetch_attempt_failed",
                    page=request.page,
                    attempt=attempt,
                    max_retries=attempts,
                    error=str(exc),
                )
                if attempt >= attempts:
                    raise error
            wait_for = delay * attempt
            self.logger.debug("fetch_retry_scheduled", page=request.page, delay=wait_for)
            await self.clock.sleep(wait_for)
            attempt += 1

    async def _attempt(
        self, request: PageRequest, timeout: float, cancel: CancelToken | None
    ) -> Page:
        fetch_task = asyncio.ensure_future(self.source.fetch_page(request))
        waiters: set[asyncio.Future] = {fetch_task}
        cancel_task: asyncio.Future | None = None
        if cancel is not None:
            cancel_task = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_task)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [task for task in waiters if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        if fetch_task in done:
            return fetch_task.result()
        if cancel_task is not None and cancel_task in done:
            raise FetchCancelledError(
                f"Fetch of page {request.page} cancelled: {cancel.reason}", page=request.page
            )
        raise FetchTimeoutError(
            f"Fetch of page {request.page} timed out after {timeout}s", page=request.page
        )

    @staticmethod
    def _as_transport_error(exc: Exception, request: PageRequest, attempt: int) -> TransportError:
        if isinstance(exc, TransportError):
            exc.attempts = attempt
            if exc.page is None:
                exc.page = request.page
            return exc
        error = TransportError(str(exc) or type(exc).__name__, page=request.page, attempts=attempt)
        error.__cause__ = exc
        return error


__all__ = [
    "CancelToken",
    "HttpRecordSource",
    "Page",
    "PageRequest",
    "RecordSource",
    "RetryingFetcher",
    "parse_page",
]
