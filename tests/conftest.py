"""Shared fixtures: deterministic clock, scripted record source and sample configs."""

from __future__ import annotations

import asyncio
import math
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from dupe_loader.config import (
    CacheSettings,
    ConfigLocator,
    ConfigRepository,
    LoadingSettings,
    ManagerConfig,
    PerformanceSettings,
)
from dupe_loader.engine import Page, PageRequest
from dupe_loader.infra import MemoryStore
from dupe_loader.manager import DuplicateDataManager


class FakeClock:
    """Clock whose sleeps advance time instantly and are recorded."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds
        await asyncio.sleep(0)


class ScriptedRecordSource:
    """Serve ``records`` page by page.

    ``failures`` maps a page number to either an exception raised on every
    request for that page or a list of exceptions consumed one per request.
    """

    def __init__(
        self,
        records: Iterable[dict[str, Any]],
        *,
        total: int | None = None,
        failures: dict[int, Any] | None = None,
        full_pages: bool = False,
    ) -> None:
        self.records = list(records)
        self.total = len(self.records) if total is None else total
        self.failures = dict(failures or {})
        self.full_pages = full_pages
        self.calls: list[PageRequest] = []
        self.closed = False

    async def fetch_page(self, request: PageRequest) -> Page:
        self.calls.append(request)
        await asyncio.sleep(0)
        planned = self.failures.get(request.page)
        if isinstance(planned, list):
            if planned:
                raise planned.pop(0)
        elif planned is not None:
            raise planned
        if self.full_pages:
            chunk = [
                {"id": f"p{request.page}-{i}", "phone": f"9{request.page:04d}{i:04d}"}
                for i in range(request.limit)
            ]
        else:
            start = (request.page - 1) * request.limit
            chunk = [dict(record) for record in self.records[start : start + request.limit]]
        return Page(
            records=chunk,
            page=request.page,
            limit=request.limit,
            total=self.total,
            total_pages=0 if self.full_pages else math.ceil(self.total / request.limit),
        )

    def data_calls(self) -> list[PageRequest]:
        """Requests other than the single-record strategy probe."""

        return [call for call in self.calls if call.limit != 1]

    async def close(self) -> None:
        self.closed = True


def make_records(count: int, duplicates: dict[str, list[int]] | None = None) -> list[dict[str, Any]]:
    """Unique phones for ``count`` records, then overwrite the listed indexes with shared phones."""

    records = [{"id": str(i + 1), "phone": f"555-{i:05d}"} for i in range(count)]
    for phone, indexes in (duplicates or {}).items():
        for index in indexes:
            records[index]["phone"] = phone
    return records


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def records_factory() -> Callable[..., list[dict[str, Any]]]:
    return make_records


@pytest.fixture
def source_factory() -> Callable[..., ScriptedRecordSource]:
    return ScriptedRecordSource


@pytest.fixture
def manager_config() -> ManagerConfig:
    return ManagerConfig(
        cache=CacheSettings(timeout=300, max_size=100, refresh_interval=60),
        loading=LoadingSettings(batch_size=10, max_retries=3, retry_delay=1.0, timeout=5),
        performance=PerformanceSettings(
            large_dataset_threshold=50,
            enable_background_processing=True,
            chunk_processing_delay=0.01,
            page_delay=0.1,
        ),
    )


@pytest.fixture
def make_manager(
    manager_config: ManagerConfig, fake_clock: FakeClock
) -> Callable[..., DuplicateDataManager]:
    def _builder(source: ScriptedRecordSource, **overrides: Any) -> DuplicateDataManager:
        options: dict[str, Any] = {"store": MemoryStore(), "clock": fake_clock}
        options.update(overrides)
        config = options.pop("config", manager_config)
        return DuplicateDataManager(config, source, **options)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigRepository:
    monkeypatch.setenv("DUPE_LOADER_HOME", str(tmp_path))
    return ConfigRepository(ConfigLocator(project_root=tmp_path))
