from __future__ import annotations

import pytest

from dupe_loader.config import LoadingSettings, PerformanceSettings
from dupe_loader.engine import LoadStrategySelector, RetryingFetcher
from dupe_loader.errors import TransportError


def _selector(source, clock, threshold: int = 5000) -> LoadStrategySelector:
    fetcher = RetryingFetcher(source, LoadingSettings(), clock)
    return LoadStrategySelector(fetcher, PerformanceSettings(large_dataset_threshold=threshold))


@pytest.mark.asyncio
async def test_large_total_selects_background(fake_clock, source_factory) -> None:
    source = source_factory([], total=10_000)
    selector = _selector(source, fake_clock)

    assert await selector.should_use_background() is True
    assert selector.last_estimate == 10_000
    probe = source.calls[0]
    assert (probe.page, probe.limit) == (1, 1)


@pytest.mark.asyncio
async def test_threshold_is_inclusive(fake_clock, source_factory) -> None:
    assert await _selector(source_factory([], total=5000), fake_clock).should_use_background() is True
    assert await _selector(source_factory([], total=4999), fake_clock).should_use_background() is False


@pytest.mark.asyncio
async def test_probe_failure_falls_back_to_synchronous(fake_clock, source_factory) -> None:
    source = source_factory([], total=10_000, failures={1: TransportError("probe down")})
    selector = _selector(source, fake_clock)

    assert await selector.should_use_background() is False
    assert selector.last_estimate is None
    # probe is a single attempt
    assert len(source.calls) == 1
    assert fake_clock.sleeps == []
