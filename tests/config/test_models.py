from __future__ import annotations

from pathlib import Path

import pytest

from dupe_loader.config import (
    CacheSettings,
    LoadingSettings,
    ManagerConfig,
    PerformanceSettings,
    SourceSettings,
)


def test_defaults_match_documented_values() -> None:
    config = ManagerConfig()
    assert config.cache.timeout == 300
    assert config.cache.max_size == 50000
    assert config.cache.refresh_interval == 60
    assert config.cache.persist_to_storage is True
    assert config.loading.batch_size == 1000
    assert config.loading.max_retries == 3
    assert config.loading.retry_delay == 1.0
    assert config.loading.timeout == 30
    assert config.performance.large_dataset_threshold == 5000
    assert config.performance.enable_background_processing is True


@pytest.mark.parametrize(
    "overrides",
    [{"batch_size": 0}, {"batch_size": -5}, {"max_retries": 0}, {"timeout": 0}, {"retry_delay": -1}],
)
def test_loading_settings_reject_invalid_values(overrides: dict) -> None:
    with pytest.raises(ValueError):
        LoadingSettings(**overrides)


def test_cache_settings_bounds() -> None:
    with pytest.raises(ValueError):
        CacheSettings(timeout=0)
    with pytest.raises(ValueError):
        CacheSettings(max_size=0)
    assert CacheSettings(refresh_interval=0).refresh_interval == 0


def test_performance_delays_must_be_non_negative() -> None:
    with pytest.raises(ValueError):
        PerformanceSettings(page_delay=-0.1)


def test_source_records_path_gains_leading_slash() -> None:
    assert SourceSettings(records_path="check").records_path == "/check"
    assert SourceSettings(records_path="/api/records").records_path == "/api/records"


def test_storage_path_resolution(tmp_path: Path) -> None:
    relative = ManagerConfig(storage_path="data/cache/x.db")
    assert relative.resolved_storage_path(tmp_path) == (tmp_path / "data/cache/x.db").resolve()
    absolute = ManagerConfig(storage_path=tmp_path / "abs.db")
    assert absolute.resolved_storage_path(Path("/elsewhere")) == tmp_path / "abs.db"
