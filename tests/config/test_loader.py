from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from dupe_loader.config import ConfigLocator, ConfigRepository, ManagerConfig
from dupe_loader.errors import ConfigurationError


def test_config_locator_uses_env_and_creates_directories(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DUPE_LOADER_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    for path in (locator.data_dir, locator.cache_dir, locator.logs_dir):
        assert path.exists()
    assert locator.config_path() == locator.data_dir / "config.yaml"


def test_missing_config_is_created_with_defaults(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_config()
    path = temp_config_repository.locator.config_path()
    assert path.exists()
    assert config == ManagerConfig()
    written = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert written["loading"]["batch_size"] == 1000


def test_config_roundtrip(temp_config_repository: ConfigRepository) -> None:
    config = ManagerConfig.model_validate({"loading": {"batch_size": 250}, "cache": {"timeout": 60}})
    temp_config_repository.save_config(config)
    fresh = ConfigRepository(temp_config_repository.locator)
    loaded = fresh.load_config()
    assert loaded.loading.batch_size == 250
    assert loaded.cache.timeout == 60


def test_invalid_config_raises_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"loading": {"batch_size": 0}}), encoding="utf-8")
    repository = ConfigRepository(ConfigLocator(project_root=tmp_path))
    with pytest.raises(ConfigurationError):
        repository.load_config(path)


def test_non_mapping_config_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    repository = ConfigRepository(ConfigLocator(project_root=tmp_path))
    with pytest.raises(ConfigurationError):
        repository.load_config(path)


def test_storage_path_is_under_project_root(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_config()
    root = temp_config_repository.locator.project_root
    assert temp_config_repository.storage_path(config) == (root / "data/cache/duplicate_cache.db").resolve()
