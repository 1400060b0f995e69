"""Configuration loading helpers for Dupe-Loader."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .models import ManagerConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
CONFIG_FILENAME = "config.yaml"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    cache_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("DUPE_LOADER_HOME")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.cache_dir = (self.data_dir / "cache").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.cache_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cache: ManagerConfig | None = None

    def load_config(self, path: Path | None = None) -> ManagerConfig:
        if path is None and self._cache is not None:
            return self._cache
        target = path or self.locator.config_path()
        if target.exists():
            if target.suffix not in CONFIG_EXTENSIONS:
                raise ConfigurationError(f"Unsupported configuration format: {target}")
            payload = _read_file(target)
            try:
                config = ManagerConfig.model_validate(payload)
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid configuration in {target}: {exc}") from exc
        else:
            config = ManagerConfig()
            if path is None:
                self.save_config(config)
        if path is None:
            self._cache = config
        return config

    def save_config(self, config: ManagerConfig) -> Path:
        path = self.locator.config_path()
        _write_file(path, config.model_dump(mode="json"))
        self._cache = config
        return path

    def storage_path(self, config: ManagerConfig) -> Path:
        """Absolute path of the persistent cache database for ``config``."""

        return config.resolved_storage_path(self.locator.project_root)


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS", "CONFIG_FILENAME"]
