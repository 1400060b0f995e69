"""Pydantic models describing the loader configuration surface."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class CacheSettings(BaseModel):
    """Validity window, size bound and refresh cadence of the cache tiers."""

    timeout: float = Field(default=300.0, description="Seconds a cached entry stays valid.")
    max_size: int = 50000
    refresh_interval: float = Field(
        default=60.0,
        description="Auto-refresh period in seconds; 0 disables auto-refresh.",
    )
    persist_to_storage: bool = True

    @model_validator(mode="after")
    def _validate_bounds(self) -> "CacheSettings":
        if self.timeout <= 0:
            raise ValueError("cache.timeout must be > 0")
        if self.max_size < 1:
            raise ValueError("cache.max_size must be >= 1")
        if self.refresh_interval < 0:
            raise ValueError("cache.refresh_interval must be >= 0")
        return self


class LoadingSettings(BaseModel):
    """Page retrieval parameters."""

    batch_size: int = 1000
    max_retries: int = 3
    retry_delay: float = Field(default=1.0, description="Base delay in seconds for linear backoff.")
    timeout: float = Field(default=30.0, description="Per-attempt timeout in seconds.")

    @model_validator(mode="after")
    def _validate_positive(self) -> "LoadingSettings":
        if self.batch_size <= 0:
            raise ValueError("loading.batch_size must be > 0")
        if self.max_retries < 1:
            raise ValueError("loading.max_retries must be >= 1")
        if self.retry_delay < 0:
            raise ValueError("loading.retry_delay must be >= 0")
        if self.timeout <= 0:
            raise ValueError("loading.timeout must be > 0")
        return self


class PerformanceSettings(BaseModel):
    """Strategy switch and pacing for large datasets."""

    large_dataset_threshold: int = 5000
    enable_background_processing: bool = True
    chunk_processing_delay: float = 0.01
    # pause between pages of a synchronous load
    page_delay: float = 0.1

    @field_validator("chunk_processing_delay", "page_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays must be >= 0")
        return value


class SourceSettings(BaseModel):
    """Where the paginated record API lives."""

    base_url: str = "http://localhost:3000"
    records_path: str = "/check"
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("records_path", mode="before")
    @classmethod
    def _leading_slash(cls, value: Any) -> str:
        text = str(value or "/")
        return text if text.startswith("/") else f"/{text}"


class ManagerConfig(BaseModel):
    """Full configuration of a duplicate data manager instance."""

    cache: CacheSettings = Field(default_factory=CacheSettings)
    loading: LoadingSettings = Field(default_factory=LoadingSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    storage_path: Path = Field(default=Path("data/cache/duplicate_cache.db"))

    @field_validator("storage_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_storage_path(self, base_dir: Path) -> Path:
        """Return the persistent store path relative to the project root."""

        if not self.storage_path.is_absolute():
            return (base_dir / self.storage_path).resolve()
        return self.storage_path


__all__ = [
    "CacheSettings",
    "LoadingSettings",
    "ManagerConfig",
    "PerformanceSettings",
    "SourceSettings",
]
