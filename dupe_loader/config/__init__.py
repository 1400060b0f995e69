"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    CacheSettings,
    LoadingSettings,
    ManagerConfig,
    PerformanceSettings,
    SourceSettings,
)

__all__ = [
    "CacheSettings",
    "ConfigLocator",
    "ConfigRepository",
    "LoadingSettings",
    "ManagerConfig",
    "PerformanceSettings",
    "SourceSettings",
]
