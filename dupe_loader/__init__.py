"""Paginated record loading with duplicate phone detection and a two-tier cache."""

from .config import ManagerConfig
from .errors import (
    AuthorizationError,
    ConfigurationError,
    DetectionError,
    DupeLoaderError,
    FetchCancelledError,
    FetchTimeoutError,
    PartialLoadError,
    TransportError,
)
from .events import EventBus, EventName
from .manager import DuplicateDataManager
from .models import DuplicateInfo, RecordDuplicateStatus

__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "DetectionError",
    "DupeLoaderError",
    "DuplicateDataManager",
    "DuplicateInfo",
    "EventBus",
    "EventName",
    "FetchCancelledError",
    "FetchTimeoutError",
    "ManagerConfig",
    "PartialLoadError",
    "RecordDuplicateStatus",
    "TransportError",
]
