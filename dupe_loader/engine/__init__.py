"""Engine components orchestrating fetch → load → detect → degrade."""

from .dedup import (
    BasicDetectionStrategy,
    DetectionStrategy,
    IndexedDetectionStrategy,
    duplicate_statistics,
    normalize_phone,
)
from .fallback import FallbackChain
from .fetcher import CancelToken, HttpRecordSource, Page, PageRequest, RecordSource, RetryingFetcher
from .loader import BackgroundLoad, LoadOutcome, ProgressiveLoader
from .strategy import LoadStrategySelector

__all__ = [
    "BackgroundLoad",
    "BasicDetectionStrategy",
    "CancelToken",
    "DetectionStrategy",
    "FallbackChain",
    "HttpRecordSource",
    "IndexedDetectionStrategy",
    "LoadOutcome",
    "LoadStrategySelector",
    "Page",
    "PageRequest",
    "ProgressiveLoader",
    "RecordSource",
    "RetryingFetcher",
    "duplicate_statistics",
    "normalize_phone",
]
