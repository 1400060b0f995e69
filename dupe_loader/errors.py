"""Error taxonomy shared by the loading, detection and caching layers."""

from __future__ import annotations


class DupeLoaderError(Exception):
    """Base class for every error raised by dupe_loader."""


class ConfigurationError(DupeLoaderError, ValueError):
    """Invalid configuration or call arguments; never degraded."""


class AuthorizationError(DupeLoaderError):
    """The caller is not allowed to invoke the load API."""


class TransportError(DupeLoaderError):
    """A page request failed (network error, non-2xx status, bad payload)."""

    def __init__(
        self,
        message: str,
        *,
        page: int | None = None,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.page = page
        self.status_code = status_code
        self.attempts = attempts


class FetchTimeoutError(TransportError):
    """A single attempt exceeded its timeout."""


class FetchCancelledError(TransportError):
    """The attempt was aborted through a cancellation token."""


class PartialLoadError(DupeLoaderError):
    """A page after the first one failed; loading stopped with partial data."""

    def __init__(self, message: str, *, page: int, loaded: int) -> None:
        super().__init__(message)
        self.page = page
        self.loaded = loaded


class DetectionError(DupeLoaderError):
    """Duplicate grouping failed on otherwise valid data."""

    def __init__(self, message: str, *, strategy: str = "unknown") -> None:
        super().__init__(message)
        self.strategy = strategy


__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "DetectionError",
    "DupeLoaderError",
    "FetchCancelledError",
    "FetchTimeoutError",
    "PartialLoadError",
    "TransportError",
]
