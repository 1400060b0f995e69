"""In-process publish/subscribe channel for load lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import structlog


class EventName(str, Enum):
    """Lifecycle events observers may subscribe to."""

    DUPLICATE_INFO_LOADED = "duplicate_info_loaded"
    DUPLICATE_INFO_ERROR = "duplicate_info_error"
    DUPLICATE_INFO_FALLBACK = "duplicate_info_fallback"
    BACKGROUND_LOADING_PROGRESS = "background_loading_progress"
    BACKGROUND_LOADING_COMPLETE = "background_loading_complete"
    BACKGROUND_LOADING_ERROR = "background_loading_error"
    DUPLICATE_INFO_REFRESHED = "duplicate_info_refreshed"
    DUPLICATE_INFO_REFRESH_ERROR = "duplicate_info_refresh_error"


@dataclass(frozen=True, slots=True)
class BackgroundProgress:
    loaded: int
    total: int
    progress: float


@dataclass(frozen=True, slots=True)
class BackgroundComplete:
    total_records: int


Handler = Callable[[Any], None]


class EventBus:
    """Deliver events synchronously, in subscription order.

    A handler that raises is logged and skipped; the remaining handlers still
    receive the event. Nothing is persisted, delivery is at-most-once.
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[EventName, list[Handler]] = {}
        self.logger = logger or structlog.get_logger("dupe_loader.events")

    def subscribe(self, event: EventName | str, handler: Handler) -> None:
        self._handlers.setdefault(EventName(event), []).append(handler)

    def unsubscribe(self, event: EventName | str, handler: Handler) -> None:
        handlers = self._handlers.get(EventName(event))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, event: EventName | str, payload: Any = None) -> int:
        """Deliver ``payload``; returns how many handlers completed."""

        name = EventName(event)
        delivered = 0
        for handler in list(self._handlers.get(name, ())):
            try:
                handler(payload)
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "event_handler_failed",
                    event=name.value,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(exc),
                )
                continue
            delivered += 1
        return delivered

    def handler_count(self, event: EventName | str) -> int:
        return len(self._handlers.get(EventName(event), ()))

    def clear(self) -> None:
        self._handlers.clear()


__all__ = ["BackgroundComplete", "BackgroundProgress", "EventBus", "EventName", "Handler"]
