from __future__ import annotations

import pytest

from dupe_loader.events import EventBus, EventName


def test_handlers_run_in_subscription_order() -> None:
    bus = EventBus()
    calls: list[str] = []
    bus.subscribe(EventName.DUPLICATE_INFO_LOADED, lambda payload: calls.append(f"a:{payload}"))
    bus.subscribe("duplicate_info_loaded", lambda payload: calls.append(f"b:{payload}"))

    assert bus.publish(EventName.DUPLICATE_INFO_LOADED, 1) == 2
    assert calls == ["a:1", "b:1"]


def test_failing_handler_does_not_stop_delivery() -> None:
    bus = EventBus()
    calls: list[object] = []

    def broken(_payload) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe(EventName.BACKGROUND_LOADING_ERROR, broken)
    bus.subscribe(EventName.BACKGROUND_LOADING_ERROR, calls.append)

    assert bus.publish(EventName.BACKGROUND_LOADING_ERROR, "payload") == 1
    assert calls == ["payload"]


def test_unsubscribe_and_clear() -> None:
    bus = EventBus()
    calls: list[object] = []
    bus.subscribe(EventName.DUPLICATE_INFO_REFRESHED, calls.append)
    bus.unsubscribe(EventName.DUPLICATE_INFO_REFRESHED, calls.append)
    bus.unsubscribe(EventName.DUPLICATE_INFO_REFRESHED, calls.append)

    assert bus.publish(EventName.DUPLICATE_INFO_REFRESHED) == 0
    bus.subscribe(EventName.DUPLICATE_INFO_ERROR, calls.append)
    assert bus.handler_count(EventName.DUPLICATE_INFO_ERROR) == 1
    bus.clear()
    assert bus.handler_count(EventName.DUPLICATE_INFO_ERROR) == 0


def test_unknown_event_name_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventBus().subscribe("no_such_event", print)
