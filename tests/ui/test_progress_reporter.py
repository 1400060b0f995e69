from __future__ import annotations

from dupe_loader.events import BackgroundComplete, BackgroundProgress, EventBus, EventName
from dupe_loader.ui import ProgressReporter


def test_reporter_counts_events_when_disabled() -> None:
    bus = EventBus()
    reporter = ProgressReporter(enabled=False)
    reporter.attach(bus)
    reporter.start(total=100, loaded=10)

    bus.publish(EventName.BACKGROUND_LOADING_PROGRESS, BackgroundProgress(loaded=40, total=100, progress=40.0))
    bus.publish(EventName.DUPLICATE_INFO_FALLBACK, object())
    bus.publish(EventName.BACKGROUND_LOADING_ERROR, RuntimeError("x"))
    bus.publish(EventName.BACKGROUND_LOADING_COMPLETE, BackgroundComplete(total_records=100))

    assert reporter.summary() == {"loaded": 100, "total": 100, "fallbacks": 1, "errors": 1}
    assert reporter.state.finished

    reporter.close()
    assert bus.handler_count(EventName.BACKGROUND_LOADING_PROGRESS) == 0


def test_reporter_stays_quiet_without_terminal(tmp_path) -> None:
    from rich.console import Console

    with (tmp_path / "out.txt").open("w", encoding="utf-8") as stream:
        reporter = ProgressReporter(console=Console(file=stream))
        reporter.start(total=10)
        assert not reporter.enabled
        reporter.close()
