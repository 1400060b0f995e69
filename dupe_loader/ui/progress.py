"""Terminal progress rendering for duplicate loads, fed by the event bus."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

from ..events import BackgroundComplete, BackgroundProgress, EventBus, EventName


@dataclass
class ProgressState:
    loaded: int = 0
    total: int = 0
    fallbacks: int = 0
    errors: int = 0
    finished: bool = False


class RecordRateColumn(ProgressColumn):
    """Records per second, e.g. ``1.2K rec/s``."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        if speed < 1000:
            return Text(f"{speed:.1f} rec/s", style="progress.percentage")
        return Text(f"{speed / 1000:.1f}K rec/s", style="progress.percentage")


class ProgressReporter:
    """Render background loading progress and keep counters for the summary."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state = ProgressState()
        self._bus: EventBus | None = None

    def attach(self, bus: EventBus) -> None:
        self._bus = bus
        bus.subscribe(EventName.BACKGROUND_LOADING_PROGRESS, self._on_progress)
        bus.subscribe(EventName.BACKGROUND_LOADING_COMPLETE, self._on_complete)
        bus.subscribe(EventName.DUPLICATE_INFO_FALLBACK, self._on_fallback)
        bus.subscribe(EventName.BACKGROUND_LOADING_ERROR, self._on_error)

    def detach(self) -> None:
        if self._bus is None:
            return
        self._bus.unsubscribe(EventName.BACKGROUND_LOADING_PROGRESS, self._on_progress)
        self._bus.unsubscribe(EventName.BACKGROUND_LOADING_COMPLETE, self._on_complete)
        self._bus.unsubscribe(EventName.DUPLICATE_INFO_FALLBACK, self._on_fallback)
        self._bus.unsubscribe(EventName.BACKGROUND_LOADING_ERROR, self._on_error)
        self._bus = None

    def start(self, total: int, loaded: int = 0) -> None:
        self.state.total = total
        self.state.loaded = loaded
        if not self.enabled:
            return
        if self._console is None:
            self._console = Console()
        if not self._console.is_terminal:
            # non-interactive output stays quiet
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]records", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RecordRateColumn(),
            TextColumn("[green]{task.completed:>7.0f}/{task.total:<7.0f}"),
            console=self._console,
            transient=True,
            refresh_per_second=8,
            expand=True,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task("load", total=total or None, completed=loaded)

    def _on_progress(self, payload: BackgroundProgress) -> None:
        self.state.loaded = payload.loaded
        self.state.total = payload.total or self.state.total
        if self._progress is not None and self._task_id is not None:
            self._progress.update(self._task_id, completed=payload.loaded, total=self.state.total or None)

    def _on_complete(self, payload: BackgroundComplete) -> None:
        self.state.loaded = payload.total_records
        self.state.finished = True
        if self._progress is not None and self._task_id is not None:
            self._progress.update(self._task_id, completed=payload.total_records)

    def _on_fallback(self, _payload: object) -> None:
        self.state.fallbacks += 1

    def _on_error(self, _payload: object) -> None:
        self.state.errors += 1

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress.__exit__(None, None, None)
            self._progress = None
        self._task_id = None
        self.detach()

    def summary(self) -> dict[str, int]:
        return {
            "loaded": self.state.loaded,
            "total": self.state.total,
            "fallbacks": self.state.fallbacks,
            "errors": self.state.errors,
        }


__all__ = ["ProgressReporter", "ProgressState", "RecordRateColumn"]
