"""Typer CLI entrypoint for Dupe-Loader."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, ManagerConfig
from .engine import HttpRecordSource, IndexedDetectionStrategy
from .errors import DupeLoaderError
from .infra import SQLiteStore
from .logging_conf import configure_logging, log_file_paths, tail_log
from .manager import DuplicateDataManager
from .models import DuplicateInfo
from .scheduler import AutoRefreshScheduler
from .ui import ProgressReporter

app = typer.Typer(
    help="Dupe-Loader command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
config_app = typer.Typer(name="config", help="Configuration commands", no_args_is_help=True)
cache_app = typer.Typer(name="cache", help="Cache maintenance commands", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing commands", no_args_is_help=True)

console = Console()

ManagerFactory = Callable[[ManagerConfig], DuplicateDataManager]


@dataclass
class AppState:
    repository: ConfigRepository
    config: ManagerConfig
    manager_factory: ManagerFactory


def _build_manager(repository: ConfigRepository, config: ManagerConfig) -> DuplicateDataManager:
    source = HttpRecordSource(config.source, timeout=config.loading.timeout)
    store = SQLiteStore(repository.storage_path(config)) if config.cache.persist_to_storage else None
    return DuplicateDataManager(
        config,
        source,
        store=store,
        detection_strategy=IndexedDetectionStrategy(),
    )


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    config = repository.load_config()
    return AppState(
        repository=repository,
        config=config,
        manager_factory=lambda cfg: _build_manager(repository, cfg),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _progress_default_enabled() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


def _render_info_table(info: DuplicateInfo) -> Table:
    table = Table(title="Duplicate summary", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_row("Total records", str(info.total_records))
    table.add_row("Duplicate records", str(info.duplicate_count))
    table.add_row("Duplicate phones", str(info.duplicate_phone_count))
    table.add_row("Unique phones", str(info.unique_phone_count))
    table.add_row("Source", info.metadata.source)
    if info.error_handling is not None:
        table.add_row("Fallback", str(info.error_handling.fallback_method), style="yellow")
        table.add_row("Original error", str(info.error_handling.original_error), style="yellow")
    return table


def _render_groups_table(info: DuplicateInfo, limit: int) -> Table:
    table = Table(title="Duplicate groups", box=box.SIMPLE_HEAD)
    table.add_column("Phone", style="cyan", no_wrap=True)
    table.add_column("Records", style="magenta", overflow="fold")
    table.add_column("Count", style="green", justify="right")
    for index, group in enumerate(info.groups()):
        if index >= limit:
            break
        table.add_row(group.phone, ", ".join(group.record_ids), str(len(group.record_ids)))
    return table


def _render_state_table(state: dict[str, Any]) -> Table:
    table = Table(title="Load state", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", overflow="fold")
    for key, value in state.items():
        if key == "errors":
            value = len(value)
        table.add_row(key, "-" if value is None else str(value))
    return table


async def _run_load(
    state: AppState,
    config: ManagerConfig,
    *,
    force: bool,
    batch_size: int | None,
    degrade: bool,
    wait: bool,
) -> DuplicateInfo:
    manager = state.manager_factory(config)
    reporter = ProgressReporter(enabled=_progress_default_enabled(), console=console)
    reporter.attach(manager.events)
    try:
        info = await manager.load_duplicate_info(
            force_refresh=force,
            batch_size=batch_size,
            enable_graceful_degradation=degrade,
        )
        if wait and manager.background_active:
            snapshot = manager.get_cached_records()
            reporter.start(
                total=snapshot.estimated_total if snapshot else 0,
                loaded=len(snapshot.records) if snapshot else 0,
            )
            await manager.wait_for_background()
            info = manager.get_cached_duplicate_info() or info
    finally:
        reporter.close()
        await manager.close()
    return info


app.add_typer(config_app, name="config")
app.add_typer(cache_app, name="cache")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("load", help="Load records and report duplicate phone numbers.")
def load(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Ignore a valid cached result."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Records per page."),
    no_degrade: bool = typer.Option(False, "--no-degrade", help="Fail instead of falling back."),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Override the record API base URL."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for background loading to finish."),
    groups: int = typer.Option(10, "--groups", help="Number of duplicate groups to print."),
) -> None:
    state = _get_state(ctx)
    config = state.config
    if base_url:
        config = config.model_copy(update={"source": config.source.model_copy(update={"base_url": base_url})})
    try:
        info = asyncio.run(
            _run_load(
                state,
                config,
                force=force,
                batch_size=batch_size,
                degrade=not no_degrade,
                wait=wait,
            )
        )
    except DupeLoaderError as exc:
        console.print(f"Load failed: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    console.print(_render_info_table(info))
    if info.duplicate_record_map and groups > 0:
        console.print(_render_groups_table(info, groups))
    if info.has_errors:
        console.print("Result is degraded; see the fallback row above.", style="yellow")


@app.command("state", help="Show the cached result and load state.")
def show_state(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    manager = state.manager_factory(state.config)
    try:
        console.print(_render_state_table(manager.get_state()))
        info = manager.get_cached_duplicate_info()
        if info is None:
            console.print("No valid cached result.", style="dim")
        else:
            console.print(_render_info_table(info))
    finally:
        asyncio.run(manager.close())


@app.command("watch", help="Refresh periodically until interrupted.")
def watch(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between refreshes."),
) -> None:
    state = _get_state(ctx)

    async def _watch() -> None:
        manager = state.manager_factory(state.config)
        scheduler = AutoRefreshScheduler(manager, interval=interval)

        def _print(info: DuplicateInfo) -> None:
            console.print(
                f"{info.total_records} records, {info.duplicate_count} duplicates",
                style="yellow" if info.has_errors else "green",
            )

        manager.events.subscribe("duplicate_info_refreshed", _print)
        await manager.refresh("initial")
        scheduler.start()
        if not scheduler.started:
            await manager.close()
            return
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown()
            await manager.close()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("Stopped.", style="dim")
    except DupeLoaderError as exc:
        console.print(f"Refresh failed: {exc}", style="red")
        raise typer.Exit(code=1) from exc


@config_app.command("show", help="Print the effective configuration.")
def config_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    console.print(f"# {state.repository.locator.config_path()}", style="dim")
    console.print(yaml.safe_dump(state.config.model_dump(mode="json"), sort_keys=False))


@config_app.command("init", help="Write a default configuration file.")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    state = _get_state(ctx)
    path = state.repository.locator.config_path()
    if path.exists() and not force:
        confirmed = typer.confirm(f"{path} exists, overwrite?", default=False)
        if not confirmed:
            console.print("Configuration left unchanged.", style="yellow")
            raise typer.Exit(code=0)
    written = state.repository.save_config(ManagerConfig())
    console.print(f"Default configuration written to {written}", style="green")


@cache_app.command("clear", help="Drop the in-memory and persisted cache.")
def cache_clear(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    manager = state.manager_factory(state.config)
    manager.cache.clear(include_persistent=True)
    asyncio.run(manager.close())
    console.print("Cache cleared.", style="green")


@log_app.command("tail", help="Show the last lines of a log file.")
def log_tail(
    name: str = typer.Argument("loader", help="Log name: loader or error."),
    lines: int = typer.Option(100, "--lines", "-n", help="Number of lines."),
) -> None:
    paths = log_file_paths()
    if name not in paths:
        console.print(f"Unknown log `{name}`; choose from {', '.join(sorted(paths))}.", style="red")
        raise typer.Exit(code=1)
    content = tail_log(paths[name], lines)
    if not content:
        console.print("Log is empty.", style="dim")
        return
    console.print(f"{name} · last {len(content)} lines", style="cyan")
    console.print("".join(content), end="")


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
