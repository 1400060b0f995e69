from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from dupe_loader.app import AppState, app
from dupe_loader.cache import STORAGE_KEY
from dupe_loader.errors import TransportError
from dupe_loader.infra import MemoryStore
from dupe_loader.manager import DuplicateDataManager


@pytest.fixture
def cli_state(monkeypatch, temp_config_repository, manager_config, fake_clock, source_factory, records_factory):
    store = MemoryStore()
    sources: list = []
    cli_state_failures: dict = {}

    def factory(config):
        source = source_factory(records_factory(12, duplicates={"444-555": [0, 11]}))
        source.failures.update(cli_state_failures)
        sources.append(source)
        return DuplicateDataManager(config, source, store=store, clock=fake_clock)

    state = AppState(repository=temp_config_repository, config=manager_config, manager_factory=factory)
    monkeypatch.setattr("dupe_loader.app.build_state", lambda verbose: state)
    state.store = store
    state.failures = cli_state_failures
    state.sources = sources
    return state


def test_cli_load_prints_summary(cli_state) -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["load"])
    assert result.exit_code == 0, result.stdout
    assert "Duplicate summary" in result.stdout
    assert "444555" in result.stdout
    assert cli_state.store.get(STORAGE_KEY) is not None


def test_cli_load_batch_size_option(cli_state) -> None:
    result = CliRunner().invoke(app, ["load", "--batch-size", "5"])
    assert result.exit_code == 0, result.stdout
    limits = {call.limit for call in cli_state.sources[0].data_calls()}
    assert limits == {5}


def test_cli_load_degraded_result(cli_state) -> None:
    cli_state.failures[1] = TransportError("offline")
    result = CliRunner().invoke(app, ["load"])
    assert result.exit_code == 0, result.stdout
    assert "empty_result" in result.stdout
    assert "degraded" in result.stdout


def test_cli_load_without_degradation_fails(cli_state) -> None:
    cli_state.failures[1] = TransportError("offline")
    result = CliRunner().invoke(app, ["load", "--no-degrade"])
    assert result.exit_code == 1
    assert "Load failed" in result.stdout


def test_cli_state_after_load(cli_state) -> None:
    runner = CliRunner()
    runner.invoke(app, ["load"])
    result = runner.invoke(app, ["state"])
    assert result.exit_code == 0, result.stdout
    assert "Load state" in result.stdout
    assert "Duplicate summary" in result.stdout


def test_cli_state_without_cache(cli_state) -> None:
    result = CliRunner().invoke(app, ["state"])
    assert result.exit_code == 0, result.stdout
    assert "No valid cached result" in result.stdout


def test_cli_cache_clear(cli_state) -> None:
    runner = CliRunner()
    runner.invoke(app, ["load"])
    result = runner.invoke(app, ["cache", "clear"])
    assert result.exit_code == 0, result.stdout
    assert cli_state.store.get(STORAGE_KEY) is None


def test_cli_config_show_and_init(cli_state) -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0, result.stdout
    assert "batch_size: 10" in result.stdout

    result = runner.invoke(app, ["config", "init", "--force"])
    assert result.exit_code == 0, result.stdout
    assert cli_state.repository.locator.config_path().exists()


def test_cli_log_tail(monkeypatch, tmp_path: Path) -> None:
    log_path = tmp_path / "loader.log"
    log_path.write_text("first\nsecond\nthird\n", encoding="utf-8")
    monkeypatch.setattr("dupe_loader.app.log_file_paths", lambda: {"loader": log_path})
    monkeypatch.setattr("dupe_loader.app.build_state", lambda verbose: None)

    runner = CliRunner()
    result = runner.invoke(app, ["log", "tail", "loader", "--lines", "2"])
    assert result.exit_code == 0, result.stdout
    assert "second" in result.stdout
    assert "first" not in result.stdout

    result = runner.invoke(app, ["log", "tail", "missing"])
    assert result.exit_code == 1
