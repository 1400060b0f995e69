from __future__ import annotations

from pathlib import Path

from dupe_loader.logging_conf import log_file_paths, tail_log


def test_log_paths_follow_home_directory(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("DUPE_LOADER_HOME", str(tmp_path))
    paths = log_file_paths()
    assert paths["loader"] == tmp_path.resolve() / "logs" / "loader.log"
    assert paths["error"] == tmp_path.resolve() / "logs" / "error.log"


def test_tail_log(tmp_path: Path) -> None:
    path = tmp_path / "x.log"
    assert tail_log(path) == []
    path.write_text("".join(f"line {i}\n" for i in range(10)), encoding="utf-8")
    assert tail_log(path, 3) == ["line 7\n", "line 8\n", "line 9\n"]
