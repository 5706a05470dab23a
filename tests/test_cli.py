"""Tests for the command line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from slated.cli import main


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    (tmp_path / "2020-12-31.md").write_text(
        "## Tasks\n\n- [ ] water ; every day\n- [ ] post letter ^task-abcd\n- [x] done\n"
    )
    return tmp_path


def _run(vault: Path, *args: str) -> tuple[int, dict]:
    out = vault / "out.json"
    code = main(["--vault", str(vault), "--output-json", str(out), *args])
    return code, json.loads(out.read_text()) if out.exists() else {}


def test_process(vault: Path):
    code, out = _run(vault, "process", "2020-12-31")
    assert code == 0
    result = out["results"][0]
    assert result["processed"]
    assert result["tasks"] == 3
    assert result["normalized"] == 1
    assert result["repetitions_created"] == 1
    assert "<< Origin]]" in (vault / "2021-01-01.md").read_text()


def test_process_dry_run(vault: Path):
    before = (vault / "2020-12-31.md").read_text()
    code, out = _run(vault, "process", "--dry-run", "2020-12-31")
    assert code == 0
    assert out["results"][0]["normalized"] == 1
    assert (vault / "2020-12-31.md").read_text() == before
    assert not (vault / "2021-01-01.md").exists()


def test_process_non_periodic_note(vault: Path):
    (vault / "Ideas.md").write_text("- [ ] a ; every day\n")
    code, out = _run(vault, "process", "Ideas")
    assert code == 0
    assert out["results"][0]["processed"] is False
    assert (vault / "Ideas.md").read_text() == "- [ ] a ; every day\n"


def test_tasks(vault: Path, capsys):
    code, out = _run(vault, "tasks", "2020-12-31")
    assert code == 0
    printed = capsys.readouterr().out
    assert "   4  [ ] post letter  ^task-abcd" in printed
    assert [t["content"] for t in out["tasks"]] == ["water", "post letter", "done"]
    assert out["tasks"][0]["schedule"] == "every day"
    assert out["tasks"][2]["state"] == "complete"


def test_move_by_line(vault: Path):
    code, out = _run(vault, "move", "2020-12-31", "4", "2021-01-02")
    assert code == 0
    assert out["done"] is True
    assert (vault / "2021-01-02.md").read_text() == (
        "## Tasks\n\n- [ ] post letter [[2020-12-31#^task-abcd|< Origin]]\n"
    )
    assert "- [>] post letter >[[2021-01-02]] ^task-abcd" in (vault / "2020-12-31.md").read_text()


def test_move_by_anchor_into_same_note_is_a_notice(vault: Path):
    code, out = _run(vault, "move", "2020-12-31", "^task-abcd", "2020-12-31")
    assert code == 0
    assert out["done"] is False
    assert out["notices"] == ["Task 'post letter' is already in 2020-12-31"]


def test_move_unknown_task(vault: Path):
    code, _ = _run(vault, "move", "2020-12-31", "task-zzzz", "2021-01-02")
    assert code == 1


def test_skip(vault: Path):
    code, out = _run(vault, "skip", "2020-12-31", "3")
    assert code == 0
    assert out["done"] is True
    lines = (vault / "2020-12-31.md").read_text().split("\n")
    assert lines[2].startswith("- [-] water ; every day ^task-")
    assert "- [ ] water ; every day [[2020-12-31#^task-" in (vault / "2021-01-01.md").read_text()


def test_move_incomplete(vault: Path):
    code, out = _run(vault, "move-incomplete", "2020-12-31", "2021-01-02")
    assert code == 0
    assert out["moved"] == 2
    text = (vault / "2020-12-31.md").read_text()
    assert "- [ ]" not in text
    assert "- [x] done" in text


def test_missing_document_is_an_error(vault: Path):
    code, out = _run(vault, "tasks", "2019-01-01")
    assert code == 1
    assert len(out["errors"]) == 1


def test_rest_without_api_key(monkeypatch):
    monkeypatch.delenv("SLATED_API_KEY", raising=False)
    assert main(["--rest-url", "https://127.0.0.1:27124", "tasks", "2020-12-31"]) == 1


def test_missing_vault(tmp_path: Path):
    assert main(["--vault", str(tmp_path / "nope"), "tasks", "2020-12-31"]) == 1


def test_bad_config(vault: Path):
    config = vault / "slated.json"
    config.write_text("not json")
    assert main(["--vault", str(vault), "--config", str(config), "tasks", "2020-12-31"]) == 1


def test_settings_from_config(vault: Path):
    config = vault / "slated.json"
    config.write_text(json.dumps({"alias_links": False}))
    code = main(["--vault", str(vault), "--config", str(config), "move", "2020-12-31", "4", "2021-01-02"])
    assert code == 0
    assert "<[[2020-12-31#^task-abcd]]" in (vault / "2021-01-02.md").read_text()


def test_bad_date_rejected(vault: Path):
    with pytest.raises(SystemExit):
        main(["--vault", str(vault), "move", "2020-12-31", "4", "not a date"])


def test_flags_override_config(vault: Path):
    config = vault / "slated.json"
    config.write_text(json.dumps({"tasks_header": "## Todo", "future_repetitions_count": 0}))
    code, out = _run(
        vault, "--config", str(config), "--tasks-header", "## Today",
        "--future-repetitions", "2", "process", "2020-12-31",
    )
    assert code == 0
    assert out["results"][0]["repetitions_created"] == 2
    for name in ("2021-01-01", "2021-01-02"):
        assert (vault / f"{name}.md").read_text().startswith("## Today\n\n- [ ] water ; every day [[2020-12-31#^task-")


def test_date_format_flag(vault: Path):
    (vault / "31.12.2020.md").write_text("- [ ] water ; every day ^task-abcd\n")
    code, out = _run(vault, "--date-format", "%d.%m.%Y", "process", "31.12.2020")
    assert code == 0
    assert out["results"][0]["processed"]
    assert (vault / "01.01.2021.md").exists()
