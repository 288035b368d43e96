from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from gittime.cli import app
from gittime.git_info import CommitRecord
from gittime.ingest import build_coordinator

runner = CliRunner()


class FakeLog:
    def __init__(self, commits: list[CommitRecord]) -> None:
        self.commits = commits

    def all_commits(self) -> list[CommitRecord]:
        return list(self.commits)

    def commits_after(self, sha: str) -> list[CommitRecord]:
        shas = [c.sha for c in self.commits]
        return self.commits[: shas.index(sha)]

    def recent_commits(self, limit: int) -> list[CommitRecord]:
        return self.commits[:limit]


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    tags = tmp_path / "tags.yaml"
    tags.write_text("timezone: UTC\ntags:\n  writing:\n    aliases: [blog]\n", encoding="utf-8")
    monkeypatch.setenv("GITTIME_TAGS_PATH", str(tags))
    monkeypatch.setenv("GITTIME_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("GITTIME_SUGGESTIONS_PATH", str(tmp_path / "tags.suggestions.yaml"))
    monkeypatch.setenv("GITTIME_REPO", "example/repo")
    log = FakeLog(
        [
            CommitRecord(
                sha="c1",
                timestamp="2026-03-01T10:00:00+00:00",
                message="time: today 1h #blog\ntime: today nope",
            )
        ]
    )

    def _build(cfg, *, repo_path=None):
        return build_coordinator(cfg, repo_path=repo_path, reader=log)

    monkeypatch.setattr("gittime.commands.ingest_cmds.build_coordinator", _build)
    return tmp_path


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("ingest", "parse-line", "errors", "suggestions", "state"):
        assert name in result.stdout


def test_parse_line_prints_json() -> None:
    result = runner.invoke(app, ["parse-line", "time: today 90m #youtube analyze footage"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["hours"] == 1.5
    assert payload["tag_meta"] == {"youtube": ["analyze", "footage"]}


def test_parse_line_rejects_short_line() -> None:
    result = runner.invoke(app, ["parse-line", "time: today"])
    assert result.exit_code == 1
    assert "missing date or duration" in result.stdout


def test_ingest_then_inspect(workspace: Path) -> None:
    result = runner.invoke(app, ["ingest"])
    assert result.exit_code == 0, result.stdout
    assert "Parse complete: added=1 skipped=0 errors=1" in result.stdout

    entries = json.loads((workspace / "data" / "2026-03-01.json").read_text())["entries"]
    assert entries[0]["source"] == {"repo": "example/repo", "commit": "c1"}

    again = runner.invoke(app, ["ingest"])
    assert "added=0 skipped=1" in again.stdout

    errors = runner.invoke(app, ["errors"])
    assert errors.exit_code == 0
    assert "invalid date or duration" in errors.stdout

    state = runner.invoke(app, ["state"])
    assert "c1" in state.stdout
    assert "Day documents: 1" in state.stdout

    suggestions = runner.invoke(app, ["suggestions"])
    assert "No alias suggestions yet" in suggestions.stdout


def test_ingest_reports_missing_tag_file(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("GITTIME_TAGS_PATH", str(workspace / "missing.yaml"))
    result = runner.invoke(app, ["ingest"])
    assert result.exit_code == 1
    assert "Ingest failed" in result.stdout


def test_invalid_config_exits_with_message(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    monkeypatch.setenv("GITTIME_CONFIG", str(config_path))
    result = runner.invoke(app, ["state"])
    assert result.exit_code == 1
    assert "invalid config json" in result.stdout
