from __future__ import annotations

import json
from dataclasses import replace

import typer
from rich import print

from ..config import GittimeConfig
from ..errors import GittimeError
from ..grammar import LineError, parse_duration, parse_time_line
from ..ingest import build_coordinator


def ingest_cmd(
    *,
    cfg: GittimeConfig,
    repo_path: str | None,
    llm: bool | None,
    recent_window: int | None,
) -> None:
    """Ingest time lines from the repository at ``repo_path``."""

    if llm is not None:
        cfg = replace(cfg, llm_enabled=llm)
    if recent_window is not None:
        cfg = replace(cfg, recent_window=max(0, recent_window))
    try:
        coordinator = build_coordinator(cfg, repo_path=repo_path)
        summary = coordinator.run()
    except GittimeError as exc:
        print(f"[red]Ingest failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(
        f"Parse complete: added={summary.added} skipped={summary.skipped} "
        f"errors={summary.errored}"
    )
    print(f"- Mode: {summary.mode} ({summary.commits} commits examined)")


def parse_line_cmd(*, line: str) -> None:
    parsed = parse_time_line(line)
    if parsed is None:
        print("[yellow]Not a time: line[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(parsed, LineError):
        print(f"[red]{parsed.reason}[/red]")
        raise typer.Exit(code=1)
    payload = parsed.to_raw()
    payload["hours"] = parse_duration(parsed.duration_token)
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
