from __future__ import annotations

from pathlib import Path

import typer
from rich import print

from ..config import GittimeConfig
from ..errors import StorageError
from ..store import (
    ERRORS_FILENAME,
    STATE_FILENAME,
    DayStore,
    ErrorLog,
    SuggestionLedger,
    WatermarkStore,
)


def errors_cmd(*, cfg: GittimeConfig, limit: int) -> None:
    """Show the most recent rejected time lines."""

    log = ErrorLog(Path(cfg.data_dir).expanduser() / ERRORS_FILENAME)
    try:
        entries = log.entries
    except StorageError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not entries:
        print("No errors recorded")
        return
    shown = entries[-limit:] if limit > 0 else entries
    for entry in shown:
        print(f"- {entry.get('id')} [bold]{entry.get('reason')}[/bold]")
        print(f"  {entry.get('line', '').strip()}")
    if len(shown) < len(entries):
        print(f"({len(entries) - len(shown)} older errors not shown)")


def suggestions_cmd(*, cfg: GittimeConfig) -> None:
    ledger = SuggestionLedger(cfg.suggestions_path)
    try:
        suggestions = ledger.load()
    except StorageError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not suggestions:
        print("No alias suggestions yet")
        return
    for key, aliases in sorted(suggestions.items()):
        if aliases:
            print(f"[bold]{key}[/bold]: {', '.join(aliases)}")


def state_cmd(*, cfg: GittimeConfig) -> None:
    data_dir = Path(cfg.data_dir).expanduser()
    try:
        watermark = WatermarkStore(data_dir / STATE_FILENAME).load()
    except StorageError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    dates = DayStore(data_dir).dates()
    print("[bold]Watermark[/bold]")
    print(f"- Last processed: {watermark.last_processed or 'none (next run bootstraps)'}")
    print(f"- Recent window: {len(watermark.recent_commits)} commits")
    print(f"- Day documents: {len(dates)}")
    if dates:
        print(f"- Range: {dates[0]} .. {dates[-1]}")
