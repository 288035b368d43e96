from __future__ import annotations

import logging
import os

import typer
from rich import print

from . import __version__
from .commands.ingest_cmds import ingest_cmd, parse_line_cmd
from .commands.inspect_cmds import errors_cmd, state_cmd, suggestions_cmd
from .config import GittimeConfig, load_config

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

app = typer.Typer(help="gittime: time logs from commit messages")


def _configure_logging() -> None:
    level = os.getenv("GITTIME_LOG_LEVEL", "WARNING").upper()
    if level not in VALID_LOG_LEVELS:
        level = "WARNING"
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _config() -> GittimeConfig:
    try:
        return load_config()
    except ValueError as exc:
        print(f"[red]Invalid config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@app.callback()
def main() -> None:
    _configure_logging()


@app.command()
def version() -> None:
    """Print the installed version."""
    print(__version__)


@app.command()
def ingest(
    repo_path: str | None = typer.Option(None, help="Repository to read (defaults to cwd)"),
    llm: bool | None = typer.Option(None, "--llm/--no-llm", help="Override classifier fallback"),
    recent_window: int | None = typer.Option(None, help="Recent commits to re-examine every run"),
) -> None:
    """Ingest time: lines from commit messages into day documents."""
    ingest_cmd(cfg=_config(), repo_path=repo_path, llm=llm, recent_window=recent_window)


@app.command("parse-line")
def parse_line(line: str) -> None:
    """Parse a single time: line and print the result as JSON."""
    parse_line_cmd(line=line)


@app.command()
def errors(limit: int = typer.Option(20, help="Max errors to show")) -> None:
    """Show recorded line errors."""
    errors_cmd(cfg=_config(), limit=limit)


@app.command()
def suggestions() -> None:
    """Show alias suggestions harvested from the classifier."""
    suggestions_cmd(cfg=_config())


@app.command()
def state() -> None:
    """Show the ingest watermark."""
    state_cmd(cfg=_config())


if __name__ == "__main__":
    app()
