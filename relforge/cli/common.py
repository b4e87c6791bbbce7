"""Helpers shared by the CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from relforge.config import RelforgeSettings
from relforge.errors import RelforgeError


def configure_logging(level: str) -> None:
    """Route all ``relforge.*`` loggers through a RichHandler on stderr."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def fail(console: Console, exc: RelforgeError) -> typer.Exit:
    """Print a pipeline error with its stage and return the exit to raise."""
    console.print(f"[bold red]{type(exc).__name__}[/bold red] [dim]({exc.stage})[/dim]: {exc}")
    return typer.Exit(code=1)


def resolve_under(root: Path, path: Path | str) -> Path:
    """Interpret *path* relative to *root* unless it is absolute."""
    candidate = Path(path)
    return candidate if candidate.is_absolute() else Path(root) / candidate


def load_settings() -> RelforgeSettings:
    return RelforgeSettings()
