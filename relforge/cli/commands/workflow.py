"""``relforge workflow`` — render the tag-triggered CI workflow."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from relforge.cli.common import fail, resolve_under
from relforge.core.workflow import WORKFLOW_PATH, render_workflow
from relforge.errors import RelforgeError
from relforge.project import load_project

console = Console()


def workflow_cmd(
    source: Path = typer.Option(Path("."), "--source", "-s", help="Project source root."),
    write: bool = typer.Option(
        False, "--write", "-w", help=f"Write to {WORKFLOW_PATH} instead of printing."
    ),
    python_version: str = typer.Option("3.12", "--python", help="Python version for the runner."),
) -> None:
    """Render the release workflow for the project's matrix."""
    try:
        project = load_project(source)
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    rendered = render_workflow(project, python_version=python_version)
    if not write:
        typer.echo(rendered, nl=False)
        return

    target = resolve_under(source, WORKFLOW_PATH)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(rendered, encoding="utf-8")
    console.print(f"[green]Wrote[/green] {target}")
