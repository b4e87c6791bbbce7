"""``relforge tree`` — print exactly what a build would consume.

One relative path per line, sorted, after source filtering.  Build output
directories, VCS metadata and pipeline-generated paths never appear.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from relforge.cli.common import fail
from relforge.core.source_filter import SourceFilter, filtered_tree
from relforge.errors import RelforgeError
from relforge.project import load_project

console = Console()


def tree_cmd(
    source: Path = typer.Option(Path("."), "--source", "-s", help="Project source root."),
) -> None:
    """List the filtered source tree."""
    try:
        project = load_project(source)
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    for rel in filtered_tree(source, SourceFilter.from_settings(project.build)):
        typer.echo(rel)
