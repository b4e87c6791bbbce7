"""``relforge release TAG`` — build every matrix entry and attach the assets.

The tag is treated as a tag push: a tag that does not match the project's
``tag_pattern`` is ignored.  Otherwise one job per matrix entry (or per
``--only`` asset) runs in its own workspace, and the folded report is
printed.  Exits non-zero unless the release ends up fully Released.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from relforge.cli.common import fail, load_settings
from relforge.core.checkout import DirectoryCheckout, GitCheckout, SourceCheckout
from relforge.core.orchestrator import ReleaseOrchestrator, build_release_host
from relforge.errors import RelforgeError
from relforge.monitor.renderer import ReleaseRenderer
from relforge.project import load_project

console = Console()


def release_cmd(
    tag: str = typer.Argument(..., help="Tag (or refs/tags/<tag>) to release."),
    source: Path = typer.Option(
        Path("."),
        "--source",
        "-s",
        help="Source root holding relforge.toml; copied per job unless --repository is set.",
    ),
    repository: str = typer.Option(
        None,
        "--repository",
        "-r",
        help="Git repository to clone at the tag for every job.",
    ),
    only: list[str] = typer.Option(
        None,
        "--only",
        help="Run only the matrix entry with this asset name (repeatable).",
    ),
) -> None:
    """Release TAG: fan out over the matrix, upload, and report."""
    settings = load_settings()
    try:
        project = load_project(source)
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    checkout: SourceCheckout
    if repository:
        checkout = GitCheckout(repository)
    else:
        checkout = DirectoryCheckout(source)

    orchestrator = ReleaseOrchestrator(
        settings,
        project.release,
        checkout,
        build_release_host(settings),
    )
    try:
        report = orchestrator.on_tag_push(tag, only=only or None)
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    if report is None:
        console.print(
            f"[yellow]Tag {tag} does not match pattern "
            f"{project.release.tag_pattern!r}; nothing to release.[/yellow]"
        )
        return

    ReleaseRenderer(console=console).print_report(report)
    if not report.released:
        raise typer.Exit(code=1)
