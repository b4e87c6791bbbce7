"""``relforge pin add`` / ``relforge pin verify`` — manage the pin manifest.

``pin add`` is the only way a pin is created or changed: it fetches the
URL once, records the sha256 of the bytes, and rewrites pins.json with
stable ordering.  ``pin verify`` re-fetches every hashed pin and reports
drift.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from relforge.cli.common import fail, load_settings
from relforge.core.fetcher import SourceFetcher
from relforge.core.pinning import SourcePinner
from relforge.errors import RelforgeError
from relforge.models.pins import PinKind, PinManifest
from relforge.project import load_manifest, save_manifest

console = Console()

pin_app = typer.Typer(
    help="Create and check pinned sources.",
    no_args_is_help=True,
    add_completion=False,
)


def add_cmd(
    name: str = typer.Argument(..., help="Pin name, e.g. rust."),
    url: str = typer.Argument(..., help="URL to fetch (may contain {platform})."),
    kind: PinKind = typer.Option(PinKind.TOOLCHAIN, "--kind", "-k", help="What the pin provides."),
    version: str = typer.Option(..., "--version", "-v", help="Human-readable version label."),
    platform: str = typer.Option(None, "--platform", help="Restrict the pin to one platform."),
    rev: str = typer.Option(None, "--rev", help="Upstream revision, recorded as-is."),
    pins_path: Path = typer.Option(Path("pins.json"), "--pins", help="Pin manifest to update."),
) -> None:
    """Fetch a source, hash it, and add or replace its pin."""
    settings = load_settings()
    pinner = SourcePinner(SourceFetcher(timeout=settings.fetch_timeout_seconds))

    try:
        manifest = load_manifest(pins_path) if pins_path.exists() else PinManifest()
        updated = pinner.pin(
            manifest,
            name=name,
            url=url,
            kind=kind,
            version=version,
            platform=platform,
            rev=rev,
        )
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    save_manifest(updated, pins_path)
    record = updated.find(name, platform)
    digest = record.sha256 if record and record.sha256 else "-"
    console.print(f"[green]Pinned[/green] {name} {version} -> sha256:{digest}")


def verify_cmd(
    pins_path: Path = typer.Option(Path("pins.json"), "--pins", help="Pin manifest to check."),
) -> None:
    """Re-fetch every hashed pin and fail if any content drifted."""
    settings = load_settings()
    try:
        manifest = load_manifest(pins_path)
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    pinner = SourcePinner(SourceFetcher(timeout=settings.fetch_timeout_seconds))
    try:
        drifted = pinner.check_drift(manifest, strict=False)
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    table = Table(title="Pins")
    table.add_column("Name", style="cyan")
    table.add_column("Platform")
    table.add_column("Kind")
    table.add_column("Version", style="green")
    table.add_column("Status", justify="center")
    for pin in manifest.pins:
        if pin.sha256 is None:
            status = "[dim]unhashed[/dim]"
        elif any(d.startswith(f"{pin.label}:") for d in drifted):
            status = "[bold red]DRIFTED[/bold red]"
        else:
            status = "[green]ok[/green]"
        table.add_row(pin.name, pin.platform or "*", pin.kind.value, pin.version, status)
    console.print(table)

    if drifted:
        console.print(f"[bold red]{len(drifted)} pin(s) drifted:[/bold red]")
        for line in drifted:
            console.print(f"  [red]- {line}[/red]")
        raise typer.Exit(code=1)


pin_app.command(name="add", help="Fetch a source and record its hash.")(add_cmd)
pin_app.command(name="verify", help="Check every pin for content drift.")(verify_cmd)
