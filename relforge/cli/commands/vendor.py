"""``relforge vendor`` — vendor the locked dependencies into the source tree.

Writes ``{vendor_dir}/{name}-{version}/`` for every registry entry of the
lockfile plus the fetcher-redirect config, so a plain offline build of the
checkout works without relforge.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from relforge.cli.common import fail, load_settings, resolve_under
from relforge.core.fetcher import SourceFetcher
from relforge.core.store import ContentAddressedStore
from relforge.core.vendoring import Vendorer
from relforge.errors import RelforgeError
from relforge.models.pins import PinKind
from relforge.project import load_lockfile, load_manifest, load_project

console = Console()


def vendor_cmd(
    source: Path = typer.Option(Path("."), "--source", "-s", help="Project source root."),
    platform: str = typer.Option(None, "--platform", help="Platform used to pick the registry pin."),
) -> None:
    """Fetch, verify and unpack every locked dependency."""
    settings = load_settings()
    try:
        project = load_project(source)
        manifest = load_manifest(resolve_under(source, project.pins))
        lock = load_lockfile(resolve_under(source, project.lockfile))
        vendorer = Vendorer(
            SourceFetcher(timeout=settings.fetch_timeout_seconds),
            ContentAddressedStore(settings.blob_cache_dir),
            manifest.find_kind(PinKind.REGISTRY, platform),
            config_template=project.build.config_template,
        )
        vendored = vendorer.vendor(
            lock,
            resolve_under(source, project.build.vendor_dir),
            resolve_under(source, project.build.config_path),
        )
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    table = Table(title=f"Vendored packages ({len(vendored.packages)})")
    table.add_column("Package", style="cyan")
    table.add_column("Checksum", style="dim")
    checksums = {entry.dir_name: entry.checksum or "" for entry in lock.vendorable}
    for dir_name in sorted(vendored.packages):
        table.add_row(dir_name, checksums.get(dir_name, "")[:16])
    console.print(table)
    console.print(f"[green]Redirect config written to[/green] {vendored.config_path}")
