"""``relforge build`` — one local derivation for the host platform.

Resolves the pinned toolchain and vendors dependencies concurrently, runs
the build (and tests, unless ``--no-verify``), and stores the stripped
artifact.  Nothing is uploaded.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from relforge.cli.common import fail, load_settings, resolve_under
from relforge.core.command_runner import SubprocessCommandRunner
from relforge.core.derivation import BuildDerivation, host_platform
from relforge.core.fetcher import SourceFetcher
from relforge.core.orchestrator import resolve_inputs
from relforge.core.store import ContentAddressedStore
from relforge.core.toolchain import ToolchainResolver
from relforge.core.vendoring import Vendorer
from relforge.errors import RelforgeError
from relforge.models.pins import PinKind
from relforge.project import load_lockfile, load_manifest, load_project

console = Console()


def build_cmd(
    artifact_name: str = typer.Argument(..., help="Binary name the build produces."),
    source: Path = typer.Option(Path("."), "--source", "-s", help="Project source root."),
    verify: bool = typer.Option(
        None,
        "--verify/--no-verify",
        help="Run the test command before accepting the artifact (default from relforge.toml).",
    ),
) -> None:
    """Build one artifact for this machine's platform."""
    settings = load_settings()
    platform = host_platform()
    workspace = settings.work_root / "local" / artifact_name

    fetcher = SourceFetcher(timeout=settings.fetch_timeout_seconds)
    blobs = ContentAddressedStore(settings.blob_cache_dir)
    try:
        project = load_project(source)
        manifest = load_manifest(resolve_under(source, project.pins))
        lock = load_lockfile(resolve_under(source, project.lockfile))

        resolver = ToolchainResolver(fetcher, blobs, settings.toolchain_dir)
        vendorer = Vendorer(
            fetcher,
            blobs,
            manifest.find_kind(PinKind.REGISTRY, platform),
            config_template=project.build.config_template,
        )
        toolchain, vendored = resolve_inputs(
            resolver, vendorer, manifest, lock, platform, workspace
        )

        derivation = BuildDerivation(
            SubprocessCommandRunner(),
            ContentAddressedStore(settings.artifact_store_path),
            project.build,
        )
        artifact = derivation.derive(
            toolchain, vendored, source, workspace / "build",
            platform=platform, artifact_name=artifact_name, verify=verify,
        )
    except RelforgeError as exc:
        raise fail(console, exc) from exc

    console.print(
        Panel(
            "\n".join([
                "[bold green]Build succeeded[/bold green]",
                "",
                f"[bold]Artifact:[/bold]    {artifact.artifact_name} ({artifact.platform})",
                f"[bold]Path:[/bold]        {artifact.path}",
                f"[bold]SHA-256:[/bold]     {artifact.sha256}",
                f"[bold]Size:[/bold]        {artifact.size_bytes} bytes",
                f"[bold]Derivation:[/bold]  {artifact.derivation_key}",
                f"[bold]Toolchain:[/bold]   {toolchain.name} {toolchain.version}",
            ]),
            title="[bold]relforge build[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
