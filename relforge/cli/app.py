"""Main Typer application — imports and registers all CLI commands.

Entry point: ``relforge`` (configured via pyproject.toml console_scripts).

Commands: pin add, pin verify, vendor, tree, build, release, workflow.
"""

from __future__ import annotations

import typer

from relforge.cli.commands.build import build_cmd
from relforge.cli.commands.pin import pin_app
from relforge.cli.commands.release import release_cmd
from relforge.cli.commands.tree import tree_cmd
from relforge.cli.commands.vendor import vendor_cmd
from relforge.cli.commands.workflow import workflow_cmd
from relforge.cli.common import configure_logging, load_settings

app = typer.Typer(
    name="relforge",
    help="relforge: reproducible, pinned build-and-release pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (default: RELFORGE_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Configure logging before any command runs."""
    configure_logging(log_level or load_settings().log_level)


# Register subcommands
app.add_typer(pin_app, name="pin", help="Create and check pinned sources.")
app.command(name="vendor", help="Vendor locked dependencies for offline builds.")(vendor_cmd)
app.command(name="tree", help="List the filtered source tree a build consumes.")(tree_cmd)
app.command(name="build", help="Build one artifact for the host platform.")(build_cmd)
app.command(name="release", help="Build the matrix for a tag and upload assets.")(release_cmd)
app.command(name="workflow", help="Render the tag-triggered CI workflow.")(workflow_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
