"""relforge CLI — Typer-based command-line interface.

Provides the ``relforge`` command with subcommands for pinning sources,
vendoring dependencies, inspecting the filtered source tree, building
locally, releasing a tag, and rendering the CI workflow.

All output uses Rich for formatted terminal display.
"""
