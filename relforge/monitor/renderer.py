"""Rich terminal renderer for release reports.

Turns a ``ReleaseReport`` into Rich renderables: one row per matrix job,
color-coded by outcome, and a failure table that names every failed
platform together with the stage it failed at.

Color scheme
------------
- green     : SUCCEEDED / RELEASED
- red       : FAILED / PARTIALLY FAILED
- yellow    : FAN OUT
- dim       : IDLE
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from relforge.models.release import (
    JobResult,
    JobStatus,
    PlatformFailure,
    ReleaseReport,
    ReleaseState,
)


# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATUS_ICONS: dict[JobStatus, str] = {
    JobStatus.SUCCEEDED: "[green]SUCCEEDED[/green]",
    JobStatus.FAILED: "[bold red]FAILED[/bold red]",
}

_STATE_ICONS: dict[ReleaseState, str] = {
    ReleaseState.IDLE: "[dim]IDLE[/dim]",
    ReleaseState.FAN_OUT: "[yellow]FAN OUT[/yellow]",
    ReleaseState.RELEASED: "[bold green]RELEASED[/bold green]",
    ReleaseState.PARTIALLY_FAILED: "[bold red]PARTIALLY FAILED[/bold red]",
}


class ReleaseRenderer:
    """Renders ``ReleaseReport`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def render_report(self, report: ReleaseReport) -> Panel:
        """Render a report as a Panel holding the job table and a summary."""
        parts: list = [self._build_job_table(report.jobs)]

        failures = report.failures
        if failures:
            parts.extend([Text(""), self.build_failure_table(failures)])

        summary = "  |  ".join([
            f"[bold]Tag:[/bold] {report.tag}",
            f"[bold]State:[/bold] {_STATE_ICONS.get(report.state, report.state.value)}",
            f"[bold]Assets:[/bold] {len(report.assets)}/{len(report.jobs)}",
        ])
        parts.extend([Text(""), Text.from_markup(summary)])

        border = "green" if report.released else "red"
        return Panel(
            Group(*parts),
            title=f"[bold]Release {report.tag}[/bold]",
            border_style=border,
            padding=(1, 2),
        )

    def _build_job_table(self, jobs: list[JobResult]) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Platform", min_width=8)
        table.add_column("Runner")
        table.add_column("Asset", min_width=20)
        table.add_column("Status", justify="center")
        table.add_column("SHA-256")
        table.add_column("Time", justify="right")

        for job in jobs:
            digest = job.artifact.sha256[:16] + "..." if job.artifact else "[dim]-[/dim]"
            table.add_row(
                job.entry.platform,
                job.entry.os,
                job.asset_name,
                _STATUS_ICONS.get(job.status, job.status.value),
                digest,
                f"{job.duration_ms / 1000:.1f}s",
            )
        return table

    def build_failure_table(self, failures: list[PlatformFailure]) -> Table:
        """One row per failed platform: where it failed and why."""
        table = Table(title="Failed platforms", header_style="bold red", expand=True)
        table.add_column("Platform")
        table.add_column("Asset")
        table.add_column("Stage", style="bold")
        table.add_column("Reason", overflow="fold")
        for failure in failures:
            reason = failure.reason.splitlines()[0] if failure.reason else ""
            table.add_row(failure.platform, failure.asset_name, failure.stage.value, reason)
        return table

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_report(self, report: ReleaseReport) -> None:
        self.console.print(self.render_report(report))
