"""Rich terminal renderer for run history and installation status.

Color scheme
------------
- green     : PASSED / verified
- red       : FAILED / unverified
- yellow    : RUNNING / untested
- dim       : NOT_STARTED / SKIPPED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from formulary.models.artifacts import InstalledArtifact, InstallStatus
from formulary.models.stages import StageState
from formulary.monitor.projection import RunSnapshot

_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.SKIPPED: "dim",
}

_STATE_LABELS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.SKIPPED: "[dim]SKIPPED[/dim]",
}

_STATUS_LABELS: dict[InstallStatus, str] = {
    InstallStatus.VERIFIED: "[green]verified[/green]",
    InstallStatus.UNVERIFIED: "[bold red]unverified[/bold red]",
    InstallStatus.UNTESTED: "[yellow]untested[/yellow]",
}

_OUTCOME_STYLES: dict[str, str] = {
    "passed": "green",
    "up to date": "cyan",
    "failed": "red",
    "running": "yellow",
    "partial": "yellow",
}


class RunRenderer:
    """Renders run snapshots and installation records.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=14)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Details")

        for i, stage in enumerate(snapshot.stages):
            style = _STATE_STYLES.get(stage.state, "")
            details: list[str] = []
            if stage.entered_at:
                details.append(f"[dim]{stage.entered_at.strftime('%H:%M:%S')}[/dim]")
            if stage.detail:
                colour = "red" if stage.state == StageState.FAILED else "white"
                details.append(f"[{colour}]{escape(_first_line(stage.detail))}[/{colour}]")
            table.add_row(
                str(i),
                f"[{style}]{stage.display_name}[/{style}]",
                _STATE_LABELS.get(stage.state, stage.state.value),
                " | ".join(details) if details else "[dim]-[/dim]",
            )

        outcome_style = _OUTCOME_STYLES.get(snapshot.outcome, "white")
        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = "  |  ".join([
            f"[bold]Formula:[/bold] {snapshot.formula} {snapshot.version}",
            f"[bold]Outcome:[/bold] [{outcome_style}]{snapshot.outcome}[/{outcome_style}]",
            f"[bold]Chain:[/bold] {chain}",
        ])

        started = (
            snapshot.started_at.strftime("%Y-%m-%d %H:%M:%S UTC")
            if snapshot.started_at
            else "never"
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title=f"[bold]Run {snapshot.run_id}[/bold]",
            subtitle=f"Started: {started}",
            border_style="red" if snapshot.outcome == "failed" else "blue",
            padding=(0, 1),
        )

    def print_history(self, snapshots: list[RunSnapshot]) -> None:
        for snapshot in snapshots:
            self.console.print(self.render_snapshot(snapshot))

    # ------------------------------------------------------------------
    # Installations
    # ------------------------------------------------------------------

    def render_status(
        self,
        installations: list[InstalledArtifact],
        last_runs: dict[str, RunSnapshot] | None = None,
    ) -> Table:
        last_runs = last_runs or {}
        table = Table(title="Installed formulas", header_style="bold cyan")
        table.add_column("Name", style="cyan")
        table.add_column("Version", style="green")
        table.add_column("Status", justify="center")
        table.add_column("Installed", style="dim")
        table.add_column("Last run")
        table.add_column("Files")

        for inst in installations:
            status = _STATUS_LABELS.get(inst.status, inst.status.value)
            files = ", ".join(p.name for p in inst.files)
            if inst.status == InstallStatus.UNVERIFIED and inst.detail:
                files = f"{files}\n[red]{escape(_first_line(inst.detail))}[/red]"
            table.add_row(
                inst.name,
                inst.version,
                status,
                inst.installed_at.strftime("%Y-%m-%d %H:%M"),
                _last_run_label(last_runs.get(inst.name)),
                files,
            )
        return table

    def print_status(
        self,
        installations: list[InstalledArtifact],
        last_runs: dict[str, RunSnapshot] | None = None,
    ) -> None:
        if not installations:
            self.console.print("[dim]No formulas installed.[/dim]")
            return
        self.console.print(self.render_status(installations, last_runs))


def _last_run_label(snapshot: RunSnapshot | None) -> str:
    if snapshot is None:
        return "[dim]-[/dim]"
    style = _OUTCOME_STYLES.get(snapshot.outcome, "white")
    label = f"[{style}]{snapshot.outcome}[/{style}]"
    failed = snapshot.failed_stage
    if failed is not None:
        label = f"{label} [dim]({failed.stage_id})[/dim]"
    return label


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else ""
