"""``formulary history NAME``: recent runs of a formula from the journal.

Every run is re-read from the journal, and its hash chain is re-verified
before display.
"""

from __future__ import annotations

import typer

from formulary.cli import runtime
from formulary.monitor.renderer import RunRenderer


def history_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Formula name."),
    limit: int = typer.Option(5, "--limit", "-n", min=1, help="How many runs to show."),
) -> None:
    """Show the stage-by-stage outcome of the formula's most recent runs."""
    settings = runtime.settings_from(ctx)
    snapshots = runtime.build_pipeline(settings).history(name, limit)
    if not snapshots:
        runtime.console.print(f"[dim]No runs recorded for {name}.[/dim]")
        return
    RunRenderer(console=runtime.console).print_history(snapshots)
