"""``formulary status [NAME]``: installed formulas and their last run."""

from __future__ import annotations

import typer

from formulary.cli import runtime
from formulary.monitor.renderer import RunRenderer


def status_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(
        None,
        help="Show only this formula.",
    ),
) -> None:
    """List installations with their verified/unverified/untested state and last run."""
    settings = runtime.settings_from(ctx)
    pipeline = runtime.build_pipeline(settings)
    installations = pipeline.status(name)
    if name and not installations:
        runtime.err_console.print(f"[bold red]{name} is not installed.[/bold red]")
        raise typer.Exit(code=1)
    last_runs = {}
    for inst in installations:
        snapshot = pipeline.last_run(inst.name)
        if snapshot is not None:
            last_runs[inst.name] = snapshot
    RunRenderer(console=runtime.console).print_status(installations, last_runs)
