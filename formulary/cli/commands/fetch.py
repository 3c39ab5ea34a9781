"""``formulary fetch FORMULA``: download and verify into the cache only."""

from __future__ import annotations

import typer

from formulary.cli import runtime
from formulary.core.errors import FormularyError
from formulary.core.retry import call_with_retries


def fetch_cmd(
    ctx: typer.Context,
    formula_ref: str = typer.Argument(
        ...,
        metavar="FORMULA",
        help="Formula name or path to a .toml file.",
    ),
    retries: int = typer.Option(
        0,
        "--retries",
        min=0,
        help="Retry transient fetch failures this many times.",
    ),
) -> None:
    """Fetch and verify the formula's archive without building it.

    A later ``install`` of the same formula uses the cached archive
    instead of the network.
    """
    settings = runtime.settings_from(ctx)
    formula = runtime.load(formula_ref, settings)
    pipeline = runtime.build_pipeline(settings)

    try:
        cached = call_with_retries(lambda: pipeline.fetch(formula), retries=retries)
    except FormularyError as exc:
        runtime.fail(exc)

    runtime.console.print(
        f"[bold green]Fetched {formula.name} {formula.version}[/bold green] -> {cached}"
    )
