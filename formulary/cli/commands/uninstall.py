"""``formulary uninstall FORMULA``: remove an installed formula."""

from __future__ import annotations

from pathlib import Path

import typer

from formulary.cli import runtime
from formulary.core.errors import FormularyError
from formulary.core.loader import FORMULA_SUFFIX


def uninstall_cmd(
    ctx: typer.Context,
    formula_ref: str = typer.Argument(
        ...,
        metavar="FORMULA",
        help="Installed formula name, or path to its .toml file.",
    ),
) -> None:
    """Remove the formula's installed files and manifest records."""
    settings = runtime.settings_from(ctx)
    name = formula_ref
    if formula_ref.endswith(FORMULA_SUFFIX) or Path(formula_ref).is_file():
        name = runtime.load(formula_ref, settings).name

    pipeline = runtime.build_pipeline(settings)
    try:
        removed = pipeline.uninstall(name)
    except FormularyError as exc:
        runtime.fail(exc)

    for path in removed:
        runtime.console.print(f"[dim]removed[/dim] {path}")
    runtime.console.print(f"[bold green]Uninstalled {name}.[/bold green]")
