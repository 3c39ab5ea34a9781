"""``formulary info FORMULA``: show a parsed formula and its install state."""

from __future__ import annotations

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from formulary.cli import runtime


def info_cmd(
    ctx: typer.Context,
    formula_ref: str = typer.Argument(
        ...,
        metavar="FORMULA",
        help="Formula name or path to a .toml file.",
    ),
) -> None:
    """Validate a formula and print what it declares."""
    settings = runtime.settings_from(ctx)
    formula = runtime.load(formula_ref, settings)
    installed = runtime.build_pipeline(settings).status(formula.name)

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold", min_width=10)
    table.add_column("Value")
    table.add_row("Name", formula.name)
    table.add_row("Version", formula.version)
    table.add_row("Summary", escape(formula.desc))
    table.add_row("Homepage", formula.homepage)
    table.add_row("License", formula.license)
    table.add_row("Source", formula.url)
    table.add_row("SHA-256", formula.sha256)
    table.add_row("Build", "\n".join(escape(" ".join(s.argv)) for s in formula.install))
    table.add_row("Installs", ", ".join(formula.installed_names))
    table.add_row("Tests", "\n".join(escape(" ".join(t.argv)) for t in formula.test))
    if installed:
        inst = installed[0]
        table.add_row("Installed", f"{inst.version} ({inst.status.value})")
    else:
        table.add_row("Installed", "[dim]no[/dim]")

    runtime.console.print(
        Panel(table, title=f"[bold]{formula.name}[/bold]", border_style="blue", padding=(1, 2))
    )
