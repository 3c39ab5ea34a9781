"""``formulary install FORMULA``: fetch, verify, build, install and test.

Exits 0 when the formula is installed (and, unless ``--no-test``, its smoke
tests pass).  Any failure prints a stage-tagged error such as
``[verify] DigestMismatch: ...`` and exits 1.
"""

from __future__ import annotations

import typer
from rich.panel import Panel

from formulary.cli import runtime
from formulary.core.errors import FormularyError
from formulary.core.retry import call_with_retries


def install_cmd(
    ctx: typer.Context,
    formula_ref: str = typer.Argument(
        ...,
        metavar="FORMULA",
        help="Formula name (looked up in the formula path) or path to a .toml file.",
    ),
    no_test: bool = typer.Option(
        False,
        "--no-test",
        help="Install without running the smoke tests.",
    ),
    retries: int = typer.Option(
        0,
        "--retries",
        min=0,
        help="Retry transient fetch failures (network errors, timeouts) this many times.",
    ),
) -> None:
    """Install a formula into the prefix.

    Stages run in order: fetch, verify, stage, build, install, test.
    A digest mismatch or unsafe archive entry is never retried.
    """
    settings = runtime.settings_from(ctx)
    formula = runtime.load(formula_ref, settings)
    pipeline = runtime.build_pipeline(settings)

    try:
        report = call_with_retries(
            lambda: pipeline.install(formula, run_tests=not no_test),
            retries=retries,
        )
    except FormularyError as exc:
        runtime.fail(exc)

    installed = report.installed
    files = "\n".join(f"  {p}" for p in installed.files)
    if report.already_installed:
        headline = f"[bold cyan]{installed.name} {installed.version} is already installed.[/bold cyan]"
    else:
        headline = f"[bold green]Installed {installed.name} {installed.version}.[/bold green]"

    lines = [
        headline,
        "",
        f"[bold]Run:[/bold]    {report.run_id}",
        f"[bold]Status:[/bold] {installed.status.value}",
        f"[bold]Files:[/bold]\n{files}",
    ]
    if report.fetched_bytes:
        lines.insert(3, f"[bold]Fetched:[/bold] {report.fetched_bytes:,} bytes")

    runtime.console.print(
        Panel(
            "\n".join(lines),
            title=f"[bold]{installed.name}[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
