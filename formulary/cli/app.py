"""Main Typer application — imports and registers all CLI commands.

Entry point: ``formulary`` (configured via pyproject.toml scripts).

Commands: install, test, uninstall, fetch, info, status, history.
"""

from __future__ import annotations

from pathlib import Path

import typer

from formulary.cli import runtime
from formulary.cli.commands.fetch import fetch_cmd
from formulary.cli.commands.history import history_cmd
from formulary.cli.commands.info import info_cmd
from formulary.cli.commands.install import install_cmd
from formulary.cli.commands.status import status_cmd
from formulary.cli.commands.test_cmd import test_cmd
from formulary.cli.commands.uninstall import uninstall_cmd

app = typer.Typer(
    name="formulary",
    help="Formulary: fetch, verify, build, install and test pinned source packages.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    prefix: Path = typer.Option(
        None,
        "--prefix",
        "-p",
        help="Installation prefix (default: $FORMULARY_PREFIX or ~/.formulary).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log at DEBUG level.",
    ),
) -> None:
    """Build the settings shared by every subcommand."""
    settings = runtime.make_settings(prefix)
    runtime.configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


# Register subcommands
app.command(name="install", help="Fetch, verify, build, install and test a formula.")(install_cmd)
app.command(name="test", help="Run an installed formula's smoke tests.")(test_cmd)
app.command(name="uninstall", help="Remove an installed formula.")(uninstall_cmd)
app.command(name="fetch", help="Download and verify a formula's archive into the cache.")(fetch_cmd)
app.command(name="info", help="Show a parsed formula.")(info_cmd)
app.command(name="status", help="List installed formulas and their test state.")(status_cmd)
app.command(name="history", help="Show recent runs of a formula.")(history_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
