"""Shared plumbing for CLI commands: settings, logging, pipeline, errors."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from formulary.config import FormularySettings
from formulary.core.errors import FormularyError
from formulary.core.loader import resolve_formula
from formulary.core.pipeline import Pipeline
from formulary.models.formula import Formula

console = Console()
err_console = Console(stderr=True)


def make_settings(prefix: Path | None = None) -> FormularySettings:
    if prefix is not None:
        return FormularySettings(prefix=prefix)
    return FormularySettings()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def settings_from(ctx: typer.Context) -> FormularySettings:
    """The settings built by the top-level callback (defaults if none ran)."""
    obj = ctx.find_root().obj
    return obj if isinstance(obj, FormularySettings) else make_settings()


def build_pipeline(settings: FormularySettings) -> Pipeline:
    return Pipeline(settings)


def load(ref: str, settings: FormularySettings) -> Formula:
    try:
        return resolve_formula(ref, settings.formula_path)
    except FormularyError as exc:
        fail(exc)


def fail(exc: FormularyError) -> NoReturn:
    """Print a stage-tagged error and exit with status 1."""
    err_console.print(f"[bold red]{escape(str(exc))}[/bold red]")
    raise typer.Exit(code=1)
