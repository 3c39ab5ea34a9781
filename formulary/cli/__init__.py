"""Formulary CLI — Typer-based command-line interface.

Provides the ``formulary`` command with subcommands for installing,
testing, uninstalling and fetching formulas, and for inspecting what is
installed and how recent runs went.

All output uses Rich for formatted terminal display.
"""
