"""Formulary: a declarative package-formula interpreter.

A formula pins one source archive by URL and SHA-256 and says how to build
it, which binaries to install, and how to smoke-test the result:

  - fetch over https only, streamed to disk and hashed on the way
  - verify the pinned digest before anything is extracted
  - stage into a fresh directory, rejecting entries that escape it
  - build with argv-only commands under a wall-clock limit
  - install atomically into ``<prefix>/bin``, tracked in a SQLite manifest
  - test the installed binaries and record verified/unverified
"""

__version__ = "0.1.0"

from formulary.core.pipeline import Pipeline
from formulary.models.formula import Formula
from formulary.cli.app import app as cli

__all__ = ["Pipeline", "Formula", "cli", "__version__"]
