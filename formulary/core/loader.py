"""Locate and read formula declaration files (TOML)."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Sequence
from pathlib import Path

from formulary.core.errors import FormulaNotFound, MalformedFormula
from formulary.models.formula import Formula, parse_formula

logger = logging.getLogger(__name__)

FORMULA_SUFFIX = ".toml"


def load_formula(path: Path) -> Formula:
    """Read and validate a single formula file."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise FormulaNotFound(f"no formula file at {path}") from None
    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise MalformedFormula(f"{path}: {exc}") from exc

    formula = parse_formula(data)
    logger.debug("Loaded formula %s %s from %s", formula.name, formula.version, path)
    return formula


def resolve_formula(ref: str, search_path: Sequence[Path]) -> Formula:
    """Resolve a CLI reference to a formula.

    ``ref`` is either a path to a ``.toml`` file or a bare name looked up as
    ``<name>.toml`` in each directory of ``search_path`` in order.
    """
    candidate = Path(ref)
    if candidate.suffix == FORMULA_SUFFIX or candidate.is_file():
        return load_formula(candidate)

    for directory in search_path:
        path = Path(directory) / f"{ref}{FORMULA_SUFFIX}"
        if path.is_file():
            return load_formula(path)

    searched = ", ".join(str(d) for d in search_path) or "<empty formula path>"
    raise FormulaNotFound(f"no formula named {ref!r} in {searched}")
