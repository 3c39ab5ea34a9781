"""Shared test fixtures for Formulary."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from formulary.config import FormularySettings
from formulary.core.pipeline import Pipeline
from formulary.core.root import InstallRoot
from formulary.models.formula import Formula, parse_formula
from helpers import (
    BUILD_SCRIPT,
    HELLO_URL,
    FakeResponse,
    FakeSession,
    formula_data,
    make_tarball,
    sha256_of,
)


@pytest.fixture
def hello_archive(tmp_path: Path) -> bytes:
    """Bytes of a gzipped tarball with one top-level directory and a build script."""
    path = make_tarball(
        tmp_path / "hello-1.0.tar.gz",
        {
            "hello-1.0/build.py": BUILD_SCRIPT,
            "hello-1.0/README": b"hello\n",
        },
    )
    return path.read_bytes()


@pytest.fixture
def make_formula() -> Callable[..., Formula]:
    """Factory for ``hello`` formulas with arbitrary field overrides."""

    def _make(sha256: str = "0" * 64, **overrides: Any) -> Formula:
        return parse_formula(formula_data(sha256, **overrides))

    return _make


@pytest.fixture
def hello_formula(hello_archive: bytes, make_formula) -> Formula:
    return make_formula(sha256_of(hello_archive))


@pytest.fixture
def settings(tmp_path: Path) -> FormularySettings:
    """Settings confined to ``tmp_path``."""
    return FormularySettings(
        prefix=tmp_path / "prefix",
        tmp_dir=tmp_path / "tmp",
        formula_path=[tmp_path / "Formula"],
        build_timeout=60,
        test_timeout=30,
    )


@pytest.fixture
def root(settings: FormularySettings) -> InstallRoot:
    """An install root under ``tmp_path``."""
    return InstallRoot.from_settings(settings)


@pytest.fixture
def hello_session(hello_archive: bytes) -> FakeSession:
    return FakeSession({HELLO_URL: FakeResponse(hello_archive)})


@pytest.fixture
def pipeline(settings: FormularySettings, root: InstallRoot, hello_session: FakeSession) -> Pipeline:
    """A pipeline wired to the fake session and the test install root."""
    return Pipeline(settings, session=hello_session, root=root)
