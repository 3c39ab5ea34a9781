"""Artifacts handed from one pipeline stage to the next.

Each type is the output of exactly one stage and the input of the next, so
the type system encodes the stage ordering: ``SourceStager`` only accepts a
``VerifiedArtifact``, which only ``IntegrityVerifier`` produces.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class FetchedArtifact(BaseModel):
    """A downloaded archive sitting in the run workspace, not yet trusted."""

    model_config = ConfigDict(frozen=True)

    url: str
    path: Path
    size_bytes: int
    sha256: str  # computed while streaming


class VerifiedArtifact(BaseModel):
    """A fetched archive whose digest matched the formula's pin."""

    model_config = ConfigDict(frozen=True)

    url: str
    path: Path
    size_bytes: int
    sha256: str


class StagedSource(BaseModel):
    """An extracted archive.

    ``root`` is the unique staging directory; ``source_dir`` is where builds
    run (the archive's single top-level directory, if it has exactly one).
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    source_dir: Path
    entry_count: int = 0


class StepResult(BaseModel):
    """Outcome of one subprocess invocation."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0


class BuildOutput(BaseModel):
    """Declared outputs produced by the build steps."""

    model_config = ConfigDict(frozen=True)

    staged: StagedSource
    outputs: list[Path]
    steps: list[StepResult] = []


class InstallStatus(str, Enum):
    """Verification state of an installation."""

    UNTESTED = "untested"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


class InstalledArtifact(BaseModel):
    """An installation recorded in the manifest."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    sha256: str
    files: list[Path]
    status: InstallStatus = InstallStatus.UNTESTED
    installed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: str = ""


class TestResult(BaseModel):
    """Outcome of the smoke tests for one installation."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    passed: bool
    steps: list[StepResult] = []


class InstallReport(BaseModel):
    """What ``Pipeline.install`` did."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    installed: InstalledArtifact
    already_installed: bool = False
    fetched_bytes: int = 0
    test_result: TestResult | None = None
