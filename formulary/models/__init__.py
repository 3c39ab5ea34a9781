"""Formulary data models — all Pydantic v2, all frozen (immutable)."""

from formulary.models.artifacts import (
    BuildOutput,
    FetchedArtifact,
    InstallReport,
    InstallStatus,
    InstalledArtifact,
    StagedSource,
    StepResult,
    TestResult,
    VerifiedArtifact,
)
from formulary.models.formula import (
    BinSpec,
    BuildStep,
    Formula,
    archive_suffix,
    TestStep,
    parse_formula,
    version_from_url,
)
from formulary.models.journal import JournalEntry
from formulary.models.manifest import ManifestEntry
from formulary.models.stages import (
    PIPELINE_STAGES,
    STAGE_ORDER,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)

__all__ = [
    # formula
    "Formula",
    "BuildStep",
    "TestStep",
    "BinSpec",
    "parse_formula",
    "version_from_url",
    "archive_suffix",
    # artifacts
    "FetchedArtifact",
    "VerifiedArtifact",
    "StagedSource",
    "StepResult",
    "BuildOutput",
    "InstallStatus",
    "InstalledArtifact",
    "TestResult",
    "InstallReport",
    # stages
    "StageState",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "PIPELINE_STAGES",
    "STAGE_ORDER",
    # journal
    "JournalEntry",
    # manifest
    "ManifestEntry",
]
