"""Manifest row model: who owns an installed path."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ManifestEntry(BaseModel):
    """One installed file and the formula version that put it there."""

    model_config = ConfigDict(frozen=True)

    path: Path
    formula: str
    version: str
    sha256: str  # the formula's pinned source digest
    file_sha256: str  # digest of the installed file itself
    installed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
