"""Run journal entry model (append-only, hash-chained per run).

One entry is written per stage transition.  ``status`` and ``history``
are projections over these entries; they never keep state of their own.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class JournalEntry(BaseModel):
    """A single stage transition of a pipeline run."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    formula: str
    version: str = ""
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "running->passed"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: str = ""  # error text on failure, byte counts etc. on success
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
