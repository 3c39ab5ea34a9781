"""Pipeline stage models — a strictly linear state machine."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """State of one stage within a pipeline run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Terminal states (PASSED, FAILED, SKIPPED) have no outgoing transitions;
# a failed stage is never resumed, the next attempt is a new run.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.SKIPPED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.PASSED: set(),
    StageState.FAILED: set(),
    StageState.SKIPPED: set(),
}


class StageDefinition(BaseModel):
    """One stage of the install pipeline."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int


PIPELINE_STAGES: list[StageDefinition] = [
    StageDefinition(stage_id="fetch", display_name="Fetch archive", ordinal=0),
    StageDefinition(stage_id="verify", display_name="Verify digest", ordinal=1),
    StageDefinition(stage_id="stage", display_name="Stage source", ordinal=2),
    StageDefinition(stage_id="build", display_name="Build", ordinal=3),
    StageDefinition(stage_id="install", display_name="Install", ordinal=4),
    StageDefinition(stage_id="test", display_name="Smoke test", ordinal=5),
]

STAGE_ORDER: list[str] = [sd.stage_id for sd in PIPELINE_STAGES]
