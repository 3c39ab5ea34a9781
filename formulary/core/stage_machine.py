"""Linear stage state machine for one pipeline run.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- A stage may only start once every earlier stage has PASSED or been SKIPPED
- Every transition recorded in the run journal
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from formulary.core.journal import RunJournal
from formulary.models.formula import Formula
from formulary.models.journal import JournalEntry
from formulary.models.stages import STAGE_ORDER, VALID_TRANSITIONS, StageState


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"fr-{ts}-{uuid.uuid4().hex[:6]}"


class PipelineRun:
    """State of one formula-installation attempt.

    Parameters
    ----------
    formula:
        The formula being installed.
    journal:
        Where transitions are recorded.
    run_id:
        Explicit run id; generated when omitted.
    """

    def __init__(
        self, formula: Formula, journal: RunJournal, run_id: str | None = None
    ) -> None:
        self.formula = formula
        self.run_id = run_id or new_run_id()
        self._journal = journal
        self._states: dict[str, StageState] = {
            sid: StageState.NOT_STARTED for sid in STAGE_ORDER
        }

    @property
    def states(self) -> dict[str, StageState]:
        return dict(self._states)

    def state(self, stage_id: str) -> StageState:
        return self._states[stage_id]

    def transition(
        self, stage_id: str, target: StageState, detail: str = ""
    ) -> JournalEntry:
        """Move ``stage_id`` to ``target`` and journal it."""
        current = self._states[stage_id]
        if target not in VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target.value}. "
                f"Allowed: {[s.value for s in VALID_TRANSITIONS[current]]}"
            )

        if target == StageState.RUNNING:
            earlier = STAGE_ORDER[: STAGE_ORDER.index(stage_id)]
            pending = [
                sid for sid in earlier
                if self._states[sid] not in (StageState.PASSED, StageState.SKIPPED)
            ]
            if pending:
                raise InvalidTransitionError(
                    f"Cannot start {stage_id}: earlier stages not complete: {', '.join(pending)}"
                )

        entry = self._journal.append(
            JournalEntry(
                run_id=self.run_id,
                formula=self.formula.name,
                version=self.formula.version,
                stage_id=stage_id,
                state_transition=f"{current.value}->{target.value}",
                detail=detail,
            )
        )
        self._states[stage_id] = target
        return entry
