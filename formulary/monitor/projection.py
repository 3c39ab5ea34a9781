"""RunProjection — pure read-only view over the RunJournal.

A snapshot is derived from the journal on every call and never persisted.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from formulary.core.journal import JournalIntegrityError, RunJournal
from formulary.models.journal import JournalEntry
from formulary.models.stages import PIPELINE_STAGES, StageDefinition, StageState


class StageStatus(BaseModel):
    """Last known state of one stage within a run."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str = ""


class RunSnapshot(BaseModel):
    """A frozen view of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    formula: str = ""
    version: str = ""
    stages: list[StageStatus] = []
    started_at: datetime | None = None
    finished_at: datetime | None = None
    chain_valid: bool = True

    @property
    def failed_stage(self) -> StageStatus | None:
        for stage in self.stages:
            if stage.state == StageState.FAILED:
                return stage
        return None

    @property
    def outcome(self) -> str:
        """``failed``, ``running``, ``partial``, ``up to date`` or ``passed``."""
        if self.failed_stage is not None:
            return "failed"
        states = [s.state for s in self.stages]
        if StageState.RUNNING in states:
            return "running"
        # fetch-only runs stop after verify
        if StageState.NOT_STARTED in states:
            return "partial"
        if all(s == StageState.SKIPPED for s in states):
            return "up to date"
        return "passed"


class RunProjection:
    """Builds ``RunSnapshot`` objects from a ``RunJournal``.

    Parameters
    ----------
    journal:
        The journal to project from.
    stage_definitions:
        Stages in display order; the install pipeline's stages by default.
    """

    def __init__(
        self,
        journal: RunJournal,
        stage_definitions: list[StageDefinition] | None = None,
    ) -> None:
        self._journal = journal
        self._stage_defs = sorted(
            stage_definitions or PIPELINE_STAGES, key=lambda sd: sd.ordinal
        )

    def snapshot(self, run_id: str) -> RunSnapshot:
        return self._project(run_id, self._journal.get_run_entries(run_id))

    def latest(self, formula: str) -> RunSnapshot | None:
        """Snapshot of ``formula``'s most recent run, or None if it never ran."""
        entries = self._journal.latest_run(formula)
        return self._project(entries[0].run_id, entries) if entries else None

    def recent(self, formula: str, limit: int = 5) -> list[RunSnapshot]:
        """Snapshots of ``formula``'s most recent runs, newest first."""
        return [self.snapshot(rid) for rid in self._journal.get_run_ids(formula, limit)]

    def _project(self, run_id: str, entries: list[JournalEntry]) -> RunSnapshot:
        latest: dict[str, JournalEntry] = {}
        for entry in entries:
            latest[entry.stage_id] = entry

        stages = []
        for sd in self._stage_defs:
            entry = latest.get(sd.stage_id)
            if entry is None:
                stages.append(StageStatus(stage_id=sd.stage_id, display_name=sd.display_name))
                continue
            stages.append(
                StageStatus(
                    stage_id=sd.stage_id,
                    display_name=sd.display_name,
                    state=StageState(entry.to_state),
                    entered_at=entry.timestamp_utc,
                    detail=entry.detail,
                )
            )

        return RunSnapshot(
            run_id=run_id,
            formula=entries[0].formula if entries else "",
            version=entries[0].version if entries else "",
            stages=stages,
            started_at=entries[0].timestamp_utc if entries else None,
            finished_at=entries[-1].timestamp_utc if entries else None,
            chain_valid=self._chain_valid(run_id),
        )

    def _chain_valid(self, run_id: str) -> bool:
        try:
            return self._journal.verify_chain(run_id)
        except JournalIntegrityError:
            return False
