"""Append-only, hash-chained run journal backed by SQLite.

Every stage transition of every pipeline run is appended here.  Entries are
chained per run: each records the hash of the previous entry of the same run
and is sealed by its own hash, so edits made behind the journal's back are
detectable with ``verify_chain``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from formulary.core.hasher import compute_entry_hash
from formulary.models.journal import JournalEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_JOURNAL = """
CREATE TABLE IF NOT EXISTS run_journal (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id             TEXT NOT NULL UNIQUE,
    run_id               TEXT NOT NULL,
    formula              TEXT NOT NULL,
    version              TEXT NOT NULL DEFAULT '',
    stage_id             TEXT NOT NULL,
    state_transition     TEXT NOT NULL,
    timestamp_utc        TEXT NOT NULL,
    detail               TEXT NOT NULL DEFAULT '',
    previous_entry_hash  TEXT NOT NULL DEFAULT '',
    entry_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_journal_run ON run_journal(run_id, id);
"""

_CREATE_IDX_FORMULA = """
CREATE INDEX IF NOT EXISTS idx_journal_formula ON run_journal(formula, id);
"""

_COLUMNS = (
    "entry_id, run_id, formula, version, stage_id, state_transition, "
    "timestamp_utc, detail, previous_entry_hash, entry_hash"
)


class JournalIntegrityError(RuntimeError):
    """Raised when the hash chain of a run is broken."""


class RunJournal:
    """Append-only, hash-chained record of pipeline runs.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_JOURNAL)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_FORMULA)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: JournalEntry) -> JournalEntry:
        """Seal ``entry`` onto its run's chain and persist it.

        This is the only write method. There is no update or delete.
        """
        previous_hash = self._get_latest_hash(entry.run_id)
        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""

        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": compute_entry_hash(entry_dict),
            }
        )
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO run_journal ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sealed.entry_id,
                    sealed.run_id,
                    sealed.formula,
                    sealed.version,
                    sealed.stage_id,
                    sealed.state_transition,
                    sealed.timestamp_utc.isoformat(),
                    sealed.detail,
                    sealed.previous_entry_hash,
                    sealed.entry_hash,
                ),
            )
            conn.commit()
        return sealed

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_journal WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[JournalEntry]:
        """Return all entries for a run, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM run_journal WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_run_ids(self, formula: str, limit: int = 10) -> list[str]:
        """Most recent run ids for ``formula``, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT run_id FROM run_journal WHERE formula = ?
                GROUP BY run_id ORDER BY MAX(id) DESC LIMIT ?
                """,
                (formula, limit),
            ).fetchall()
        return [row[0] for row in rows]

    def latest_run(self, formula: str) -> list[JournalEntry]:
        """Entries of the most recent run of ``formula`` (empty if none)."""
        run_ids = self.get_run_ids(formula, limit=1)
        return self.get_run_entries(run_ids[0]) if run_ids else []

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Walk a run's entries and recompute every link.

        Returns True if the chain is valid, raises JournalIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise JournalIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise JournalIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> JournalEntry:
        (
            entry_id,
            run_id,
            formula,
            version,
            stage_id,
            state_transition,
            timestamp_utc,
            detail,
            previous_entry_hash,
            entry_hash,
        ) = row
        return JournalEntry(
            entry_id=entry_id,
            run_id=run_id,
            formula=formula,
            version=version,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=datetime.fromisoformat(timestamp_utc),
            detail=detail,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
