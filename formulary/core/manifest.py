"""Installation manifest backed by SQLite.

The manifest is the source of truth for collision detection, the idempotent
fast path, ``status`` and ``uninstall``.  It survives process restarts; every
mutation is a single transaction.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

from formulary.models.artifacts import InstalledArtifact, InstallStatus
from formulary.models.manifest import ManifestEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_INSTALLATIONS = """
CREATE TABLE IF NOT EXISTS installations (
    name          TEXT PRIMARY KEY,
    version       TEXT NOT NULL,
    sha256        TEXT NOT NULL,
    status        TEXT NOT NULL,
    installed_at  TEXT NOT NULL,
    files_json    TEXT NOT NULL DEFAULT '[]',
    detail        TEXT NOT NULL DEFAULT ''
);
"""

_CREATE_FILES = """
CREATE TABLE IF NOT EXISTS installed_files (
    path          TEXT PRIMARY KEY,
    formula       TEXT NOT NULL,
    version       TEXT NOT NULL,
    sha256        TEXT NOT NULL,
    file_sha256   TEXT NOT NULL,
    installed_at  TEXT NOT NULL
);
"""

_CREATE_IDX_FORMULA = """
CREATE INDEX IF NOT EXISTS idx_files_formula ON installed_files(formula);
"""


class InstallManifest:
    """Persistent mapping of installed paths to formula versions.

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
            conn.execute(_CREATE_INSTALLATIONS)
            conn.execute(_CREATE_FILES)
            conn.execute(_CREATE_IDX_FORMULA)
            conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_installation(
        self, installed: InstalledArtifact, entries: list[ManifestEntry]
    ) -> None:
        """Replace everything recorded for ``installed.name`` in one transaction."""
        with self._connect() as conn:
            conn.execute("DELETE FROM installed_files WHERE formula = ?", (installed.name,))
            conn.executemany(
                """
                INSERT OR REPLACE INTO installed_files
                    (path, formula, version, sha256, file_sha256, installed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        str(e.path),
                        e.formula,
                        e.version,
                        e.sha256,
                        e.file_sha256,
                        e.installed_at.isoformat(),
                    )
                    for e in entries
                ],
            )
            conn.execute(
                """
                INSERT OR REPLACE INTO installations
                    (name, version, sha256, status, installed_at, files_json, detail)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    installed.name,
                    installed.version,
                    installed.sha256,
                    installed.status.value,
                    installed.installed_at.isoformat(),
                    json.dumps([str(p) for p in installed.files]),
                    installed.detail,
                ),
            )
            conn.commit()

    def set_status(self, name: str, status: InstallStatus, detail: str = "") -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE installations SET status = ?, detail = ? WHERE name = ?",
                (status.value, detail, name),
            )
            conn.commit()

    def remove(self, name: str) -> None:
        """Delete the installation record and every file row of ``name``."""
        with self._connect() as conn:
            conn.execute("DELETE FROM installed_files WHERE formula = ?", (name,))
            conn.execute("DELETE FROM installations WHERE name = ?", (name,))
            conn.commit()

    # ------------------------------------------------------------------
    # Queries (read-only)
    # ------------------------------------------------------------------

    def owner_of(self, path: Path) -> ManifestEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM installed_files WHERE path = ?", (str(path),)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def files_for(self, name: str) -> list[ManifestEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM installed_files WHERE formula = ? ORDER BY path", (name,)
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_installation(self, name: str) -> InstalledArtifact | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM installations WHERE name = ?", (name,)
            ).fetchone()
        return self._row_to_installation(row) if row else None

    def list_installations(self) -> list[InstalledArtifact]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM installations ORDER BY name").fetchall()
        return [self._row_to_installation(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> ManifestEntry:
        path, formula, version, sha256, file_sha256, installed_at = row
        return ManifestEntry(
            path=Path(path),
            formula=formula,
            version=version,
            sha256=sha256,
            file_sha256=file_sha256,
            installed_at=datetime.fromisoformat(installed_at),
        )

    @staticmethod
    def _row_to_installation(row: tuple) -> InstalledArtifact:
        name, version, sha256, status, installed_at, files_json, detail = row
        return InstalledArtifact(
            name=name,
            version=version,
            sha256=sha256,
            status=InstallStatus(status),
            installed_at=datetime.fromisoformat(installed_at),
            files=[Path(p) for p in json.loads(files_json)],
            detail=detail,
        )
