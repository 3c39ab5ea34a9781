"""Per-run workspaces: scoped temporary directories for downloads and staging.

A workspace lives at ``<runs_root>/<run_id>/`` and is guarded by a held lock
on ``<runs_root>/<run_id>.lock``.  It is removed when the ``with`` block
exits, whatever the reason.  A process that dies mid-run leaves its
directory behind with an unheld lock; ``recover_stale_workspaces`` sweeps
those at the start of the next run.
"""

from __future__ import annotations

import contextlib
import logging
import shutil
from collections.abc import Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from formulary.core.locks import try_lock

logger = logging.getLogger(__name__)

RUNS_DIRNAME = "formulary-runs"


class RunWorkspace(BaseModel):
    """Directories owned by one pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    root: Path

    @property
    def downloads(self) -> Path:
        return self.root / "download"

    @property
    def staging(self) -> Path:
        return self.root / "staging"


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove workspace %s: %s", path, exc)


@contextlib.contextmanager
def run_workspace(runs_root: Path, run_id: str) -> Iterator[RunWorkspace]:
    """Create, lock and finally remove the workspace for ``run_id``."""
    runs_root = Path(runs_root)
    runs_root.mkdir(parents=True, exist_ok=True)
    lock_file = runs_root / f"{run_id}.lock"
    with lock_file.open("a+", encoding="utf-8") as fh:
        if not try_lock(fh):
            raise RuntimeError(f"run workspace {run_id} is already in use")
        root = runs_root / run_id
        root.mkdir()
        workspace = RunWorkspace(run_id=run_id, root=root)
        workspace.downloads.mkdir()
        workspace.staging.mkdir()
        logger.debug("Created run workspace %s", root)
        try:
            yield workspace
        finally:
            _remove_tree(root)
            lock_file.unlink(missing_ok=True)
            logger.debug("Removed run workspace %s", root)


def recover_stale_workspaces(runs_root: Path) -> list[Path]:
    """Remove workspaces whose owning run is no longer alive.

    Returns the directories that were removed.
    """
    runs_root = Path(runs_root)
    if not runs_root.is_dir():
        return []

    removed: list[Path] = []
    for candidate in sorted(runs_root.iterdir()):
        if not candidate.is_dir():
            continue
        lock_file = runs_root / f"{candidate.name}.lock"
        with lock_file.open("a+", encoding="utf-8") as fh:
            if not try_lock(fh):
                continue  # owner still running
            _remove_tree(candidate)
            lock_file.unlink(missing_ok=True)
            removed.append(candidate)

    if removed:
        logger.info("Recovered %d stale run workspace(s)", len(removed))
    return removed
