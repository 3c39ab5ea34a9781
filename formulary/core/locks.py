"""Advisory per-formula locks (POSIX ``flock``).

Two install attempts of the same formula+version serialise on one lock file;
different formulas never contend.  Each acquisition opens its own file
description, so the lock also serialises threads within one process.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import re
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9@+._-]")


def lock_path(locks_dir: Path, key: str) -> Path:
    return Path(locks_dir) / f"{_UNSAFE.sub('_', key)}.lock"


@contextlib.contextmanager
def formula_lock(locks_dir: Path, key: str) -> Iterator[Path]:
    """Hold an exclusive lock on ``key`` for the duration of the block.

    Blocks until any other holder releases it.
    """
    path = lock_path(locks_dir, key)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a+", encoding="utf-8") as fh:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.info("Waiting for another install of %s to finish", key)
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        try:
            yield path
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def try_lock(fh) -> bool:
    """Take a non-blocking exclusive lock on an open file; report success."""
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True
