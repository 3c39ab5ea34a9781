"""Installer — move build outputs into ``<prefix>/bin`` without torn writes.

Every declared output is checked against the manifest before anything is
written, so a collision leaves the prefix untouched.  Each file is first
copied to a hidden temporary name in the bin directory, fsynced and made
executable; only once every temporary is complete are they ``os.replace``d
onto their canonical paths.  A canonical path only ever shows the previous
file or the complete new one, and a failed copy replaces nothing.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from formulary.core.errors import InstallCollision, NotInstalled
from formulary.core.hasher import sha256_file
from formulary.core.root import InstallRoot
from formulary.models.artifacts import BuildOutput, InstalledArtifact, InstallStatus
from formulary.models.formula import Formula
from formulary.models.manifest import ManifestEntry

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755
UNMANAGED_OWNER = "unmanaged"


def _temp_name(dest: Path) -> Path:
    return dest.parent / f".{dest.name}.{uuid.uuid4().hex[:8]}.tmp"


def write_temporary(src: Path, dest: Path, mode: int = EXECUTABLE_MODE) -> Path:
    """Copy ``src`` to a durable temporary beside ``dest`` and return its path."""
    tmp = _temp_name(dest)
    try:
        with src.open("rb") as reader, tmp.open("xb") as writer:
            shutil.copyfileobj(reader, writer)
            writer.flush()
            os.fsync(writer.fileno())
        os.chmod(tmp, mode)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return tmp


class Installer:
    """Places build outputs under an install root and records ownership."""

    def install(
        self, build: BuildOutput, formula: Formula, root: InstallRoot
    ) -> InstalledArtifact:
        root.bin_dir.mkdir(parents=True, exist_ok=True)

        # Plan every file first; nothing is written until all checks pass.
        plan: list[tuple[Path, Path, str, bool]] = []
        for src, name in zip(build.outputs, formula.installed_names):
            dest = root.bin_dir / name
            file_sha = sha256_file(src)
            plan.append((src, dest, file_sha, self._needs_write(dest, file_sha, formula, root)))

        staged: list[tuple[Path, Path]] = []
        try:
            for src, dest, _, write in plan:
                if write:
                    staged.append((write_temporary(src, dest), dest))
            for tmp, dest in staged:
                os.replace(tmp, dest)
                logger.info("Installed %s", dest)
        except BaseException:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise

        now = datetime.now(timezone.utc)
        entries: list[ManifestEntry] = []
        for _, dest, file_sha, write in plan:
            if not write:
                logger.info("%s already installed and identical", dest)
            entries.append(
                ManifestEntry(
                    path=dest,
                    formula=formula.name,
                    version=formula.version,
                    sha256=formula.sha256,
                    file_sha256=file_sha,
                    installed_at=now,
                )
            )

        self._remove_dropped_files(formula, root, {e.path for e in entries})

        installed = InstalledArtifact(
            name=formula.name,
            version=formula.version,
            sha256=formula.sha256,
            files=[e.path for e in entries],
            status=InstallStatus.UNTESTED,
            installed_at=now,
        )
        root.manifest.record_installation(installed, entries)
        return installed

    def uninstall(self, name: str, root: InstallRoot) -> list[Path]:
        """Remove every file the manifest attributes to ``name``."""
        if root.manifest.get_installation(name) is None:
            raise NotInstalled(f"{name} is not installed under {root.prefix}")

        removed: list[Path] = []
        for entry in root.manifest.files_for(name):
            if entry.path.exists() or entry.path.is_symlink():
                entry.path.unlink()
                removed.append(entry.path)
                logger.info("Removed %s", entry.path)
        root.manifest.remove(name)
        return removed

    def sweep_partial(self, formula: Formula, root: InstallRoot) -> list[Path]:
        """Delete temporaries left by an interrupted install of ``formula``.

        Only call while holding the formula's lock.
        """
        if not root.bin_dir.is_dir():
            return []
        swept: list[Path] = []
        for name in formula.installed_names:
            for tmp in root.bin_dir.glob(f".{name}.*.tmp"):
                tmp.unlink(missing_ok=True)
                swept.append(tmp)
        if swept:
            logger.info("Removed %d partial file(s) from an interrupted install", len(swept))
        return swept

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _needs_write(
        dest: Path, file_sha: str, formula: Formula, root: InstallRoot
    ) -> bool:
        """Decide whether ``dest`` must be written, or raise on collision."""
        if not (dest.exists() or dest.is_symlink()):
            return True

        owner = root.manifest.owner_of(dest)
        if owner is None:
            raise InstallCollision(dest, UNMANAGED_OWNER)
        if owner.formula != formula.name:
            raise InstallCollision(dest, f"{owner.formula} {owner.version}")

        same_release = owner.version == formula.version and owner.sha256 == formula.sha256
        if same_release and dest.is_file() and sha256_file(dest) == file_sha:
            return False
        return True

    @staticmethod
    def _remove_dropped_files(
        formula: Formula, root: InstallRoot, keep: set[Path]
    ) -> None:
        for entry in root.manifest.files_for(formula.name):
            if entry.path not in keep and entry.path.is_file():
                entry.path.unlink()
                logger.info("Removed %s (no longer provided by %s)", entry.path, formula.name)
