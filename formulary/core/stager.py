"""SourceStager — extract a verified archive into a fresh staging directory.

Every member is validated before a single byte is written: absolute paths,
``..`` segments, links pointing outside the staging directory and device
nodes are rejected with ``UnsafeArchiveEntry``.  The archive format is
detected from content, not from the URL.
"""

from __future__ import annotations

import logging
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath, PureWindowsPath

from formulary.core.errors import ExtractionError, UnsafeArchiveEntry
from formulary.models.artifacts import StagedSource, VerifiedArtifact

logger = logging.getLogger(__name__)


def _check_member_path(root: Path, name: str) -> Path:
    """Return where ``name`` would be written, or raise if it escapes ``root``."""
    if not name:
        raise UnsafeArchiveEntry(name, "empty member name")
    if name.startswith(("/", "\\")) or PureWindowsPath(name).drive:
        raise UnsafeArchiveEntry(name, "absolute path")
    if ".." in PurePosixPath(name.replace("\\", "/")).parts:
        raise UnsafeArchiveEntry(name, "path traversal segment")
    dest = (root / name).resolve()
    if not dest.is_relative_to(root):
        raise UnsafeArchiveEntry(name, "resolves outside the staging directory")
    return dest


def _check_tar_member(root: Path, member: tarfile.TarInfo) -> None:
    dest = _check_member_path(root, member.name)

    if member.issym():
        target = member.linkname
        if not target or target.startswith("/") or PureWindowsPath(target).drive:
            raise UnsafeArchiveEntry(member.name, f"absolute symlink target {target!r}")
        if not (dest.parent / target).resolve().is_relative_to(root):
            raise UnsafeArchiveEntry(member.name, f"symlink target {target!r} escapes")
    elif member.islnk():
        # Hard link targets are archive member names, relative to the root.
        _check_member_path(root, member.linkname)
    elif member.isdev() or member.isfifo():
        raise UnsafeArchiveEntry(member.name, "device or fifo entry")


def _source_dir(root: Path) -> Path:
    entries = list(root.iterdir())
    if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
        return entries[0]
    return root


class SourceStager:
    """Extracts archives into uniquely named staging directories."""

    def stage(self, artifact: VerifiedArtifact, staging_root: Path) -> StagedSource:
        staging_root = Path(staging_root)
        staging_root.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix="src-", dir=staging_root)).resolve()

        path = artifact.path
        if tarfile.is_tarfile(path):
            count = self._extract_tar(path, root)
        elif zipfile.is_zipfile(path):
            count = self._extract_zip(path, root)
        else:
            raise ExtractionError(f"{path.name} is neither a tar nor a zip archive")

        source_dir = _source_dir(root)
        logger.info("Staged %d entries into %s", count, source_dir)
        return StagedSource(root=root, source_dir=source_dir, entry_count=count)

    # ------------------------------------------------------------------
    # Formats
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_tar(path: Path, root: Path) -> int:
        try:
            with tarfile.open(path, "r:*") as tf:
                members = tf.getmembers()
                for member in members:
                    _check_tar_member(root, member)
                tf.extractall(root, members=members, filter="data")
        except tarfile.FilterError as exc:
            raise UnsafeArchiveEntry(exc.tarinfo.name, str(exc)) from exc
        except (tarfile.TarError, EOFError, zlib.error, OSError) as exc:
            raise ExtractionError(f"corrupt tar archive {path.name}: {exc}") from exc
        return len(members)

    @staticmethod
    def _extract_zip(path: Path, root: Path) -> int:
        try:
            with zipfile.ZipFile(path) as zf:
                infos = zf.infolist()
                for info in infos:
                    _check_member_path(root, info.filename)
                    mode = info.external_attr >> 16
                    if mode and (mode & 0o170000) not in (0, 0o100000, 0o040000):
                        raise UnsafeArchiveEntry(info.filename, "special file entry")
                zf.extractall(root)
                for info in infos:
                    mode = (info.external_attr >> 16) & 0o777
                    if not info.is_dir() and mode & 0o111:
                        (root / info.filename).chmod(mode & 0o755)
        except (zipfile.BadZipFile, EOFError, zlib.error, OSError) as exc:
            raise ExtractionError(f"corrupt zip archive {path.name}: {exc}") from exc
        return len(infos)
