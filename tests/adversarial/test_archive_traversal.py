"""Adversarial tests — hostile archive members.

A verified archive is still untrusted input.  These tests build tarballs and
zips containing:
1. ``..`` traversal and absolute member names
2. Symlinks whose targets leave the staging directory
3. Hard links to paths outside the archive
4. Device nodes and FIFOs

Every case must raise UnsafeArchiveEntry before a single file is written.
"""

from __future__ import annotations

import io
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest

from formulary.core.errors import UnsafeArchiveEntry
from formulary.core.stager import SourceStager
from formulary.models.artifacts import VerifiedArtifact
from helpers import add_tar_link, make_tarball, sha256_of


def _verified(path: Path) -> VerifiedArtifact:
    data = path.read_bytes()
    return VerifiedArtifact(
        url="https://example.org/" + path.name,
        path=path,
        size_bytes=len(data),
        sha256=sha256_of(data),
    )


def _tar_with(path: Path, members: list[tarfile.TarInfo], payload: bytes = b"pwned") -> Path:
    """Write raw TarInfo headers, bypassing tarfile's own name handling."""
    with tarfile.open(path, "w") as tf:
        for info in members:
            if info.isreg():
                info.size = len(payload)
                tf.addfile(info, io.BytesIO(payload))
            else:
                tf.addfile(info)
    return path


def _written_files(staging: Path) -> list[Path]:
    if not staging.exists():
        return []
    return [p for p in staging.rglob("*") if p.is_file() or p.is_symlink()]


@pytest.fixture
def outside(tmp_path: Path) -> Path:
    """A sentinel directory next to the staging root that must stay empty."""
    target = tmp_path / "outside"
    target.mkdir()
    return target


class TestTarTraversal:
    @pytest.mark.parametrize(
        "name",
        [
            "../../etc/passwd",
            "pkg/../../escape.txt",
            "/etc/passwd",
            "/tmp/absolute.txt",
            "..\\..\\windows.txt",
            "C:\\evil.txt",
        ],
    )
    def test_hostile_member_names(self, tmp_path: Path, outside: Path, name: str):
        archive = _tar_with(tmp_path / "evil.tar", [tarfile.TarInfo("pkg/ok.txt"), tarfile.TarInfo(name)])
        with pytest.raises(UnsafeArchiveEntry) as exc_info:
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert exc_info.value.entry == name
        assert _written_files(tmp_path / "staging") == []
        assert list(outside.iterdir()) == []

    def test_traversal_in_gzip_tarball(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "evil.tar.gz", {"../outside/x": b"x"})
        with pytest.raises(UnsafeArchiveEntry):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert not (tmp_path / "outside" / "x").exists()


class TestTarLinks:
    def test_symlink_escaping_relative(self, tmp_path: Path, outside: Path):
        archive = make_tarball(tmp_path / "evil.tar", {"pkg/a.txt": b"a"}, mode="w")
        add_tar_link(archive, "pkg/link", "../../outside")
        with pytest.raises(UnsafeArchiveEntry, match="escapes"):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert _written_files(tmp_path / "staging") == []

    def test_symlink_absolute_target(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "evil.tar", {"pkg/a.txt": b"a"}, mode="w")
        add_tar_link(archive, "pkg/etc", "/etc")
        with pytest.raises(UnsafeArchiveEntry, match="absolute symlink"):
            SourceStager().stage(_verified(archive), tmp_path / "staging")

    def test_write_through_symlink_blocked(self, tmp_path: Path, outside: Path):
        """Classic two-step: a dir symlink out, then a file written via it."""
        archive = make_tarball(tmp_path / "evil.tar", {"pkg/a.txt": b"a"}, mode="w")
        add_tar_link(archive, "pkg/out", str(outside))
        with tarfile.open(archive, "a") as tf:
            info = tarfile.TarInfo("pkg/out/planted.txt")
            info.size = 5
            tf.addfile(info, io.BytesIO(b"owned"))
        with pytest.raises(UnsafeArchiveEntry):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert not (outside / "planted.txt").exists()

    def test_symlink_inside_tree_allowed(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "ok.tar", {"pkg/real.txt": b"real"}, mode="w")
        add_tar_link(archive, "pkg/alias.txt", "real.txt")
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert (staged.source_dir / "alias.txt").read_bytes() == b"real"

    @pytest.mark.parametrize("target", ["../../etc/passwd", "/etc/passwd"])
    def test_hardlink_outside(self, tmp_path: Path, target: str):
        archive = make_tarball(tmp_path / "evil.tar", {"pkg/a.txt": b"a"}, mode="w")
        add_tar_link(archive, "pkg/passwd", target, hard=True)
        with pytest.raises(UnsafeArchiveEntry):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert _written_files(tmp_path / "staging") == []


class TestTarSpecialFiles:
    @pytest.mark.parametrize("kind", [tarfile.CHRTYPE, tarfile.BLKTYPE, tarfile.FIFOTYPE])
    def test_device_and_fifo_rejected(self, tmp_path: Path, kind: bytes):
        dev = tarfile.TarInfo("pkg/dev")
        dev.type = kind
        dev.devmajor, dev.devminor = 1, 3
        archive = _tar_with(tmp_path / "dev.tar", [tarfile.TarInfo("pkg/ok.txt"), dev])
        with pytest.raises(UnsafeArchiveEntry, match="device or fifo"):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert _written_files(tmp_path / "staging") == []


class TestZipTraversal:
    @pytest.mark.parametrize("name", ["../../evil.txt", "/abs/evil.txt", "pkg/../../evil.txt"])
    def test_hostile_member_names(self, tmp_path: Path, outside: Path, name: str):
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("pkg/ok.txt", "ok")
            zf.writestr(zipfile.ZipInfo(name), "pwned")
        with pytest.raises(UnsafeArchiveEntry):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert _written_files(tmp_path / "staging") == []
        assert not (tmp_path / "evil.txt").exists()

    def test_symlink_entry_rejected(self, tmp_path: Path):
        archive = tmp_path / "link.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            info = zipfile.ZipInfo("pkg/link")
            info.external_attr = (stat.S_IFLNK | 0o777) << 16
            zf.writestr(info, "/etc/passwd")
        with pytest.raises(UnsafeArchiveEntry, match="special file"):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
