"""Unit tests for SourceStager: extraction of well-formed archives."""

from __future__ import annotations

import os
import stat
import zipfile
from pathlib import Path

import pytest

from formulary.core.errors import ExtractionError
from formulary.core.stager import SourceStager
from formulary.models.artifacts import VerifiedArtifact
from helpers import make_tarball, make_zip, sha256_of


def _verified(path: Path) -> VerifiedArtifact:
    data = path.read_bytes()
    return VerifiedArtifact(
        url="https://example.org/" + path.name,
        path=path,
        size_bytes=len(data),
        sha256=sha256_of(data),
    )


class TestTarStaging:
    @pytest.mark.parametrize("mode, suffix", [("w:gz", ".tar.gz"), ("w:bz2", ".tar.bz2"), ("w:xz", ".tar.xz"), ("w", ".tar")])
    def test_compressions(self, tmp_path: Path, mode, suffix):
        archive = make_tarball(tmp_path / f"src{suffix}", {"pkg-1.0/main.c": b"int main(){}"}, mode=mode)
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert (staged.source_dir / "main.c").read_bytes() == b"int main(){}"

    def test_single_top_level_dir_becomes_source_dir(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "a.tar.gz", {"pkg-1.0/a": b"1", "pkg-1.0/sub/b": b"2"})
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert staged.source_dir.name == "pkg-1.0"
        assert staged.source_dir.parent == staged.root
        assert staged.entry_count == 2

    def test_flat_archive_uses_root(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "a.tar.gz", {"a": b"1", "b": b"2"})
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert staged.source_dir == staged.root

    def test_each_stage_gets_fresh_directory(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "a.tar.gz", {"pkg/a": b"1"})
        stager = SourceStager()
        one = stager.stage(_verified(archive), tmp_path / "staging")
        two = stager.stage(_verified(archive), tmp_path / "staging")
        assert one.root != two.root

    def test_format_detected_from_content(self, tmp_path: Path):
        # a zip served under a .tar.gz name still extracts
        archive = make_zip(tmp_path / "misnamed.tar.gz", {"pkg/a.txt": b"zip"})
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert (staged.source_dir / "a.txt").read_bytes() == b"zip"


class TestZipStaging:
    def test_extracts(self, tmp_path: Path):
        archive = make_zip(tmp_path / "a.zip", {"pkg-2.0/x.txt": b"x", "pkg-2.0/y/z.txt": b"z"})
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert (staged.source_dir / "y" / "z.txt").read_bytes() == b"z"

    def test_executable_bit_restored(self, tmp_path: Path):
        archive = tmp_path / "a.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            info = zipfile.ZipInfo("pkg/configure")
            info.external_attr = (stat.S_IFREG | 0o755) << 16
            zf.writestr(info, "#!/bin/sh\n")
        staged = SourceStager().stage(_verified(archive), tmp_path / "staging")
        assert os.access(staged.source_dir / "configure", os.X_OK)


class TestCorruptArchives:
    def test_not_an_archive(self, tmp_path: Path):
        junk = tmp_path / "junk.tar.gz"
        junk.write_bytes(b"this is not an archive at all")
        with pytest.raises(ExtractionError):
            SourceStager().stage(_verified(junk), tmp_path / "staging")

    def test_truncated_tarball(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "a.tar", {"pkg/a": b"x" * 10000}, mode="w")
        data = archive.read_bytes()
        archive.write_bytes(data[:1024])
        with pytest.raises(ExtractionError):
            SourceStager().stage(_verified(archive), tmp_path / "staging")
