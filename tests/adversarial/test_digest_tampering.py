"""Adversarial tests — tampered downloads and poisoned caches.

These tests verify that a digest mismatch:
1. Is detected for a single flipped byte, a truncation and an appended tail
2. Stops the pipeline before anything is extracted, built or installed
3. Is never retried, even with a retry budget
4. Evicts a poisoned cache entry instead of trusting it again
"""

from __future__ import annotations

from pathlib import Path

import pytest

from formulary.config import FormularySettings
from formulary.core.errors import DigestMismatch
from formulary.core.pipeline import Pipeline
from formulary.core.retry import call_with_retries
from formulary.core.root import InstallRoot
from formulary.models.formula import Formula
from formulary.models.stages import StageState
from helpers import HELLO_URL, FakeResponse, FakeSession, sha256_of


def _flip(data: bytes, index: int) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1:]


def _pipeline_serving(
    body: bytes, settings: FormularySettings, root: InstallRoot
) -> tuple[Pipeline, FakeSession]:
    session = FakeSession({HELLO_URL: FakeResponse(body)})
    return Pipeline(settings, session=session, root=root), session


class TestTamperedDownload:
    @pytest.mark.parametrize(
        "tamper",
        [
            lambda d: _flip(d, 0),
            lambda d: _flip(d, len(d) // 2),
            lambda d: _flip(d, len(d) - 1),
            lambda d: d[:-1],
            lambda d: d + b"\x00",
        ],
        ids=["first-byte", "middle-byte", "last-byte", "truncated", "appended"],
    )
    def test_mismatch_detected(
        self, settings, root, hello_formula: Formula, hello_archive: bytes, tamper
    ):
        pipeline, _ = _pipeline_serving(tamper(hello_archive), settings, root)
        with pytest.raises(DigestMismatch) as exc_info:
            pipeline.install(hello_formula)

        err = exc_info.value
        assert err.stage == "verify"
        assert err.expected == hello_formula.sha256
        assert err.actual != hello_formula.sha256
        assert str(err).startswith("[verify] DigestMismatch")

    def test_pipeline_stops_before_stage(
        self, settings, root, hello_formula: Formula, hello_archive: bytes
    ):
        pipeline, _ = _pipeline_serving(_flip(hello_archive, 100), settings, root)
        with pytest.raises(DigestMismatch):
            pipeline.install(hello_formula)

        snapshot = pipeline.history("hello", limit=1)[0]
        states = {s.stage_id: s.state for s in snapshot.stages}
        assert states["fetch"] == StageState.PASSED
        assert states["verify"] == StageState.FAILED
        for later in ("stage", "build", "install", "test"):
            assert states[later] == StageState.NOT_STARTED

        assert not (root.bin_dir / "hello").exists()
        assert root.manifest.get_installation("hello") is None
        assert list(pipeline.runs_root.glob("fr-*/")) == []

    def test_never_retried(self, settings, root, hello_formula: Formula, hello_archive: bytes):
        pipeline, session = _pipeline_serving(_flip(hello_archive, 10), settings, root)
        with pytest.raises(DigestMismatch):
            call_with_retries(
                lambda: pipeline.install(hello_formula), retries=5, sleep=lambda _: None
            )
        assert len(session.calls) == 1

    def test_uppercase_pin_still_compared(
        self, settings, root, make_formula, hello_archive: bytes
    ):
        formula = make_formula(sha256_of(hello_archive).upper())
        pipeline, _ = _pipeline_serving(hello_archive, settings, root)
        assert pipeline.install(formula).installed.name == "hello"


class TestPoisonedCache:
    def test_poisoned_cache_evicted(
        self, pipeline: Pipeline, hello_formula: Formula, hello_session: FakeSession
    ):
        cached = pipeline.cache_path(hello_formula)
        cached.parent.mkdir(parents=True, exist_ok=True)
        cached.write_bytes(b"not the archive you pinned")

        with pytest.raises(DigestMismatch):
            pipeline.install(hello_formula)
        assert not cached.exists()
        assert hello_session.calls == []

        # the next attempt goes back to the network and succeeds
        report = pipeline.install(hello_formula)
        assert report.installed.name == "hello"
        assert len(hello_session.calls) == 1

    def test_fetch_command_refetches_bad_cache(
        self, pipeline: Pipeline, hello_formula: Formula, hello_session: FakeSession
    ):
        cached = pipeline.cache_path(hello_formula)
        cached.parent.mkdir(parents=True, exist_ok=True)
        cached.write_bytes(b"junk")

        path = pipeline.fetch(hello_formula)
        assert sha256_of(Path(path).read_bytes()) == hello_formula.sha256
        assert len(hello_session.calls) == 1
