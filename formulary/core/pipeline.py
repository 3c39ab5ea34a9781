"""Pipeline — the coordinator that turns a formula into a verified install.

The Pipeline wires the ArchiveFetcher, IntegrityVerifier, SourceStager,
BuildExecutor, Installer and TestRunner together around an ``InstallRoot``:

    fetch -> verify -> stage -> build -> install -> test

Each stage gates the next.  Errors are tagged with the stage they escaped
from (a bare ``OSError`` is first wrapped in that stage's error type),
journalled and re-raised; nothing is retried here.  The
whole run holds the per-formula lock, and the run workspace (download and
staging) is removed before the smoke tests start, whatever happened.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import requests

from formulary.config import FormularySettings
from formulary.core.errors import DigestMismatch, FormularyError, NotInstalled, from_os_error
from formulary.core.executor import BuildExecutor
from formulary.core.fetcher import ArchiveFetcher
from formulary.core.hasher import sha256_file
from formulary.core.installer import Installer
from formulary.core.locks import formula_lock
from formulary.core.root import InstallRoot
from formulary.core.stage_machine import PipelineRun
from formulary.core.stager import SourceStager
from formulary.core.tester import TestRunner
from formulary.core.verifier import IntegrityVerifier
from formulary.core.workspace import RUNS_DIRNAME, recover_stale_workspaces, run_workspace
from formulary.models.artifacts import (
    FetchedArtifact,
    InstalledArtifact,
    InstallReport,
    InstallStatus,
    TestResult,
    VerifiedArtifact,
)
from formulary.models.formula import Formula, archive_suffix
from formulary.models.stages import STAGE_ORDER, StageState
from formulary.monitor.projection import RunProjection, RunSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Pipeline:
    """Installs, tests and removes formulas under one install root.

    Parameters
    ----------
    settings:
        Interpreter configuration. Uses defaults (and ``FORMULARY_*``
        environment variables) if not provided.
    session:
        HTTP session used by the fetcher; a new ``requests.Session`` if None.
    root:
        Install root to operate on; derived from ``settings`` if None.
    """

    def __init__(
        self,
        settings: FormularySettings | None = None,
        *,
        session: requests.Session | None = None,
        root: InstallRoot | None = None,
    ) -> None:
        self.settings = settings or FormularySettings()
        self.root = root or InstallRoot.from_settings(self.settings)
        self.runs_root = self.settings.resolved_tmp_dir / RUNS_DIRNAME

        self.fetcher = ArchiveFetcher(
            session,
            connect_timeout=self.settings.connect_timeout,
            quiet_timeout=self.settings.quiet_timeout,
            chunk_size=self.settings.chunk_size,
            user_agent=self.settings.user_agent,
        )
        self.verifier = IntegrityVerifier()
        self.stager = SourceStager()
        self.executor = BuildExecutor(
            timeout=self.settings.build_timeout,
            stderr_tail_lines=self.settings.stderr_tail_lines,
        )
        self.installer = Installer()
        self.tester = TestRunner(
            timeout=self.settings.test_timeout,
            output_truncate=self.settings.output_truncate,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def install(self, formula: Formula, *, run_tests: bool = True) -> InstallReport:
        """Fetch, verify, stage, build, install and test ``formula``.

        Concurrent calls for the same name+version serialise; a caller that
        waited finds the installation satisfied and returns without building.
        """
        with formula_lock(self.root.locks_dir, formula.lock_key):
            recover_stale_workspaces(self.runs_root)
            self.installer.sweep_partial(formula, self.root)

            run = PipelineRun(formula, self.root.journal)
            existing = self._satisfied(formula)
            if existing is not None:
                logger.info("%s %s is already installed", formula.name, formula.version)
                for stage_id in STAGE_ORDER[:-1]:
                    run.transition(stage_id, StageState.SKIPPED, "already installed")
                test_result = None
                if run_tests and existing.status != InstallStatus.VERIFIED:
                    test_result = self._run_stage(
                        run, "test", lambda: self.tester.run(existing, formula, self.root)
                    )
                else:
                    run.transition("test", StageState.SKIPPED)
                return InstallReport(
                    run_id=run.run_id,
                    installed=self.root.manifest.get_installation(formula.name) or existing,
                    already_installed=True,
                    test_result=test_result,
                )

            logger.info("Installing %s %s (run %s)", formula.name, formula.version, run.run_id)
            with run_workspace(self.runs_root, run.run_id) as ws:
                fetched = self._run_stage(
                    run, "fetch", lambda: self._obtain(formula, ws.downloads),
                    describe=lambda a: f"{a.size_bytes} bytes",
                )
                verified = self._run_stage(
                    run, "verify", lambda: self._verify(formula, fetched),
                    describe=lambda v: f"sha256={v.sha256}",
                )
                staged = self._run_stage(
                    run, "stage", lambda: self.stager.stage(verified, ws.staging),
                    describe=lambda s: f"{s.entry_count} entries",
                )
                built = self._run_stage(
                    run, "build", lambda: self.executor.build(staged, formula),
                    describe=lambda b: ", ".join(p.name for p in b.outputs),
                )
                installed = self._run_stage(
                    run, "install", lambda: self.installer.install(built, formula, self.root),
                    describe=lambda i: ", ".join(str(p) for p in i.files),
                )

            test_result = None
            if run_tests:
                test_result = self._run_stage(
                    run, "test", lambda: self.tester.run(installed, formula, self.root)
                )
            else:
                run.transition("test", StageState.SKIPPED)

            return InstallReport(
                run_id=run.run_id,
                installed=self.root.manifest.get_installation(formula.name) or installed,
                fetched_bytes=fetched.size_bytes,
                test_result=test_result,
            )

    def fetch(self, formula: Formula) -> Path:
        """Download and verify ``formula``'s archive into the cache.

        Returns the cached path.  A cached archive that still matches the
        pinned digest is reused without touching the network.
        """
        cached = self.cache_path(formula)
        if cached.is_file() and sha256_file(cached) == formula.sha256:
            logger.info("%s already cached at %s", formula.name, cached)
            return cached

        with formula_lock(self.root.locks_dir, formula.lock_key):
            run = PipelineRun(formula, self.root.journal)
            with run_workspace(self.runs_root, run.run_id) as ws:
                fetched = self._run_stage(
                    run, "fetch", lambda: self.fetcher.fetch(formula.url, ws.downloads),
                    describe=lambda a: f"{a.size_bytes} bytes",
                )
                self._run_stage(
                    run, "verify", lambda: self._store(fetched, formula, cached)
                )
        logger.info("Cached %s at %s", formula.name, cached)
        return cached

    def test(self, formula: Formula) -> TestResult:
        """Run ``formula``'s smoke tests against its current installation."""
        installed = self.root.manifest.get_installation(formula.name)
        if installed is None:
            raise NotInstalled(f"{formula.name} is not installed under {self.root.prefix}")

        with formula_lock(self.root.locks_dir, f"{installed.name}-{installed.version}"):
            run = PipelineRun(formula, self.root.journal)
            for stage_id in STAGE_ORDER[:-1]:
                run.transition(stage_id, StageState.SKIPPED)
            return self._run_stage(
                run, "test", lambda: self.tester.run(installed, formula, self.root)
            )

    def uninstall(self, name: str) -> list[Path]:
        """Remove ``name``'s installed files and manifest records."""
        installed = self.root.manifest.get_installation(name)
        if installed is None:
            raise NotInstalled(f"{name} is not installed under {self.root.prefix}")
        with formula_lock(self.root.locks_dir, f"{installed.name}-{installed.version}"):
            return self.installer.uninstall(name, self.root)

    def status(self, name: str | None = None) -> list[InstalledArtifact]:
        """Installed formulas (or just ``name``) with their verification state."""
        if name is None:
            return self.root.manifest.list_installations()
        installed = self.root.manifest.get_installation(name)
        return [installed] if installed else []

    def history(self, name: str, limit: int = 5) -> list[RunSnapshot]:
        """The most recent runs of ``name``, newest first."""
        return RunProjection(self.root.journal).recent(name, limit)

    def last_run(self, name: str) -> RunSnapshot | None:
        """The most recent run of ``name``, or None if it never ran."""
        return RunProjection(self.root.journal).latest(name)

    def cache_path(self, formula: Formula) -> Path:
        suffix = archive_suffix(formula.url) or ".archive"
        return self.root.cache_dir / f"{formula.name}-{formula.version}-{formula.sha256[:12]}{suffix}"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_stage(
        self,
        run: PipelineRun,
        stage_id: str,
        fn: Callable[[], T],
        describe: Callable[[T], str] | None = None,
    ) -> T:
        run.transition(stage_id, StageState.RUNNING)
        try:
            result = fn()
        except FormularyError as exc:
            exc.with_stage(stage_id)
            run.transition(stage_id, StageState.FAILED, exc.message)
            logger.error("%s", exc)
            raise
        except OSError as exc:
            err = from_os_error(exc, stage_id)
            run.transition(stage_id, StageState.FAILED, err.message)
            logger.error("%s", err)
            raise err from exc
        except BaseException as exc:
            run.transition(stage_id, StageState.FAILED, repr(exc))
            raise
        run.transition(stage_id, StageState.PASSED, describe(result) if describe else "")
        return result

    def _obtain(self, formula: Formula, dest: Path) -> FetchedArtifact:
        """Copy a cached archive into the workspace, or download it."""
        cached = self.cache_path(formula)
        if not cached.is_file():
            return self.fetcher.fetch(formula.url, dest)

        logger.info("Using cached archive %s", cached)
        target = dest / cached.name
        shutil.copyfile(cached, target)
        return FetchedArtifact(
            url=formula.url,
            path=target,
            size_bytes=target.stat().st_size,
            sha256=sha256_file(target),
        )

    def _verify(self, formula: Formula, fetched: FetchedArtifact) -> VerifiedArtifact:
        try:
            return self.verifier.verify(fetched, formula.sha256)
        except DigestMismatch:
            cached = self.cache_path(formula)
            if fetched.path.name == cached.name:
                # Drop the bad cache entry so the next attempt downloads afresh.
                cached.unlink(missing_ok=True)
            raise

    def _store(self, fetched: FetchedArtifact, formula: Formula, cached: Path) -> Path:
        """Verify a fresh download and move it into the cache."""
        verified = self.verifier.verify(fetched, formula.sha256)
        cached.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(verified.path), cached)
        return cached

    def _satisfied(self, formula: Formula) -> InstalledArtifact | None:
        """The recorded installation, if it exactly matches ``formula`` on disk."""
        installed = self.root.manifest.get_installation(formula.name)
        if installed is None:
            return None
        if installed.version != formula.version or installed.sha256 != formula.sha256:
            return None

        expected = {self.root.bin_dir / n for n in formula.installed_names}
        entries = self.root.manifest.files_for(formula.name)
        if {e.path for e in entries} != expected:
            return None
        for entry in entries:
            if not entry.path.is_file() or not os.access(entry.path, os.X_OK):
                return None
            if sha256_file(entry.path) != entry.file_sha256:
                return None
        return installed
