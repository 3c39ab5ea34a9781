"""TestRunner — smoke-test an installation and record the verdict.

A failing test never uninstalls anything.  The manifest marks the
installation ``unverified`` so that ``status`` can surface it; a passing run
marks it ``verified``.
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path

from formulary.core.errors import FormularyError, TestAssertionFailed
from formulary.core.executor import run_argv
from formulary.core.root import InstallRoot
from formulary.models.artifacts import InstalledArtifact, InstallStatus, StepResult, TestResult
from formulary.models.formula import Formula, TestStep

logger = logging.getLogger(__name__)


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [{len(text) - limit} more characters truncated]"


def _holds(step: TestStep, output: str) -> bool:
    if step.pattern:
        return re.search(step.expect, output) is not None
    return step.expect in output


class TestRunner:
    """Runs a formula's test steps against its installed files.

    Parameters
    ----------
    timeout:
        Wall-clock seconds allowed per test command.
    output_truncate:
        Characters of captured output carried on ``TestAssertionFailed``.
    """

    __test__ = False

    def __init__(self, *, timeout: float = 60.0, output_truncate: int = 2000) -> None:
        self._timeout = timeout
        self._truncate = output_truncate

    def run(
        self, installed: InstalledArtifact, formula: Formula, root: InstallRoot
    ) -> TestResult:
        placeholders = {
            **root.placeholders(),
            "name": installed.name,
            "version": installed.version,
        }
        results: list[StepResult] = []
        try:
            with tempfile.TemporaryDirectory(prefix="formulary-test-") as scratch:
                for step in formula.test:
                    argv = step.expand(placeholders)
                    logger.info("Test: %s", " ".join(argv))
                    result = run_argv(argv, cwd=Path(scratch), timeout=self._timeout)
                    results.append(result)
                    self._check(step, result)
        except FormularyError as exc:
            root.manifest.set_status(installed.name, InstallStatus.UNVERIFIED, exc.message)
            logger.warning("%s %s is installed but unverified", installed.name, installed.version)
            raise

        root.manifest.set_status(installed.name, InstallStatus.VERIFIED)
        logger.info("%s %s verified", installed.name, installed.version)
        return TestResult(
            name=installed.name, version=installed.version, passed=True, steps=results
        )

    def _check(self, step: TestStep, result: StepResult) -> None:
        output = result.stdout + result.stderr
        if result.exit_code != step.exit_code:
            raise TestAssertionFailed(
                result.argv,
                f"exit status {step.exit_code}",
                truncate(f"{output}\n(exit status {result.exit_code})", self._truncate),
            )
        if not _holds(step, output):
            raise TestAssertionFailed(result.argv, step.expect, truncate(output, self._truncate))
