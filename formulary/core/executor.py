"""BuildExecutor — run a formula's install steps inside the staged tree.

Commands are executed from an explicit argv with ``shell=False``; no
argument is ever interpolated by a shell.  Each subprocess runs in its own
session so that a timeout (or a cancelled run) can kill the whole process
group, not just the direct child.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from formulary.core.errors import BuildFailed, StageTimeoutError
from formulary.models.artifacts import BuildOutput, StagedSource, StepResult
from formulary.models.formula import Formula

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


def tail(text: str, lines: int) -> str:
    """Return the last ``lines`` lines of ``text``."""
    if lines <= 0:
        return ""
    return "\n".join(text.rstrip("\n").splitlines()[-lines:])


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_argv(
    argv: Sequence[str],
    *,
    cwd: Path,
    timeout: float,
    env: Mapping[str, str] | None = None,
) -> StepResult:
    """Run one command to completion and capture its output.

    A program that cannot be found or executed yields a ``StepResult`` with
    exit code 127 or 126 rather than an exception, as a shell would report.
    Exceeding ``timeout`` kills the process group and raises
    ``StageTimeoutError``.
    """
    argv = list(argv)
    logger.debug("exec %r (cwd=%s, timeout=%ss)", argv, cwd, timeout)
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except FileNotFoundError:
        return StepResult(
            argv=argv, exit_code=EXIT_NOT_FOUND, stderr=f"{argv[0]}: command not found"
        )
    except PermissionError:
        return StepResult(
            argv=argv, exit_code=EXIT_NOT_EXECUTABLE, stderr=f"{argv[0]}: permission denied"
        )

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        proc.communicate()
        raise StageTimeoutError(f"{argv!r} exceeded {timeout:g}s and was killed") from None
    except BaseException:
        _kill_group(proc)
        proc.wait()
        raise

    return StepResult(
        argv=argv,
        exit_code=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        duration_s=round(time.monotonic() - started, 3),
    )


class BuildExecutor:
    """Runs install steps sequentially and checks the declared outputs.

    Parameters
    ----------
    timeout:
        Wall-clock seconds allowed per step.
    stderr_tail_lines:
        How much of a failing step's stderr is carried on ``BuildFailed``.
    """

    def __init__(self, *, timeout: float = 900.0, stderr_tail_lines: int = 40) -> None:
        self._timeout = timeout
        self._tail_lines = stderr_tail_lines

    def build(self, staged: StagedSource, formula: Formula) -> BuildOutput:
        results: list[StepResult] = []
        for index, step in enumerate(formula.install, start=1):
            logger.info("Build step %d/%d: %s", index, len(formula.install), " ".join(step.argv))
            result = run_argv(step.argv, cwd=staged.source_dir, timeout=self._timeout)
            results.append(result)
            if result.exit_code != 0:
                raise BuildFailed(
                    result.argv,
                    result.exit_code,
                    tail(result.stderr, self._tail_lines),
                )

        outputs = [self._declared_output(staged, rel) for rel in formula.outputs]
        return BuildOutput(staged=staged, outputs=outputs, steps=results)

    @staticmethod
    def _declared_output(staged: StagedSource, rel: str) -> Path:
        path = (staged.source_dir / rel).resolve()
        if not path.is_relative_to(staged.root):
            raise BuildFailed([], None, reason=f"declared output {rel!r} resolves outside the build tree")
        if not path.is_file():
            raise BuildFailed([], None, reason=f"declared output {rel!r} was not produced")
        return path
