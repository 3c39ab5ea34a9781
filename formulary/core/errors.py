"""Error taxonomy for the formula pipeline.

Every stage failure is a ``FormularyError``.  The ``code`` class attribute is
the stable taxonomy name shown to operators; ``stage`` is filled in by the
pipeline when the error crosses a stage boundary, so the CLI can print
``[verify] DigestMismatch: ...`` without each stage knowing its own tag.

None of these are retried inside the interpreter.  ``RETRYABLE_CODES`` lists
the only codes a caller-level retry policy may retry.
"""

from __future__ import annotations

import builtins
from pathlib import Path


class FormularyError(RuntimeError):
    """Base for every error surfaced by the pipeline."""

    code: str = "FormularyError"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def with_stage(self, stage: str) -> FormularyError:
        """Tag the error with the stage it escaped from (first tag wins)."""
        if self.stage is None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        prefix = f"[{self.stage}] " if self.stage else ""
        return f"{prefix}{self.code}: {self.message}"


class MalformedFormula(FormularyError):
    """The formula declaration is incomplete or invalid."""

    code = "MalformedFormula"


class FormulaNotFound(FormularyError):
    """No formula file matches the requested name or path."""

    code = "FormulaNotFound"


class InsecureSource(FormularyError):
    """The source URL (or a redirect hop) does not use https."""

    code = "InsecureSource"


class NetworkError(FormularyError):
    """Connection, DNS, or non-success HTTP status while fetching."""

    code = "NetworkError"

    def __init__(
        self, message: str, *, status_code: int | None = None, stage: str | None = None
    ) -> None:
        super().__init__(message, stage=stage)
        self.status_code = status_code


class StageTimeoutError(FormularyError, builtins.TimeoutError):
    """A fetch went quiet, or a subprocess ran past its wall-clock limit."""

    code = "TimeoutError"


class DigestMismatch(FormularyError):
    """The fetched bytes do not hash to the pinned digest."""

    code = "DigestMismatch"

    def __init__(self, expected: str, actual: str, *, stage: str | None = None) -> None:
        super().__init__(
            f"expected sha256 {expected}, got {actual}", stage=stage
        )
        self.expected = expected
        self.actual = actual


class UnsafeArchiveEntry(FormularyError):
    """An archive member would land outside the staging directory."""

    code = "UnsafeArchiveEntry"

    def __init__(self, entry: str, reason: str, *, stage: str | None = None) -> None:
        super().__init__(f"{entry!r}: {reason}", stage=stage)
        self.entry = entry
        self.reason = reason


class ExtractionError(FormularyError):
    """The archive is corrupt or in an unsupported format."""

    code = "ExtractionError"


class BuildFailed(FormularyError):
    """A build step exited nonzero or a declared output is missing."""

    code = "BuildFailed"

    def __init__(
        self,
        argv: list[str],
        exit_code: int | None,
        stderr_tail: str = "",
        *,
        reason: str | None = None,
        stage: str | None = None,
    ) -> None:
        detail = reason or f"command {argv!r} exited with status {exit_code}"
        if stderr_tail:
            detail = f"{detail}\n{stderr_tail}"
        super().__init__(detail, stage=stage)
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail


class FilesystemError(FormularyError):
    """A local file operation failed (permissions, disk full, a file in the way)."""

    code = "FilesystemError"


class InstallError(FilesystemError):
    """Writing into the install prefix failed."""

    code = "InstallError"


class InstallCollision(FormularyError):
    """A canonical install path already belongs to something else."""

    code = "InstallCollision"

    def __init__(self, path: Path, owner: str, *, stage: str | None = None) -> None:
        super().__init__(f"{path} is already owned by {owner}", stage=stage)
        self.path = path
        self.owner = owner


class TestAssertionFailed(FormularyError):
    """A smoke test's output did not satisfy its predicate."""

    __test__ = False  # keep pytest from collecting this class

    code = "TestAssertionFailed"

    def __init__(
        self, argv: list[str], expected: str, actual: str, *, stage: str | None = None
    ) -> None:
        super().__init__(
            f"{argv!r}: expected {expected!r} in output, got:\n{actual}", stage=stage
        )
        self.argv = list(argv)
        self.expected = expected
        self.actual = actual


class NotInstalled(FormularyError):
    """The manifest has no installation for the requested formula."""

    code = "NotInstalled"


RETRYABLE_CODES: frozenset[str] = frozenset({"NetworkError", "TimeoutError"})
NEVER_RETRY_CODES: frozenset[str] = frozenset({"DigestMismatch", "UnsafeArchiveEntry"})

_OS_ERRORS_BY_STAGE: dict[str, type[FormularyError]] = {
    "stage": ExtractionError,
    "install": InstallError,
}


def from_os_error(exc: OSError, stage: str) -> FormularyError:
    """Wrap an ``OSError`` that escaped ``stage`` in that stage's pipeline error."""
    cls = _OS_ERRORS_BY_STAGE.get(stage, FilesystemError)
    if exc.strerror and exc.filename:
        detail = f"{exc.strerror}: {exc.filename}"
    else:
        detail = str(exc) or type(exc).__name__
    return cls(detail, stage=stage)
