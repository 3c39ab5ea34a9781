"""Formula model — the immutable, fully validated form of a declaration.

A formula is pure data.  Nothing here touches the network or the
filesystem; ``parse_formula`` only turns a mapping (usually decoded TOML)
into a ``Formula`` or raises ``MalformedFormula``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from formulary.core.errors import MalformedFormula

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9@+._-]*$")
_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_VERSION_RE = re.compile(r"v?(\d+(?:\.\d+)+(?:[-_.]?[A-Za-z0-9]+)*)")
_VERSION_LABEL_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")

ARCHIVE_SUFFIXES: tuple[str, ...] = (
    ".tar.gz",
    ".tgz",
    ".tar.bz2",
    ".tbz2",
    ".tar.xz",
    ".txz",
    ".tar",
    ".zip",
)


def archive_suffix(url: str) -> str:
    """The archive extension of a URL's last path segment, or ``""``."""
    name = PurePosixPath(urlsplit(url).path).name
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            return suffix
    return ""


def version_from_url(url: str) -> str | None:
    """Derive a version string from a source URL's last path segment.

    >>> version_from_url("https://github.com/BrigBryu/pomo/archive/refs/tags/v1.0.0.tar.gz")
    '1.0.0'
    >>> version_from_url("https://example.org/dist/foo-2.3.1.tgz")
    '2.3.1'
    """
    segment = PurePosixPath(urlsplit(url).path).name
    suffix = archive_suffix(url)
    if suffix:
        segment = segment[: -len(suffix)]
    matches = _VERSION_RE.findall(segment)
    return matches[-1] if matches else None


def _check_url(value: str, field: str) -> str:
    value = value.strip()
    parts = urlsplit(value)
    if not parts.scheme or not parts.netloc or any(c.isspace() for c in value):
        raise ValueError(f"{field} is not a well-formed URL: {value!r}")
    return value


class BuildStep(BaseModel):
    """One install command: a fixed argv, never run through a shell."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    argv: list[str] = Field(min_length=1)

    @field_validator("argv")
    @classmethod
    def _program_present(cls, argv: list[str]) -> list[str]:
        if not argv[0].strip():
            raise ValueError("argv[0] must name a program")
        return argv


class TestStep(BaseModel):
    """A smoke test: run ``argv`` and check its output against ``expect``.

    ``expect`` is a literal substring unless ``pattern`` is true, in which
    case it is a regular expression searched in the output.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    argv: list[str] = Field(min_length=1)
    expect: str = Field(min_length=1)
    pattern: bool = False
    exit_code: int = 0

    @model_validator(mode="after")
    def _pattern_compiles(self) -> TestStep:
        if self.pattern:
            try:
                re.compile(self.expect)
            except re.error as exc:
                raise ValueError(f"expect is not a valid pattern: {exc}") from exc
        return self

    def expand(self, placeholders: Mapping[str, str]) -> list[str]:
        """Substitute ``{bin}``-style placeholders argument by argument."""
        expanded: list[str] = []
        for arg in self.argv:
            for key, value in placeholders.items():
                arg = arg.replace("{" + key + "}", value)
            expanded.append(arg)
        return expanded


class BinSpec(BaseModel):
    """Declared build outputs, relative to the source root."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    files: list[str] = Field(min_length=1)

    @field_validator("files")
    @classmethod
    def _relative_and_unique(cls, files: list[str]) -> list[str]:
        seen: set[str] = set()
        for entry in files:
            path = PurePosixPath(entry)
            if not entry or path.is_absolute() or ".." in path.parts:
                raise ValueError(f"output {entry!r} must be a relative path inside the source tree")
            if path.name in seen:
                raise ValueError(f"output name {path.name!r} declared twice")
            seen.add(path.name)
        return files


class Formula(BaseModel):
    """Immutable description of one package's fetch/build/install/test."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    desc: str
    homepage: str
    url: str
    sha256: str
    license: str = Field(min_length=1)
    version: str
    install: list[BuildStep] = Field(min_length=1)
    bin: BinSpec
    test: list[TestStep] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _derive_version(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and not data.get("version") and isinstance(data.get("url"), str):
            derived = version_from_url(data["url"])
            if derived is not None:
                data = {**data, "version": derived}
        return data

    @field_validator("name")
    @classmethod
    def _valid_name(cls, name: str) -> str:
        if not _NAME_RE.match(name):
            raise ValueError(f"invalid formula name {name!r}")
        return name

    @field_validator("version")
    @classmethod
    def _valid_version(cls, version: str) -> str:
        # The version names cache files and lock files, so no path separators.
        if not _VERSION_LABEL_RE.match(version):
            raise ValueError(f"invalid version {version!r}")
        return version

    @field_validator("homepage")
    @classmethod
    def _valid_homepage(cls, value: str) -> str:
        return _check_url(value, "homepage")

    @field_validator("url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        return _check_url(value, "url")

    @field_validator("sha256")
    @classmethod
    def _valid_digest(cls, value: str) -> str:
        normalised = value.strip().lower()
        if not _SHA256_RE.match(normalised):
            raise ValueError("sha256 must be exactly 64 hexadecimal characters")
        return normalised

    @property
    def outputs(self) -> list[str]:
        """Declared output paths, relative to the source root."""
        return list(self.bin.files)

    @property
    def installed_names(self) -> list[str]:
        """Basenames the outputs take under ``<prefix>/bin``."""
        return [PurePosixPath(f).name for f in self.bin.files]

    @property
    def lock_key(self) -> str:
        return f"{self.name}-{self.version}"


def _describe(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "formula"
        problems.append(f"{loc}: {err['msg']}")
    return "; ".join(problems)


def parse_formula(data: Mapping[str, Any]) -> Formula:
    """Validate a decoded declaration into a ``Formula``.

    Raises ``MalformedFormula`` listing every problem found.
    """
    if not isinstance(data, Mapping):
        raise MalformedFormula("formula declaration must be a table")
    try:
        return Formula.model_validate(dict(data))
    except ValidationError as exc:
        name = data.get("name") if isinstance(data.get("name"), str) else "<unnamed>"
        raise MalformedFormula(f"{name}: {_describe(exc)}") from exc
