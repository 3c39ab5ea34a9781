"""Archive builders, a fake HTTP session and formula data shared by the tests."""

from __future__ import annotations

import hashlib
import io
import sys
import tarfile
import zipfile
from pathlib import Path
from typing import Any

HELLO_URL = "https://example.org/dist/hello-1.0.tar.gz"

# Writes a tiny shell "binary" so no compiler is needed.
BUILD_SCRIPT = b"""\
import os
with open("hello", "w") as fh:
    fh.write('#!/bin/sh\\necho "Usage: hello [--help]"\\n')
os.chmod("hello", 0o755)
"""


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


def make_tarball(path: Path, files: dict[str, bytes], *, mode: str = "w:gz") -> Path:
    """Write ``files`` (member name -> content) into a tar archive at ``path``."""
    with tarfile.open(path, mode) as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return path


def add_tar_link(path: Path, name: str, target: str, *, hard: bool = False) -> Path:
    """Append a symlink (or hard link) member to an uncompressed tar."""
    with tarfile.open(path, "a") as tf:
        info = tarfile.TarInfo(name)
        info.type = tarfile.LNKTYPE if hard else tarfile.SYMTYPE
        info.linkname = target
        tf.addfile(info)
    return path


def make_zip(path: Path, files: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return path


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ---------------------------------------------------------------------------
# Fake HTTP
# ---------------------------------------------------------------------------


class FakeResponse:
    """Minimal stand-in for a streamed ``requests.Response``.

    With ``error`` set, the body raises it once ``fail_after`` bytes have
    been sent (immediately when ``fail_after`` is None).
    """

    def __init__(
        self,
        body: bytes = b"",
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        fail_after: int | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.body = body
        self.status_code = status_code
        self.headers = headers or {}
        self.fail_after = fail_after
        self.error = error
        self.closed = False

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: Any) -> bool:
        self.closed = True
        return False

    def iter_content(self, chunk_size: int = 1):
        sent = 0
        for start in range(0, len(self.body), chunk_size):
            if self.error is not None and sent >= (self.fail_after or 0):
                raise self.error
            chunk = self.body[start:start + chunk_size]
            sent += len(chunk)
            yield chunk
        if self.error is not None:
            raise self.error


class FakeSession:
    """Routes ``get`` calls to canned responses.

    A route may be a ``FakeResponse``, an exception to raise, or a list of
    either, consumed one per call.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((url, kwargs))
        route = self.routes[url]
        if isinstance(route, list):
            route = route.pop(0)
        if isinstance(route, BaseException):
            raise route
        return route

    @property
    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------


def formula_data(sha256: str, **overrides: Any) -> dict[str, Any]:
    """A valid declaration for the ``hello`` test package."""
    data: dict[str, Any] = {
        "name": "hello",
        "desc": "Prints a usage line",
        "homepage": "https://example.org/hello",
        "url": HELLO_URL,
        "sha256": sha256,
        "license": "MIT",
        "install": [{"argv": [sys.executable, "build.py"]}],
        "bin": {"files": ["hello"]},
        "test": [{"argv": ["{bin}/hello", "--help"], "expect": "Usage:"}],
    }
    data.update(overrides)
    return data
