"""ArchiveFetcher — stream a source archive over HTTPS into the run workspace.

The response body is written chunk by chunk to exactly one temporary file and
hashed on the way through; archives are never held in memory.  Redirects are
followed by hand so that every hop can be checked for ``https`` before any
request is sent to it.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import urljoin, urlsplit

import requests
import urllib3

from formulary.core.errors import InsecureSource, NetworkError, StageTimeoutError
from formulary.models.artifacts import FetchedArtifact
from formulary.models.formula import archive_suffix

logger = logging.getLogger(__name__)

_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def _require_https(url: str) -> None:
    scheme = urlsplit(url).scheme.lower()
    if scheme != "https":
        raise InsecureSource(
            f"refusing to fetch {url!r}: scheme {scheme or '<none>'!r} is not https"
        )


class ArchiveFetcher:
    """Downloads source archives.

    Parameters
    ----------
    session:
        A ``requests.Session`` (or anything with a compatible ``get``).
        A fresh session is created when omitted.
    connect_timeout:
        Seconds allowed to establish the connection.
    quiet_timeout:
        Seconds allowed between bytes; a stall longer than this fails the
        fetch with ``StageTimeoutError``.
    chunk_size:
        Bytes read per iteration of the response body.
    max_redirects:
        Redirect hops followed before giving up.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        connect_timeout: float = 10.0,
        quiet_timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
        max_redirects: int = 10,
        user_agent: str = "formulary/0.1",
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = (connect_timeout, quiet_timeout)
        self._chunk_size = chunk_size
        self._max_redirects = max_redirects
        self._headers = {"User-Agent": user_agent}

    def fetch(self, url: str, dest_dir: Path) -> FetchedArtifact:
        """Download ``url`` into a new temporary file under ``dest_dir``.

        Raises ``InsecureSource`` before any network activity when the URL is
        not https.  On any failure the temporary file is removed.
        """
        _require_https(url)
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix="download-", suffix=archive_suffix(url), dir=dest_dir
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                size, digest = self._stream(url, out)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.info("Fetched %s (%d bytes)", url, size)
        return FetchedArtifact(url=url, path=tmp_path, size_bytes=size, sha256=digest)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stream(self, url: str, out) -> tuple[int, str]:
        h = hashlib.sha256()
        size = 0
        current = url
        for _hop in range(self._max_redirects + 1):
            _require_https(current)
            logger.debug("GET %s", current)
            try:
                with self._session.get(
                    current,
                    stream=True,
                    timeout=self._timeout,
                    allow_redirects=False,
                    headers=self._headers,
                ) as response:
                    if response.status_code in _REDIRECT_STATUSES:
                        location = response.headers.get("Location")
                        if not location:
                            raise NetworkError(
                                f"redirect from {current} has no Location header",
                                status_code=response.status_code,
                            )
                        current = urljoin(current, location)
                        continue
                    if not 200 <= response.status_code < 300:
                        raise NetworkError(
                            f"GET {current} returned HTTP {response.status_code}",
                            status_code=response.status_code,
                        )
                    for chunk in response.iter_content(chunk_size=self._chunk_size):
                        if chunk:
                            out.write(chunk)
                            h.update(chunk)
                            size += len(chunk)
                    return size, h.hexdigest()
            except requests.exceptions.Timeout as exc:
                raise StageTimeoutError(
                    f"no data from {current} within {self._timeout[1]:g}s"
                ) from exc
            except requests.exceptions.ConnectionError as exc:
                # A read stall while iterating the body surfaces as a
                # ConnectionError wrapping urllib3's ReadTimeoutError.
                if exc.args and isinstance(exc.args[0], urllib3.exceptions.ReadTimeoutError):
                    raise StageTimeoutError(
                        f"no data from {current} within {self._timeout[1]:g}s"
                    ) from exc
                raise NetworkError(f"cannot reach {current}: {exc}") from exc
            except requests.exceptions.RequestException as exc:
                raise NetworkError(f"fetching {current} failed: {exc}") from exc

        raise NetworkError(f"too many redirects fetching {url}")
