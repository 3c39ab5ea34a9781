"""Caller-level retry policy for transient fetch failures.

The pipeline itself never retries.  Callers (the CLI's ``--retries``) may
wrap a whole install in ``call_with_retries``, which only retries
``NetworkError`` and fetch-stage timeouts.  ``DigestMismatch`` and
``UnsafeArchiveEntry`` always propagate on first occurrence.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from formulary.core.errors import NEVER_RETRY_CODES, RETRYABLE_CODES, FormularyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: FormularyError) -> bool:
    if exc.code in NEVER_RETRY_CODES:
        return False
    return exc.code in RETRYABLE_CODES and exc.stage in (None, "fetch")


def call_with_retries(
    fn: Callable[[], T],
    *,
    retries: int,
    backoff: float = 1.0,
    max_backoff: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying up to ``retries`` times with exponential backoff."""
    attempt = 0
    while True:
        try:
            return fn()
        except FormularyError as exc:
            if attempt >= retries or not is_retryable(exc):
                raise
            delay = min(backoff * (2 ** attempt), max_backoff)
            attempt += 1
            logger.warning(
                "%s (attempt %d/%d); retrying in %.1fs", exc, attempt, retries + 1, delay
            )
            sleep(delay)
