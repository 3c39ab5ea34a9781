"""IntegrityVerifier: digest pinning between fetch and staging.

The digest is recomputed from the bytes on disk rather than trusted from the
fetcher.  A mismatching file is deleted before ``DigestMismatch`` propagates,
so nothing unverified can reach the stager.
"""

from __future__ import annotations

import logging

from formulary.core.errors import DigestMismatch
from formulary.core.hasher import digests_match, sha256_file
from formulary.models.artifacts import FetchedArtifact, VerifiedArtifact

logger = logging.getLogger(__name__)


class IntegrityVerifier:
    """Checks fetched archives against a pinned SHA-256."""

    def verify(self, artifact: FetchedArtifact, expected_digest: str) -> VerifiedArtifact:
        actual = sha256_file(artifact.path)
        if not digests_match(expected_digest, actual):
            artifact.path.unlink(missing_ok=True)
            logger.error(
                "Digest mismatch for %s: expected %s, got %s (download deleted)",
                artifact.url,
                expected_digest,
                actual,
            )
            raise DigestMismatch(expected_digest.strip().lower(), actual)

        logger.info("Verified %s sha256=%s", artifact.url, actual)
        return VerifiedArtifact(
            url=artifact.url,
            path=artifact.path,
            size_bytes=artifact.size_bytes,
            sha256=actual,
        )
