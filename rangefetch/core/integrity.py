"""
Verifies an assembled blob against the digest the server announced.
"""

import hashlib
import hmac
import logging

from rangefetch.exceptions import DigestMismatch
from rangefetch.models.digest import ExpectedDigest

log = logging.getLogger(__name__)

HASH_BLOCK_SIZE = 1048576  # 1 MB


def compute_digest(data: bytes | memoryview, algorithm: str = "sha256") -> bytes:
    """Hashes ``data`` in blocks so large blobs are never copied."""
    hasher = hashlib.new(algorithm)
    view = memoryview(data)
    for offset in range(0, len(view), HASH_BLOCK_SIZE):
        hasher.update(view[offset : offset + HASH_BLOCK_SIZE])
    return hasher.digest()


def verify(blob: bytes | memoryview, expected: ExpectedDigest) -> bytes:
    """
    Checks that ``blob`` hashes to ``expected``.

    Args:
        blob: The fully assembled blob.
        expected: The digest announced by the server.

    Returns:
        The computed digest.

    Raises:
        DigestMismatch: If the digests differ; carries both in hex.
    """
    actual = compute_digest(blob, expected.algorithm)
    if not hmac.compare_digest(actual, expected.value):
        log.debug(
            f"Digest mismatch over {len(blob)} bytes: expected "
            f"{expected.hexdigest}, computed {actual.hex()}"
        )
        raise DigestMismatch(expected.algorithm, expected.hexdigest, actual.hex())
    return actual
