"""
The digest a server announces for the blob it serves.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass

# HTTP digest-field algorithm tokens mapped to hashlib names
HTTP_DIGEST_ALGORITHMS = {
    "sha-256": "sha256",
    "sha-512": "sha512",
    "sha-384": "sha384",
    "sha": "sha1",
    "md5": "md5",
}


@dataclass(slots=True, frozen=True)
class ExpectedDigest:
    """An immutable digest value tied to the hashlib algorithm that produced it."""

    algorithm: str
    value: bytes

    def __post_init__(self) -> None:
        try:
            size = hashlib.new(self.algorithm).digest_size
        except ValueError as e:
            raise ValueError(f"Unsupported digest algorithm: {self.algorithm}") from e
        if len(self.value) != size:
            raise ValueError(
                f"A {self.algorithm} digest is {size} bytes, got {len(self.value)}."
            )

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hexdigest}"

    @property
    def hexdigest(self) -> str:
        return self.value.hex()

    @classmethod
    def from_hex(cls, text: str, algorithm: str = "sha256") -> ExpectedDigest:
        """Parses a hex digest, tolerating an ``algorithm:`` prefix and whitespace."""
        text = text.strip()
        if ":" in text:
            prefix, text = text.split(":", 1)
            prefix = prefix.strip().lower()
            algorithm = HTTP_DIGEST_ALGORITHMS.get(prefix, prefix)
        try:
            value = bytes.fromhex(text.strip())
        except ValueError as e:
            raise ValueError(f"Digest is not valid hex: {text!r}") from e
        return cls(algorithm, value)

    @classmethod
    def from_base64(cls, text: str, algorithm: str) -> ExpectedDigest:
        try:
            value = base64.b64decode(text.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Digest is not valid base64: {text!r}") from e
        return cls(algorithm, value)
