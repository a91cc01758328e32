"""
Learns the blob's total length and expected digest from the data source.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass

from rangefetch.exceptions import HandshakeError, TransportError
from rangefetch.models.config import FetchConfig
from rangefetch.models.digest import HTTP_DIGEST_ALGORITHMS, ExpectedDigest

from .transport import AiohttpTransport, parse_content_range

log = logging.getLogger(__name__)

_STRUCTURED_DIGEST_RE = re.compile(r"^\s*([A-Za-z0-9-]+)\s*=\s*:([^:]*):\s*$")
_LEGACY_DIGEST_RE = re.compile(r"^\s*([A-Za-z0-9-]+)\s*=\s*(\S+)\s*$")


@dataclass(slots=True, frozen=True)
class Announcement:
    """What the server states about the blob at session start."""

    total_length: int
    digest: ExpectedDigest


def parse_total_length(headers: Mapping[str, str], status: int = 200) -> int:
    """
    Reads the blob size from the handshake response headers.

    A 206 answer's ``Content-Length`` only measures its partial body, so the
    ``Content-Range`` total wins there. Otherwise ``Content-Length`` is used,
    with the ``Content-Range`` total as a fallback.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    content_range = parse_content_range(lowered.get("content-range"))
    range_total = content_range.total if content_range else None
    if status == 206 and range_total is not None:
        return range_total
    if (value := lowered.get("content-length")) is not None:
        try:
            length = int(value.strip())
        except ValueError as e:
            raise HandshakeError(f"Invalid Content-Length header: {value!r}") from e
        if length < 0:
            raise HandshakeError(f"Negative Content-Length header: {value!r}")
        return length
    if range_total is not None:
        return range_total
    raise HandshakeError("Server did not announce the blob size (no Content-Length).")


def _parse_digest_list(
    value: str, pattern: re.Pattern[str], preferred: str
) -> ExpectedDigest | None:
    candidates: list[ExpectedDigest] = []
    for member in value.split(","):
        match = pattern.match(member)
        if not match:
            continue
        token, encoded = match.groups()
        algorithm = HTTP_DIGEST_ALGORITHMS.get(token.lower())
        if algorithm is None:
            continue
        try:
            candidates.append(ExpectedDigest.from_base64(encoded, algorithm))
        except ValueError as e:
            log.debug(f"Skipping malformed {token} digest: {e}")
    for candidate in candidates:
        if candidate.algorithm == preferred:
            return candidate
    return candidates[0] if candidates else None


def parse_announced_digest(
    headers: Mapping[str, str], preferred: str = "sha256"
) -> ExpectedDigest | None:
    """
    Extracts the announced digest from response headers.

    Looks at ``Repr-Digest`` (RFC 9530), then ``Digest`` (RFC 3230), then a
    hex ``X-Content-SHA256``. Returns None when none of them is usable.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    if value := lowered.get("repr-digest"):
        if digest := _parse_digest_list(value, _STRUCTURED_DIGEST_RE, preferred):
            return digest
    if value := lowered.get("digest"):
        if digest := _parse_digest_list(value, _LEGACY_DIGEST_RE, preferred):
            return digest
    if value := lowered.get("x-content-sha256"):
        try:
            return ExpectedDigest.from_hex(value, "sha256")
        except ValueError as e:
            log.debug(f"Ignoring malformed X-Content-SHA256 header: {e}")
    return None


async def perform_handshake(
    transport: AiohttpTransport,
    config: FetchConfig,
    expected_digest: ExpectedDigest | None = None,
) -> Announcement:
    """
    Queries the resource once for its size and digest.

    Args:
        transport: The transport bound to the resource.
        config: Session configuration (retry policy and preferred algorithm).
        expected_digest: A digest supplied out of band; wins over any header.

    Raises:
        HandshakeError: If the size or digest cannot be determined, or the
            server keeps failing.
    """
    last_error = "no attempt made"
    for attempt in range(1, config.max_attempts + 1):
        try:
            status, headers = await transport.fetch_headers()
        except TransportError as e:
            last_error = str(e)
        else:
            if status in (200, 206):
                total_length = parse_total_length(headers, status)
                digest = expected_digest or parse_announced_digest(
                    headers, config.digest_algorithm
                )
                if digest is None:
                    raise HandshakeError(
                        "Server did not announce a digest; pass one with --digest."
                    )
                log.debug(
                    f"Handshake: {total_length} bytes, expected {digest} "
                    f"(attempt {attempt})"
                )
                return Announcement(total_length=total_length, digest=digest)
            last_error = f"HTTP {status}"

        log.debug(
            f"Handshake attempt {attempt}/{config.max_attempts} failed: "
            f"{last_error}. Retrying..."
        )
        if attempt < config.max_attempts:
            await asyncio.sleep(config.backoff_delay(attempt))

    raise HandshakeError(
        f"Handshake with {config.url} failed after {config.max_attempts} "
        f"attempts: {last_error}"
    )
