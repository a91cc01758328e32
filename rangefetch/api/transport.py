"""
Issues single HTTP GET requests for byte ranges of the blob.

The server behind this transport is allowed to truncate bodies; whatever bytes
arrive before the body ends (or the connection drops) are handed back as-is.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

import aiohttp

from rangefetch.exceptions import TransportError
from rangefetch.models.config import FetchConfig
from rangefetch.models.span import ByteSpan

log = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 206)

_CONTENT_RANGE_RE = re.compile(r"^bytes\s+(\d+)-(\d+)/(\d+|\*)$", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class ContentRange:
    """A parsed ``Content-Range`` header; ``end`` is exclusive."""

    start: int
    end: int
    total: int | None = None


@dataclass(slots=True, frozen=True)
class RangeResponse:
    """Status and raw body of one range request."""

    status: int
    body: bytes
    content_range: ContentRange | None = None
    truncated: bool = False


class RangeTransport(Protocol):
    """Port for the single-request primitive the reconciler drives."""

    async def fetch_range(self, span: ByteSpan) -> RangeResponse:
        """GET ``span`` of the blob; the body may be shorter than requested."""


def parse_content_range(value: str | None) -> ContentRange | None:
    """Parses ``bytes <first>-<last>/<total>``; anything else yields None."""
    if not value:
        return None
    match = _CONTENT_RANGE_RE.match(value.strip())
    if not match:
        log.debug(f"Ignoring unparseable Content-Range header: {value!r}")
        return None
    first, last, total = match.groups()
    if int(last) < int(first):
        log.debug(f"Ignoring inverted Content-Range header: {value!r}")
        return None
    return ContentRange(
        start=int(first),
        end=int(last) + 1,
        total=None if total == "*" else int(total),
    )


class AiohttpTransport:
    """
    An aiohttp-backed range transport bound to one resource URL.

    One request is in flight at a time, so the session uses a single
    connection that is closed after every response.
    """

    READ_CHUNK_SIZE = 65536  # 64 KB

    def __init__(
        self, config: FetchConfig, session: aiohttp.ClientSession | None = None
    ):
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=1,
                force_close=True,
                enable_cleanup_closed=True,
            )
            timeout = aiohttp.ClientTimeout(
                total=None,
                sock_connect=min(15.0, self.config.request_timeout or 15.0),
                sock_read=self.config.request_timeout or None,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                # Byte offsets only make sense on the identity encoding
                headers={"Accept-Encoding": "identity"},
                auto_decompress=False,
            )
            self._owns_session = True
            log.debug(f"Created transport session for {self.config.url}")
        return self._session

    async def close(self) -> None:
        """Closes the session if this transport created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            log.debug("Transport session closed.")

    async def __aenter__(self) -> AiohttpTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch_headers(self) -> tuple[int, Mapping[str, str]]:
        """
        Sends an unranged GET and returns the status and headers without
        reading the body.
        """
        session = await self._get_session()
        try:
            async with session.get(self.config.url, allow_redirects=False) as response:
                return response.status, dict(response.headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

    async def fetch_range(self, span: ByteSpan) -> RangeResponse:
        """
        Requests ``span`` with a ``Range`` header.

        Bodies of non-success responses are not read. A body cut short by the
        connection is returned with ``truncated`` set rather than discarded.

        Raises:
            TransportError: If no response could be obtained at all.
        """
        session = await self._get_session()
        chunks: list[bytes] = []
        try:
            async with session.get(
                self.config.url,
                headers={"Range": span.range_header()},
                allow_redirects=False,
            ) as response:
                content_range = parse_content_range(
                    response.headers.get("Content-Range")
                )
                truncated = False
                if response.status in SUCCESS_STATUSES:
                    try:
                        async for chunk in response.content.iter_chunked(
                            self.READ_CHUNK_SIZE
                        ):
                            chunks.append(chunk)
                    except (aiohttp.ClientPayloadError, asyncio.TimeoutError) as e:
                        truncated = True
                        log.debug(
                            f"Body for {span} cut short after "
                            f"{sum(len(c) for c in chunks)} bytes: {e}"
                        )
                return RangeResponse(
                    status=response.status,
                    body=b"".join(chunks),
                    content_range=content_range,
                    truncated=truncated,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
