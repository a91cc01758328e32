"""Shared fixtures: a reference blob, configs and a scripted range transport."""

import hashlib
from collections.abc import Callable
from typing import Union

import aiohttp
import pytest
from aioresponses import CallbackResult

from rangefetch.api.transport import ContentRange, RangeResponse
from rangefetch.models.config import FetchConfig
from rangefetch.models.digest import ExpectedDigest
from rangefetch.models.span import ByteSpan

BLOB_URL = "http://blob.test/data.bin"

Step = Union[RangeResponse, Exception, Callable[[ByteSpan], RangeResponse]]


def make_blob(size: int) -> bytes:
    """Deterministic, non-repeating-looking fixture bytes."""
    return bytes((i * 31 + i // 7) % 256 for i in range(size))


def sha256_of(data: bytes) -> ExpectedDigest:
    return ExpectedDigest("sha256", hashlib.sha256(data).digest())


def prefix(blob: bytes, length: int, status: int = 206) -> Callable[[ByteSpan], RangeResponse]:
    """A response carrying the first ``length`` bytes of the requested span."""

    def respond(span: ByteSpan) -> RangeResponse:
        end = min(span.end, span.start + length)
        return RangeResponse(status=status, body=blob[span.start : end])

    return respond


def empty(status: int = 206) -> RangeResponse:
    return RangeResponse(status=status, body=b"")


def at_offset(data: bytes, start: int, total: int | None = None) -> RangeResponse:
    """A response that reports its own position through Content-Range."""
    return RangeResponse(
        status=206,
        body=data,
        content_range=ContentRange(start, start + len(data), total),
    )


class ScriptedTransport:
    """Replays a fixed list of steps, one per request, and records every span asked for."""

    def __init__(self, steps: list[Step]):
        self.steps = list(steps)
        self.requests: list[ByteSpan] = []

    async def fetch_range(self, span: ByteSpan) -> RangeResponse:
        self.requests.append(span)
        if not self.steps:
            raise AssertionError(f"Unexpected extra request for {span}")
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(span)
        return step


@pytest.fixture
def blob() -> bytes:
    return make_blob(1000)


@pytest.fixture
def config() -> FetchConfig:
    return FetchConfig(
        base_url="http://blob.test",
        resource_path="/data.bin",
        max_attempts=3,
        base_delay=0.0,
        max_delay=0.0,
    )


def serve_blob(blob: bytes, limit: int, announce: bool = True):
    """
    An aioresponses callback for a server that truncates every range body to
    at most ``limit`` bytes. Unranged requests get the size and digest headers.
    """

    def callback(url, **kwargs) -> CallbackResult:
        range_header = (kwargs.get("headers") or {}).get("Range")
        if range_header is None:
            headers = {"Content-Length": str(len(blob))}
            if announce:
                headers["X-Content-SHA256"] = hashlib.sha256(blob).hexdigest()
            return CallbackResult(status=200, headers=headers)
        first, last = (int(x) for x in range_header.removeprefix("bytes=").split("-"))
        end = min(last + 1, first + limit, len(blob))
        return CallbackResult(
            status=206,
            body=blob[first:end],
            headers={"Content-Range": f"bytes {first}-{end - 1}/{len(blob)}"},
        )

    return callback


class DroppedBody:
    """A response whose body stops with a payload error after its chunks."""

    def __init__(self, status: int, chunks: list[bytes], headers: dict[str, str]):
        self.status = status
        self.headers = headers
        self.content = self
        self._chunks = chunks

    async def iter_chunked(self, size: int):
        for chunk in self._chunks:
            yield chunk
        raise aiohttp.ClientPayloadError("Response payload is not completed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class DroppingSession:
    """
    Stands in for ``aiohttp.ClientSession``: each range request gets at most
    ``cut`` bytes, in two chunks, before the connection drops.
    """

    closed = False

    def __init__(self, blob: bytes, cut: int):
        self.blob = blob
        self.cut = cut
        self.ranges: list[str] = []

    def get(self, url, headers=None, allow_redirects=True) -> DroppedBody:
        range_header = headers["Range"]
        self.ranges.append(range_header)
        first, last = (int(x) for x in range_header.removeprefix("bytes=").split("-"))
        data = self.blob[first : min(last + 1, first + self.cut)]
        half = len(data) // 2
        return DroppedBody(
            206,
            [data[:half], data[half:]],
            {"Content-Range": f"bytes {first}-{last}/{len(self.blob)}"},
        )

    async def close(self) -> None:
        self.closed = True
