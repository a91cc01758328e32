"""
Byte-span value types shared by the tracker, the assembler and the transport.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ByteSpan:
    """A half-open interval ``[start, end)`` of offsets into the blob."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"Span start must be >= 0, got {self.start}")
        if self.end <= self.start:
            raise ValueError(
                f"Span end must be greater than start, got [{self.start}, {self.end})"
            )

    def __str__(self) -> str:
        return f"[{self.start}, {self.end})"

    @property
    def length(self) -> int:
        return self.end - self.start

    def range_header(self) -> str:
        """Formats the span as an inclusive HTTP byte range (``bytes=0-99``)."""
        return f"bytes={self.start}-{self.end - 1}"

    def clip(self, max_length: int) -> ByteSpan:
        """Returns the leading part of the span, at most ``max_length`` bytes long."""
        if max_length <= 0 or self.length <= max_length:
            return self
        return ByteSpan(self.start, self.start + max_length)

    def touches(self, other: ByteSpan) -> bool:
        """True if the spans overlap or are directly adjacent."""
        return self.start <= other.end and other.start <= self.end


@dataclass(slots=True)
class FetchAttempt:
    """What one round trip for ``requested`` produced."""

    requested: ByteSpan
    status: int | None = None
    body: bytes = b""
    offset: int | None = None  # Actual start of ``body`` in the blob
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.status in (200, 206) and len(self.body) > 0

    @property
    def delivered(self) -> ByteSpan | None:
        """The span of the blob the body claims to cover, if it carries any bytes."""
        if not self.succeeded:
            return None
        start = self.requested.start if self.offset is None else self.offset
        return ByteSpan(start, start + len(self.body))

    def describe_failure(self) -> str:
        if self.error:
            return self.error
        if self.status not in (200, 206):
            return f"HTTP {self.status}"
        return "empty response body"
