"""
Tracks which byte spans of the blob have been received.
"""

from __future__ import annotations

import bisect

from rangefetch.exceptions import BoundsViolation
from rangefetch.models.span import ByteSpan


class CoverageTracker:
    """
    Maintains the coverage set for a blob of ``total_length`` bytes.

    Spans are kept sorted, non-overlapping and non-adjacent at all times, so the
    first gap is always found by walking the list from the start.
    """

    def __init__(self, total_length: int):
        if total_length < 0:
            raise ValueError(f"Total length cannot be negative, got {total_length}")
        self.total_length = total_length
        self._spans: list[ByteSpan] = []
        self._covered = 0

    @property
    def spans(self) -> tuple[ByteSpan, ...]:
        return tuple(self._spans)

    @property
    def covered_length(self) -> int:
        return self._covered

    def record(self, span: ByteSpan) -> int:
        """
        Marks ``span`` as covered, merging it with every span it touches.

        Returns:
            The number of bytes that were not covered before this call.

        Raises:
            BoundsViolation: If the span reaches past the end of the blob.
        """
        if span.end > self.total_length:
            raise BoundsViolation(span.start, span.end, self.total_length)

        # The span before the insertion point may end exactly at span.start.
        lo = bisect.bisect_left(self._spans, span.start, key=lambda s: s.start)
        if lo > 0 and self._spans[lo - 1].end >= span.start:
            lo -= 1
        hi = lo
        while hi < len(self._spans) and self._spans[hi].touches(span):
            hi += 1

        merged = self._spans[lo:hi]
        if merged:
            span = ByteSpan(
                min(span.start, merged[0].start), max(span.end, merged[-1].end)
            )
        self._spans[lo:hi] = [span]

        added = span.length - sum(s.length for s in merged)
        self._covered += added
        return added

    def next_missing(self) -> ByteSpan | None:
        """Returns the lowest-offset gap, or None when the blob is fully covered."""
        cursor = 0
        for span in self._spans:
            if span.start > cursor:
                return ByteSpan(cursor, span.start)
            cursor = span.end
        if cursor < self.total_length:
            return ByteSpan(cursor, self.total_length)
        return None

    def gaps(self) -> list[ByteSpan]:
        """Every uncovered span, in ascending order."""
        out: list[ByteSpan] = []
        cursor = 0
        for span in self._spans:
            if span.start > cursor:
                out.append(ByteSpan(cursor, span.start))
            cursor = span.end
        if cursor < self.total_length:
            out.append(ByteSpan(cursor, self.total_length))
        return out

    def is_complete(self) -> bool:
        return self._covered == self.total_length
