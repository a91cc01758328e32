"""
Dataclass for tracking download session statistics.
"""

import time
from collections import deque
from dataclasses import dataclass, field

SPEED_WINDOW = 10  # samples
SPEED_SAMPLE_INTERVAL = 0.5  # seconds


@dataclass
class SessionStats:
    """Counters for one session plus a sliding-window transfer speed."""

    attempts: int = 0
    failed_attempts: int = 0
    empty_responses: int = 0
    truncated_responses: int = 0  # Bodies cut short by a dropped connection
    bytes_received: int = 0
    bytes_redundant: int = 0
    spans_recorded: int = 0

    current_speed_bps: float = 0.0
    peak_speed_bps: float = 0.0
    _samples: deque = field(
        default_factory=lambda: deque(maxlen=SPEED_WINDOW), repr=False
    )
    _mark: tuple[float, int] = field(default=(0.0, 0), repr=False)

    def __post_init__(self):
        self._mark = (time.monotonic(), 0)

    def record_delivery(self, received: int, new_bytes: int) -> None:
        """Accounts for a response body; ``new_bytes`` is what it added to coverage."""
        self.bytes_received += received
        self.bytes_redundant += received - new_bytes
        if new_bytes > 0:
            self.spans_recorded += 1
        self.update_speed_stats(self.bytes_received)

    def update_speed_stats(self, total_bytes_so_far: int) -> None:
        """
        Takes a speed sample if at least ``SPEED_SAMPLE_INTERVAL`` has passed.

        Args:
            total_bytes_so_far: Cumulative bytes received in the session.
        """
        now = time.monotonic()
        mark_time, mark_bytes = self._mark
        elapsed = now - mark_time
        if elapsed <= SPEED_SAMPLE_INTERVAL:
            return

        if total_bytes_so_far > mark_bytes:
            self._samples.append((total_bytes_so_far - mark_bytes) / elapsed)
            self.current_speed_bps = sum(self._samples) / len(self._samples)
            self.peak_speed_bps = max(self.peak_speed_bps, self.current_speed_bps)
        self._mark = (now, total_bytes_so_far)
