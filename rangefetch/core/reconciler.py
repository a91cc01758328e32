"""
The range-reconciling download loop.

Drives the coverage tracker, the blob assembler and a range transport until the
blob is complete and verified, or a typed failure ends the session.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import Enum

from rangefetch.api.transport import (
    SUCCESS_STATUSES,
    ContentRange,
    RangeResponse,
    RangeTransport,
)
from rangefetch.cli.progress_manager import ProgressManager
from rangefetch.exceptions import (
    BoundsViolation,
    Cancelled,
    RangeFetchError,
    StalledSpan,
    TransportError,
)
from rangefetch.models.config import FetchConfig
from rangefetch.models.digest import ExpectedDigest
from rangefetch.models.span import ByteSpan, FetchAttempt
from rangefetch.models.stats import SessionStats
from rangefetch.utils.structured_logger import FetchLogger

from .assembler import BlobAssembler
from .coverage import CoverageTracker
from .integrity import verify

log = logging.getLogger(__name__)


class ReconcileState(Enum):
    """States of the reconciliation loop."""

    REQUESTING = "requesting"
    AWAITING_RESPONSE = "awaiting_response"
    RECONCILING = "reconciling"
    COMPLETE = "complete"
    FAILED = "failed"


class Reconciler:
    """
    Reassembles one blob from short range reads.

    Spans are requested lowest offset first, one request at a time. Coverage
    never shrinks, so every partial response is kept and only the remainder
    is asked for again.
    """

    def __init__(
        self,
        config: FetchConfig,
        transport: RangeTransport,
        total_length: int,
        expected_digest: ExpectedDigest,
        *,
        stats: SessionStats | None = None,
        progress_manager: ProgressManager | None = None,
        events: FetchLogger | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        """
        Initializes the reconciler.

        Args:
            config: Retry policy, request size and deadline.
            transport: The single-request primitive.
            total_length: Announced size of the blob.
            expected_digest: Announced digest of the blob.
            stats: Statistics object to update; a fresh one if omitted.
            progress_manager: Live display to report coverage to.
            events: Structured event logger.
            cancel_event: Setting this event stops the session with Cancelled.
        """
        self.config = config
        self.transport = transport
        self.expected_digest = expected_digest
        self.tracker = CoverageTracker(total_length)
        self.assembler = BlobAssembler(total_length)
        self.stats = stats if stats is not None else SessionStats()
        self.progress_manager = progress_manager
        self.events = events
        self._cancel_event = cancel_event

        self.state = ReconcileState.REQUESTING
        self.error: RangeFetchError | None = None
        self.attempts = 0
        self.digest: bytes | None = None
        self._deadline_at: float | None = None
        self._started = False

    @property
    def total_length(self) -> int:
        return self.tracker.total_length

    async def run(self) -> bytes:
        """
        Runs the loop to a terminal state.

        Returns:
            The complete, verified blob.

        Raises:
            BoundsViolation: The server delivered bytes outside the blob.
            StalledSpan: A span yielded nothing new ``max_attempts`` times in a row.
            Cancelled: Deadline, cancel event or attempt budget.
            DigestMismatch: The assembled blob failed verification.
        """
        if self._started:
            raise RuntimeError("A Reconciler can only be run once.")
        self._started = True

        if self.config.deadline is not None:
            self._deadline_at = asyncio.get_running_loop().time() + self.config.deadline

        span: ByteSpan | None = None
        attempt: FetchAttempt | None = None
        failures = 0

        try:
            while True:
                if self.state is ReconcileState.REQUESTING:
                    gap = self.tracker.next_missing()
                    if gap is None:
                        self.state = ReconcileState.COMPLETE
                        continue
                    span = gap.clip(self.config.max_request_size)
                    self.state = ReconcileState.AWAITING_RESPONSE

                elif self.state is ReconcileState.AWAITING_RESPONSE:
                    self._check_cancelled()
                    attempt = await self._attempt(span, failures + 1)
                    self.state = ReconcileState.RECONCILING

                elif self.state is ReconcileState.RECONCILING:
                    if self._reconcile(attempt) > 0:
                        failures = 0
                        self.state = ReconcileState.REQUESTING
                        continue

                    failures += 1
                    reason = self._failure_reason(attempt)
                    if self.events:
                        self.events.attempt_failed(span, failures, reason)
                    if failures >= self.config.max_attempts:
                        raise StalledSpan(span, failures, reason)
                    await self._backoff(failures)
                    self.state = ReconcileState.AWAITING_RESPONSE

                elif self.state is ReconcileState.COMPLETE:
                    self.digest = verify(self.assembler.view(), self.expected_digest)
                    log.debug(
                        f"Blob complete after {self.attempts} attempts; "
                        f"{self.expected_digest.algorithm} verified."
                    )
                    return self.assembler.finalize()

                else:
                    raise RuntimeError(f"Unexpected reconciler state: {self.state}")
        except RangeFetchError as e:
            self.state = ReconcileState.FAILED
            self.error = e
            raise

    def _remaining(self) -> float | None:
        if self._deadline_at is None:
            return None
        return self._deadline_at - asyncio.get_running_loop().time()

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise Cancelled("cancellation requested")
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            raise Cancelled(f"deadline of {self.config.deadline}s exceeded")

    async def _attempt(self, span: ByteSpan, attempt_no: int) -> FetchAttempt:
        if self.attempts >= self.config.attempt_budget:
            raise Cancelled(
                f"attempt budget of {self.config.attempt_budget} requests exhausted"
            )
        self.attempts += 1
        self.stats.attempts += 1
        if self.events:
            self.events.span_requested(span, attempt_no)

        try:
            response = await self._await_response(span)
        except TransportError as e:
            log.debug(f"Transport failure for {span}: {e}")
            return FetchAttempt(requested=span, error=str(e))

        content_range = response.content_range
        if content_range and response.status in SUCCESS_STATUSES:
            self._check_reported_range(content_range)
        if response.truncated:
            self.stats.truncated_responses += 1
            log.debug(
                f"Connection dropped after {len(response.body)} bytes of {span}"
            )
        return FetchAttempt(
            requested=span,
            status=response.status,
            body=response.body,
            offset=content_range.start if content_range else None,
        )

    def _check_reported_range(self, content_range: ContentRange) -> None:
        """Rejects a Content-Range past the end of the blob or for another size."""
        if content_range.total not in (None, self.total_length):
            log.warning(
                f"[yellow]Server reports a size of {content_range.total} bytes, "
                f"announced {self.total_length}[/yellow]"
            )
        elif content_range.end <= self.total_length:
            return
        raise BoundsViolation(content_range.start, content_range.end, self.total_length)

    async def _await_response(self, span: ByteSpan) -> RangeResponse:
        """
        Waits for the transport, racing it against the deadline and cancel event.

        A response that completes after cancellation has been observed is
        dropped, so nothing is written for it.
        """
        fetch = asyncio.ensure_future(self.transport.fetch_range(span))
        waiters: set[asyncio.Future] = {fetch}
        if self._cancel_event is not None:
            waiters.add(asyncio.ensure_future(self._cancel_event.wait()))

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self._remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if fetch not in done:
            await asyncio.gather(fetch, return_exceptions=True)
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise Cancelled("cancellation requested")
            raise Cancelled(f"deadline of {self.config.deadline}s exceeded")

        self._check_cancelled()
        return fetch.result()

    def _reconcile(self, attempt: FetchAttempt) -> int:
        """Applies a response; returns how many bytes it newly covered."""
        delivered = attempt.delivered
        if delivered is None:
            self.stats.failed_attempts += 1
            if attempt.error is None and attempt.status in (200, 206):
                self.stats.empty_responses += 1
            if self.progress_manager:
                self.progress_manager.record_attempt(success=False)
            return 0

        if delivered.start != attempt.requested.start:
            log.warning(
                f"[yellow]Server answered {attempt.requested} with bytes at "
                f"{delivered}[/yellow]"
            )

        # The assembler checks bounds before touching anything, so a violation
        # leaves both the buffer and the coverage set unchanged.
        self.assembler.write(delivered.start, attempt.body)
        new_bytes = self.tracker.record(delivered)

        self.stats.record_delivery(len(attempt.body), new_bytes)
        if new_bytes == 0:
            self.stats.failed_attempts += 1
        if self.events:
            self.events.span_received(
                attempt.requested, delivered, new_bytes, attempt.status
            )
        if self.progress_manager:
            self.progress_manager.record_attempt(success=new_bytes > 0)
            self.progress_manager.update_coverage(
                self.tracker.covered_length, len(self.tracker.gaps())
            )
            self.progress_manager.update_speed_stats(
                self.stats.current_speed_bps, self.stats.peak_speed_bps
            )
        return new_bytes

    @staticmethod
    def _failure_reason(attempt: FetchAttempt) -> str:
        if attempt.delivered is not None:
            return "no new bytes (duplicate delivery)"
        return attempt.describe_failure()

    async def _backoff(self, failures: int) -> None:
        delay = self.config.backoff_delay(failures)
        remaining = self._remaining()
        if remaining is not None:
            delay = min(delay, max(0.0, remaining))
        if delay <= 0:
            return
        log.debug(f"Backing off {delay:.2f}s after {failures} failed attempt(s)")
        if self._cancel_event is None:
            await asyncio.sleep(delay)
            return
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._cancel_event.wait(), delay)
