"""Tests for the reconciliation loop, driven through a scripted transport."""

import asyncio
import random

import pytest

from rangefetch.api.transport import AiohttpTransport, ContentRange, RangeResponse
from rangefetch.core.reconciler import ReconcileState, Reconciler
from rangefetch.exceptions import (
    BoundsViolation,
    Cancelled,
    DigestMismatch,
    StalledSpan,
    TransportError,
)
from rangefetch.models.span import ByteSpan

from .conftest import (
    DroppingSession,
    ScriptedTransport,
    at_offset,
    empty,
    make_blob,
    prefix,
    sha256_of,
)


def build(config, transport, blob, **kwargs) -> Reconciler:
    return Reconciler(config, transport, len(blob), sha256_of(blob), **kwargs)


class TestHappyPath:
    async def test_truncated_responses_are_stitched_together(self, config, blob):
        transport = ScriptedTransport(
            [prefix(blob, 300), empty(), prefix(blob, 400), prefix(blob, 300)]
        )
        reconciler = build(config, transport, blob)

        result = await reconciler.run()

        assert result == blob
        assert reconciler.state is ReconcileState.COMPLETE
        assert transport.requests == [
            ByteSpan(0, 1000),
            ByteSpan(300, 1000),
            ByteSpan(300, 1000),
            ByteSpan(700, 1000),
        ]
        assert reconciler.stats.empty_responses == 1
        assert reconciler.attempts == 4

    async def test_full_response_finishes_in_one_request(self, config, blob):
        transport = ScriptedTransport([prefix(blob, len(blob), status=200)])

        assert await build(config, transport, blob).run() == blob
        assert len(transport.requests) == 1

    async def test_requests_are_clipped_to_max_request_size(self, config):
        blob = make_blob(250)
        config.max_request_size = 100
        transport = ScriptedTransport([prefix(blob, 1000)] * 3)

        assert await build(config, transport, blob).run() == blob
        assert transport.requests == [
            ByteSpan(0, 100),
            ByteSpan(100, 200),
            ByteSpan(200, 250),
        ]

    async def test_empty_blob_needs_no_requests(self, config):
        transport = ScriptedTransport([])

        assert await build(config, transport, b"").run() == b""
        assert transport.requests == []

    async def test_content_range_offset_is_trusted(self, config, blob):
        # The server answers the first request with a later slice, then fills in.
        transport = ScriptedTransport(
            [
                at_offset(blob[500:1000], 500, 1000),
                prefix(blob, 500),
            ]
        )
        reconciler = build(config, transport, blob)

        assert await reconciler.run() == blob
        assert transport.requests == [ByteSpan(0, 1000), ByteSpan(0, 500)]

    async def test_duplicate_delivery_counts_as_a_failure(self, config, blob):
        transport = ScriptedTransport(
            [
                prefix(blob, 100),
                at_offset(blob[0:100], 0, 1000),
                prefix(blob, 900),
            ]
        )
        reconciler = build(config, transport, blob)

        assert await reconciler.run() == blob
        assert reconciler.stats.bytes_redundant == 100
        assert reconciler.stats.failed_attempts == 1

    async def test_bytes_from_dropped_connections_are_kept(self, config, blob):
        session = DroppingSession(blob, cut=350)
        reconciler = build(config, AiohttpTransport(config, session=session), blob)

        assert await reconciler.run() == blob
        assert session.ranges == ["bytes=0-999", "bytes=350-999", "bytes=700-999"]
        assert reconciler.stats.truncated_responses == 3
        assert reconciler.stats.bytes_redundant == 0

    async def test_transport_errors_are_retried(self, config, blob):
        transport = ScriptedTransport(
            [TransportError("connection reset"), empty(503), prefix(blob, 1000)]
        )

        assert await build(config, transport, blob).run() == blob
        assert len(transport.requests) == 3


class TestProperties:
    @pytest.mark.parametrize("seed", range(10))
    async def test_any_truncation_pattern_converges(self, config, seed):
        rng = random.Random(seed)
        blob = make_blob(rng.randint(1, 5000))
        reconciler = None
        covered = []
        previous_was_empty = False

        def respond(span: ByteSpan) -> RangeResponse:
            nonlocal previous_was_empty
            covered.append(reconciler.tracker.covered_length)
            length = 0 if not previous_was_empty and rng.random() < 0.3 else None
            if length is None:
                length = rng.choice([1, 7, 64, 333, 4096])
            previous_was_empty = length == 0
            return prefix(blob, length)(span)

        transport = ScriptedTransport([respond] * (len(blob) * 2 + 10))
        reconciler = build(config, transport, blob)

        assert await reconciler.run() == blob
        assert covered == sorted(covered)
        assert covered[0] == 0

    async def test_coverage_never_shrinks_across_failures(self, config, blob):
        reconciler = None
        snapshots = []

        def observe(step):
            def respond(span):
                snapshots.append(reconciler.tracker.covered_length)
                return step(span) if callable(step) else step

            return respond

        transport = ScriptedTransport(
            [
                observe(prefix(blob, 300)),
                observe(empty()),
                TransportError("connection reset"),
                observe(prefix(blob, 700)),
            ]
        )
        reconciler = build(config, transport, blob)

        await reconciler.run()

        assert snapshots == [0, 300, 300]
        assert reconciler.tracker.covered_length == 1000


class TestFailures:
    async def test_out_of_bounds_delivery_fails_without_writing(self, config):
        blob = make_blob(500)
        transport = ScriptedTransport([at_offset(b"\xff" * 50, 600, 500)])
        reconciler = build(config, transport, blob)

        with pytest.raises(BoundsViolation):
            await reconciler.run()

        assert reconciler.state is ReconcileState.FAILED
        assert isinstance(reconciler.error, BoundsViolation)
        assert reconciler.tracker.covered_length == 0
        assert reconciler.assembler.finalize() == b"\x00" * 500

    @pytest.mark.parametrize(
        "reported",
        [
            ContentRange(400, 600, 600),
            ContentRange(400, 600, 500),
            ContentRange(400, 600, None),
            ContentRange(400, 450, 600),
        ],
    )
    async def test_reported_range_outside_the_blob_fails(self, config, reported):
        blob = make_blob(500)
        transport = ScriptedTransport(
            [prefix(blob, 400), RangeResponse(206, blob[400:450], reported)]
        )
        reconciler = build(config, transport, blob)

        with pytest.raises(BoundsViolation) as excinfo:
            await reconciler.run()

        assert (excinfo.value.start, excinfo.value.end) == (reported.start, reported.end)
        assert reconciler.state is ReconcileState.FAILED
        assert reconciler.tracker.covered_length == 400
        assert reconciler.assembler.finalize()[400:] == b"\x00" * 100

    async def test_oversized_body_is_a_bounds_violation(self, config):
        blob = make_blob(500)
        transport = ScriptedTransport([RangeResponse(status=200, body=b"a" * 600)])

        with pytest.raises(BoundsViolation):
            await build(config, transport, blob).run()

    async def test_digest_mismatch(self, config, blob):
        corrupted = bytearray(blob)
        corrupted[123] ^= 0xFF
        transport = ScriptedTransport([prefix(bytes(corrupted), 1000)])
        reconciler = build(config, transport, blob)

        with pytest.raises(DigestMismatch) as excinfo:
            await reconciler.run()

        assert excinfo.value.expected == sha256_of(blob).hexdigest
        assert excinfo.value.actual == sha256_of(bytes(corrupted)).hexdigest
        assert reconciler.state is ReconcileState.FAILED

    async def test_span_stalls_after_exactly_max_attempts(self, config, blob):
        config.max_attempts = 4
        transport = ScriptedTransport([prefix(blob, 600)] + [empty()] * 10)
        reconciler = build(config, transport, blob)

        with pytest.raises(StalledSpan) as excinfo:
            await reconciler.run()

        assert len(transport.requests) == 1 + 4
        assert excinfo.value.span == ByteSpan(600, 1000)
        assert excinfo.value.attempts == 4
        assert reconciler.tracker.covered_length == 600

    async def test_progress_resets_the_failure_counter(self, config, blob):
        # Two failures, progress, two failures, progress: never three in a row.
        steps = [empty(), empty(), prefix(blob, 500), empty(), empty(), prefix(blob, 500)]
        transport = ScriptedTransport(steps)

        assert await build(config, transport, blob).run() == blob

    async def test_attempt_budget_cancels_the_session(self, config, blob):
        config.attempt_budget = 5
        transport = ScriptedTransport([prefix(blob, 10)] * 20)
        reconciler = build(config, transport, blob)

        with pytest.raises(Cancelled, match="attempt budget"):
            await reconciler.run()

        assert len(transport.requests) == 5
        assert reconciler.tracker.covered_length == 50

    async def test_run_only_once(self, config, blob):
        reconciler = build(config, ScriptedTransport([prefix(blob, 1000)]), blob)
        await reconciler.run()

        with pytest.raises(RuntimeError):
            await reconciler.run()


class TestCancellation:
    async def test_cancel_before_first_request(self, config, blob):
        event = asyncio.Event()
        event.set()
        transport = ScriptedTransport([prefix(blob, 1000)])
        reconciler = build(config, transport, blob, cancel_event=event)

        with pytest.raises(Cancelled):
            await reconciler.run()

        assert transport.requests == []
        assert reconciler.state is ReconcileState.FAILED

    async def test_cancel_while_request_is_in_flight(self, config, blob):
        event = asyncio.Event()

        class HangingTransport:
            async def fetch_range(self, span):
                await asyncio.sleep(30)
                return prefix(blob, 1000)(span)

        reconciler = build(config, HangingTransport(), blob, cancel_event=event)
        asyncio.get_running_loop().call_later(0.01, event.set)

        with pytest.raises(Cancelled):
            await asyncio.wait_for(reconciler.run(), timeout=5)

        assert reconciler.tracker.covered_length == 0

    async def test_response_arriving_after_cancel_is_discarded(self, config, blob):
        event = asyncio.Event()

        def respond(span):
            event.set()
            return prefix(blob, 1000)(span)

        transport = ScriptedTransport([respond])
        reconciler = build(config, transport, blob, cancel_event=event)

        with pytest.raises(Cancelled):
            await reconciler.run()

        assert reconciler.tracker.covered_length == 0
        assert reconciler.assembler.finalize() == b"\x00" * len(blob)

    async def test_cancel_during_backoff(self, config, blob):
        config.max_delay = 30.0
        config.base_delay = 30.0
        event = asyncio.Event()
        transport = ScriptedTransport([empty(), prefix(blob, 1000)])
        reconciler = build(config, transport, blob, cancel_event=event)
        asyncio.get_running_loop().call_later(0.01, event.set)

        with pytest.raises(Cancelled):
            await asyncio.wait_for(reconciler.run(), timeout=5)

        assert len(transport.requests) == 1

    async def test_deadline(self, config, blob):
        config.deadline = 0.05

        class SlowTransport:
            async def fetch_range(self, span):
                await asyncio.sleep(30)
                return prefix(blob, 1000)(span)

        reconciler = build(config, SlowTransport(), blob)

        with pytest.raises(Cancelled, match="deadline"):
            await asyncio.wait_for(reconciler.run(), timeout=5)
