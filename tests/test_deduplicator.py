"""
Tests for request coalescing and blackout windows.

Time is driven by an injected fake clock; no test sleeps for real.
"""

import asyncio

import pytest

from persona_relay.infrastructure.deduplicator import FingerprintContext, RequestDeduplicator
from persona_relay.infrastructure.errors import RequestBlackoutError

CTX = FingerprintContext(user_id="u1", conversation_id="c1", model="m1")


class TestFingerprint:
    """Tests for fingerprint computation."""

    def test_stable_for_same_inputs(self):
        dedup = RequestDeduplicator()
        assert dedup.fingerprint("p", "hello", CTX) == dedup.fingerprint("p", "hello", CTX)

    @pytest.mark.parametrize(
        "other",
        [
            FingerprintContext(user_id="u2", conversation_id="c1", model="m1"),
            FingerprintContext(user_id="u1", conversation_id="c2", model="m1"),
            FingerprintContext(user_id="u1", conversation_id="c1", model="m2"),
        ],
    )
    def test_context_changes_fingerprint(self, other):
        dedup = RequestDeduplicator()
        assert dedup.fingerprint("p", "hello", CTX) != dedup.fingerprint("p", "hello", other)

    def test_model_can_be_excluded(self):
        dedup = RequestDeduplicator(include_model=False)
        other_model = FingerprintContext(user_id="u1", conversation_id="c1", model="m2")
        assert dedup.fingerprint("p", "hello", CTX) == dedup.fingerprint("p", "hello", other_model)

    def test_personality_and_content_change_fingerprint(self):
        dedup = RequestDeduplicator()
        base = dedup.fingerprint("p", "hello", CTX)
        assert base != dedup.fingerprint("q", "hello", CTX)
        assert base != dedup.fingerprint("p", "hello!", CTX)


@pytest.mark.asyncio
class TestPendingCoalescing:
    """Tests for in-flight handle sharing."""

    async def test_returns_pending_handle(self, clock):
        dedup = RequestDeduplicator(timer=clock)
        future = asyncio.get_running_loop().create_future()
        assert dedup.check_duplicate("p", "hello", CTX) is None

        dedup.register_pending("p", "hello", CTX, future)
        assert dedup.check_duplicate("p", "hello", CTX) is future
        future.set_result("done")

    async def test_entry_released_when_handle_completes(self, clock):
        dedup = RequestDeduplicator(timer=clock)
        future = asyncio.get_running_loop().create_future()
        dedup.register_pending("p", "hello", CTX, future)

        future.set_result("done")
        await asyncio.sleep(0)  # let done callbacks run

        assert dedup.check_duplicate("p", "hello", CTX) is None
        assert dedup.get_stats()["pending_requests"] == 0

    async def test_running_handle_outlives_pending_ttl(self, clock):
        dedup = RequestDeduplicator(pending_ttl=30.0, timer=clock)
        future = asyncio.get_running_loop().create_future()
        dedup.register_pending("p", "hello", CTX, future)

        clock.advance(31)
        dedup.sweep()

        assert dedup.check_duplicate("p", "hello", CTX) is future
        assert dedup.get_stats()["pending_requests"] == 1
        future.cancel()

    async def test_sweep_drops_completed_handles(self, clock):
        dedup = RequestDeduplicator(timer=clock)
        future = asyncio.get_running_loop().create_future()
        dedup.register_pending("p", "hello", CTX, future)
        future.set_result("done")

        # Sweep before the done callback had a chance to run.
        dedup.sweep()

        assert dedup.get_stats()["pending_requests"] == 0
        assert dedup.check_duplicate("p", "hello", CTX) is None

    async def test_different_fingerprints_do_not_share(self, clock):
        dedup = RequestDeduplicator(timer=clock)
        future = asyncio.get_running_loop().create_future()
        dedup.register_pending("p", "hello", CTX, future)
        assert dedup.check_duplicate("p", "goodbye", CTX) is None
        future.cancel()


class TestBlackout:
    """Tests for blackout windows."""

    def test_blackout_fails_fast_with_retry_after(self, clock):
        dedup = RequestDeduplicator(blackout_duration=60.0, timer=clock)
        dedup.mark_failed("p", "hello", CTX)
        clock.advance(15)

        with pytest.raises(RequestBlackoutError) as exc_info:
            dedup.check_duplicate("p", "hello", CTX)
        assert exc_info.value.code == "IN_BLACKOUT"
        assert exc_info.value.retry_after == pytest.approx(45.0)

    def test_blackout_expires(self, clock):
        dedup = RequestDeduplicator(blackout_duration=60.0, timer=clock)
        dedup.mark_failed("p", "hello", CTX)
        assert dedup.is_in_blackout("p", "hello", CTX)

        clock.advance(61)
        assert not dedup.is_in_blackout("p", "hello", CTX)
        assert dedup.check_duplicate("p", "hello", CTX) is None

    def test_blackout_remaining_counts_down(self, clock):
        dedup = RequestDeduplicator(blackout_duration=60.0, timer=clock)
        assert dedup.blackout_remaining("p", "hello", CTX) == 0.0

        dedup.mark_failed("p", "hello", CTX)
        clock.advance(20)
        assert dedup.blackout_remaining("p", "hello", CTX) == pytest.approx(40.0)

        clock.advance(40)
        assert dedup.blackout_remaining("p", "hello", CTX) == 0.0
        assert not dedup.is_in_blackout("p", "hello", CTX)
        assert dedup.check_duplicate("p", "hello", CTX) is None

    def test_blackout_is_per_fingerprint(self, clock):
        dedup = RequestDeduplicator(timer=clock)
        dedup.mark_failed("p", "hello", CTX)
        assert dedup.check_duplicate("p", "other", CTX) is None


class TestMaintenance:
    """Tests for sweep, clear and stats."""

    def test_stats_count_live_entries(self, clock):
        dedup = RequestDeduplicator(pending_ttl=10.0, blackout_duration=20.0, timer=clock)
        dedup.mark_failed("p", "a", CTX)
        dedup.mark_failed("p", "b", CTX)
        assert dedup.get_stats() == {
            "pending_requests": 0,
            "blackout_periods": 2,
            "pending_ttl": 10.0,
            "blackout_duration": 20.0,
        }

        clock.advance(21)
        assert dedup.get_stats()["blackout_periods"] == 0

    def test_clear_drops_everything(self, clock):
        dedup = RequestDeduplicator(timer=clock)
        dedup.mark_failed("p", "a", CTX)
        dedup.clear()
        assert not dedup.is_in_blackout("p", "a", CTX)

    def test_max_entries_bounds_memory(self, clock):
        dedup = RequestDeduplicator(timer=clock, max_entries=2)
        for text in ("a", "b", "c"):
            dedup.mark_failed("p", text, CTX)
        assert dedup.get_stats()["blackout_periods"] == 2
