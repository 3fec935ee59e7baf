"""Tests for the request coordinator – pending gate, throttle, error backoff, debounce."""

import asyncio

import pytest

from mnno_school.coordination import RequestCoordinator


class TestShouldMakeRequest:
    """Gate ordering: force, skip flag, pending requests, throttle."""

    def test_pending_then_throttle_then_allowed(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=10, clock=clock)

        coord.start_request("x")
        assert coord.should_make_request(has_cached_data=True, key="x") is False

        coord.complete_request("x")
        clock.advance(9.9)
        assert coord.should_make_request(has_cached_data=True, key="x") is False

        clock.advance(0.2)
        assert coord.should_make_request(has_cached_data=True, key="x") is True

    def test_throttle_window_starts_at_completion(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=10, clock=clock)
        coord.start_request("x")
        clock.advance(8)
        coord.complete_request("x")
        clock.advance(5)
        assert coord.should_make_request(has_cached_data=True, key="x") is False

    def test_force_refresh_always_allowed(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=10, clock=clock)
        coord.start_request("x")
        coord.skip_next_request()
        assert coord.should_make_request(force_refresh=True, has_cached_data=True, key="x")

    def test_skip_flag_is_consumed_once(self, clock):
        coord = RequestCoordinator(clock=clock)
        coord.skip_next_request()
        assert coord.should_make_request(key="x") is False
        assert coord.should_make_request(key="x") is True

    def test_no_cached_data_ignores_throttle(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=10, clock=clock)
        with coord.request("x"):
            pass
        assert coord.should_make_request(has_cached_data=False, key="x") is True
        assert coord.should_make_request(has_cached_data=True, key="x") is False

    def test_throttle_is_per_key(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=10, clock=clock)
        with coord.request("a"):
            pass
        assert coord.should_make_request(has_cached_data=True, key="b") is True

    def test_pending_gate_is_global(self, clock):
        coord = RequestCoordinator(clock=clock)
        coord.start_request("a")
        assert coord.should_make_request(key="b") is False


class TestBookkeeping:
    """Pending counter bookkeeping."""

    def test_complete_request_clamps_at_zero(self, clock):
        coord = RequestCoordinator(clock=clock)
        coord.complete_request("x")
        coord.complete_request("x")
        assert coord.pending_count == 0

    def test_request_context_completes_on_error(self, clock):
        coord = RequestCoordinator(clock=clock)
        with pytest.raises(ValueError), coord.request("x"):
            assert coord.pending_count == 1
            raise ValueError("fetch failed")
        assert coord.pending_count == 0

    def test_reset(self, clock):
        coord = RequestCoordinator(clock=clock)
        coord.start_request("x")
        coord.skip_next_request()
        coord.reset()
        assert coord.pending_count == 0
        assert coord.stats()["skipNext"] is False

    def test_stats(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=7, clock=clock)
        coord.start_request("x")
        assert coord.stats() == {
            "pending": 1,
            "throttleWindowSeconds": 7,
            "trackedKeys": 1,
            "skipNext": False,
            "consecutiveErrors": 0,
            "errorBlockSeconds": 0.0,
        }


class TestErrorBackoff:
    """Consecutive failures pause non-forced requests with a doubling block."""

    def _fail(self, coord, times=1):
        for _ in range(times):
            coord.start_request("x")
            coord.complete_request("x", error=True)

    def test_single_error_does_not_block(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=0, clock=clock)
        self._fail(coord)
        assert coord.consecutive_errors == 1
        assert coord.error_block_remaining() == 0
        assert coord.should_make_request(key="x") is True

    def test_second_error_blocks_for_twice_the_base(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=0, clock=clock)
        self._fail(coord, times=2)
        assert coord.stats()["errorBlockSeconds"] == 20

        clock.advance(19.9)
        assert coord.should_make_request(key="x") is False
        clock.advance(0.2)
        assert coord.should_make_request(key="x") is True
        # An elapsed block starts the count over.
        assert coord.consecutive_errors == 0

    def test_block_doubles_and_is_capped(self, clock):
        coord = RequestCoordinator(
            clock=clock, error_backoff_base_seconds=10, error_backoff_max_seconds=300
        )
        blocks = []
        for _ in range(7):
            self._fail(coord)
            blocks.append(coord.stats()["errorBlockSeconds"])
        assert blocks == [0.0, 20, 40, 80, 160, 300, 300]

    def test_success_resets(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=0, clock=clock)
        self._fail(coord, times=3)
        coord.start_request("x")
        coord.complete_request("x")
        assert coord.consecutive_errors == 0
        assert coord.should_make_request(key="x") is True

    def test_force_refresh_bypasses_block(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=0, clock=clock)
        self._fail(coord, times=2)
        assert coord.should_make_request(key="x") is False
        assert coord.should_make_request(force_refresh=True, key="x") is True

    def test_block_applies_to_every_key(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=0, clock=clock)
        self._fail(coord, times=2)
        assert coord.should_make_request(key="other") is False

    def test_request_context_counts_exceptions(self, clock):
        coord = RequestCoordinator(throttle_window_seconds=0, clock=clock)
        for _ in range(2):
            with pytest.raises(ConnectionError), coord.request("x"):
                raise ConnectionError("offline")
        assert coord.consecutive_errors == 2
        assert coord.error_block_remaining() == 20

    def test_cancellation_is_not_an_error(self, clock):
        coord = RequestCoordinator(clock=clock)
        with pytest.raises(asyncio.CancelledError), coord.request("x"):
            raise asyncio.CancelledError()
        assert coord.consecutive_errors == 0
        assert coord.pending_count == 0

    def test_reset_clears_errors(self, clock):
        coord = RequestCoordinator(clock=clock)
        self._fail(coord, times=2)
        coord.reset()
        assert coord.consecutive_errors == 0
        assert coord.error_block_remaining() == 0

    def test_block_is_logged(self, clock, caplog):
        coord = RequestCoordinator(clock=clock)
        self._fail(coord, times=2)
        assert "2 consecutive request errors, blocking requests for 20s" in caplog.text


class TestDebounce:
    """Bursts of triggers collapse into one trailing call."""

    @pytest.mark.anyio()
    async def test_burst_collapses_into_last_call(self):
        coord = RequestCoordinator(debounce_delay_ms=20)
        calls = []

        debounced = coord.debounce(calls.append, key="reload")
        for value in ("a", "b", "c"):
            debounced(value)
        await asyncio.sleep(0.1)
        assert calls == ["c"]

    @pytest.mark.anyio()
    async def test_coroutine_function_is_scheduled(self):
        coord = RequestCoordinator(debounce_delay_ms=10)
        calls = []

        async def reload(user_id):
            calls.append(user_id)

        debounced = coord.debounce(reload, key="reload")
        debounced("u1")
        debounced("u1")
        await asyncio.sleep(0.1)
        assert calls == ["u1"]

    @pytest.mark.anyio()
    async def test_reset_cancels_pending_timers(self):
        coord = RequestCoordinator(debounce_delay_ms=20)
        calls = []

        coord.debounce(calls.append)("a")
        coord.reset()
        await asyncio.sleep(0.1)
        assert calls == []
