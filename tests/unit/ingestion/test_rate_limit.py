"""Unit tests for the write throttles."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from touchgrass.ingestion.rate_limit import (
    FixedDelayThrottle,
    NoThrottle,
    TokenBucketThrottle,
    build_throttle,
)

SLEEP = "touchgrass.ingestion.rate_limit.asyncio.sleep"


def _acquire(throttle, times):
    async def _run():
        for _ in range(times):
            await throttle.acquire()

    asyncio.run(_run())


class TestFixedDelayThrottle:
    """Tests for FixedDelayThrottle."""

    def test_first_write_not_delayed(self):
        with patch(SLEEP, new_callable=AsyncMock) as sleep:
            _acquire(FixedDelayThrottle(delay=10), 1)
        sleep.assert_not_awaited()

    def test_later_writes_wait_for_remaining_delay(self):
        with patch(SLEEP, new_callable=AsyncMock) as sleep:
            _acquire(FixedDelayThrottle(delay=10), 3)

        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert 9 < call.args[0] <= 10

    def test_zero_delay_never_waits(self):
        with patch(SLEEP, new_callable=AsyncMock) as sleep:
            _acquire(FixedDelayThrottle(delay=0), 3)
        sleep.assert_not_awaited()

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            FixedDelayThrottle(delay=-1)


class TestTokenBucketThrottle:
    """Tests for TokenBucketThrottle."""

    def test_burst_up_to_capacity(self):
        with patch(SLEEP, new_callable=AsyncMock) as sleep:
            _acquire(TokenBucketThrottle(rate_per_second=0.01, capacity=3), 3)
        sleep.assert_not_awaited()

    def test_waits_when_empty(self):
        throttle = TokenBucketThrottle(rate_per_second=0.01, capacity=1)
        with patch(SLEEP, new_callable=AsyncMock) as sleep:
            _acquire(throttle, 2)

        sleep.assert_awaited_once()
        assert 90 < sleep.await_args.args[0] <= 100

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            TokenBucketThrottle(rate_per_second=0)
        with pytest.raises(ValueError):
            TokenBucketThrottle(rate_per_second=1, capacity=0)

    def test_available_tokens_capped_at_capacity(self):
        throttle = TokenBucketThrottle(rate_per_second=1000, capacity=2)
        assert throttle.available_tokens <= 2


class TestBuildThrottle:
    def test_positive_delay(self):
        throttle = build_throttle(0.1)
        assert isinstance(throttle, FixedDelayThrottle)
        assert throttle.delay == 0.1

    @pytest.mark.parametrize("delay", [0, 0.0, None])
    def test_no_delay(self, delay):
        assert isinstance(build_throttle(delay), NoThrottle)
