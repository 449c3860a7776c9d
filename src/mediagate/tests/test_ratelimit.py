"""Tests for the token bucket rate limiter."""

from __future__ import annotations

import asyncio

import pytest

from mediagate.foundation.config import RateLimitSettings
from mediagate.foundation.errors import ConfigurationError, OperationCancelled, RateLimitExceeded
from mediagate.runtime.concurrency import CancellationToken
from mediagate.runtime.ratelimit import (
    TokenBucketRateLimiter,
    get_rate_limiter,
    set_rate_limiter,
    with_rate_limit,
    with_rate_limit_wait,
)


# ═════════════════════════════════════════════════════════════════════════════
# Non-blocking acquisition (manual clock)
# ═════════════════════════════════════════════════════════════════════════════


class TestAcquire:
    def test_burst_then_refill(self, clock) -> None:
        """10 immediate acquires succeed, the 11th fails, one more after 1s."""
        limiter = TokenBucketRateLimiter(10, 1.0, clock=clock)

        assert all(limiter.acquire() for _ in range(10))
        assert not limiter.acquire()

        clock.advance_ms(1000)
        assert limiter.acquire()
        assert not limiter.acquire()

    def test_available_tokens_is_floored(self, clock) -> None:
        limiter = TokenBucketRateLimiter(10, 1.0, clock=clock)
        for _ in range(10):
            limiter.acquire()

        clock.advance_ms(1500)
        assert limiter.available_tokens == 1

    def test_never_exceeds_capacity(self, clock) -> None:
        limiter = TokenBucketRateLimiter(5, 2.0, clock=clock)
        limiter.acquire()
        clock.advance_ms(60_000)
        assert limiter.available_tokens == 5

    def test_time_until_next_token(self, clock) -> None:
        limiter = TokenBucketRateLimiter(1, 2.0, clock=clock)
        assert limiter.time_until_next_token() == 0

        limiter.acquire()
        assert limiter.time_until_next_token() == 500

        clock.advance_ms(200)
        assert limiter.time_until_next_token() == 300

    def test_acquire_or_raise_carries_retry_after(self, clock) -> None:
        limiter = TokenBucketRateLimiter(2, 1.0, clock=clock)
        limiter.acquire_or_raise()
        limiter.acquire_or_raise()

        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.acquire_or_raise()
        assert exc_info.value.retry_after_ms == 1000
        assert exc_info.value.data == {"retry_after_ms": 1000}

    def test_reset_restores_capacity(self, clock) -> None:
        limiter = TokenBucketRateLimiter(3, 0.1, clock=clock)
        for _ in range(3):
            limiter.acquire()
        assert limiter.available_tokens == 0

        limiter.reset()
        assert limiter.available_tokens == 3

    def test_long_run_accounting_is_stable(self, clock) -> None:
        """Many small refills add up exactly to the elapsed time."""
        limiter = TokenBucketRateLimiter(10, 1.0, clock=clock)
        granted = 0
        for _ in range(4001):
            while limiter.acquire():
                granted += 1
            clock.advance_ms(250)
        # Initial burst plus 1000s at 1 token/s
        assert granted == 1010

    @pytest.mark.parametrize(("max_tokens", "refill_rate"), [(0, 1.0), (-1, 1.0), (10, 0), (10, -0.5)])
    def test_invalid_configuration(self, max_tokens: int, refill_rate: float) -> None:
        with pytest.raises(ConfigurationError):
            TokenBucketRateLimiter(max_tokens, refill_rate)

    def test_from_settings(self, clock) -> None:
        limiter = TokenBucketRateLimiter.from_settings(RateLimitSettings(max_tokens=4, refill_rate=2.0), clock=clock)
        assert (limiter.max_tokens, limiter.refill_rate) == (4, 2.0)
        assert limiter.available_tokens == 4


# ═════════════════════════════════════════════════════════════════════════════
# Waiting
# ═════════════════════════════════════════════════════════════════════════════


class TestWaitForToken:
    @pytest.mark.asyncio
    async def test_cancelled_token_consumes_nothing(self, clock) -> None:
        """An already-cancelled token rejects immediately without taking a token."""
        limiter = TokenBucketRateLimiter(10, 1.0, clock=clock)
        token = CancellationToken()
        token.cancel("client went away")

        with pytest.raises(OperationCancelled, match="client went away"):
            await limiter.wait_for_token(token)
        assert limiter.available_tokens == 10

    @pytest.mark.asyncio
    async def test_returns_immediately_when_available(self, clock) -> None:
        limiter = TokenBucketRateLimiter(2, 1.0, clock=clock)
        await limiter.wait_for_token()
        assert limiter.available_tokens == 1
        assert limiter.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_waits_for_refill(self) -> None:
        limiter = TokenBucketRateLimiter(1, 50.0)  # one token every 20ms
        assert limiter.acquire()

        await asyncio.wait_for(limiter.wait_for_token(), timeout=2)
        assert limiter.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_waiters_are_served_fifo(self) -> None:
        limiter = TokenBucketRateLimiter(1, 50.0)
        assert limiter.acquire()
        order: list[int] = []

        async def waiter(i: int) -> None:
            await limiter.wait_for_token()
            order.append(i)

        await asyncio.wait_for(asyncio.gather(*(waiter(i) for i in range(4))), timeout=5)
        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_queued_waiters_have_priority_over_acquire(self) -> None:
        limiter = TokenBucketRateLimiter(1, 0.1)
        assert limiter.acquire()

        task = asyncio.create_task(limiter.wait_for_token())
        await asyncio.sleep(0)
        assert limiter.pending_waiters == 1
        assert not limiter.acquire()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_cancel_while_queued_releases_timer(self) -> None:
        """A cancellation mid-wait unblocks promptly and clears the pending timer."""
        limiter = TokenBucketRateLimiter(1, 0.1)  # 10s until the next token
        assert limiter.acquire()
        token = CancellationToken()

        task = asyncio.create_task(limiter.wait_for_token(token))
        await asyncio.sleep(0)
        assert limiter.pending_waiters == 1
        assert limiter._timer is not None

        token.cancel()
        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(task, timeout=1)
        assert limiter.pending_waiters == 0
        assert limiter._timer is None

    @pytest.mark.asyncio
    async def test_reset_serves_queued_waiters(self) -> None:
        limiter = TokenBucketRateLimiter(2, 0.1)
        limiter.acquire()
        limiter.acquire()

        task = asyncio.create_task(limiter.wait_for_token())
        await asyncio.sleep(0)
        limiter.reset()

        await asyncio.wait_for(task, timeout=1)
        assert limiter.available_tokens == 1

    @pytest.mark.asyncio
    async def test_task_cancelled_after_grant_refunds_token(self) -> None:
        limiter = TokenBucketRateLimiter(1, 0.1)
        limiter.acquire()

        task = asyncio.create_task(limiter.wait_for_token())
        await asyncio.sleep(0)
        limiter.reset()  # grants the queued waiter synchronously
        assert limiter.available_tokens == 0

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert limiter.available_tokens == 1


# ═════════════════════════════════════════════════════════════════════════════
# Default instance & wrappers
# ═════════════════════════════════════════════════════════════════════════════


class TestWrappers:
    def test_default_limiter_from_settings(self) -> None:
        limiter = get_rate_limiter()
        assert limiter is get_rate_limiter()
        assert (limiter.max_tokens, limiter.refill_rate) == (10, 1.0)

    def test_default_limiter_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MEDIAGATE_RATELIMIT_MAX_TOKENS", "25")
        assert get_rate_limiter().max_tokens == 25

    @pytest.mark.asyncio
    async def test_with_rate_limit_fails_fast(self, clock) -> None:
        limiter = TokenBucketRateLimiter(1, 1.0, clock=clock)

        async def call(x: int) -> int:
            return x * 2

        wrapped = with_rate_limit(call, limiter)
        assert await wrapped(21) == 42
        with pytest.raises(RateLimitExceeded):
            await wrapped(1)

    @pytest.mark.asyncio
    async def test_with_rate_limit_wait_honours_cancel_token(self, clock) -> None:
        limiter = TokenBucketRateLimiter(1, 1.0, clock=clock)
        set_rate_limiter(limiter)
        calls: list[int] = []

        async def call(x: int, cancel_token: CancellationToken | None = None) -> int:
            calls.append(x)
            return x

        wrapped = with_rate_limit_wait(call)
        assert await wrapped(1) == 1

        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            await wrapped(2, cancel_token=token)
        assert calls == [1]
