"""Tests for the tool dispatcher (end-to-end control flow)."""

from __future__ import annotations

import asyncio

import pytest

from mediagate.foundation.errors import ErrorCode, RateLimitExceeded
from mediagate.io.cache import BoundedCache
from mediagate.io.progress import ProgressNotification, drain
from mediagate.runtime.concurrency import CancellationToken
from mediagate.runtime.dispatch import CallContext, ToolDispatcher, get_dispatcher
from mediagate.runtime.operations import OperationRegistry
from mediagate.runtime.ratelimit import TokenBucketRateLimiter
from mediagate.runtime.retry import RetryPolicy


@pytest.fixture
def registry() -> OperationRegistry:
    return OperationRegistry()


@pytest.fixture
def limiter(clock) -> TokenBucketRateLimiter:
    return TokenBucketRateLimiter(10, 1.0, clock=clock)


@pytest.fixture
def dispatcher(limiter: TokenBucketRateLimiter, registry: OperationRegistry) -> ToolDispatcher:
    return ToolDispatcher(limiter=limiter, registry=registry, retry_policy=RetryPolicy(max_attempts=3, initial_delay_ms=1))


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success_registers_and_completes_operation(
        self, dispatcher: ToolDispatcher, registry: OperationRegistry,
    ) -> None:
        seen: list[bool] = []

        async def handler(ctx: CallContext) -> str:
            seen.append(ctx.request_id in registry and registry.get(ctx.request_id) is ctx.token)
            return "image-url"

        result = await dispatcher.invoke("req-1", handler)

        assert result.ok
        assert result.value == "image-url"
        assert result.error is None
        assert seen == [True]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_every_attempt_is_rate_limited(
        self, dispatcher: ToolDispatcher, limiter: TokenBucketRateLimiter,
    ) -> None:
        calls = 0

        async def handler(ctx: CallContext) -> int:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionError("socket closed")
            return calls

        result = await dispatcher.invoke("req-1", handler)

        assert result.ok and result.value == 3
        assert limiter.available_tokens == 7

    @pytest.mark.asyncio
    async def test_typed_failure_becomes_error_info(self, limiter: TokenBucketRateLimiter, registry: OperationRegistry) -> None:
        dispatcher = ToolDispatcher(limiter, registry, RetryPolicy(max_attempts=1))

        async def handler(ctx: CallContext) -> None:
            raise RateLimitExceeded(250)

        result = await dispatcher.invoke("req-1", handler)

        assert not result.ok
        assert result.error is not None
        assert result.error.code == ErrorCode.RATE_LIMITED
        assert result.error.recoverable
        assert result.error.to_rpc() == {
            "code": -32101,
            "message": "Rate limit exceeded. Please wait before making more requests.",
            "data": {"retry_after_ms": 250},
        }
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_translated(self, dispatcher: ToolDispatcher, registry: OperationRegistry) -> None:
        async def handler(ctx: CallContext) -> None:
            raise KeyError("missing field")

        result = await dispatcher.invoke("req-1", handler)

        assert not result.ok
        assert result.error.code == ErrorCode.EXTERNAL_SERVICE_ERROR
        assert result.error.to_rpc()["code"] == -32603
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_cancel_by_request_id(self, dispatcher: ToolDispatcher, registry: OperationRegistry) -> None:
        started = asyncio.Event()

        async def handler(ctx: CallContext) -> None:
            started.set()
            await ctx.token.wait()
            ctx.token.raise_if_cancelled()

        task = asyncio.create_task(dispatcher.invoke("req-1", handler))
        await started.wait()
        assert registry.cancel("req-1", "client cancelled")

        result = await asyncio.wait_for(task, timeout=1)
        assert result.error.code == ErrorCode.CANCELLED
        assert result.error.to_rpc()["code"] == -32800
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_external_token_is_linked_and_released(self, dispatcher: ToolDispatcher) -> None:
        token = CancellationToken()
        called = False

        async def handler(ctx: CallContext) -> str:
            nonlocal called
            called = True
            return "ok"

        assert (await dispatcher.invoke("req-1", handler, cancel_token=token)).ok
        assert token._callbacks == []

        token.cancel()
        called = False
        result = await dispatcher.invoke("req-2", handler, cancel_token=token)
        assert result.error.code == ErrorCode.CANCELLED
        assert not called

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_rate_limit(self, registry: OperationRegistry) -> None:
        limiter = TokenBucketRateLimiter(1, 0.1)
        limiter.acquire()
        dispatcher = ToolDispatcher(limiter, registry, RetryPolicy())
        token = CancellationToken()
        called = False

        async def handler(ctx: CallContext) -> None:
            nonlocal called
            called = True

        asyncio.get_running_loop().call_later(0.02, token.cancel)
        result = await asyncio.wait_for(dispatcher.invoke("req-1", handler, cancel_token=token), timeout=2)

        assert result.error.code == ErrorCode.CANCELLED
        assert not called
        assert limiter.pending_waiters == 0
        assert len(registry) == 0


class TestProgressAndCache:
    @pytest.mark.asyncio
    async def test_progress_reaches_sink(self, dispatcher: ToolDispatcher) -> None:
        sent: list[ProgressNotification] = []

        async def handler(ctx: CallContext) -> str:
            ctx.progress.report(0, 2, "Submitting")
            ctx.progress.step(2, 2, "Done")
            return "ok"

        await dispatcher.invoke("req-1", handler, sink=sent.append)
        assert [(n.progress_token, n.progress, n.message) for n in sent] == [
            ("req-1", 0, "Submitting"),
            ("req-1", 2, "Done"),
        ]

    @pytest.mark.asyncio
    async def test_sink_failures_do_not_fail_dispatch(self, dispatcher: ToolDispatcher) -> None:
        def broken_sink(_: ProgressNotification) -> None:
            raise BrokenPipeError("stdout closed")

        async def async_broken_sink(_: ProgressNotification) -> None:
            raise BrokenPipeError("stdout closed")

        async def handler(ctx: CallContext) -> str:
            ctx.progress.report(1, 1)
            return "ok"

        assert (await dispatcher.invoke("req-1", handler, sink=broken_sink)).value == "ok"
        assert (await dispatcher.invoke("req-2", handler, sink=async_broken_sink)).value == "ok"
        await drain()

    @pytest.mark.asyncio
    async def test_cache_key_short_circuits_repeat_calls(
        self, limiter: TokenBucketRateLimiter, registry: OperationRegistry,
    ) -> None:
        dispatcher = ToolDispatcher(limiter, registry, RetryPolicy(), cache=BoundedCache(10))
        calls = 0

        async def handler(ctx: CallContext) -> list[str]:
            nonlocal calls
            calls += 1
            return ["flux-dev", "sdxl"]

        first = await dispatcher.invoke("req-1", handler, cache_key="models")
        second = await dispatcher.invoke("req-2", handler, cache_key="models")

        assert first.value == second.value == ["flux-dev", "sdxl"]
        assert calls == 1
        assert limiter.available_tokens == 9

    def test_default_dispatcher_uses_defaults(self) -> None:
        dispatcher = get_dispatcher()
        assert dispatcher is get_dispatcher()
        assert dispatcher.retry_policy.max_attempts == 3
        assert dispatcher.cache is None

    @pytest.mark.asyncio
    async def test_cancelling_one_request_does_not_fail_a_cache_follower(
        self, limiter: TokenBucketRateLimiter, registry: OperationRegistry,
    ) -> None:
        dispatcher = ToolDispatcher(limiter, registry, RetryPolicy(max_attempts=1), cache=BoundedCache(10))
        started = asyncio.Event()

        async def handler(ctx: CallContext) -> str:
            if ctx.request_id == "req-a":
                started.set()
                await ctx.token.wait()
                ctx.token.raise_if_cancelled()
            return f"models for {ctx.request_id}"

        first = asyncio.create_task(dispatcher.invoke("req-a", handler, cache_key="models"))
        await started.wait()
        second = asyncio.create_task(dispatcher.invoke("req-b", handler, cache_key="models"))
        for _ in range(3):
            await asyncio.sleep(0)

        assert registry.cancel("req-a", "client cancelled")

        a = await asyncio.wait_for(first, timeout=1)
        b = await asyncio.wait_for(second, timeout=1)
        assert a.error.code == ErrorCode.CANCELLED
        assert b.ok and b.value == "models for req-b"
        assert len(registry) == 0


class TestConstruction:
    def test_empty_injected_collaborators_are_kept(
        self, limiter: TokenBucketRateLimiter, registry: OperationRegistry,
    ) -> None:
        policy = RetryPolicy(max_attempts=1)
        dispatcher = ToolDispatcher(limiter, registry, policy)

        assert len(registry) == 0
        assert dispatcher.registry is registry
        assert dispatcher.limiter is limiter
        assert dispatcher.retry_policy is policy
