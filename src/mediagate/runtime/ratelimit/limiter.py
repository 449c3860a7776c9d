"""Token bucket rate limiting for outbound calls.

Allows bursts up to max_tokens, then throttles to refill_rate tokens per
second. Waiters are served strictly FIFO from a single loop timer, so each
freed token is granted to exactly one waiter.

Token accounting is derived from total elapsed time since a fixed origin:

    tokens(now) = base + (now - origin) * refill_rate - spent

The origin is only re-based when the bucket is observed full (or on reset),
so long runs never accumulate rounding from repeated small refills.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from mediagate.foundation.config import get_settings
from mediagate.foundation.errors import ConfigurationError, OperationCancelled, RateLimitExceeded
from mediagate.runtime.concurrency import CancellationToken, check

if TYPE_CHECKING:
    from mediagate.foundation.config import RateLimitSettings

logger = logging.getLogger("mediagate.ratelimit")

P = ParamSpec("P")
T = TypeVar("T")

Clock = Callable[[], float]


class TokenBucketRateLimiter:
    """Token bucket limiter with a FIFO wait queue.

    Args:
        max_tokens: Bucket capacity (burst size), must be positive
        refill_rate: Tokens added per second, must be positive
        clock: Monotonic clock in seconds (injectable for tests)

    Example:
        >>> limiter = TokenBucketRateLimiter(max_tokens=10, refill_rate=1.0)
        >>> limiter.acquire()
        True
        >>> await limiter.wait_for_token(cancel_token)
    """

    __slots__ = (
        "max_tokens", "refill_rate", "_clock",
        "_origin", "_base", "_spent",
        "_waiters", "_timer",
    )

    def __init__(self, max_tokens: int, refill_rate: float, *, clock: Clock = time.monotonic) -> None:
        if max_tokens <= 0:
            raise ConfigurationError("max_tokens must be positive")
        if refill_rate <= 0:
            raise ConfigurationError("refill_rate must be positive")

        self.max_tokens = max_tokens
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._origin = clock()
        self._base = float(max_tokens)  # start with full bucket
        self._spent = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._timer: asyncio.TimerHandle | None = None

    @classmethod
    def from_settings(cls, settings: RateLimitSettings | None = None, *, clock: Clock = time.monotonic) -> TokenBucketRateLimiter:
        """Build a limiter from RateLimitSettings (defaults to global settings)."""
        settings = settings or get_settings().rate_limit
        return cls(settings.max_tokens, settings.refill_rate, clock=clock)

    def __repr__(self) -> str:
        return (
            f"TokenBucketRateLimiter(max_tokens={self.max_tokens}, refill_rate={self.refill_rate}, "
            f"tokens={self._tokens():.3f}, waiters={len(self._waiters)})"
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Accounting
    # ─────────────────────────────────────────────────────────────────────────

    def _tokens(self) -> float:
        """Current fractional token count, re-basing the origin when full."""
        now = self._clock()
        tokens = self._base + (now - self._origin) * self.refill_rate - self._spent
        if tokens >= self.max_tokens:
            self._origin, self._base, self._spent = now, float(self.max_tokens), 0
            return float(self.max_tokens)
        return max(tokens, 0.0)

    def _try_consume(self) -> bool:
        if self._tokens() >= 1:
            self._spent += 1
            return True
        return False

    def _refund(self) -> None:
        self._spent -= 1

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    def acquire(self) -> bool:
        """Take a token without blocking.

        Queued waiters have priority: while any are pending this returns False.

        Returns:
            True if a token was acquired
        """
        if self._waiters:
            return False
        return self._try_consume()

    def acquire_or_raise(self) -> None:
        """Take a token or fail fast.

        Raises:
            RateLimitExceeded: carrying retry_after_ms until the next token
        """
        if not self.acquire():
            raise RateLimitExceeded(max(self.time_until_next_token(), 1 if self._waiters else 0))

    async def wait_for_token(self, cancel_token: CancellationToken | None = None) -> None:
        """Wait until a token is granted to this caller.

        Cancellation is checked before anything is consumed. While queued, a
        cancelled token removes this waiter and raises within one loop tick.

        Raises:
            OperationCancelled: If the token is (or becomes) cancelled
        """
        check(cancel_token)
        if self.acquire():
            return

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        self._schedule(loop)

        def on_cancel(reason: str | None) -> None:
            if not waiter.done():
                waiter.set_exception(OperationCancelled(reason))

        remove = cancel_token.add_callback(on_cancel) if cancel_token is not None else None
        try:
            await waiter
        except asyncio.CancelledError:
            # Task cancelled after the grant: hand the token back
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                self._refund()
                self._service()
            raise
        except OperationCancelled:
            logger.debug("Rate limit wait cancelled (%d still queued)", len(self._waiters) - 1)
            raise
        finally:
            if remove is not None:
                remove()
            self._discard(waiter)

    @property
    def available_tokens(self) -> int:
        """Whole tokens currently available."""
        return math.floor(self._tokens())

    @property
    def pending_waiters(self) -> int:
        """Number of callers queued in wait_for_token."""
        return sum(1 for w in self._waiters if not w.done())

    def time_until_next_token(self) -> int:
        """Milliseconds until one token is available (0 if available now)."""
        tokens = self._tokens()
        if tokens >= 1:
            return 0
        return math.ceil((1 - tokens) / self.refill_rate * 1000)

    def reset(self) -> None:
        """Restore full capacity (testing or error recovery). Serves queued waiters."""
        self._origin, self._base, self._spent = self._clock(), float(self.max_tokens), 0
        self._service()

    # ─────────────────────────────────────────────────────────────────────────
    # Wait queue
    # ─────────────────────────────────────────────────────────────────────────

    def _discard(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        if not self._waiters and self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _service(self) -> None:
        """Grant tokens to queued waiters head-first, then re-arm the timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        while self._waiters:
            head = self._waiters[0]
            if head.done():  # cancelled or already granted
                self._waiters.popleft()
                continue
            if not self._try_consume():
                break
            self._waiters.popleft()
            head.set_result(None)

        if self._waiters:
            self._schedule(self._waiters[0].get_loop())

    def _schedule(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._timer is not None:
            return
        delay = max(self.time_until_next_token(), 1) / 1000
        self._timer = loop.call_later(delay, self._service)


# ═══════════════════════════════════════════════════════════════════════════════
# Default limiter
# ═══════════════════════════════════════════════════════════════════════════════

_limiter: TokenBucketRateLimiter | None = None


def get_rate_limiter() -> TokenBucketRateLimiter:
    """Get the process-wide limiter (created from settings on first use)."""
    global _limiter
    if _limiter is None:
        _limiter = TokenBucketRateLimiter.from_settings()
    return _limiter


def set_rate_limiter(limiter: TokenBucketRateLimiter) -> None:
    """Replace the process-wide limiter."""
    global _limiter
    _limiter = limiter


def reset_rate_limiter() -> None:
    """Drop the process-wide limiter (useful for testing)."""
    global _limiter
    _limiter = None


# ═══════════════════════════════════════════════════════════════════════════════
# Wrappers
# ═══════════════════════════════════════════════════════════════════════════════


def with_rate_limit(
    fn: Callable[P, Awaitable[T]],
    limiter: TokenBucketRateLimiter | None = None,
) -> Callable[P, Awaitable[T]]:
    """Wrap an async function so each call takes a token or raises RateLimitExceeded."""
    @wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        (limiter if limiter is not None else get_rate_limiter()).acquire_or_raise()
        return await fn(*args, **kwargs)
    return wrapper


def with_rate_limit_wait(
    fn: Callable[P, Awaitable[T]],
    limiter: TokenBucketRateLimiter | None = None,
) -> Callable[P, Awaitable[T]]:
    """Wrap an async function so each call waits for a token first.

    A `cancel_token` keyword argument, if the caller passes one, also
    governs the wait and is forwarded to the wrapped function.
    """
    @wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        token = kwargs.get("cancel_token")
        await (limiter if limiter is not None else get_rate_limiter()).wait_for_token(
            token if isinstance(token, CancellationToken) else None
        )
        return await fn(*args, **kwargs)
    return wrapper
