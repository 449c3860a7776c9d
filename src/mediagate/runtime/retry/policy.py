"""Retry execution with exponential backoff.

Re-invokes a fallible async operation until it succeeds, fails with a
non-retryable error, runs out of attempts, or is cancelled. The error that
escapes is always the last underlying failure, never a wrapper, so callers
can branch on its real type.

Each attempt can be individually rate-limited by passing a limiter; the
cancellation token is threaded through the limiter wait and the
inter-attempt sleep.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field, replace
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from mediagate.foundation.config import get_settings
from mediagate.foundation.errors import TRANSIENT_CODES, ConfigurationError, OperationCancelled, classify_exception
from mediagate.runtime.concurrency import CancellationToken, check, sleep

from .backoff import Backoff, ExponentialBackoff

if TYPE_CHECKING:
    from mediagate.foundation.config import RetrySettings
    from mediagate.runtime.ratelimit import TokenBucketRateLimiter

logger = logging.getLogger("mediagate.retry")

P = ParamSpec("P")
T = TypeVar("T")

RetryCallback = Callable[[BaseException, int, float], object]


def _always(exc: BaseException) -> bool:
    return True


def transient_only(exc: BaseException) -> bool:
    """Retry predicate accepting only rate-limit, timeout and network failures."""
    return classify_exception(exc) in TRANSIENT_CODES


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts including the first (>= 1)
        initial_delay_ms: Delay before the second attempt (>= 0, not capped)
        max_delay_ms: Cap for every later delay
        backoff_multiplier: Growth factor between delays (>= 1)
        backoff: Custom strategy replacing the exponential schedule built
            from the three fields above
        is_retryable: Predicate deciding whether a failure may be retried
        on_retry: Hook called as (error, attempt, delay_ms) before each sleep

    Example:
        >>> policy = RetryPolicy(max_attempts=4, initial_delay_ms=1000, backoff_multiplier=10, max_delay_ms=5000)
        >>> list(policy.delays())
        [1000.0, 5000.0, 5000.0]
    """

    max_attempts: int = 3
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 30_000.0
    backoff_multiplier: float = 2.0
    is_retryable: Callable[[BaseException], bool] = field(default=_always, repr=False)
    on_retry: RetryCallback | None = field(default=None, repr=False)
    backoff: Backoff | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        # Validates delays and multiplier
        self.strategy

    @classmethod
    def from_settings(cls, settings: RetrySettings | None = None, **overrides: object) -> RetryPolicy:
        """Build a policy from RetrySettings (defaults to global settings)."""
        settings = settings or get_settings().retry
        policy = cls(
            max_attempts=settings.max_attempts,
            initial_delay_ms=settings.initial_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            backoff_multiplier=settings.backoff_multiplier,
        )
        return replace(policy, **overrides) if overrides else policy

    @property
    def strategy(self) -> Backoff:
        """The configured backoff, or the exponential one built from the delay fields."""
        if self.backoff is not None:
            return self.backoff
        return ExponentialBackoff(self.initial_delay_ms, self.max_delay_ms, self.backoff_multiplier)

    def delays(self) -> Iterator[float]:
        """Yield the inter-attempt delay schedule (max_attempts - 1 values)."""
        strategy = self.strategy
        for attempt in range(self.max_attempts - 1):
            yield strategy.delay(attempt)


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    cancel_token: CancellationToken | None = None,
    limiter: TokenBucketRateLimiter | None = None,
    **overrides: object,
) -> T:
    """Run operation with retries and exponential backoff.

    Args:
        operation: Zero-argument async callable
        policy: Retry configuration (defaults to RetryPolicy())
        cancel_token: Checked before every attempt and during every wait
        limiter: If given, every attempt waits for a rate-limit token first
        **overrides: Field overrides applied on top of policy

    Returns:
        The first successful result

    Raises:
        OperationCancelled: If the token fires before or between attempts
        Exception: The last failure, unchanged, once retrying stops

    Example:
        >>> result = await retry(lambda: client.fetch(task_id), max_attempts=5, cancel_token=token)
    """
    policy = policy if policy is not None else RetryPolicy()
    if overrides:
        policy = replace(policy, **overrides)

    delays = policy.delays()
    for attempt in range(1, policy.max_attempts + 1):
        check(cancel_token)
        if limiter is not None:
            await limiter.wait_for_token(cancel_token)

        try:
            return await operation()
        except Exception as e:
            if attempt == policy.max_attempts or isinstance(e, OperationCancelled) or not policy.is_retryable(e):
                raise

            delay = next(delays)
            logger.info(
                "Attempt %d/%d failed (%s: %s). Retrying in %.0fms",
                attempt, policy.max_attempts, type(e).__name__, e, delay,
            )
            if policy.on_retry is not None:
                policy.on_retry(e, attempt, delay)
            await sleep(delay, cancel_token)

    raise AssertionError("unreachable")  # pragma: no cover


def retrying(
    policy: RetryPolicy | None = None,
    **overrides: object,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of retry().

    A `cancel_token` keyword passed to the decorated function is also used
    for the retry loop.

    Example:
        >>> @retrying(max_attempts=5, is_retryable=transient_only)
        ... async def fetch_balance(cancel_token=None) -> float: ...
    """
    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            token = kwargs.get("cancel_token")
            return await retry(
                lambda: fn(*args, **kwargs),
                policy,
                cancel_token=token if isinstance(token, CancellationToken) else None,
                **overrides,
            )
        return wrapper
    return decorator
