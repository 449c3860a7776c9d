"""Token bucket rate limiting.

Gates calls to a shared, externally rate-limited resource. Single-process
and in-memory; waiters are served FIFO.

Example:
    >>> from mediagate.runtime.ratelimit import TokenBucketRateLimiter
    >>> limiter = TokenBucketRateLimiter(max_tokens=10, refill_rate=2.0)
    >>> if not limiter.acquire():
    ...     await limiter.wait_for_token(cancel_token)
"""

from .limiter import (
    TokenBucketRateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
    set_rate_limiter,
    with_rate_limit,
    with_rate_limit_wait,
)

__all__ = [
    "TokenBucketRateLimiter",
    "get_rate_limiter",
    "set_rate_limiter",
    "reset_rate_limiter",
    "with_rate_limit",
    "with_rate_limit_wait",
]
