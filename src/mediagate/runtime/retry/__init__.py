"""Retry with exponential backoff.

Example:
    >>> from mediagate.runtime.retry import retry, RetryPolicy, transient_only
    >>>
    >>> policy = RetryPolicy(max_attempts=5, initial_delay_ms=500, is_retryable=transient_only)
    >>> result = await retry(call_remote, policy, cancel_token=token, limiter=limiter)
"""

from .backoff import Backoff, ConstantBackoff, ExponentialBackoff
from .policy import RetryPolicy, retry, retrying, transient_only

__all__ = [
    # Backoff strategies
    "Backoff",
    "ExponentialBackoff",
    "ConstantBackoff",
    # Execution
    "RetryPolicy",
    "retry",
    "retrying",
    "transient_only",
]
