"""mediagate - Resource and concurrency control for media-generation tool calls.

Gates calls to an externally rate-limited API with a token bucket, retries
transient failures with exponential backoff, tracks cancellable operations
with progress reporting, and caches responses in a bounded LRU/TTL cache.
Everything runs on the asyncio event loop and threads one CancellationToken
through every suspension point.

Example:
    >>> from mediagate import TokenBucketRateLimiter, RetryPolicy, ToolDispatcher
    >>>
    >>> dispatcher = ToolDispatcher(
    ...     limiter=TokenBucketRateLimiter(max_tokens=10, refill_rate=1.0),
    ...     retry_policy=RetryPolicy(max_attempts=3),
    ... )
    >>> result = await dispatcher.invoke("req-1", generate_image, sink=send_progress)
"""

from .foundation.config import MediagateSettings, clear_settings_cache, get_settings
from .foundation.errors import (
    ConfigurationError,
    ErrorCode,
    ErrorInfo,
    GenerationFailed,
    MediagateError,
    OperationCancelled,
    PollTimeout,
    RateLimitExceeded,
    classify_exception,
)
from .io.cache import BoundedCache, get_cache, make_key, reset_cache, set_cache
from .io.progress import ProgressNotification, ProgressReporter, best_effort, create_progress_reporter
from .runtime.concurrency import CancellationToken, map_async, sleep, wait_cancellable
from .runtime.dispatch import CallContext, DispatchResult, ToolDispatcher
from .runtime.observability import configure_logging
from .runtime.operations import (
    OperationRegistry,
    cancel_operation,
    complete_operation,
    create_cancellable_operation,
    get_active_operation_count,
)
from .runtime.polling import PollResult, PollStatus, estimate_max_poll_time_ms, poll
from .runtime.ratelimit import TokenBucketRateLimiter, get_rate_limiter, with_rate_limit, with_rate_limit_wait
from .runtime.retry import ExponentialBackoff, RetryPolicy, retry, retrying, transient_only

__version__ = "0.1.0"

__all__ = [
    # Config
    "MediagateSettings", "get_settings", "clear_settings_cache",
    # Errors
    "ErrorCode", "ErrorInfo", "MediagateError", "ConfigurationError", "RateLimitExceeded",
    "OperationCancelled", "PollTimeout", "GenerationFailed", "classify_exception",
    # Cancellation
    "CancellationToken", "sleep", "wait_cancellable", "map_async",
    # Rate limiting
    "TokenBucketRateLimiter", "get_rate_limiter", "with_rate_limit", "with_rate_limit_wait",
    # Retry
    "RetryPolicy", "ExponentialBackoff", "retry", "retrying", "transient_only",
    # Operations & progress
    "OperationRegistry", "create_cancellable_operation", "complete_operation", "cancel_operation",
    "get_active_operation_count",
    "ProgressNotification", "ProgressReporter", "create_progress_reporter", "best_effort",
    # Cache
    "BoundedCache", "get_cache", "set_cache", "reset_cache", "make_key",
    # Polling
    "PollStatus", "PollResult", "poll", "estimate_max_poll_time_ms",
    # Dispatch
    "ToolDispatcher", "CallContext", "DispatchResult",
    # Logging
    "configure_logging",
]
