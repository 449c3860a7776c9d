"""Tool invocation dispatcher.

Wires the control primitives around one tool call:

    cache lookup -> register operation -> [wait for token -> run handler] x retry
                 -> complete operation (every exit path)

The handler receives a CallContext carrying the operation's cancellation
token and a progress reporter. Failures never escape invoke(): typed errors
and unexpected exceptions are translated into an ErrorInfo so the protocol
layer can answer with a JSON-RPC error object.

Example:
    >>> dispatcher = ToolDispatcher(limiter=limiter, retry_policy=RetryPolicy(max_attempts=2))
    >>> async def generate(ctx: CallContext) -> str:
    ...     ctx.progress.report(0, 100, "Submitting")
    ...     return await client.generate(prompt, cancel_token=ctx.token)
    >>> result = await dispatcher.invoke("req-7", generate, sink=send_progress)
    >>> result.ok, result.value
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from mediagate.foundation.errors import ErrorInfo, MediagateError
from mediagate.io.progress import ProgressReporter, ProgressSink, best_effort, create_progress_reporter
from mediagate.runtime.operations import OperationRegistry, get_registry
from mediagate.runtime.ratelimit import TokenBucketRateLimiter, get_rate_limiter
from mediagate.runtime.retry import RetryPolicy, retry

if TYPE_CHECKING:
    from mediagate.io.cache import BoundedCache
    from mediagate.runtime.concurrency import CancellationToken

logger = logging.getLogger("mediagate.dispatch")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CallContext:
    """What a handler gets to observe cancellation and report progress."""
    request_id: str
    token: CancellationToken
    progress: ProgressReporter


@dataclass(frozen=True, slots=True)
class DispatchResult(Generic[T]):
    """Outcome of ToolDispatcher.invoke(). Exactly one of value/error is meaningful."""
    ok: bool
    value: T | None = None
    error: ErrorInfo | None = None

    @classmethod
    def success(cls, value: T) -> DispatchResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ErrorInfo) -> DispatchResult[Any]:
        return cls(ok=False, error=error)


Handler = Callable[[CallContext], Awaitable[T]]


def _discard(notification: object) -> None:
    return None


class ToolDispatcher:
    """Runs tool handlers under rate limiting, retry, cancellation and caching.

    Args:
        limiter: Shared limiter; every attempt waits for a token (default: process-wide limiter)
        registry: Operation registry (default: process-wide registry)
        retry_policy: Retry configuration (default: from settings)
        cache: Optional cache consulted when invoke() gets a cache_key
    """

    __slots__ = ("limiter", "registry", "retry_policy", "cache")

    def __init__(
        self,
        limiter: TokenBucketRateLimiter | None = None,
        registry: OperationRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        cache: BoundedCache[Any, Any] | None = None,
    ) -> None:
        self.limiter = limiter if limiter is not None else get_rate_limiter()
        self.registry = registry if registry is not None else get_registry()
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy.from_settings()
        self.cache = cache

    async def invoke(
        self,
        request_id: str,
        handler: Handler[T],
        *,
        sink: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
        cache_key: Hashable | None = None,
    ) -> DispatchResult[T]:
        """Invoke handler for request_id. Never raises for handler failures.

        Args:
            request_id: Operation id (also the progress token)
            handler: Async callable receiving a CallContext
            sink: Progress transport; failures are logged and ignored
            cancel_token: External token, linked into the operation's token
            cache_key: If set (and a cache is configured), identical requests
                share one result
        """
        try:
            if cache_key is not None and self.cache is not None:
                value = await self.cache.get_or_set(
                    cache_key,
                    lambda: self._run(request_id, handler, sink, cancel_token),
                    cancel_token=cancel_token,
                )
            else:
                value = await self._run(request_id, handler, sink, cancel_token)
        except MediagateError as e:
            logger.debug("[%s] %s: %s", request_id, e.code, e)
            return DispatchResult.failure(e.to_info())
        except Exception as e:
            logger.warning("[%s] Handler failed: %s: %s", request_id, type(e).__name__, e)
            return DispatchResult.failure(ErrorInfo.from_exception(e))
        return DispatchResult.success(value)

    async def _run(
        self,
        request_id: str,
        handler: Handler[T],
        sink: ProgressSink | None,
        cancel_token: CancellationToken | None,
    ) -> T:
        async with self.registry.track(request_id) as token:
            unlink = cancel_token.add_callback(token.cancel) if cancel_token is not None else None
            try:
                ctx = CallContext(
                    request_id, token,
                    create_progress_reporter(request_id, best_effort(sink) if sink is not None else _discard),
                )
                return await retry(lambda: handler(ctx), self.retry_policy, cancel_token=token, limiter=self.limiter)
            finally:
                if unlink is not None:
                    unlink()


# ═══════════════════════════════════════════════════════════════════════════════
# Default dispatcher
# ═══════════════════════════════════════════════════════════════════════════════

_dispatcher: ToolDispatcher | None = None


def get_dispatcher() -> ToolDispatcher:
    """Get the process-wide dispatcher (default limiter, registry and settings)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ToolDispatcher()
    return _dispatcher


def reset_dispatcher() -> None:
    global _dispatcher
    _dispatcher = None
