"""Tool invocation dispatch: operation lifecycle, rate limiting, retry, caching."""

from .dispatcher import (
    CallContext,
    DispatchResult,
    Handler,
    ToolDispatcher,
    get_dispatcher,
    reset_dispatcher,
)

__all__ = [
    "CallContext",
    "DispatchResult",
    "Handler",
    "ToolDispatcher",
    "get_dispatcher",
    "reset_dispatcher",
]
