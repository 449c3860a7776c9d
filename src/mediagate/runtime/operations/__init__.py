"""Cancellable operation tracking.

Example:
    >>> from mediagate.runtime.operations import create_cancellable_operation, complete_operation
    >>> token = create_cancellable_operation("req-1")
    >>> try:
    ...     await run_tool(token)
    ... finally:
    ...     complete_operation("req-1")
"""

from .registry import (
    OperationRegistry,
    cancel_operation,
    complete_operation,
    create_cancellable_operation,
    get_active_operation_count,
    get_registry,
    reset_registry,
    set_registry,
)

__all__ = [
    "OperationRegistry",
    # Default registry
    "get_registry",
    "set_registry",
    "reset_registry",
    "create_cancellable_operation",
    "complete_operation",
    "cancel_operation",
    "get_active_operation_count",
]
