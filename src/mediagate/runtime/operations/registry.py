"""Registry of in-flight cancellable operations.

Every tool invocation registers a CancellationToken under its request id
when it starts and removes it on every exit path. The registry is the only
owner of these tokens; a protocol-level "cancel request" looks the id up
here and fires the token.

Example:
    >>> registry = OperationRegistry()
    >>> async with registry.track("req-42") as token:
    ...     await limiter.wait_for_token(token)
    >>> registry.cancel("req-42")   # from the cancellation notification handler
    False
"""

from __future__ import annotations

import logging

from mediagate.runtime.concurrency import CancellationToken

logger = logging.getLogger("mediagate.operations")


class OperationRegistry:
    """Maps operation ids to their cancellation tokens.

    At most one record exists per id. Creating an id that is already
    registered replaces the old record; completing an id is idempotent.
    """

    __slots__ = ("_operations",)

    def __init__(self) -> None:
        self._operations: dict[str, CancellationToken] = {}

    def __contains__(self, op_id: object) -> bool:
        return op_id in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def __repr__(self) -> str:
        return f"OperationRegistry(active={len(self._operations)})"

    def create(self, op_id: str) -> CancellationToken:
        """Register op_id with a fresh token and return it."""
        if op_id in self._operations:
            logger.warning("Operation %r already registered; replacing previous record", op_id)
        token = CancellationToken(name=op_id)
        self._operations[op_id] = token
        return token

    def complete(self, op_id: str, token: CancellationToken | None = None) -> None:
        """Remove op_id's record. Never raises.

        Args:
            op_id: Operation id (unknown ids are ignored)
            token: If given, only remove the record when it still holds this
                token, so a replaced owner cannot remove its successor
        """
        current = self._operations.get(op_id)
        if current is None:
            return
        if token is not None and current is not token:
            return
        del self._operations[op_id]

    def cancel(self, op_id: str, reason: str | None = None) -> bool:
        """Fire op_id's token. Returns False for unknown or already cancelled ids."""
        token = self._operations.get(op_id)
        if token is None:
            return False
        cancelled = token.cancel(reason)
        if cancelled:
            logger.debug("Operation %r cancelled%s", op_id, f": {reason}" if reason else "")
        return cancelled

    def get(self, op_id: str) -> CancellationToken | None:
        return self._operations.get(op_id)

    def active_ids(self) -> list[str]:
        return list(self._operations)

    def track(self, op_id: str) -> _Tracker:
        """Context manager creating op_id and completing it on exit.

        Works with both `with` and `async with`. The record is removed on
        success, on exception and on task cancellation.
        """
        return _Tracker(self, op_id)


class _Tracker:
    """Dual sync/async context manager returned by OperationRegistry.track()."""

    __slots__ = ("_registry", "_op_id", "_token")

    def __init__(self, registry: OperationRegistry, op_id: str) -> None:
        self._registry = registry
        self._op_id = op_id
        self._token: CancellationToken | None = None

    def __enter__(self) -> CancellationToken:
        self._token = self._registry.create(self._op_id)
        return self._token

    def __exit__(self, *exc_info: object) -> None:
        self._registry.complete(self._op_id, self._token)

    async def __aenter__(self) -> CancellationToken:
        return self.__enter__()

    async def __aexit__(self, *exc_info: object) -> None:
        self.__exit__(*exc_info)


# ═══════════════════════════════════════════════════════════════════════════════
# Default registry
# ═══════════════════════════════════════════════════════════════════════════════

_registry: OperationRegistry | None = None


def get_registry() -> OperationRegistry:
    """Get the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = OperationRegistry()
    return _registry


def set_registry(registry: OperationRegistry) -> None:
    """Replace the process-wide registry."""
    global _registry
    _registry = registry


def reset_registry() -> None:
    """Drop the process-wide registry (useful for testing)."""
    global _registry
    _registry = None


def create_cancellable_operation(op_id: str) -> CancellationToken:
    """Register op_id on the default registry and return its token."""
    return get_registry().create(op_id)


def complete_operation(op_id: str) -> None:
    """Remove op_id from the default registry. Idempotent."""
    get_registry().complete(op_id)


def cancel_operation(op_id: str, reason: str | None = None) -> bool:
    """Cancel op_id on the default registry. Returns False if not active."""
    return get_registry().cancel(op_id, reason)


def get_active_operation_count() -> int:
    return len(get_registry())
