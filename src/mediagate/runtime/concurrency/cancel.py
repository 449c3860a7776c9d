"""Cancellation tokens for cooperative cancellation.

A CancellationToken is passed explicitly through every layer that may
suspend (rate-limit wait, retry sleep, cache follower, poll interval).
Primitives register a callback on the token so that a cancellation wakes
them within one loop tick instead of racing an independent timer.

Example:
    >>> token = CancellationToken()
    >>> await limiter.wait_for_token(token)   # raises OperationCancelled if token.cancel() runs
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from mediagate.foundation.errors import OperationCancelled

CancelCallback = Callable[[str | None], object]


@dataclass(slots=True, eq=False)
class CancellationToken:
    """One-shot cancellation signal.

    Cancelling is idempotent: callbacks run once, synchronously, in
    registration order, on the first cancel() call. Callbacks registered
    after cancellation run immediately.

    Attributes:
        name: Optional label for debugging
    """

    name: str | None = None
    _cancelled: bool = field(default=False, repr=False)
    _reason: str | None = field(default=None, repr=False)
    _callbacks: list[CancelCallback] = field(default_factory=list, repr=False)

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Request cancellation.

        Returns:
            True if this call cancelled the token, False if already cancelled
        """
        if self._cancelled:
            return False
        self._cancelled, self._reason = True, reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if cancellation was requested."""
        if self._cancelled:
            raise OperationCancelled(self._reason)

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Register a callback fired on cancellation.

        Returns:
            A function that unregisters the callback (safe to call twice)
        """
        if self._cancelled:
            callback(self._reason)
            return _noop

        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass  # already fired or removed

        return remove

    async def wait(self) -> str | None:
        """Suspend until the token is cancelled. Returns the reason."""
        if self._cancelled:
            return self._reason
        waiter = asyncio.get_running_loop().create_future()
        remove = self.add_callback(lambda reason: waiter.done() or waiter.set_result(reason))
        try:
            return await waiter
        finally:
            remove()


def _noop() -> None:
    return None


def check(token: CancellationToken | None) -> None:
    """Raise OperationCancelled if an optional token is cancelled."""
    if token is not None:
        token.raise_if_cancelled()
