"""Cancellable waits built on the event loop timer.

Provides:
    - sleep: Timer-backed delay that a CancellationToken can interrupt
    - wait_cancellable: Await a shared future, giving up on cancellation
    - map_async: Ordered parallel map with a concurrency limit

Every wait registers a callback on the token, so a cancellation fired while
the timer is pending cancels the timer handle itself and wakes the waiter
on the next loop iteration.

Example:
    >>> await sleep(500, token)          # OperationCancelled if token fires first
    >>> results = await map_async(fetch, urls, limit=4)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from mediagate.foundation.errors import ConfigurationError, OperationCancelled

from .cancel import CancellationToken, check

T = TypeVar("T")
U = TypeVar("U")


def _resolve(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


def _reject(waiter: asyncio.Future[T], reason: str | None) -> None:
    if not waiter.done():
        waiter.set_exception(OperationCancelled(reason))


async def sleep(delay_ms: float, cancel_token: CancellationToken | None = None) -> None:
    """Sleep for delay_ms milliseconds, aborting if the token fires.

    Raises:
        OperationCancelled: If the token is (or becomes) cancelled
    """
    check(cancel_token)
    if cancel_token is None:
        await asyncio.sleep(max(delay_ms, 0) / 1000)
        return

    loop = asyncio.get_running_loop()
    waiter: asyncio.Future[None] = loop.create_future()
    timer = loop.call_later(max(delay_ms, 0) / 1000, _resolve, waiter)
    remove = cancel_token.add_callback(lambda reason: _reject(waiter, reason))
    try:
        await waiter
    finally:
        timer.cancel()
        remove()


async def wait_cancellable(future: asyncio.Future[T], cancel_token: CancellationToken | None) -> T:
    """Await a shared future, raising OperationCancelled if the token fires.

    The future itself is never cancelled: other awaiters keep waiting on it.
    Cancelling the calling task does not cancel the future either.
    """
    check(cancel_token)
    if cancel_token is None:
        return await asyncio.shield(future)

    waiter: asyncio.Future[T] = asyncio.get_running_loop().create_future()

    def relay(done: asyncio.Future[T]) -> None:
        if waiter.done():
            return
        if done.cancelled():
            waiter.cancel()
        elif (exc := done.exception()) is not None:
            waiter.set_exception(exc)
        else:
            waiter.set_result(done.result())

    future.add_done_callback(relay)
    remove = cancel_token.add_callback(lambda reason: _reject(waiter, reason))
    try:
        return await waiter
    finally:
        future.remove_done_callback(relay)
        remove()


async def map_async(
    fn: Callable[[T], Awaitable[U]],
    items: Iterable[T],
    *,
    limit: int,
    cancel_token: CancellationToken | None = None,
) -> list[U]:
    """Apply an async function to items with at most `limit` in flight.

    Results keep input order. The first failure cancels the remaining work
    and propagates. A cancelled token stops workers before their next item.

    Example:
        >>> results = await map_async(process, items, limit=10)
    """
    if limit <= 0:
        raise ConfigurationError("limit must be positive")

    pending = list(items)
    results: list[U | None] = [None] * len(pending)
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(pending):
            check(cancel_token)
            index = next_index
            next_index += 1
            results[index] = await fn(pending[index])

    workers = [asyncio.ensure_future(worker()) for _ in range(min(limit, len(pending)))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]
