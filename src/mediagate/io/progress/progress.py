"""Progress notifications for long-running operations.

A ProgressReporter is bound to one operation id and forwards
ProgressNotification payloads to a transport sink (typically the MCP
`notifications/progress` sender). The reporter itself never catches sink
failures; wrap the sink with best_effort() to make delivery fire-and-forget.

Uses Pydantic for validation and MCP wire serialization.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("mediagate.progress")


class ProgressNotification(BaseModel):
    """Progress payload tagged with the operation it belongs to.

    Serializes with MCP field names (`progressToken`).

    Example:
        >>> n = ProgressNotification(progress_token="req-1", progress=2, total=5, message="Upscaling")
        >>> n.to_params()
        {'progressToken': 'req-1', 'progress': 2.0, 'total': 5.0, 'message': 'Upscaling'}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    progress_token: str = Field(alias="progressToken")
    progress: Annotated[float, Field(ge=0.0)]
    total: Annotated[float, Field(ge=0.0)] | None = None
    message: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Params object for a `notifications/progress` message."""
        return self.model_dump(by_alias=True, exclude_none=True)


ProgressSink = Callable[[ProgressNotification], object]


class ProgressReporter:
    """Sends progress for one operation id to a sink.

    Example:
        >>> reporter = create_progress_reporter("req-1", best_effort(send_notification))
        >>> reporter.report(10, 100, "Queued")
        >>> reporter.step(2, 4, "Generating")
    """

    __slots__ = ("op_id", "_sink")

    def __init__(self, op_id: str, sink: ProgressSink) -> None:
        self.op_id = op_id
        self._sink = sink

    def __repr__(self) -> str:
        return f"ProgressReporter(op_id={self.op_id!r})"

    def report(self, progress: float, total: float | None = None, message: str | None = None) -> None:
        self._sink(ProgressNotification(
            progress_token=self.op_id, progress=progress, total=total, message=message,
        ))

    def step(self, index: int, total: int, message: str | None = None) -> None:
        """Report completion of step `index` (1-based) out of `total`."""
        self.report(index, total, message)


def create_progress_reporter(op_id: str, sink: ProgressSink) -> ProgressReporter:
    """Create a reporter tagging every notification with op_id."""
    return ProgressReporter(op_id, sink)


# ═══════════════════════════════════════════════════════════════════════════════
# Best-effort delivery
# ═══════════════════════════════════════════════════════════════════════════════

_pending: set[asyncio.Future[Any]] = set()


def _log_failure(fut: asyncio.Future[Any]) -> None:
    _pending.discard(fut)
    if fut.cancelled():
        return
    if (exc := fut.exception()) is not None:
        logger.debug("Progress delivery failed: %s", exc)


def best_effort(sink: ProgressSink) -> ProgressSink:
    """Wrap a sink so delivery failures are logged and swallowed.

    Covers sinks that raise synchronously and sinks returning an awaitable
    that later fails; the awaitable is scheduled on the running loop.
    """
    def deliver(notification: ProgressNotification) -> None:
        try:
            result = sink(notification)
            if not inspect.isawaitable(result):
                return
            fut = asyncio.ensure_future(result)
        except Exception as e:
            logger.debug("Progress delivery failed: %s", e)
            return
        _pending.add(fut)
        fut.add_done_callback(_log_failure)

    return deliver


async def drain() -> None:
    """Wait for outstanding best-effort deliveries (useful for testing and shutdown)."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)

