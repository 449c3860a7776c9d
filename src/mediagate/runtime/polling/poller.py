"""Poll an asynchronous remote task until it finishes.

Media generation is queued server-side: a submit call returns a task id and
the result must be polled for. poll() repeatedly awaits a status check,
sleeping between attempts with capped exponential backoff, reporting
progress on every attempt and honouring a cancellation token.

Example:
    >>> async def check() -> PollStatus[str]:
    ...     status = await client.get_status(task_id)
    ...     if status.state == "success":
    ...         return PollStatus.done(status.image_url)
    ...     if status.state == "error":
    ...         return PollStatus.failed(status.error)
    ...     return PollStatus.pending()
    >>> result = await poll(check, progress=reporter, cancel_token=token, task_id=task_id)
    >>> result.value, result.attempts
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from mediagate.foundation.config import get_settings
from mediagate.foundation.errors import ConfigurationError, GenerationFailed, PollTimeout
from mediagate.runtime.concurrency import CancellationToken, check, sleep
from mediagate.runtime.retry import ExponentialBackoff

if TYPE_CHECKING:
    from mediagate.foundation.config import PollSettings
    from mediagate.io.progress import ProgressReporter

logger = logging.getLogger("mediagate.polling")

T = TypeVar("T")


class PollState(StrEnum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PollStatus(Generic[T]):
    """Outcome of one status check."""
    state: PollState
    value: T | None = None
    reason: str | None = None

    @classmethod
    def pending(cls) -> PollStatus[Any]:
        return cls(PollState.PENDING)

    @classmethod
    def done(cls, value: T) -> PollStatus[T]:
        return cls(PollState.DONE, value=value)

    @classmethod
    def failed(cls, reason: str) -> PollStatus[Any]:
        return cls(PollState.FAILED, reason=reason)


@dataclass(frozen=True, slots=True)
class PollResult(Generic[T]):
    value: T
    attempts: int
    elapsed_ms: float


def estimate_max_poll_time_ms(
    max_attempts: int = 150,
    initial_interval_ms: float = 2000.0,
    max_interval_ms: float = 10_000.0,
    multiplier: float = 1.5,
) -> float:
    """Upper bound on time spent sleeping across max_attempts checks."""
    backoff = ExponentialBackoff(initial_interval_ms, max_interval_ms, multiplier)
    return sum(backoff.delay(i) for i in range(max_attempts - 1))


async def poll(
    check_status: Callable[[], Awaitable[PollStatus[T]]],
    *,
    max_attempts: int = 150,
    initial_interval_ms: float = 2000.0,
    max_interval_ms: float = 10_000.0,
    multiplier: float = 1.5,
    progress: ProgressReporter | None = None,
    cancel_token: CancellationToken | None = None,
    task_id: str = "",
    clock: Callable[[], float] = time.monotonic,
) -> PollResult[T]:
    """Await check_status() until it reports done or failed.

    Args:
        check_status: Async callable returning a PollStatus
        max_attempts: Maximum number of checks
        initial_interval_ms: Delay after the first pending check
        max_interval_ms: Delay cap
        multiplier: Delay growth factor
        progress: Receives (attempt, max_attempts) after every pending check
        cancel_token: Checked before every check and during every sleep
        task_id: Remote task id, carried on errors

    Raises:
        GenerationFailed: If a check reports failure
        PollTimeout: If max_attempts checks all report pending
        OperationCancelled: If the token fires
    """
    if max_attempts < 1:
        raise ConfigurationError("max_attempts must be at least 1")
    backoff = ExponentialBackoff(initial_interval_ms, max_interval_ms, multiplier)
    started = clock()

    for attempt in range(1, max_attempts + 1):
        check(cancel_token)
        status = await check_status()

        match status.state:
            case PollState.DONE:
                elapsed = (clock() - started) * 1000
                logger.debug("Task %s done after %d checks (%.0fms)", task_id or "?", attempt, elapsed)
                return PollResult(status.value, attempt, elapsed)  # type: ignore[arg-type]
            case PollState.FAILED:
                raise GenerationFailed(
                    f"Generation failed: {status.reason or 'unknown error'}",
                    reason=status.reason, task_id=task_id,
                )

        if progress is not None:
            progress.report(attempt, max_attempts, f"Waiting for task ({attempt}/{max_attempts})")
        if attempt < max_attempts:
            await sleep(backoff.delay(attempt - 1), cancel_token)

    elapsed = (clock() - started) * 1000
    raise PollTimeout(
        f"Task did not complete after {max_attempts} attempts ({elapsed / 1000:.1f}s)",
        attempts=max_attempts, elapsed_ms=elapsed, task_id=task_id,
    )


async def poll_with_settings(
    check_status: Callable[[], Awaitable[PollStatus[T]]],
    settings: PollSettings | None = None,
    **kwargs: Any,
) -> PollResult[T]:
    """poll() with intervals and attempts taken from PollSettings."""
    settings = settings or get_settings().poll
    return await poll(
        check_status,
        max_attempts=settings.max_attempts,
        initial_interval_ms=settings.initial_interval_ms,
        max_interval_ms=settings.max_interval_ms,
        **kwargs,
    )
