"""Typed failure conditions for the control core.

Provides error codes and a small exception hierarchy that callers can branch
on. Each exception converts to an ErrorInfo (Pydantic) for protocol-level
responses, so a dispatcher never needs to inspect messages.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ErrorCode(StrEnum):
    """Standard error codes for control-core failures.

    Used for programmatic error handling and retry decisions.
    """
    RATE_LIMITED = "RATE_LIMITED"
    CANCELLED = "CANCELLED"
    INVALID_CONFIG = "INVALID_CONFIG"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    POLL_TIMEOUT = "POLL_TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    UNKNOWN = "UNKNOWN"


# JSON-RPC numeric codes used on the wire
RPC_CODES: dict[ErrorCode, int] = {
    ErrorCode.RATE_LIMITED: -32_101,
    ErrorCode.POLL_TIMEOUT: -32_105,
    ErrorCode.GENERATION_FAILED: -32_106,
    ErrorCode.CANCELLED: -32_800,
    ErrorCode.INVALID_CONFIG: -32_602,
}
_RPC_INTERNAL_ERROR = -32_603

# Transient codes: a retry may succeed
TRANSIENT_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
})


class ErrorInfo(BaseModel):
    """Structured error payload for protocol-level responses.

    Attributes:
        code: Machine-readable error code
        message: Human-readable error message
        data: Extra structured fields (e.g. retry_after_ms)
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "title": "Error Info",
            "examples": [{
                "code": "RATE_LIMITED",
                "message": "Rate limit exceeded. Please wait before making more requests.",
                "data": {"retry_after_ms": 250},
            }],
        },
    )

    code: ErrorCode = ErrorCode.UNKNOWN
    message: Annotated[str, Field(min_length=1)]
    data: dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def recoverable(self) -> bool:
        """Whether the caller may succeed by trying again later."""
        return self.code in TRANSIENT_CODES

    def to_rpc(self) -> dict[str, object]:
        """Convert to a JSON-RPC 2.0 error object."""
        rpc: dict[str, object] = {
            "code": RPC_CODES.get(self.code, _RPC_INTERNAL_ERROR),
            "message": self.message,
        }
        if self.data:
            rpc["data"] = dict(self.data)
        return rpc

    @classmethod
    def from_exception(cls, exc: BaseException) -> Self:
        """Build from any exception, preserving typed data when available."""
        if isinstance(exc, MediagateError):
            return cls(code=exc.code, message=str(exc), data=exc.data)
        message = str(exc) or type(exc).__name__
        return cls(code=classify_exception(exc), message=message)


class MediagateError(Exception):
    """Base class for typed control-core failures."""

    code: ClassVar[ErrorCode] = ErrorCode.UNKNOWN

    @property
    def data(self) -> dict[str, object]:
        return {}

    def to_info(self) -> ErrorInfo:
        return ErrorInfo.from_exception(self)


class ConfigurationError(MediagateError):
    """Invalid constructor arguments. Raised immediately at construction."""

    code = ErrorCode.INVALID_CONFIG


class RateLimitExceeded(MediagateError):
    """No rate-limit token was available.

    Attributes:
        retry_after_ms: Milliseconds until the next token is expected
    """

    code = ErrorCode.RATE_LIMITED
    __slots__ = ("retry_after_ms",)

    def __init__(
        self,
        retry_after_ms: int,
        message: str = "Rate limit exceeded. Please wait before making more requests.",
    ) -> None:
        self.retry_after_ms = retry_after_ms
        super().__init__(message)

    @property
    def data(self) -> dict[str, object]:
        return {"retry_after_ms": self.retry_after_ms}


class OperationCancelled(MediagateError):
    """A cancellation token fired while waiting."""

    code = ErrorCode.CANCELLED
    __slots__ = ("reason",)

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Operation was cancelled: {reason}" if reason else "Operation was cancelled")

    @property
    def data(self) -> dict[str, object]:
        return {"reason": self.reason} if self.reason else {}


class PollTimeout(MediagateError):
    """Polling for an async result ran out of attempts."""

    code = ErrorCode.POLL_TIMEOUT
    __slots__ = ("attempts", "elapsed_ms", "task_id")

    def __init__(self, message: str, *, attempts: int, elapsed_ms: float, task_id: str = "") -> None:
        self.attempts = attempts
        self.elapsed_ms = elapsed_ms
        self.task_id = task_id
        super().__init__(message)

    @property
    def data(self) -> dict[str, object]:
        return {"task_id": self.task_id, "attempts": self.attempts, "elapsed_ms": self.elapsed_ms}


class GenerationFailed(MediagateError):
    """The remote side reported a failed task."""

    code = ErrorCode.GENERATION_FAILED
    __slots__ = ("reason", "task_id")

    def __init__(self, message: str, *, reason: str | None = None, task_id: str = "") -> None:
        self.reason = reason
        self.task_id = task_id
        super().__init__(message)

    @property
    def data(self) -> dict[str, object]:
        data: dict[str, object] = {"task_id": self.task_id}
        if self.reason:
            data["reason"] = self.reason
        return data


# Pattern -> code mapping, checked in order
_PATTERN_CODES: dict[str, ErrorCode] = {
    "timeout": ErrorCode.TIMEOUT,
    "connection": ErrorCode.NETWORK_ERROR,
    "network": ErrorCode.NETWORK_ERROR,
    "ratelimit": ErrorCode.RATE_LIMITED,
    "rate limit": ErrorCode.RATE_LIMITED,
    "too many requests": ErrorCode.RATE_LIMITED,
    "429": ErrorCode.RATE_LIMITED,
    "cancel": ErrorCode.CANCELLED,
}
_PATTERN_KEYS = tuple(_PATTERN_CODES)


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    haystack = exc_key.lower()
    for pattern in _PATTERN_KEYS:
        if pattern in haystack:
            return _PATTERN_CODES[pattern]
    return ErrorCode.EXTERNAL_SERVICE_ERROR


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map an exception to an error code.

    Typed errors report their own code; anything else is classified by
    pattern matching on its type name and message.
    """
    if isinstance(exc, MediagateError):
        return exc.code
    if isinstance(exc, TimeoutError):
        return ErrorCode.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorCode.NETWORK_ERROR
    return _classify_cached(f"{type(exc).__name__} {exc}")
