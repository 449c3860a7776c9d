"""Error taxonomy for the control core.

- ErrorCode: Standard codes for programmatic handling
- MediagateError and subclasses: typed, recoverable conditions
- ErrorInfo: Pydantic payload for protocol-level responses
"""

from .errors import (
    RPC_CODES,
    TRANSIENT_CODES,
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

__all__ = [
    "ErrorCode", "ErrorInfo", "RPC_CODES", "TRANSIENT_CODES", "classify_exception",
    "MediagateError", "ConfigurationError", "RateLimitExceeded", "OperationCancelled",
    "PollTimeout", "GenerationFailed",
]
