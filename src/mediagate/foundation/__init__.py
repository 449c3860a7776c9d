"""Foundation layer: error taxonomy and configuration."""

from .config import MediagateSettings, clear_settings_cache, get_settings
from .errors import (
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
    "MediagateSettings", "get_settings", "clear_settings_cache",
    "ErrorCode", "ErrorInfo", "MediagateError", "ConfigurationError", "RateLimitExceeded",
    "OperationCancelled", "PollTimeout", "GenerationFailed", "classify_exception",
]
