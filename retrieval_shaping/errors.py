"""
Structured Error Handling for the retrieval shaping pipeline

Provides a hierarchy of exceptions for the failure scenarios of budgeting,
filtering and ranking, with clear semantics for who handles them.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ShapingError(Exception):
    """
    Base exception for the shaping pipeline.

    All pipeline-specific errors inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SHAPING_ERROR",
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize pipeline error.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            severity: Error severity level
            context: Additional context for debugging
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for structured logs"""
        return {
            "error": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_code}: {self.message})"


class NonRetriableError(ShapingError):
    """
    Error that should NOT be retried.

    Bad configuration or malformed input: running the same call again gives
    the same failure.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "NON_RETRIABLE_ERROR",
        **kwargs,
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, error_code, **kwargs)


# ============================================================================
# Specific Error Types
# ============================================================================


class ConfigurationError(NonRetriableError):
    """Invalid configuration: thresholds, weights or reranking bounds"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIG_ERROR", **kwargs)


class ValidationError(NonRetriableError):
    """Request input validation failed"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="VALIDATION_ERROR", **kwargs)
        self.field = field


class OverBudgetError(NonRetriableError):
    """Fixed prompt components plus the response reserve exceed the context window.

    The caller decides whether to truncate history or abort.
    """

    def __init__(
        self,
        message: str,
        total_tokens: int = 0,
        requested_tokens: int = 0,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or {}
        context.update({"total_tokens": total_tokens, "requested_tokens": requested_tokens})
        super().__init__(message, error_code="OVER_BUDGET", context=context, **kwargs)
        self.total_tokens = total_tokens
        self.requested_tokens = requested_tokens

    @property
    def overflow(self) -> int:
        return self.requested_tokens - self.total_tokens


class EmptyResultSetError(ShapingError):
    """No results survived filtering. Raised only when a caller asks for it."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, error_code="EMPTY_RESULT_SET", **kwargs)
        self.stage = stage


# ============================================================================
# Error Utilities
# ============================================================================


def is_fatal(error: Exception) -> bool:
    """Check if error is fatal and cannot be recovered"""
    return isinstance(error, NonRetriableError)


def get_error_severity(error: Exception) -> ErrorSeverity:
    """Get severity level of error"""
    if isinstance(error, ShapingError):
        return error.severity
    return ErrorSeverity.HIGH


def format_error_for_logging(error: Exception, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Format error for structured logging"""
    result: Dict[str, Any] = {
        "error_type": type(error).__name__,
        "message": str(error),
    }

    if request_id:
        result["request_id"] = request_id

    if isinstance(error, ShapingError):
        result.update(error.to_dict())

    if error.__cause__:
        result["caused_by"] = {
            "type": type(error.__cause__).__name__,
            "message": str(error.__cause__),
        }

    return result
