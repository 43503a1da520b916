"""
Error taxonomy for lane-dispatch.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured context for debugging

Configuration errors also derive from ValueError so that callers validating
arguments the usual way keep working.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the dispatcher."""

    # Configuration errors (1xxx)
    CONFIG_ERROR = "ERR_1000"
    INVALID_LANE_COUNT = "ERR_1001"
    INVALID_CONCURRENCY = "ERR_1002"
    INVALID_TIMEOUT = "ERR_1003"
    INVALID_CONFIG = "ERR_1004"

    # Lane errors (2xxx)
    LANE_ERROR = "ERR_2000"
    LANE_SHUTDOWN = "ERR_2001"
    INVALID_TRANSITION = "ERR_2002"

    # Persistence errors (3xxx)
    PERSISTENCE_ERROR = "ERR_3000"
    FLUSH_FAILED = "ERR_3001"
    RECOVERY_FAILED = "ERR_3002"
    CLEANUP_FAILED = "ERR_3003"
    SERIALIZATION_FAILED = "ERR_3004"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    lane_index: int | None = None
    job_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lane_index": self.lane_index,
            "job_id": self.job_id,
            "operation": self.operation,
            **self.extra,
        }


class DispatchError(Exception):
    """
    Base exception for all dispatcher errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.job_id:
            parts.append(f"(job_id={self.context.job_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(DispatchError, ValueError):
    """Base class for configuration and argument errors."""

    code = ErrorCode.CONFIG_ERROR
    retryable = False


class InvalidLaneCountError(ConfigError):
    """Lane count must be a positive integer."""

    code = ErrorCode.INVALID_LANE_COUNT

    def __init__(self, value: Any, **kwargs):
        super().__init__(f"Lane count must be greater than 0, got {value!r}", **kwargs)
        self.value = value


class InvalidConcurrencyError(ConfigError):
    """Per-lane concurrency must be a positive integer."""

    code = ErrorCode.INVALID_CONCURRENCY

    def __init__(self, value: Any, **kwargs):
        super().__init__(f"Concurrency must be greater than 0, got {value!r}", **kwargs)
        self.value = value


class InvalidTimeoutError(ConfigError):
    """Timeouts must be positive."""

    code = ErrorCode.INVALID_TIMEOUT

    def __init__(self, value: Any, **kwargs):
        super().__init__(f"Timeout must be greater than 0 ms, got {value!r}", **kwargs)
        self.value = value


class InvalidConfigError(ConfigError):
    """Settings failed validation."""

    code = ErrorCode.INVALID_CONFIG


# =============================================================================
# Lane Errors
# =============================================================================


class LaneError(DispatchError):
    """Base class for lane-level errors."""

    code = ErrorCode.LANE_ERROR


class LaneShutdownError(LaneError):
    """Work was submitted to a lane (or manager) that has been shut down."""

    code = ErrorCode.LANE_SHUTDOWN

    def __init__(self, message: str = "Lane has been shut down", **kwargs):
        super().__init__(message, **kwargs)


class InvalidTransitionError(LaneError, ValueError):
    """A job status transition violated the lifecycle."""

    code = ErrorCode.INVALID_TRANSITION


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(DispatchError):
    """Storage failed. In-memory lane state is never rolled back for these."""

    code = ErrorCode.PERSISTENCE_ERROR
    retryable = True


class FlushError(PersistenceError):
    code = ErrorCode.FLUSH_FAILED


class RecoveryError(PersistenceError):
    code = ErrorCode.RECOVERY_FAILED


class CleanupError(PersistenceError):
    code = ErrorCode.CLEANUP_FAILED


class JobSerializationError(PersistenceError):
    """A job record cannot be encoded for storage. Retrying will not help."""

    code = ErrorCode.SERIALIZATION_FAILED
    retryable = False


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, DispatchError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


__all__ = [
    "ErrorCode",
    "ErrorContext",
    "DispatchError",
    "ConfigError",
    "InvalidLaneCountError",
    "InvalidConcurrencyError",
    "InvalidTimeoutError",
    "InvalidConfigError",
    "LaneError",
    "LaneShutdownError",
    "InvalidTransitionError",
    "PersistenceError",
    "FlushError",
    "RecoveryError",
    "CleanupError",
    "JobSerializationError",
    "is_retryable",
]
