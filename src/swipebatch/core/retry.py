"""
Error hierarchy and retry logic for storage and other idempotent boundaries.

This module provides:
- Error type hierarchy (retryable vs non-retryable)
- A tenacity-based retry decorator for async calls

Submissions to the relay are never wrapped in a retry: re-sending a batch
whose first attempt may have landed would double-submit it.

Usage:
    from swipebatch.core.retry import retry_transient, TransientError

    @retry_transient(max_attempts=3)
    async def write_row():
        ...
"""

import sqlite3
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, Union

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

log = structlog.get_logger()


# =============================================================================
# Error Type Hierarchy
# =============================================================================


class ErrorCategory(str, Enum):
    """Classification of error types for retry decisions."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class SwipeBatchError(Exception):
    """Base exception for all swipebatch errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class TransientError(SwipeBatchError):
    """Error that may succeed on retry (locked database, dropped connection)."""

    category = ErrorCategory.TRANSIENT


class PermanentError(SwipeBatchError):
    """Error that will NOT succeed on retry."""

    category = ErrorCategory.PERMANENT


class ValidationError(PermanentError):
    """Request validation failed - fix the input."""

    pass


# =============================================================================
# Retry Decorator
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_WAIT_SECONDS = 0.05
DEFAULT_MAX_WAIT_SECONDS = 2.0
DEFAULT_EXPONENTIAL_MULTIPLIER = 2.0

F = TypeVar("F", bound=Callable[..., Any])


def _log_retry(log_context: Optional[dict[str, Any]]) -> Callable[[RetryCallState], None]:
    context = log_context or {}

    def callback(state: RetryCallState) -> None:
        exception = state.outcome.exception() if state.outcome else None
        log.warning(
            "retry_attempt",
            attempt=state.attempt_number,
            error=str(exception) if exception else None,
            error_type=type(exception).__name__ if exception else None,
            wait_seconds=state.next_action.sleep if state.next_action else 0,
            **context,
        )

    return callback


def retry_transient(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    min_wait: float = DEFAULT_MIN_WAIT_SECONDS,
    max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
    multiplier: float = DEFAULT_EXPONENTIAL_MULTIPLIER,
    jitter: bool = True,
    log_context: Optional[dict[str, Any]] = None,
) -> Callable[[F], F]:
    """Decorator to retry an async function on TransientError with backoff.

    Args:
        max_attempts: Maximum number of attempts (including initial).
        min_wait: Minimum wait time between retries in seconds.
        max_wait: Maximum wait time between retries in seconds.
        multiplier: Multiplier for exponential backoff.
        jitter: Whether to add randomness to wait times.
        log_context: Additional context for log messages.

    Returns:
        Decorator function.
    """

    def decorator(func: F) -> F:
        callback = _log_retry(log_context)

        if jitter:
            wait_strategy = wait_random_exponential(
                multiplier=multiplier, min=min_wait, max=max_wait
            )
        else:
            wait_strategy = wait_exponential(
                multiplier=multiplier, min=min_wait, max=max_wait
            )

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_strategy,
                retry=retry_if_exception_type(TransientError),
                before_sleep=callback,
                reraise=True,
            ):
                with attempt:
                    return await func(*args, **kwargs)

        return async_wrapper  # type: ignore

    return decorator


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_error(error: Exception) -> ErrorCategory:
    """Classify an error into a category.

    SQLite lock contention and I/O hiccups are transient; integrity and
    programming errors are permanent.
    """
    if isinstance(error, SwipeBatchError):
        return error.category

    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        if "locked" in message or "busy" in message or "disk i/o" in message:
            return ErrorCategory.TRANSIENT
        return ErrorCategory.PERMANENT

    if isinstance(error, (sqlite3.IntegrityError, sqlite3.ProgrammingError, ValueError)):
        return ErrorCategory.PERMANENT

    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_external_error(
    error: Exception,
    context: Optional[str] = None,
) -> Union[TransientError, PermanentError]:
    """Wrap an external error in the matching swipebatch error type."""
    category = classify_error(error)
    message = f"{context}: {error}" if context else str(error)

    if category == ErrorCategory.TRANSIENT:
        return TransientError(message, cause=error)
    return PermanentError(message, cause=error)
