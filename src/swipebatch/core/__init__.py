"""Core framework infrastructure - config, events, logging, lifecycle, retry."""

from swipebatch.core.config import ConfigManager
from swipebatch.core.events import EventBus
from swipebatch.core.logging import setup_logging
from swipebatch.core.lifecycle import (
    BaseComponent,
    HealthCheckResult,
    HealthStatus,
)
from swipebatch.core.retry import (
    ErrorCategory,
    PermanentError,
    SwipeBatchError,
    TransientError,
    ValidationError,
    classify_error,
    retry_transient,
    wrap_external_error,
)

__all__ = [
    # Config
    "ConfigManager",
    # Events
    "EventBus",
    # Logging
    "setup_logging",
    # Lifecycle
    "BaseComponent",
    "HealthCheckResult",
    "HealthStatus",
    # Errors
    "ErrorCategory",
    "SwipeBatchError",
    "TransientError",
    "PermanentError",
    "ValidationError",
    # Retry
    "retry_transient",
    "classify_error",
    "wrap_external_error",
]
