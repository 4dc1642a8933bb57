"""
Structured error types for the flowsched engine.

Provides a small hierarchy of typed errors carrying the metadata the
worker needs for failure bookkeeping and the logs need for correlation.

Instead of generic exceptions that lose context, every FlowschedError
carries:
- **Category:** What kind of error (config, execution, database, ...)
- **Retryable:** Whether the schedule may be retried automatically
- **Context:** schedule / run / execution identifiers plus free metadata
- **Cause:** Chained underlying exception for root cause analysis

Manifesto:
    - **Typed Error Hierarchy:** One type per failure domain
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry identifiers for logging
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      FlowschedError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigurationError   NotFoundError      ExecutionError          │
        │  (CONFIG)             (NOT_FOUND)        (EXECUTION, retryable)  │
        │                                                │                 │
        │                                       ExecutionTimeoutError      │
        │                                                                  │
        │  StoreError           LockBackendError                           │
        │  (DATABASE)           (NETWORK, retryable)                       │
        └─────────────────────────────────────────────────────────────────┘

    A lock miss is NOT an error: ``acquire_lock`` returns ``None``.

Guardrails:
    ❌ DON'T: Raise plain Exception from engine code
    ✅ DO: Use the matching FlowschedError subclass

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Usage:
    from flowsched.core.errors import ConfigurationError

    if not schedule.cron_expression:
        raise ConfigurationError("Cron schedule missing cron_expression").with_context(
            schedule_id=schedule.id
        )

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, flowsched
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    # Infrastructure
    NETWORK = "NETWORK"           # Shared cache / queue connectivity
    DATABASE = "DATABASE"         # Store queries and updates

    # Definitions
    CONFIG = "CONFIG"             # Missing cron/interval, bad timezone, settings
    NOT_FOUND = "NOT_FOUND"       # Target definition or schedule missing

    # Runtime
    EXECUTION = "EXECUTION"       # Target workflow invocation failed

    # Internal
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields for the identifiers that matter to the scheduler; anything
    else goes into ``metadata``.  ``to_dict()`` drops unset fields so the
    result can be splatted into a structured log call.
    """

    schedule_id: str | None = None
    run_id: str | None = None
    execution_id: str | None = None
    target_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["schedule_id", "run_id", "execution_id", "target_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FlowschedError(Exception):
    """
    Base exception for all flowsched errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their domain.

    Examples:
        >>> error = FlowschedError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
        >>> error.with_context(schedule_id="sch-1").context.schedule_id
        'sch-1'
    """

    # Default category for this error type
    default_category: ErrorCategory = ErrorCategory.INTERNAL

    # Default retryable setting
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        # Chain the cause if provided
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FlowschedError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Chatflow not found").with_context(
                schedule_id=schedule.id, target_id=schedule.target_id
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DEFINITION ERRORS (never retryable)
# =============================================================================


class ConfigurationError(FlowschedError):
    """
    Schedule or engine configuration is invalid.

    Raised synchronously by the evaluator for a cron schedule without an
    expression, an interval schedule without a duration, an unknown
    cadence type or timezone.  Never retryable - the row must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class NotFoundError(FlowschedError):
    """A referenced schedule or target definition does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(FlowschedError):
    """The target workflow invocation failed.

    Captured per run (run -> failed) and counted against the schedule's
    retry budget by the worker.
    """

    default_category = ErrorCategory.EXECUTION
    default_retryable = True


class ExecutionTimeoutError(ExecutionError):
    """Execution exceeded the hard timeout.

    Attributes:
        timeout: The timeout value (seconds) that was exceeded
    """

    def __init__(self, timeout: float, message: str | None = None, **kwargs: Any):
        self.timeout = timeout
        super().__init__(
            message or f"Schedule execution timed out after {timeout:g}s",
            **kwargs,
        )


# =============================================================================
# INFRASTRUCTURE ERRORS
# =============================================================================


class StoreError(FlowschedError):
    """Schedule store query or update failed."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class LockBackendError(FlowschedError):
    """Shared cache backing the lease could not be reached."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def error_message(error: BaseException) -> str:
    """Human-readable message for a run's ``error_message`` column."""
    if isinstance(error, FlowschedError):
        return error.message
    return str(error) or error.__class__.__name__


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, FlowschedError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.EXECUTION
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FlowschedError",
    "ConfigurationError",
    "NotFoundError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "StoreError",
    "LockBackendError",
    "error_message",
    "categorize_error",
]
