"""
Structured error types for the categorizer job engine.

Every failure the engine can observe is expressed as a typed error carrying
retry semantics and context, so the gateway can decide whether to retry, the
engine can decide whether a failure is item-local or session-fatal, and the
API can map it onto an HTTP status.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      CategorizerError                            │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError           ValidationError       SessionError     │
        │  (retryable=True)         (VALIDATION)          (SESSION)        │
        │       │                        │                     │           │
        │  DatabaseConnectionError  ConstraintError     SessionNotFound    │
        │  OracleError                                  AlreadyCompleted   │
        │                                               SessionBusy        │
        │  DatabaseError            MaxRetriesExceeded  InvalidTransition  │
        └─────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise bare Exception from the engine or gateway
    ✅ DO: Use the matching subclass so retry and HTTP mapping stay correct

    ❌ DON'T: Swallow the underlying driver exception
    ✅ DO: Pass it as cause= so the chain survives into logs

Usage:
    from categorizer.core.errors import SessionNotFoundError

    session = store.get(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Oracle connection, timeout
    DATABASE = "DATABASE"         # Connection pool, lost connection, query

    # Data errors
    VALIDATION = "VALIDATION"     # Bad input, constraint violations

    # Application errors
    ORACLE = "ORACLE"             # Classification call failed
    SESSION = "SESSION"           # Session lifecycle misuse
    CONFIG = "CONFIG"             # Missing config, invalid settings

    # Internal errors
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    session_id: str | None = None
    word_id: int | None = None
    word: str | None = None
    model: str | None = None
    operation: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["session_id", "word_id", "word", "model", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CategorizerError(Exception):
    """
    Base exception for all categorizer errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    only pass what differs from the defaults.

    Examples:
        >>> error = CategorizerError("boom")
        >>> error.retryable
        False
        >>> error.with_context(session_id="s1").context.session_id
        's1'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False
    # Machine-readable code surfaced by the API layer
    code: str = "INTERNAL"

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CategorizerError:
        """Add context to this error (fluent API)."""
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
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(CategorizerError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True
    code = "TRANSIENT"


class DatabaseConnectionError(TransientError):
    """Database connection could not be established or was lost."""

    default_category = ErrorCategory.DATABASE


class OracleError(TransientError):
    """The classification oracle failed or returned an unusable answer."""

    default_category = ErrorCategory.ORACLE
    code = "ORACLE_FAILED"


# =============================================================================
# VALIDATION / DATABASE ERRORS (Never Retryable)
# =============================================================================


class ValidationError(CategorizerError):
    """Invalid input to an engine or store operation."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False
    code = "VALIDATION_FAILED"


class ConstraintError(ValidationError):
    """Database constraint violation that could not be resolved."""

    code = "CONFLICT"


class DatabaseError(CategorizerError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class MaxRetriesExceededError(DatabaseError):
    """A retryable storage operation kept failing until retries ran out."""

    code = "UNAVAILABLE"

    def __init__(self, attempts: int, *, cause: Exception | None = None, **kwargs: Any):
        self.attempts = attempts
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Storage operation failed after {attempts} attempts{detail}",
            cause=cause,
            **kwargs,
        )


class ConfigError(CategorizerError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False
    code = "CONFIG"


# =============================================================================
# SESSION LIFECYCLE ERRORS
# =============================================================================


class SessionError(CategorizerError):
    """Processing session lifecycle error."""

    default_category = ErrorCategory.SESSION
    default_retryable = False


class SessionNotFoundError(SessionError):
    """No processing session with the given id."""

    code = "NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session not found: {session_id}",
            context=ErrorContext(session_id=session_id),
        )


class AlreadyCompletedError(SessionError):
    """The session already ran to completion."""

    code = "ALREADY_COMPLETE"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session already completed: {session_id}",
            context=ErrorContext(session_id=session_id),
        )


class SessionBusyError(SessionError):
    """Another driver is already processing this session."""

    code = "CONFLICT"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session is already processing: {session_id}",
            context=ErrorContext(session_id=session_id),
        )


class InvalidTransitionError(SessionError):
    """A control operation is not legal from the session's current status."""

    code = "INVALID_STATE"

    def __init__(self, current: str, action: str, session_id: str | None = None):
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} a session in status '{current}'",
            context=ErrorContext(session_id=session_id),
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, CategorizerError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, CategorizerError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CategorizerError",
    "TransientError",
    "DatabaseConnectionError",
    "OracleError",
    "ValidationError",
    "ConstraintError",
    "DatabaseError",
    "MaxRetriesExceededError",
    "ConfigError",
    "SessionError",
    "SessionNotFoundError",
    "AlreadyCompletedError",
    "SessionBusyError",
    "InvalidTransitionError",
    "is_retryable",
    "categorize_error",
]
