"""
Structured error handling for contextgate.

Public store operations never raise: these exceptions surface only from strict
construction helpers, configuration validation and storage backends, and are
converted to denials or ``False`` results at the store boundary.
"""

from enum import Enum
from datetime import datetime
from typing import Dict, Any, Optional
from dataclasses import dataclass


class ErrorCode(Enum):
    """Structured error codes."""

    # Validation errors
    INVALID_REQUEST = "invalid_request"
    MISSING_PARAMETER = "missing_parameter"
    INVALID_PARAMETER = "invalid_parameter"

    # Condition errors
    INVALID_CONDITION = "invalid_condition"
    UNSUPPORTED_OPERATOR = "unsupported_operator"

    # Lookup errors
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"

    # Collaborator errors
    PRESENTER_FAILED = "presenter_failed"
    STORAGE_ERROR = "storage_error"

    # Configuration errors
    INVALID_CONFIGURATION = "invalid_configuration"


class ErrorSource(Enum):
    """Sources where errors can originate."""

    VALIDATION = "validation"
    CONDITION = "condition"
    PERMISSION_STORE = "permission_store"
    CONSENT_STORE = "consent_store"
    PRESENTER = "presenter"
    STORAGE = "storage"
    CONFIGURATION = "configuration"


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ErrorContext:
    """Additional context for errors."""

    user_id: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()
        if self.metadata is None:
            self.metadata = {}


class ContextGateError(Exception):
    """
    Base exception class for all contextgate errors.

    Carries an error code, source, severity and optional context so callers
    that do catch it can turn it into a diagnostic reason string.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        source: ErrorSource = ErrorSource.VALIDATION,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.code = code
        self.message = message
        self.source = source
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            "error": self.code.value,
            "error_description": self.message,
            "error_source": self.source.value,
            "error_severity": self.severity.value,
            "timestamp": self.context.timestamp.isoformat(),
        }

        if self.context.user_id:
            result["user_id"] = self.context.user_id

        if self.context.request_id:
            result["request_id"] = self.context.request_id

        if self.context.metadata:
            result["metadata"] = self.context.metadata

        if self.cause:
            result["caused_by"] = str(self.cause)

        return result


class ValidationError(ContextGateError):
    """Malformed or incomplete request."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", ErrorContext())
        if field:
            context.metadata["field"] = field

        super().__init__(
            code=kwargs.pop("code", ErrorCode.INVALID_REQUEST),
            message=message,
            source=ErrorSource.VALIDATION,
            severity=ErrorSeverity.LOW,
            context=context,
            **kwargs
        )
        self.field = field


class ConditionError(ContextGateError):
    """Condition whose (type, operator, value) combination is not supported."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            code=kwargs.pop("code", ErrorCode.INVALID_CONDITION),
            message=message,
            source=ErrorSource.CONDITION,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


class PresenterError(ContextGateError):
    """Failure raised by, or while calling, a consent presenter."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            code=ErrorCode.PRESENTER_FAILED,
            message=message,
            source=ErrorSource.PRESENTER,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class StorageError(ContextGateError):
    """Secure store backend failure."""

    def __init__(self, operation: str, key: str, message: str, cause: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.STORAGE_ERROR,
            message=f"{operation} {key}: {message}",
            source=ErrorSource.STORAGE,
            severity=ErrorSeverity.HIGH,
            cause=cause
        )
        self.operation = operation
        self.key = key


class ConfigurationError(ContextGateError):
    """Invalid configuration value."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            code=ErrorCode.INVALID_CONFIGURATION,
            message=message,
            source=ErrorSource.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


__all__ = [
    "ErrorCode",
    "ErrorSource",
    "ErrorSeverity",
    "ErrorContext",
    "ContextGateError",
    "ValidationError",
    "ConditionError",
    "PresenterError",
    "StorageError",
    "ConfigurationError",
]
