"""Exceptions raised by the workflow guard for caller-contract violations.

Validation findings are never raised; they are returned as data inside a
ValidationResult. The exceptions here cover misuse (unknown versions,
mutating the active version) and infrastructure failures.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    VERSIONING = "versioning"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    GENERATION = "generation"


class WorkflowGuardError(Exception):
    """Base exception for all workflow guard errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.VALIDATION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self


class VersionNotFoundError(WorkflowGuardError):
    """Raised when an operation targets a version that does not exist."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        version_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VERSIONING,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if version_id:
            self.add_context(version_id=version_id)


class ActiveVersionError(WorkflowGuardError):
    """Raised when archiving or deleting the active version is attempted."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        version_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VERSIONING,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if version_id:
            self.add_context(version_id=version_id)
        if operation:
            self.add_context(operation=operation)


class StorageError(WorkflowGuardError):
    """Raised when persistence backend operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        transient: bool = True,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=transient,
            retry_after=3 if transient else None,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ConfigurationError(WorkflowGuardError, ValueError):
    """Raised when configuration is invalid or missing. Also a ValueError."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class GenerationError(WorkflowGuardError):
    """Raised when the generation provider fails or returns unusable output."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.GENERATION,
            **kwargs
        )
        if provider:
            self.add_context(provider=provider)
