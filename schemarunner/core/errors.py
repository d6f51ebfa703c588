"""
Error hierarchy for the migration engine.

Every error raised by the engine derives from MigrationError and carries a
severity, a category and a context dictionary so callers can route, log or
serialize failures uniformly.
"""

import time
from datetime import datetime, timezone
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from ..models import MigrationScript, ValidationResult

__all__ = [
    "ErrorSeverity",
    "ErrorCategory",
    "MigrationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "ValidationError",
    "HybridBatchError",
    "LockAcquisitionError",
    "OwnershipVerificationError",
    "ExecutionError",
    "TransactionError",
    "CommitRetryableError",
    "BackupError",
    "RollbackError",
    "LoaderError",
    "RetryConfig",
]


class ErrorSeverity(Enum):
    """Error severity levels for classification and handling."""

    CRITICAL = auto()  # Run cannot continue, state may be inconsistent
    HIGH = auto()  # Run aborted, recovery attempted
    MEDIUM = auto()  # Recoverable locally (retry)
    LOW = auto()  # Reported, run may proceed


class ErrorCategory(Enum):
    """Error categories for classification and routing."""

    CONFIGURATION = auto()
    DATABASE = auto()
    VALIDATION = auto()
    LOCKING = auto()
    EXECUTION = auto()
    TRANSACTION = auto()
    BACKUP = auto()
    LOADER = auto()


class MigrationError(Exception):
    """Base exception class with enhanced error information."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        """
        Initialize error with metadata.

        Args:
            message: Human-readable error message
            severity: Error severity level
            category: Error category for classification
            error_code: Unique error code for tracking
            context: Additional context information
            recoverable: Whether the engine may retry the failed operation
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.error_code = error_code or self._generate_error_code()
        self.context = context or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def _generate_error_code(self) -> str:
        """Generate error code based on category and timestamp."""
        timestamp = int(time.time() * 1000) % 100000
        return f"{self.category.name[:3]}-{self.severity.name[:3]}-{timestamp}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.name,
            "category": self.category.name,
            "context": self.context,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(MigrationError):
    """Invalid or inconsistent configuration."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            context=context,
            **kwargs,
        )


class DatabaseConnectionError(MigrationError):
    """Pre-flight connection check failed. Raised before any state is touched."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.DATABASE,
            **kwargs,
        )


class ValidationError(MigrationError):
    """Script validation failed.

    Carries the per-script validation results so callers can render every
    issue, not just the first one.
    """

    def __init__(
        self,
        message: str,
        validation_results: Optional[List["ValidationResult"]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.VALIDATION,
            **kwargs,
        )
        self.validation_results = list(validation_results or [])

    @property
    def error_count(self) -> int:
        return sum(len(result.errors) for result in self.validation_results)

    @property
    def warning_count(self) -> int:
        return sum(len(result.warnings) for result in self.validation_results)


class HybridBatchError(ValidationError):
    """A managed transaction was requested for a batch that mixes script types
    which issue their own transaction statements with managed ones."""

    def __init__(
        self,
        message: str,
        unmanaged: Optional[List[str]] = None,
        managed: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        context["unmanaged"] = list(unmanaged or [])
        context["managed"] = list(managed or [])
        super().__init__(message, context=context, **kwargs)
        self.severity = ErrorSeverity.CRITICAL


class LockAcquisitionError(MigrationError):
    """The migration lock could not be acquired."""

    def __init__(self, message: str, executor_id: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if executor_id:
            context["executor_id"] = executor_id
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.LOCKING,
            context=context,
            **kwargs,
        )


class OwnershipVerificationError(LockAcquisitionError):
    """The store reported the lock as acquired but ownership could not be
    verified. Indicates a race or clock skew and is never retried."""

    def __init__(self, executor_id: str, **kwargs: Any) -> None:
        super().__init__(
            "Lock ownership verification failed. Lock was acquired but is no longer "
            "owned by this executor. This may indicate a race condition or clock skew "
            "between servers.",
            executor_id=executor_id,
            **kwargs,
        )
        self.severity = ErrorSeverity.CRITICAL


class ExecutionError(MigrationError):
    """A script could not be executed."""

    def __init__(self, message: str, script: Optional["MigrationScript"] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if script is not None:
            context["script"] = script.name
            context["version"] = script.version
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            context=context,
            **kwargs,
        )
        self.script = script


class TransactionError(MigrationError):
    """Transaction lifecycle failure (begin, commit or rollback)."""

    def __init__(self, message: str, transaction_id: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if transaction_id:
            context["transaction_id"] = transaction_id
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.TRANSACTION,
            context=context,
            **kwargs,
        )


class CommitRetryableError(TransactionError):
    """Commit failure a backend explicitly marks as safe to retry
    (serialization conflict, deadlock victim, ...)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, severity=ErrorSeverity.MEDIUM, recoverable=True, **kwargs)


class BackupError(MigrationError):
    """Backup creation or restoration failed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.BACKUP,
            **kwargs,
        )


class RollbackError(MigrationError):
    """Recovery could not be completed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.EXECUTION,
            **kwargs,
        )


class LoaderError(MigrationError):
    """A script file could not be resolved into an executable unit."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.LOADER,
            context=context,
            **kwargs,
        )


class RetryConfig:
    """Configuration for retry delays."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 0.1,
        exponential: bool = True,
        exponential_base: float = 2.0,
        max_delay: Optional[float] = None,
    ) -> None:
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts, including the first one
            initial_delay: Delay in seconds before the first retry
            exponential: Grow the delay exponentially between retries
            exponential_base: Base for exponential backoff
            max_delay: Optional cap on the computed delay
        """
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.exponential = exponential
        self.exponential_base = exponential_base
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-indexed)."""
        if not self.exponential:
            delay = self.initial_delay
        else:
            delay = self.initial_delay * (self.exponential_base ** max(attempt - 1, 0))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay
