"""Core error types and retry helpers."""

from .errors import (
    BackupError,
    CommitRetryableError,
    ConfigurationError,
    DatabaseConnectionError,
    ErrorCategory,
    ErrorSeverity,
    ExecutionError,
    HybridBatchError,
    LoaderError,
    LockAcquisitionError,
    MigrationError,
    OwnershipVerificationError,
    RetryConfig,
    RollbackError,
    TransactionError,
    ValidationError,
)

__all__ = [
    "BackupError",
    "CommitRetryableError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "ErrorCategory",
    "ErrorSeverity",
    "ExecutionError",
    "HybridBatchError",
    "LoaderError",
    "LockAcquisitionError",
    "MigrationError",
    "OwnershipVerificationError",
    "RetryConfig",
    "RollbackError",
    "TransactionError",
    "ValidationError",
]
