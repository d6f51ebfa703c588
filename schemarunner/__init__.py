"""schema-runner: database-agnostic migration execution engine."""

from .config import ConfigBuilder, MigrationConfig, load_config, setup_logging
from .core.errors import (
    CommitRetryableError,
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionError,
    HybridBatchError,
    LockAcquisitionError,
    MigrationError,
    OwnershipVerificationError,
    ValidationError,
)
from .executor import MigrationScriptExecutor
from .hooks import CompositeHooks, MigrationHooks
from .interfaces import (
    BackupCapability,
    CallbackTransactionalDatabase,
    Database,
    ImperativeTransactionalDatabase,
    LockStore,
    MigrationHandler,
    RunnableScript,
    SchemaHistory,
    ScriptLoader,
)
from .loaders import LoaderRegistry
from .lock_store import JsonFileLockStore
from .models import (
    BackupMode,
    DownMethodPolicy,
    IsolationLevel,
    LockStatus,
    MigrationResult,
    MigrationScript,
    RollbackStrategy,
    ScriptSet,
    TransactionMode,
)

__version__ = "0.1.0"

__all__ = [
    "BackupCapability",
    "BackupMode",
    "CallbackTransactionalDatabase",
    "CommitRetryableError",
    "CompositeHooks",
    "ConfigBuilder",
    "ConfigurationError",
    "Database",
    "DatabaseConnectionError",
    "DownMethodPolicy",
    "ExecutionError",
    "HybridBatchError",
    "ImperativeTransactionalDatabase",
    "IsolationLevel",
    "JsonFileLockStore",
    "LoaderRegistry",
    "LockAcquisitionError",
    "LockStatus",
    "LockStore",
    "MigrationConfig",
    "MigrationError",
    "MigrationHandler",
    "MigrationHooks",
    "MigrationResult",
    "MigrationScript",
    "MigrationScriptExecutor",
    "OwnershipVerificationError",
    "RollbackStrategy",
    "RunnableScript",
    "SchemaHistory",
    "ScriptLoader",
    "ScriptSet",
    "TransactionMode",
    "ValidationError",
    "load_config",
    "setup_logging",
]
