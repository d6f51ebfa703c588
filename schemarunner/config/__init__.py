"""Configuration and logging setup."""

from .logging_config import get_logger, setup_logging
from .settings import (
    BackupConfig,
    ConfigBuilder,
    LockingConfig,
    MigrationConfig,
    TransactionConfig,
    load_config,
    load_config_file,
)

__all__ = [
    "BackupConfig",
    "ConfigBuilder",
    "LockingConfig",
    "MigrationConfig",
    "TransactionConfig",
    "get_logger",
    "load_config",
    "load_config_file",
    "setup_logging",
]
