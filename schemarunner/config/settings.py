"""Run configuration and the file → environment → overrides builder."""

import json
import os
import re
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.errors import ConfigurationError
from ..models import BackupMode, DownMethodPolicy, IsolationLevel, RollbackStrategy, TransactionMode
from .logging_config import get_logger

logger = get_logger(__name__)

CONFIG_FILE_ENV_VAR = "MSR_CONFIG_FILE"
IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"


class TransactionConfig(BaseModel):
    """Transaction management settings."""

    model_config = ConfigDict(frozen=True)

    mode: TransactionMode = TransactionMode.PER_MIGRATION
    isolation: Optional[IsolationLevel] = IsolationLevel.READ_COMMITTED
    timeout: Annotated[float, Field(default=30.0, gt=0)]
    retries: Annotated[int, Field(default=3, ge=0, le=100)]
    retry_delay: Annotated[float, Field(default=0.1, ge=0)]
    retry_backoff: bool = True


class LockingConfig(BaseModel):
    """Cross-process lock settings. Durations are seconds."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    timeout: Annotated[float, Field(default=600.0, gt=0, le=3600)]
    table_name: Annotated[str, Field(default="migration_locks", pattern=IDENTIFIER_PATTERN)]
    retry_attempts: Annotated[int, Field(default=0, ge=0, le=100)]
    retry_delay: Annotated[float, Field(default=1.0, ge=0, le=60)]


class BackupConfig(BaseModel):
    """Backup bookkeeping settings."""

    model_config = ConfigDict(frozen=True)

    delete_backup: bool = True
    existing_backup_path: Optional[Path] = None


class MigrationConfig(BaseSettings):
    """Immutable configuration for one migration run.

    Environment variables use the ``MSR_`` prefix and ``__`` for nested
    sections, e.g. ``MSR_TRANSACTION__MODE=PER_BATCH``.
    """

    model_config = SettingsConfigDict(
        env_prefix="MSR_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Discovery
    folder: Path = Path("migrations")
    recursive: bool = False
    file_patterns: List[str] = Field(
        default_factory=lambda: [r"^V(\d+)_.+\.py$", r"^V(\d+)_.+\.up\.sql$"]
    )
    table_name: Annotated[str, Field(default="schema_version", pattern=IDENTIFIER_PATTERN)]
    before_migrate_name: Optional[str] = "beforeMigrate"

    # Execution
    dry_run: bool = False

    # Validation
    validate_before_run: bool = True
    validate_migrated_files: bool = True
    validate_migrated_files_location: bool = False
    strict_validation: bool = False
    down_method_policy: DownMethodPolicy = DownMethodPolicy.AUTO
    checksum_algorithm: Annotated[str, Field(default="sha256", pattern=r"^(md5|sha256)$")]

    # Recovery
    rollback_strategy: RollbackStrategy = RollbackStrategy.BACKUP
    backup_mode: BackupMode = BackupMode.FULL
    backup: BackupConfig = Field(default_factory=BackupConfig)

    transaction: TransactionConfig = Field(default_factory=TransactionConfig)
    locking: LockingConfig = Field(default_factory=LockingConfig)

    # Output
    log_level: str = "INFO"
    log_file: Optional[str] = None
    show_status: bool = True

    @field_validator("file_patterns")
    @classmethod
    def _check_patterns(cls, patterns: List[str]) -> List[str]:
        for pattern in patterns:
            try:
                compiled = re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid file pattern {pattern!r}: {e}") from e
            if compiled.groups < 1:
                raise ValueError(f"File pattern {pattern!r} must capture the version in group 1")
        return patterns

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, level: str) -> str:
        level = level.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {level}")
        return level

    @property
    def compiled_patterns(self) -> List["re.Pattern[str]"]:
        return [re.compile(p) for p in self.file_patterns]


def _deep_merge(base: Dict[str, Any], *layers: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for layer in layers:
        for key, value in layer.items():
            if isinstance(value, BaseModel):
                value = value.model_dump(exclude_unset=True)
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
    return merged


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML or JSON configuration file into a dictionary."""
    path = Path(path)
    suffix = path.suffix.lower()
    try:
        with open(path, encoding="utf-8") as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ConfigurationError(
                    f"Unsupported config file format: {path.name}", config_key=CONFIG_FILE_ENV_VAR
                )
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
    return data


class ConfigBuilder:
    """Builds one immutable MigrationConfig from three stages.

    Stage precedence, lowest to highest: config file, environment variables
    (including ``.env``), explicit overrides. Nested sections are merged key
    by key.

    Example:
        config = ConfigBuilder().from_file("msr.config.yaml").with_overrides(dry_run=True).build()
    """

    DEFAULT_CONFIG_FILES = ("msr.config.yaml", "msr.config.yml", "msr.config.json")

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self._file_layer: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}
        self.config_file: Optional[Path] = None

    def find_config_file(self) -> Optional[Path]:
        """Locate a config file via MSR_CONFIG_FILE or the default names."""
        env_file = os.environ.get(CONFIG_FILE_ENV_VAR)
        if env_file:
            candidate = (self.base_dir / env_file).resolve()
            if candidate.exists():
                return candidate
            logger.warning(
                "Config file from environment does not exist",
                env_var=CONFIG_FILE_ENV_VAR,
                path=env_file,
            )

        for filename in self.DEFAULT_CONFIG_FILES:
            candidate = self.base_dir / filename
            if candidate.exists():
                return candidate
        return None

    def from_file(self, path: Optional[Union[str, Path]] = None) -> "ConfigBuilder":
        """Load the file stage. Without a path the file is searched for."""
        if path is not None:
            resolved = Path(path)
            if not resolved.is_absolute():
                resolved = self.base_dir / resolved
            if not resolved.exists():
                raise ConfigurationError(
                    f"Config file does not exist: {path}", config_key=CONFIG_FILE_ENV_VAR
                )
        else:
            resolved = self.find_config_file()
            if resolved is None:
                logger.debug("No config file found", base_dir=str(self.base_dir))
                return self

        self._file_layer = load_config_file(resolved)
        self.config_file = resolved
        logger.debug("Loaded config file", path=str(resolved))
        return self

    def with_overrides(self, **overrides: Any) -> "ConfigBuilder":
        """Add explicit overrides (highest precedence)."""
        self._overrides = _deep_merge(self._overrides, overrides)
        return self

    def build(self) -> MigrationConfig:
        try:
            env_layer = MigrationConfig().model_dump(exclude_unset=True)
            merged = _deep_merge(self._file_layer, env_layer, self._overrides)
            return MigrationConfig(**merged)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    base_dir: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> MigrationConfig:
    """Shortcut for ConfigBuilder(base_dir).from_file(config_file).with_overrides(...).build()."""
    return ConfigBuilder(base_dir).from_file(config_file).with_overrides(**overrides).build()
