"""Data models for the migration engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .loaders import LoaderRegistry


class TransactionMode(str, Enum):
    """Granularity of transactional wrapping."""

    PER_MIGRATION = "PER_MIGRATION"
    PER_BATCH = "PER_BATCH"
    NONE = "NONE"


class IsolationLevel(str, Enum):
    """Transaction isolation levels, valued with their SQL spelling."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class RollbackStrategy(str, Enum):
    """Recovery policy applied when a run fails."""

    BACKUP = "backup"
    DOWN = "down"
    BOTH = "both"
    NONE = "none"


class BackupMode(str, Enum):
    """When backups are created and restored, independent of strategy."""

    FULL = "full"
    CREATE_ONLY = "create_only"
    RESTORE_ONLY = "restore_only"
    MANUAL = "manual"


class DownMethodPolicy(str, Enum):
    """Whether scripts must provide an inverse operation."""

    AUTO = "AUTO"
    REQUIRED = "REQUIRED"
    RECOMMENDED = "RECOMMENDED"
    OPTIONAL = "OPTIONAL"


class ValidationIssueType(str, Enum):
    """Validation issue severity."""

    ERROR = "ERROR"
    WARNING = "WARNING"


class WorkflowState(Enum):
    """States of a workflow run."""

    IDLE = "idle"
    CHECKING_CONNECTION = "checking_connection"
    LOCKING = "locking"
    INITIALIZING_HISTORY = "initializing_history"
    SCANNING = "scanning"
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    EXECUTING = "executing"
    COMMITTING = "committing"
    CLEANING_UP = "cleaning_up"
    RECOVERING = "recovering"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class MigrationScript:
    """One versioned change unit.

    Equality is identity: two descriptors at the same version are compared by
    version explicitly where that matters (see MigrationScriptSelector).
    """

    name: str
    version: int
    source_location: Optional[Path] = None
    checksum: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    dry_run: bool = False
    username: Optional[str] = None
    result: Optional[str] = None
    script: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.source_location is not None and not isinstance(self.source_location, Path):
            self.source_location = Path(self.source_location)

    @property
    def is_loaded(self) -> bool:
        return self.script is not None

    @property
    def has_down(self) -> bool:
        return self.script is not None and callable(getattr(self.script, "down", None))

    @property
    def manages_own_transactions(self) -> bool:
        """True for script types that issue their own transaction statements."""
        return bool(getattr(self.script, "manages_own_transactions", False))

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    async def init(self, loader_registry: "LoaderRegistry") -> None:
        """Resolve the executable body, at most once."""
        if self.script is not None:
            return
        loader = loader_registry.find_loader(self.source_location)
        self.script = await loader.load(self)


@dataclass
class ScriptSet:
    """Result of one scan."""

    all: List[MigrationScript] = field(default_factory=list)
    migrated: List[MigrationScript] = field(default_factory=list)
    pending: List[MigrationScript] = field(default_factory=list)
    ignored: List[MigrationScript] = field(default_factory=list)
    executed: List[MigrationScript] = field(default_factory=list)


@dataclass
class TransactionContext:
    """State of one managed transaction."""

    transaction_id: str
    mode: TransactionMode
    isolation: Optional[IsolationLevel] = None
    migrations: List[MigrationScript] = field(default_factory=list)
    start_time: datetime = field(default_factory=utcnow)
    attempt: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        mode: TransactionMode,
        migrations: List[MigrationScript],
        isolation: Optional[IsolationLevel] = None,
    ) -> "TransactionContext":
        start_time = utcnow()
        transaction_id = f"tx-{mode.value.lower()}-{int(start_time.timestamp() * 1000)}"
        if mode is TransactionMode.NONE:
            migrations = []
        return cls(
            transaction_id=transaction_id,
            mode=mode,
            isolation=isolation,
            migrations=list(migrations),
            start_time=start_time,
        )


@dataclass(frozen=True)
class LockStatus:
    """Read-only projection of persisted lock state."""

    is_locked: bool
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    process_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.is_locked or self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at


@dataclass
class MigrationResult:
    """Outcome of one workflow run."""

    success: bool
    executed: List[MigrationScript] = field(default_factory=list)
    migrated: List[MigrationScript] = field(default_factory=list)
    ignored: List[MigrationScript] = field(default_factory=list)
    errors: Optional[List[BaseException]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "executed": [s.name for s in self.executed],
            "migrated": [s.name for s in self.migrated],
            "ignored": [s.name for s in self.ignored],
            "errors": [str(e) for e in self.errors] if self.errors else None,
        }


@dataclass
class ValidationIssue:
    """A single validation finding."""

    type: ValidationIssueType
    code: str
    message: str
    details: Optional[str] = None


@dataclass
class ValidationResult:
    """Validation findings for one script."""

    script: Optional[MigrationScript]
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.type is ValidationIssueType.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.type is ValidationIssueType.WARNING]

    @property
    def valid(self) -> bool:
        return not self.errors
