"""
Contracts for the pluggable collaborators the engine consumes.

Adapters may subclass these base classes or simply provide the same
methods; capability detection is done by attribute lookup so duck-typed
handles work too.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .models import IsolationLevel, LockStatus, MigrationScript

T = TypeVar("T")


class Database(ABC):
    """A caller-supplied, already-connected database handle."""

    @abstractmethod
    async def check_connection(self) -> bool:
        """Return True when the database is reachable."""


class ImperativeTransactionalDatabase(Database):
    """Database exposing explicit begin/commit/rollback primitives."""

    @abstractmethod
    async def begin_transaction(self) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    async def set_isolation_level(self, level: IsolationLevel) -> None:
        """Apply an isolation level to the next transaction.

        Backends that do not honor isolation levels keep this default,
        which raises NotImplementedError and is ignored by the engine.
        """
        raise NotImplementedError


class CallbackTransactionalDatabase(Database):
    """Database whose transaction primitive wraps a unit of work.

    The transaction commits when the callback returns and aborts when it
    raises.
    """

    @abstractmethod
    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        pass


class SchemaHistory(ABC):
    """Persisted record of executed versions, keyed by version."""

    @abstractmethod
    async def is_initialized(self, table_name: str) -> bool:
        pass

    @abstractmethod
    async def create_table(self, table_name: str) -> bool:
        pass

    @abstractmethod
    async def validate_table(self, table_name: str) -> bool:
        pass

    @abstractmethod
    async def get_all_executed(self) -> List[MigrationScript]:
        """Executed scripts (name, version, checksum, finished_at) in ascending version order."""

    @abstractmethod
    async def save(self, script: MigrationScript) -> None:
        pass

    @abstractmethod
    async def remove(self, version: int) -> None:
        pass


class BackupCapability(ABC):
    """Byte-level backup and restore, owned by the adapter."""

    @abstractmethod
    async def backup(self) -> str:
        """Create a backup and return its path."""

    @abstractmethod
    async def restore(self, path: str) -> None:
        pass


class LockStore(ABC):
    """Storage operations behind the cross-process migration lock."""

    @abstractmethod
    async def init_lock_storage(self) -> None:
        pass

    @abstractmethod
    async def ensure_lock_storage_accessible(self) -> bool:
        pass

    @abstractmethod
    async def acquire_lock(self, executor_id: str) -> bool:
        """Try once to take the lock; False when another executor holds it."""

    @abstractmethod
    async def verify_lock_ownership(self, executor_id: str) -> bool:
        pass

    @abstractmethod
    async def release_lock(self, executor_id: str) -> None:
        """Release the lock if, and only if, executor_id holds it."""

    @abstractmethod
    async def get_lock_status(self) -> Optional[LockStatus]:
        pass

    @abstractmethod
    async def force_release_lock(self) -> None:
        pass

    @abstractmethod
    async def check_and_release_expired_lock(self) -> None:
        pass


class RunnableScript(ABC):
    """Executable unit resolved from a script file.

    ``down`` is optional; subclasses define it to support inverse rollback.
    """

    manages_own_transactions = False

    @abstractmethod
    async def up(self, db: Any, info: MigrationScript, handler: "MigrationHandler") -> Optional[str]:
        pass


class ScriptLoader(ABC):
    """Resolves a script file into a RunnableScript."""

    name = "loader"
    manages_own_transactions = False

    @abstractmethod
    def can_handle(self, path: Any) -> bool:
        pass

    @abstractmethod
    async def load(self, script: MigrationScript) -> Any:
        pass


class MigrationHandler(ABC):
    """Bundle of database capabilities handed to the engine.

    Optional capabilities default to None and are detected once when the
    executor is built.
    """

    backup: Optional[BackupCapability] = None
    lock_store: Optional[LockStore] = None
    transaction_manager: Any = None

    @property
    @abstractmethod
    def db(self) -> Database:
        pass

    @property
    @abstractmethod
    def schema_version(self) -> SchemaHistory:
        pass

    def get_name(self) -> str:
        return type(self).__name__

    def get_version(self) -> str:
        return "unknown"


def is_imperative_transactional(db: Any) -> bool:
    return all(callable(getattr(db, name, None)) for name in ("begin_transaction", "commit", "rollback"))


def is_callback_transactional(db: Any) -> bool:
    return callable(getattr(db, "run_in_transaction", None))


def is_transactional(db: Any) -> bool:
    return is_imperative_transactional(db) or is_callback_transactional(db)
