"""In-memory collaborators shared by the test suite."""

import textwrap
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from schemarunner.hooks import MigrationHooks
from schemarunner.interfaces import (
    BackupCapability,
    CallbackTransactionalDatabase,
    Database,
    ImperativeTransactionalDatabase,
    LockStore,
    MigrationHandler,
    SchemaHistory,
)
from schemarunner.models import LockStatus, MigrationScript, utcnow


class PlainDatabase(Database):
    """Database with no transaction primitive."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.executed: List[str] = []
        self.events: List[str] = []

    async def check_connection(self) -> bool:
        return self.connected

    async def execute(self, sql: str) -> None:
        self.executed.append(sql)


class ImperativeDatabase(PlainDatabase, ImperativeTransactionalDatabase):
    """Records begin/commit/rollback; commit raises queued failures first."""

    def __init__(self, connected: bool = True, commit_failures: Optional[List[Exception]] = None):
        super().__init__(connected)
        self.commit_failures = list(commit_failures or [])
        self.isolation_levels: List[Any] = []

    async def begin_transaction(self) -> None:
        self.events.append("begin")

    async def commit(self) -> None:
        self.events.append("commit")
        if self.commit_failures:
            raise self.commit_failures.pop(0)

    async def rollback(self) -> None:
        self.events.append("rollback")

    async def set_isolation_level(self, level) -> None:
        self.isolation_levels.append(level)


class NoIsolationDatabase(ImperativeDatabase):
    """Keeps the base class set_isolation_level, which is unsupported."""

    set_isolation_level = ImperativeTransactionalDatabase.set_isolation_level


class CallbackDatabase(PlainDatabase, CallbackTransactionalDatabase):
    """Runs the callback; queued failures are raised after it returns, as a commit conflict would be."""

    def __init__(self, connected: bool = True, commit_failures: Optional[List[Exception]] = None):
        super().__init__(connected)
        self.commit_failures = list(commit_failures or [])

    async def run_in_transaction(self, callback):
        self.events.append("begin")
        try:
            result = await callback(self)
        except Exception:
            self.events.append("abort")
            raise
        if self.commit_failures:
            self.events.append("abort")
            raise self.commit_failures.pop(0)
        self.events.append("commit")
        return result


class InMemoryHistory(SchemaHistory):
    """History table keyed by version."""

    def __init__(self, versions: Optional[List[int]] = None):
        self.initialized = False
        self.rows: Dict[int, MigrationScript] = {}
        for version in versions or []:
            self.rows[version] = MigrationScript(name=f"V{version}_existing.py", version=version)

    async def is_initialized(self, table_name: str) -> bool:
        return self.initialized

    async def create_table(self, table_name: str) -> bool:
        self.initialized = True
        return True

    async def validate_table(self, table_name: str) -> bool:
        return self.initialized

    async def get_all_executed(self) -> List[MigrationScript]:
        return [
            MigrationScript(name=row.name, version=row.version, checksum=row.checksum, finished_at=row.finished_at)
            for row in sorted(self.rows.values(), key=lambda s: s.version)
        ]

    async def save(self, script: MigrationScript) -> None:
        self.rows[script.version] = MigrationScript(
            name=script.name, version=script.version, checksum=script.checksum, finished_at=script.finished_at
        )

    async def remove(self, version: int) -> None:
        self.rows.pop(version, None)


class InMemoryLockStore(LockStore):
    """Single lock record; ``verify_result`` forces the ownership check outcome."""

    def __init__(self, holder: Optional[str] = None, expired: bool = False, timeout: float = 600):
        self.timeout = timeout
        self.holder = holder
        self.expires_at = None
        if holder is not None:
            self.expires_at = utcnow() + timedelta(seconds=-1 if expired else timeout)
        self.verify_result: Optional[bool] = None
        self.acquire_calls = 0
        self.released_by: List[str] = []
        self.initialized = False

    async def init_lock_storage(self) -> None:
        self.initialized = True

    async def ensure_lock_storage_accessible(self) -> bool:
        return True

    async def acquire_lock(self, executor_id: str) -> bool:
        self.acquire_calls += 1
        if self.holder is not None:
            return False
        self.holder = executor_id
        self.expires_at = utcnow() + timedelta(seconds=self.timeout)
        return True

    async def verify_lock_ownership(self, executor_id: str) -> bool:
        if self.verify_result is not None:
            return self.verify_result
        return self.holder == executor_id

    async def release_lock(self, executor_id: str) -> None:
        if self.holder == executor_id:
            self.released_by.append(executor_id)
            self.holder = None
            self.expires_at = None

    async def get_lock_status(self) -> Optional[LockStatus]:
        if self.holder is None:
            return LockStatus(is_locked=False)
        return LockStatus(is_locked=True, locked_by=self.holder, expires_at=self.expires_at)

    async def force_release_lock(self) -> None:
        self.holder = None
        self.expires_at = None

    async def check_and_release_expired_lock(self) -> None:
        if self.holder is not None and self.expires_at is not None and utcnow() >= self.expires_at:
            self.holder = None
            self.expires_at = None


class FakeBackup(BackupCapability):
    """Writes a marker file as the backup."""

    def __init__(self, folder: Path):
        self.folder = Path(folder)
        self.created: List[str] = []
        self.restored: List[str] = []

    async def backup(self) -> str:
        path = self.folder / f"backup-{len(self.created) + 1}.bak"
        path.write_text("backup")
        self.created.append(str(path))
        return str(path)

    async def restore(self, path: str) -> None:
        self.restored.append(path)


class FakeHandler(MigrationHandler):
    def __init__(self, db=None, history=None, backup=None, lock_store=None):
        self._db = db if db is not None else ImperativeDatabase()
        self._history = history if history is not None else InMemoryHistory()
        self.backup = backup
        self.lock_store = lock_store

    @property
    def db(self):
        return self._db

    @property
    def schema_version(self):
        return self._history


class RecordingHooks(MigrationHooks):
    """Records every hook call as (name, args)."""

    def __init__(self):
        self.calls: List[tuple] = []

    def __getattribute__(self, name):
        attr = object.__getattribute__(self, name)
        if name.startswith("_") or name in ("calls", "names", "count") or not callable(attr):
            return attr

        async def record(*args, **kwargs):
            object.__getattribute__(self, "calls").append((name, args + tuple(kwargs.values())))
            return await attr(*args, **kwargs)

        return record

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)


class ScriptUnit:
    """Loaded executable unit with optional failure and down()."""

    def __init__(self, log: List[str], name: str, fail: bool = False, with_down: bool = True, down_fails: bool = False):
        self.log = log
        self.name = name
        self.fail = fail
        self.down_fails = down_fails
        if with_down:
            self.down = self._down

    async def up(self, db, info, handler):
        self.log.append(f"up:{self.name}")
        if self.fail:
            raise RuntimeError(f"{self.name} failed")
        return f"applied {self.name}"

    async def _down(self, db, info, handler):
        self.log.append(f"down:{self.name}")
        if self.down_fails:
            raise RuntimeError(f"down {self.name} failed")
        return f"reverted {self.name}"


def make_script(version: int, log: Optional[List[str]] = None, **unit_kwargs) -> MigrationScript:
    name = f"V{version}_test.py"
    script = MigrationScript(name=name, version=version)
    script.script = ScriptUnit(log if log is not None else [], name, **unit_kwargs)
    return script


def write_python_script(
    folder: Path, version: int, name: str = "change", fail: bool = False, with_down: bool = True
) -> Path:
    """Write a migration module that records into ``db.executed``."""
    outcome = f'raise RuntimeError("script {version} failed")' if fail else 'return "ok"'
    body = f"""
    async def up(db, info, handler):
        await db.execute("up {version}")
        {outcome}
    """
    if with_down:
        body += f"""
    async def down(db, info, handler):
        await db.execute("down {version}")
    """
    path = Path(folder) / f"V{version}_{name}.py"
    path.write_text(textwrap.dedent(body))
    return path


# Handler factories for the command line tests.


def create_handler(config=None) -> FakeHandler:
    return FakeHandler(db=ImperativeDatabase(), lock_store=InMemoryLockStore())


async def create_handler_async(config=None) -> FakeHandler:
    return create_handler(config)


def create_locked_handler(config=None) -> FakeHandler:
    return FakeHandler(db=ImperativeDatabase(), lock_store=InMemoryLockStore(holder="other-host-1"))


def create_disconnected_handler(config=None) -> FakeHandler:
    return FakeHandler(db=ImperativeDatabase(connected=False), lock_store=InMemoryLockStore())


def create_handler_without_lock_store(config=None) -> FakeHandler:
    return FakeHandler(db=ImperativeDatabase())


def create_handler_with_backup(config=None) -> FakeHandler:
    return FakeHandler(db=ImperativeDatabase(), backup=FakeBackup(Path.cwd()), lock_store=InMemoryLockStore())
