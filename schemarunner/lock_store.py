"""
JSON file lock store.

The lock record is a single JSON file. Every change to it (acquire, release,
expiry reclaim, force release) happens while holding an exclusive ``flock``
on a sibling guard file, so check-then-act sequences cannot interleave
between processes on the host. The kernel drops the guard when its holder
exits, so a crash never leaves it stuck. Records are written to a temporary
file and renamed into place, so readers never see a partial record.

A record that cannot be parsed is treated as held by an unknown executor
until its file is older than the lock timeout.
"""

import asyncio
import fcntl
import json
import os
import socket
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import aiofiles
import aiofiles.os

from .config.logging_config import get_logger
from .interfaces import LockStore
from .models import LockStatus, utcnow

logger = get_logger(__name__)

LOCK_ID = "migration_lock"


class JsonFileLockStore(LockStore):
    """Lock store keeping the lock record in ``<directory>/<table_name>.json``."""

    def __init__(self, directory: Union[str, Path], table_name: str = "migration_locks", timeout: float = 600.0):
        self.directory = Path(directory)
        self.path = self.directory / f"{table_name}.json"
        self.guard_path = self.directory / f"{table_name}.json.guard"
        self.timeout = timeout

    async def init_lock_storage(self) -> None:
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

    async def ensure_lock_storage_accessible(self) -> bool:
        if not await aiofiles.os.path.isdir(self.directory):
            return False
        return await asyncio.to_thread(os.access, self.directory, os.W_OK)

    async def acquire_lock(self, executor_id: str) -> bool:
        acquired = await asyncio.to_thread(self._acquire, executor_id)
        if acquired:
            logger.debug("Lock record written", path=str(self.path), executor_id=executor_id)
        return acquired

    async def verify_lock_ownership(self, executor_id: str) -> bool:
        status = await self.get_lock_status()
        return status is not None and status.locked_by == executor_id and not status.is_expired()

    async def release_lock(self, executor_id: str) -> None:
        holder = await asyncio.to_thread(self._release, executor_id)
        if holder is not None and holder != executor_id:
            logger.warning("Lock held by another executor, not releasing", executor_id=executor_id, locked_by=holder)

    async def get_lock_status(self) -> Optional[LockStatus]:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            stat = await aiofiles.os.stat(self.path)
        except FileNotFoundError:
            return None
        return self._status(self._parse(content, stat.st_mtime))

    async def force_release_lock(self) -> None:
        await asyncio.to_thread(self._force_release)

    async def check_and_release_expired_lock(self) -> None:
        released = await asyncio.to_thread(self._release_expired)
        if released is not None:
            logger.warning(
                "Releasing expired lock", locked_by=released.locked_by, expires_at=str(released.expires_at)
            )

    # Guarded operations, run in a worker thread

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with open(self.guard_path, "a") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    def _acquire(self, executor_id: str) -> bool:
        now = utcnow()
        record = {
            "lock_id": LOCK_ID,
            "locked_by": executor_id,
            "locked_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=self.timeout)).isoformat(),
            "process_id": f"{socket.gethostname()}:{os.getpid()}",
        }
        with self._guard():
            if self.path.exists():
                return False
            self._write(record)
        return True

    def _release(self, executor_id: str) -> Optional[str]:
        with self._guard():
            record = self._read()
            if record is None:
                return None
            holder = record.get("locked_by")
            if holder == executor_id:
                self._unlink()
            return holder

    def _release_expired(self) -> Optional[LockStatus]:
        with self._guard():
            record = self._read()
            if record is None:
                return None
            status = self._status(record)
            if not status.is_expired():
                return None
            self._unlink()
            return status

    def _force_release(self) -> None:
        with self._guard():
            self._unlink()

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
            mtime = os.stat(self.path).st_mtime
        except FileNotFoundError:
            return None
        return self._parse(content, mtime)

    def _write(self, record: Dict[str, Any]) -> None:
        temp_path = self.path.with_suffix(f"{self.path.suffix}.tmp.{os.getpid()}")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(record, f)
                f.flush()
                os.fsync(f.fileno())
            os.rename(temp_path, self.path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def _unlink(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def _parse(self, content: str, mtime: float) -> Dict[str, Any]:
        try:
            record = json.loads(content)
            if isinstance(record, dict):
                return record
        except json.JSONDecodeError:
            pass
        logger.warning("Unreadable lock record", path=str(self.path))
        written = datetime.fromtimestamp(mtime, tz=timezone.utc)
        return {
            "lock_id": LOCK_ID,
            "locked_by": None,
            "locked_at": written.isoformat(),
            "expires_at": (written + timedelta(seconds=self.timeout)).isoformat(),
        }

    @staticmethod
    def _status(record: Dict[str, Any]) -> LockStatus:
        return LockStatus(
            is_locked=True,
            locked_by=record.get("locked_by"),
            locked_at=_parse_datetime(record.get("locked_at")),
            expires_at=_parse_datetime(record.get("expires_at")),
            process_id=record.get("process_id"),
        )


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
