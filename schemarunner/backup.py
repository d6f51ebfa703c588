"""Backup bookkeeping around the handler's backup capability."""

from typing import Any, Optional

import aiofiles.os

from .config.logging_config import get_logger
from .config.settings import BackupConfig
from .core.errors import BackupError
from .hooks import MigrationHooks

logger = get_logger(__name__)


class BackupService:
    """Creates, restores and cleans up backups.

    The byte-level work is the adapter's; this service remembers the path
    it created so that only that file is ever deleted.
    """

    def __init__(self, handler: Any, config: BackupConfig, hooks: Optional[MigrationHooks] = None):
        self.handler = handler
        self.config = config
        self.hooks = hooks or MigrationHooks()
        self.backup_path: Optional[str] = None

    def _capability(self) -> Any:
        capability = getattr(self.handler, "backup", None)
        if capability is None:
            raise BackupError("Database handler does not provide a backup capability")
        return capability

    async def backup(self) -> str:
        capability = self._capability()
        await self.hooks.on_before_backup()
        logger.info("Preparing backup")
        try:
            path = await capability.backup()
        except Exception as e:
            raise BackupError(f"Backup failed: {e}") from e

        self.backup_path = str(path)
        logger.info("Backup prepared", path=self.backup_path)
        await self.hooks.on_after_backup(self.backup_path)
        return self.backup_path

    async def restore(self, path: Optional[str] = None) -> None:
        capability = self._capability()
        path = path or self.backup_path
        if not path:
            raise BackupError("No backup available to restore")

        logger.info("Restoring from backup", path=path)
        try:
            await capability.restore(path)
        except Exception as e:
            raise BackupError(f"Restore from {path} failed: {e}") from e
        logger.info("Restored to the previous state", path=path)

    async def delete_backup(self, path: Optional[str] = None) -> None:
        """Delete ``path``, or the backup this service created, when deletion is enabled."""
        if not self.config.delete_backup:
            return
        if path is None:
            path, self.backup_path = self.backup_path, None
        elif path == self.backup_path:
            self.backup_path = None
        if not path:
            return
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            logger.debug("Backup file deleted", path=path)
