"""Failure recovery, dispatched by rollback strategy."""

import inspect
from typing import Any, Optional, Sequence

from .backup import BackupService
from .config.logging_config import get_logger
from .config.settings import MigrationConfig
from .core.errors import ConfigurationError
from .hooks import MigrationHooks
from .models import BackupMode, MigrationScript, RollbackStrategy

logger = get_logger(__name__)

BACKUP_STRATEGIES = (RollbackStrategy.BACKUP, RollbackStrategy.BOTH)


class RollbackService:
    """Reconciles a failed run using down(), a backup restore, both, or nothing.

    ``attempted`` is a read-only view of the run's executed scripts, the
    failing one included.
    """

    def __init__(
        self,
        handler: Any,
        config: MigrationConfig,
        backup_service: BackupService,
        hooks: Optional[MigrationHooks] = None,
    ):
        self.handler = handler
        self.config = config
        self.backup_service = backup_service
        self.hooks = hooks or MigrationHooks()

    async def rollback(self, attempted: Sequence[MigrationScript], backup_path: Optional[str] = None) -> None:
        strategy = self.config.rollback_strategy
        logger.info("Starting recovery", strategy=strategy.value, attempted=len(attempted))

        if strategy is RollbackStrategy.BACKUP:
            await self._rollback_with_backup(backup_path)
        elif strategy is RollbackStrategy.DOWN:
            await self._rollback_with_down(attempted)
        elif strategy is RollbackStrategy.BOTH:
            await self._rollback_with_both(attempted, backup_path)
        else:
            logger.warning("No rollback configured, database may be in an inconsistent state")

    def should_create_backup(self) -> bool:
        has_backup = getattr(self.handler, "backup", None) is not None
        return (
            has_backup
            and self.config.rollback_strategy in BACKUP_STRATEGIES
            and self.config.backup_mode in (BackupMode.FULL, BackupMode.CREATE_ONLY)
        )

    def should_restore(self) -> bool:
        return self.config.rollback_strategy in BACKUP_STRATEGIES and self.config.backup_mode in (
            BackupMode.FULL,
            BackupMode.RESTORE_ONLY,
        )

    async def _rollback_with_backup(self, backup_path: Optional[str]) -> None:
        if not self.should_restore():
            logger.warning("Backup restore skipped due to backup mode", backup_mode=self.config.backup_mode.value)
            return

        if self.config.backup_mode is BackupMode.RESTORE_ONLY:
            existing = self.config.backup.existing_backup_path
            if existing is None:
                raise ConfigurationError(
                    "Backup mode restore_only requires backup.existing_backup_path",
                    config_key="backup.existing_backup_path",
                )
            path = str(existing)
        else:
            path = backup_path

        if not path:
            logger.warning("No backup available for restore")
            return

        await self.hooks.on_before_restore()
        await self.backup_service.restore(path)
        await self.hooks.on_after_restore()
        await self.backup_service.delete_backup()
        logger.info("Database restored from backup", path=path)

    async def _rollback_with_down(self, attempted: Sequence[MigrationScript]) -> None:
        if not attempted:
            logger.info("No migrations to roll back")
            return

        logger.info("Rolling back migrations using down()", count=len(attempted))
        for script in reversed(attempted):
            if not script.has_down:
                logger.warning("No down() for migration, skipping", script=script.name)
                continue
            logger.info("Rolling back", script=script.name)
            result = script.script.down(self.handler.db, script, self.handler)
            if inspect.isawaitable(result):
                await result
        logger.info("Rollback completed using down()")

    async def _rollback_with_both(self, attempted: Sequence[MigrationScript], backup_path: Optional[str]) -> None:
        try:
            await self._rollback_with_down(attempted)
        except Exception as e:
            logger.error("down() rollback failed, falling back to backup restore", error=str(e))
            await self._rollback_with_backup(backup_path)
