"""Execution of individual scripts."""

import getpass
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .checksum import ChecksumService
from .config.logging_config import get_logger
from .config.settings import MigrationConfig
from .core.errors import ExecutionError
from .hooks import MigrationHooks
from .loaders import LoaderRegistry
from .models import MigrationScript, utcnow
from .schema_version import SchemaVersionService
from .transaction import TransactionManager

logger = get_logger(__name__)


def _current_user() -> Optional[str]:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return None


class MigrationRunner:
    """Runs one script's forward operation and records it in history."""

    def __init__(
        self,
        handler: Any,
        schema_version_service: SchemaVersionService,
        config: MigrationConfig,
        loader_registry: LoaderRegistry,
    ):
        self.handler = handler
        self.schema_version_service = schema_version_service
        self.config = config
        self.loader_registry = loader_registry
        self.checksums = ChecksumService(config.checksum_algorithm)
        self.username = _current_user()

    async def execute_one(self, script: MigrationScript) -> MigrationScript:
        logger.info("Processing migration", script=script.name, version=script.version)
        await script.init(self.loader_registry)

        script.username = self.username
        script.started_at = utcnow()
        result = script.script.up(self.handler.db, script, self.handler)
        if inspect.isawaitable(result):
            result = await result
        script.result = result
        script.finished_at = utcnow()

        await self._calculate_checksum(script)
        await self.schema_version_service.save(script)
        logger.info("Migration applied", script=script.name, duration_ms=script.duration_ms)
        return script

    async def rollback_one(self, script: MigrationScript) -> MigrationScript:
        """Run the inverse operation and remove the history row."""
        logger.info("Rolling back migration", script=script.name, version=script.version)
        await script.init(self.loader_registry)
        if not script.has_down:
            raise ExecutionError(f"{script.name}: no down() available for rollback", script=script)

        script.started_at = utcnow()
        result = script.script.down(self.handler.db, script, self.handler)
        if inspect.isawaitable(result):
            result = await result
        script.result = result
        script.finished_at = utcnow()

        await self.schema_version_service.remove(script.version)
        logger.info("Migration rolled back", script=script.name, duration_ms=script.duration_ms)
        return script

    async def _calculate_checksum(self, script: MigrationScript) -> None:
        if script.source_location is None:
            return
        try:
            script.checksum = await self.checksums.calculate_for_file(script.source_location)
        except OSError as e:
            logger.warning("Could not calculate checksum", script=script.name, error=str(e))


class MigrationHookExecutor:
    """Runs a batch through the transaction manager, firing per-script hooks.

    Each script is appended to ``executed`` before its attempt starts so a
    failing script is still visible to recovery.
    """

    def __init__(
        self,
        runner: MigrationRunner,
        hooks: Optional[MigrationHooks] = None,
        transaction_manager: Optional[TransactionManager] = None,
    ):
        self.runner = runner
        self.hooks = hooks or MigrationHooks()
        self.transaction_manager = transaction_manager

    async def execute_with_hooks(
        self, scripts: Sequence[MigrationScript], executed: List[MigrationScript]
    ) -> None:
        await self._run(scripts, executed, self.runner.execute_one)

    async def execute_down_with_hooks(
        self, scripts: Sequence[MigrationScript], executed: List[MigrationScript]
    ) -> None:
        """Same as execute_with_hooks but runs down(); scripts come latest first."""
        await self._run(scripts, executed, self.runner.rollback_one)

    async def _run(
        self,
        scripts: Sequence[MigrationScript],
        executed: List[MigrationScript],
        operation: Callable[[MigrationScript], Awaitable[MigrationScript]],
    ) -> None:
        async def run_script(script: MigrationScript) -> None:
            # A retried callback transaction replays the unit of work.
            if script not in executed:
                executed.append(script)
            try:
                await self.hooks.on_before_migrate(script)
                await operation(script)
                await self.hooks.on_after_migrate(script, script.result)
            except Exception as e:
                logger.error("Migration failed", script=script.name, error=str(e))
                await self.hooks.on_migration_error(script, e)
                raise

        if self.transaction_manager is None:
            for script in scripts:
                await run_script(script)
            return

        await self.transaction_manager.run(scripts, run_script)
