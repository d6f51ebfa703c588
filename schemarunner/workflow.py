"""
Top-level migration workflow.

One run moves through::

    CHECKING_CONNECTION -> LOCKING -> INITIALIZING_HISTORY -> SCANNING
      -> VALIDATING -> BACKING_UP -> EXECUTING -> COMMITTING -> CLEANING_UP

and, on failure after the lock is held, RECOVERING -> FAILED. Connection
and lock failures raise; every later failure is recovered and returned in
the MigrationResult. The lock is released in all cases.
"""

import inspect
import os
import socket
import uuid
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .backup import BackupService
from .config.logging_config import get_logger
from .config.settings import MigrationConfig
from .core.errors import (
    DatabaseConnectionError,
    ExecutionError,
    HybridBatchError,
    LockAcquisitionError,
    RollbackError,
)
from .hooks import MigrationHooks
from .loaders import LoaderRegistry
from .locking import LockingOrchestrator
from .models import MigrationResult, MigrationScript, ScriptSet, TransactionMode, WorkflowState
from .reporting import MigrationReporter
from .rollback import RollbackService
from .runner import MigrationHookExecutor
from .scanner import MigrationScanner, MigrationService
from .schema_version import SchemaVersionService
from .selector import MigrationScriptSelector
from .transaction import TransactionManager
from .validation import MigrationValidationOrchestrator

logger = get_logger(__name__)

PendingSelector = Callable[[ScriptSet], List[MigrationScript]]


def generate_executor_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4()}"


class MigrationWorkflowOrchestrator:
    """Sequences one migration run against a handler."""

    def __init__(
        self,
        handler: Any,
        config: MigrationConfig,
        *,
        scanner: MigrationScanner,
        migration_service: MigrationService,
        schema_version_service: SchemaVersionService,
        selector: MigrationScriptSelector,
        validation: MigrationValidationOrchestrator,
        backup_service: BackupService,
        rollback_service: RollbackService,
        hook_executor: MigrationHookExecutor,
        loader_registry: LoaderRegistry,
        reporter: MigrationReporter,
        hooks: Optional[MigrationHooks] = None,
        transaction_manager: Optional[TransactionManager] = None,
        locking: Optional[LockingOrchestrator] = None,
    ):
        self.handler = handler
        self.config = config
        self.scanner = scanner
        self.migration_service = migration_service
        self.schema_version_service = schema_version_service
        self.selector = selector
        self.validation = validation
        self.backup_service = backup_service
        self.rollback_service = rollback_service
        self.hook_executor = hook_executor
        self.loader_registry = loader_registry
        self.reporter = reporter
        self.hooks = hooks or MigrationHooks()
        self.transaction_manager = transaction_manager
        self.locking = locking
        self.state = WorkflowState.IDLE

    def _enter(self, state: WorkflowState) -> None:
        logger.debug("Workflow state", previous=self.state.value, state=state.value)
        self.state = state

    # Public entry points

    async def migrate_all(self) -> MigrationResult:
        """Execute every pending script."""
        return await self._locked(lambda: self._migrate(lambda s: s.pending))

    async def migrate_to_version(self, target_version: int) -> MigrationResult:
        """Execute pending scripts up to and including ``target_version``."""

        def select(scripts: ScriptSet) -> List[MigrationScript]:
            return self.selector.get_pending_up_to(scripts.migrated, scripts.all, target_version)

        logger.info("Migrating to version", target_version=target_version)
        return await self._locked(lambda: self._migrate(select))

    async def rollback_to_version(self, target_version: int) -> MigrationResult:
        """Undo executed scripts newer than ``target_version`` with down(), latest first."""
        logger.info("Rolling back to version", target_version=target_version)
        return await self._locked(lambda: self._rollback(target_version))

    async def validate(self) -> None:
        """Validate pending and executed scripts without running anything."""
        await self.validation.validate(self.scanner, self.schema_version_service)

    # Bracketing

    async def _locked(self, run: Callable[[], Awaitable[MigrationResult]]) -> MigrationResult:
        executor_id = generate_executor_id()

        self._enter(WorkflowState.CHECKING_CONNECTION)
        await self._check_connection()

        self._enter(WorkflowState.LOCKING)
        locked = await self._acquire_lock(executor_id)
        try:
            return await run()
        finally:
            if locked:
                await self._release_lock(executor_id)

    async def _check_connection(self) -> None:
        try:
            connected = await self.handler.db.check_connection()
        except Exception as e:
            self._enter(WorkflowState.FAILED)
            raise DatabaseConnectionError(f"Database connection check failed: {e}") from e
        if not connected:
            self._enter(WorkflowState.FAILED)
            raise DatabaseConnectionError("Database connection check failed")

    async def _acquire_lock(self, executor_id: str) -> bool:
        if self.locking is None:
            return False
        if not self.config.locking.enabled:
            logger.debug("Locking is disabled, skipping lock acquisition")
            return False

        await self.locking.init_lock_storage()
        try:
            acquired = await self.locking.acquire_lock(executor_id)
        except Exception:
            self._enter(WorkflowState.FAILED)
            raise
        if acquired:
            return True

        self._enter(WorkflowState.FAILED)
        status = await self.locking.get_lock_status()
        if status is not None and status.is_locked:
            lock_info = f"currently held by: {status.locked_by}"
            if status.expires_at is not None:
                lock_info += f" (expires: {status.expires_at.isoformat()})"
        else:
            lock_info = "lock status unknown"
        raise LockAcquisitionError(
            f"Failed to acquire migration lock after {self.config.locking.retry_attempts + 1} attempt(s). "
            f"Another migration is likely running ({lock_info}). "
            "If you believe this is a stale lock, use: schema-runner lock-release --force",
            executor_id=executor_id,
        )

    async def _release_lock(self, executor_id: str) -> None:
        try:
            await self.locking.release_lock(executor_id)
        except Exception as e:
            logger.warning("Failed to release migration lock", executor_id=executor_id, error=str(e))

    # Forward runs

    async def _prepare(self) -> None:
        if self.config.before_migrate_name and not self.config.dry_run:
            await self._execute_before_migrate()
        self._enter(WorkflowState.INITIALIZING_HISTORY)
        await self.schema_version_service.init(self.config.table_name)

    async def _execute_before_migrate(self) -> None:
        script = await self.migration_service.find_before_migrate_script(self.config)
        if script is None:
            logger.debug("No beforeMigrate script found")
            return

        logger.info("Executing beforeMigrate script", script=script.name)
        await script.init(self.loader_registry)
        result = script.script.up(self.handler.db, script, self.handler)
        if inspect.isawaitable(result):
            result = await result
        logger.info("beforeMigrate completed", script=script.name, result=result)

    async def _migrate(self, select: PendingSelector) -> MigrationResult:
        scripts = ScriptSet()
        backup_path: Optional[str] = None

        if self.config.dry_run:
            logger.info("Dry run mode: no changes will be committed")

        try:
            await self._prepare()

            self._enter(WorkflowState.SCANNING)
            scripts = await self.scanner.scan()
            scripts.pending = select(scripts)

            self._enter(WorkflowState.VALIDATING)
            await self._validate(scripts)
            await self._init_scripts(scripts.pending)
            self._check_hybrid_batch(scripts.pending)

            self.reporter.render_status(scripts)
            self.reporter.report_ignored(scripts)

            if scripts.pending and self.rollback_service.should_create_backup() and not self.config.dry_run:
                self._enter(WorkflowState.BACKING_UP)
                backup_path = await self.backup_service.backup()

            await self.hooks.on_start(len(scripts.all), len(scripts.pending))

            if scripts.pending:
                self._enter(WorkflowState.EXECUTING)
                await self._execute(scripts)
                self._enter(WorkflowState.COMMITTING)
            else:
                self.reporter.report_no_pending()

            self._enter(WorkflowState.CLEANING_UP)
            await self.backup_service.delete_backup()
        except Exception as e:
            return await self._recover(e, scripts, backup_path)

        result = MigrationResult(
            success=True,
            executed=scripts.executed,
            migrated=scripts.migrated,
            ignored=scripts.ignored,
        )
        await self.hooks.on_complete(result)
        self.reporter.report_result(result)
        return result

    async def _init_scripts(self, scripts: Sequence[MigrationScript]) -> None:
        for script in scripts:
            await script.init(self.loader_registry)

    async def _validate(self, scripts: ScriptSet) -> None:
        await self.validation.validate_pending(scripts.pending)
        await self.validation.validate_migrated(scripts.migrated, scripts.all)
        if self.config.transaction.mode is not TransactionMode.NONE and scripts.pending:
            await self.validation.validate_transaction_configuration(scripts.pending)

    def _check_hybrid_batch(self, pending: Sequence[MigrationScript]) -> None:
        mode = self.config.transaction.mode
        if not pending or mode is TransactionMode.NONE:
            return

        unmanaged = [s.name for s in pending if s.manages_own_transactions]
        managed = [s.name for s in pending if not s.manages_own_transactions]
        if unmanaged and managed:
            raise HybridBatchError(
                "Hybrid migrations detected: cannot use automatic transaction management. "
                f"Scripts that manage their own transactions: {', '.join(unmanaged)}. "
                f"Managed scripts: {', '.join(managed)}. "
                f"Set transaction mode to NONE or run the two kinds in separate batches "
                f"(current mode: {mode.value}).",
                unmanaged=unmanaged,
                managed=managed,
            )

    async def _execute(self, scripts: ScriptSet) -> None:
        if self.config.dry_run:
            if self.transaction_manager is None:
                logger.info(
                    "Dry run: would execute migrations",
                    scripts=[s.name for s in scripts.pending],
                    ignored=len(scripts.ignored),
                )
                return
            self.reporter.report_dry_run_start(len(scripts.pending))

        await self.hook_executor.execute_with_hooks(scripts.pending, scripts.executed)

        if self.config.dry_run:
            self.reporter.report_dry_run_complete(len(scripts.executed))

    async def _recover(
        self, error: Exception, scripts: ScriptSet, backup_path: Optional[str]
    ) -> MigrationResult:
        self._enter(WorkflowState.RECOVERING)
        logger.error(
            "Migration run failed",
            error=str(error),
            error_type=type(error).__name__,
            executed=[s.name for s in scripts.executed],
        )
        errors: List[BaseException] = [error]

        if self.config.dry_run:
            logger.info("Dry run failed, nothing was committed; skipping recovery")
        else:
            try:
                await self.rollback_service.rollback(tuple(scripts.executed), backup_path)
            except Exception as e:
                logger.error("Recovery failed, database may be inconsistent", error=str(e))
                recovery_error = RollbackError(f"Recovery failed: {e}", context={"cause": type(e).__name__})
                recovery_error.__cause__ = e
                errors.append(recovery_error)

        await self.hooks.on_error(error)
        self._enter(WorkflowState.FAILED)

        result = MigrationResult(
            success=False,
            executed=scripts.executed,
            migrated=scripts.migrated,
            ignored=scripts.ignored,
            errors=errors,
        )
        self.reporter.report_result(result)
        return result

    # Inverse runs

    async def _rollback(self, target_version: int) -> MigrationResult:
        scripts = ScriptSet()
        try:
            self._enter(WorkflowState.INITIALIZING_HISTORY)
            await self.schema_version_service.init(self.config.table_name)

            self._enter(WorkflowState.SCANNING)
            scripts = await self.scanner.scan()
            to_rollback = self.selector.get_migrated_down_to(scripts.migrated, target_version)

            self._enter(WorkflowState.VALIDATING)
            await self._resolve_for_rollback(to_rollback, scripts.all)

            await self.hooks.on_start(len(scripts.all), len(to_rollback))

            if not to_rollback:
                logger.info("Nothing to roll back", target_version=target_version)
            elif self.config.dry_run and self.transaction_manager is None:
                logger.info("Dry run: would roll back migrations", scripts=[s.name for s in to_rollback])
            else:
                self._enter(WorkflowState.EXECUTING)
                await self.hook_executor.execute_down_with_hooks(to_rollback, scripts.executed)
                self._enter(WorkflowState.COMMITTING)
            self._enter(WorkflowState.CLEANING_UP)
        except Exception as e:
            logger.error("Rollback to version failed", target_version=target_version, error=str(e))
            await self.hooks.on_error(e)
            self._enter(WorkflowState.FAILED)
            return MigrationResult(
                success=False,
                executed=scripts.executed,
                migrated=scripts.migrated,
                ignored=scripts.ignored,
                errors=[e],
            )

        result = MigrationResult(
            success=True,
            executed=scripts.executed,
            migrated=scripts.migrated,
            ignored=scripts.ignored,
        )
        await self.hooks.on_complete(result)
        self.reporter.report_result(result)
        return result

    async def _resolve_for_rollback(
        self, to_rollback: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript]
    ) -> None:
        """Attach files to history rows and load them; every one needs down()."""
        discovered = {s.version: s for s in all_scripts}
        for script in to_rollback:
            if script.source_location is None:
                match = discovered.get(script.version)
                if match is None:
                    raise ExecutionError(
                        f"Cannot roll back {script.name}: migration file not found", script=script
                    )
                script.source_location = match.source_location
            await script.init(self.loader_registry)
            if not script.has_down:
                raise ExecutionError(f"Cannot roll back {script.name}: no down() method", script=script)
