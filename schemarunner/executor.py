"""Public entry point wiring every collaborator for one handler."""

from typing import Any, Optional, Sequence, Union

from .backup import BackupService
from .config.logging_config import get_logger
from .config.settings import MigrationConfig
from .core.errors import ConfigurationError
from .hooks import CompositeHooks, MigrationHooks
from .loaders import LoaderRegistry
from .locking import LockingOrchestrator
from .models import LockStatus, MigrationResult, ScriptSet
from .reporting import MigrationReporter
from .rollback import RollbackService
from .runner import MigrationHookExecutor, MigrationRunner
from .scanner import MigrationScanner, MigrationService
from .schema_version import SchemaVersionService
from .selector import MigrationScriptSelector
from .transaction import create_transaction_manager
from .validation import MigrationValidationOrchestrator, MigrationValidationService
from .workflow import MigrationWorkflowOrchestrator

logger = get_logger(__name__)


class MigrationScriptExecutor:
    """Facade over the migration engine.

    Example:
        executor = MigrationScriptExecutor(handler, load_config())
        result = await executor.migrate()
    """

    def __init__(
        self,
        handler: Any,
        config: Optional[MigrationConfig] = None,
        hooks: Optional[Union[MigrationHooks, Sequence[MigrationHooks]]] = None,
        loader_registry: Optional[LoaderRegistry] = None,
        custom_validators: Optional[Sequence[Any]] = None,
        reporter: Optional[MigrationReporter] = None,
    ):
        self.handler = handler
        self.config = config or MigrationConfig()

        if hooks is None:
            self.hooks: MigrationHooks = MigrationHooks()
        elif isinstance(hooks, MigrationHooks):
            self.hooks = hooks
        else:
            self.hooks = CompositeHooks(list(hooks))

        self.loader_registry = loader_registry or LoaderRegistry.create_default()
        self.selector = MigrationScriptSelector()
        self.schema_version_service = SchemaVersionService(handler.schema_version)
        self.migration_service = MigrationService()
        self.scanner = MigrationScanner(
            self.migration_service, self.schema_version_service, self.selector, self.config
        )
        self.validation = MigrationValidationOrchestrator(
            MigrationValidationService(custom_validators), self.config, self.loader_registry, handler
        )
        self.backup_service = BackupService(handler, self.config.backup, self.hooks)
        self.rollback_service = RollbackService(handler, self.config, self.backup_service, self.hooks)
        self.reporter = reporter or MigrationReporter(show_status=self.config.show_status)

        # Resolved once; the hot path never type-switches on the database.
        self.transaction_manager = create_transaction_manager(
            handler, self.config.transaction, self.hooks, dry_run=self.config.dry_run
        )
        self.runner = MigrationRunner(handler, self.schema_version_service, self.config, self.loader_registry)
        self.hook_executor = MigrationHookExecutor(self.runner, self.hooks, self.transaction_manager)

        lock_store = getattr(handler, "lock_store", None)
        self.locking = (
            LockingOrchestrator(lock_store, self.config.locking, self.hooks) if lock_store is not None else None
        )

        self.workflow = MigrationWorkflowOrchestrator(
            handler,
            self.config,
            scanner=self.scanner,
            migration_service=self.migration_service,
            schema_version_service=self.schema_version_service,
            selector=self.selector,
            validation=self.validation,
            backup_service=self.backup_service,
            rollback_service=self.rollback_service,
            hook_executor=self.hook_executor,
            loader_registry=self.loader_registry,
            reporter=self.reporter,
            hooks=self.hooks,
            transaction_manager=self.transaction_manager,
            locking=self.locking,
        )
        logger.debug(
            "Migration executor ready",
            handler=handler.get_name() if hasattr(handler, "get_name") else type(handler).__name__,
            transaction_manager=type(self.transaction_manager).__name__ if self.transaction_manager else None,
            locking=self.locking is not None,
        )

    async def migrate(self, target_version: Optional[int] = None) -> MigrationResult:
        if target_version is not None:
            return await self.workflow.migrate_to_version(target_version)
        return await self.workflow.migrate_all()

    async def migrate_to(self, target_version: int) -> MigrationResult:
        return await self.workflow.migrate_to_version(target_version)

    async def down(self, target_version: int) -> MigrationResult:
        return await self.workflow.rollback_to_version(target_version)

    async def validate(self) -> None:
        await self.workflow.validate()

    async def list_migrations(self) -> ScriptSet:
        """Scan and render the status table without executing anything."""
        await self.schema_version_service.init(self.config.table_name)
        scripts = await self.scanner.scan()
        self.reporter.render_status(scripts)
        return scripts

    async def create_backup(self) -> str:
        return await self.backup_service.backup()

    async def restore_backup(self, path: Optional[str] = None) -> None:
        """Restore ``path``, or the backup made by ``create_backup`` when omitted."""
        await self.backup_service.restore(path)

    async def delete_backup(self, path: Optional[str] = None) -> None:
        await self.backup_service.delete_backup(path)

    def _require_locking(self) -> LockingOrchestrator:
        if self.locking is None:
            raise ConfigurationError("Locking is not configured: the handler provides no lock store")
        return self.locking

    async def get_lock_status(self) -> Optional[LockStatus]:
        return await self._require_locking().get_lock_status()

    async def force_release_lock(self) -> None:
        await self._require_locking().force_release_lock()
