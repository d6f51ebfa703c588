"""
Pre-execution validation of script files and run configuration.

MigrationValidationService produces ValidationResults without raising;
MigrationValidationOrchestrator decides which findings are fatal and raises
ValidationError for them.
"""

import inspect
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .checksum import ChecksumService
from .config.logging_config import get_logger
from .config.settings import MigrationConfig
from .core.errors import DatabaseConnectionError, LoaderError, ValidationError
from .interfaces import is_callback_transactional, is_transactional
from .loaders import LoaderRegistry
from .models import (
    DownMethodPolicy,
    MigrationScript,
    RollbackStrategy,
    TransactionMode,
    ValidationIssue,
    ValidationIssueType,
    ValidationResult,
)

logger = get_logger(__name__)


class ValidationCode:
    """Issue codes reported by validation."""

    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    IMPORT_FAILED = "IMPORT_FAILED"
    NO_EXPORT = "NO_EXPORT"
    MULTIPLE_EXPORTS = "MULTIPLE_EXPORTS"
    NOT_INSTANTIABLE = "NOT_INSTANTIABLE"
    MISSING_UP_METHOD = "MISSING_UP_METHOD"
    INVALID_UP_SIGNATURE = "INVALID_UP_SIGNATURE"
    INVALID_DOWN_SIGNATURE = "INVALID_DOWN_SIGNATURE"
    MISSING_DOWN_WITH_DOWN_STRATEGY = "MISSING_DOWN_WITH_DOWN_STRATEGY"
    CUSTOM_VALIDATION_FAILED = "CUSTOM_VALIDATION_FAILED"
    MIGRATED_FILE_MISSING = "MIGRATED_FILE_MISSING"
    MIGRATED_FILE_CHECKSUM_MISMATCH = "MIGRATED_FILE_CHECKSUM_MISMATCH"
    TRANSACTIONS_NOT_SUPPORTED = "TRANSACTIONS_NOT_SUPPORTED"

    # Warnings
    UP_NOT_ASYNC_FUNCTION = "UP_NOT_ASYNC_FUNCTION"
    DOWN_NOT_ASYNC_FUNCTION = "DOWN_NOT_ASYNC_FUNCTION"
    MISSING_DOWN_WITH_BOTH_STRATEGY = "MISSING_DOWN_WITH_BOTH_STRATEGY"
    ISOLATION_NOT_SUPPORTED = "ISOLATION_NOT_SUPPORTED"


LOADER_CODES = {
    ValidationCode.FILE_NOT_FOUND,
    ValidationCode.IMPORT_FAILED,
    ValidationCode.NO_EXPORT,
    ValidationCode.MULTIPLE_EXPORTS,
    ValidationCode.NOT_INSTANTIABLE,
}


def _error(code: str, message: str, details: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(ValidationIssueType.ERROR, code, message, details)


def _warning(code: str, message: str, details: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(ValidationIssueType.WARNING, code, message, details)


def resolve_down_policy(config: MigrationConfig) -> DownMethodPolicy:
    """AUTO follows the rollback strategy: down requires, both recommends."""
    if config.down_method_policy is not DownMethodPolicy.AUTO:
        return config.down_method_policy
    if config.rollback_strategy is RollbackStrategy.DOWN:
        return DownMethodPolicy.REQUIRED
    if config.rollback_strategy is RollbackStrategy.BOTH:
        return DownMethodPolicy.RECOMMENDED
    return DownMethodPolicy.OPTIONAL


class MigrationValidationService:
    """Structural, interface and policy checks for scripts.

    Custom validators are objects exposing
    ``async validate(script, config) -> ValidationResult``; they only run for
    scripts that passed the built-in checks.
    """

    def __init__(self, custom_validators: Optional[Sequence[Any]] = None):
        self.custom_validators = list(custom_validators or [])

    async def validate_all(
        self, scripts: Sequence[MigrationScript], config: MigrationConfig, loader_registry: LoaderRegistry
    ) -> List[ValidationResult]:
        return [await self.validate_one(script, config, loader_registry) for script in scripts]

    async def validate_one(
        self, script: MigrationScript, config: MigrationConfig, loader_registry: LoaderRegistry
    ) -> ValidationResult:
        issues: List[ValidationIssue] = []
        await self._validate_structure(script, loader_registry, issues)
        self._validate_interface(script, issues)
        self._validate_down_method(script, config, issues)

        if not any(i.type is ValidationIssueType.ERROR for i in issues):
            for validator in self.custom_validators:
                try:
                    custom = await validator.validate(script, config)
                except Exception as e:
                    issues.append(
                        _error(
                            ValidationCode.CUSTOM_VALIDATION_FAILED,
                            f"Custom validator raised: {e}",
                            type(validator).__name__,
                        )
                    )
                    continue
                issues.extend(custom.issues)

        return ValidationResult(script=script, issues=issues)

    async def _validate_structure(
        self, script: MigrationScript, loader_registry: LoaderRegistry, issues: List[ValidationIssue]
    ) -> None:
        if script.source_location is None or not Path(script.source_location).exists():
            issues.append(
                _error(ValidationCode.FILE_NOT_FOUND, "Migration script file not found", str(script.source_location))
            )
            return

        try:
            await script.init(loader_registry)
        except LoaderError as e:
            code = e.context.get("code", ValidationCode.IMPORT_FAILED)
            if code not in LOADER_CODES:
                code = ValidationCode.IMPORT_FAILED
            issues.append(_error(code, "Migration script could not be loaded", e.message))

    def _validate_interface(self, script: MigrationScript, issues: List[ValidationIssue]) -> None:
        unit = script.script
        if unit is None:
            return

        up = getattr(unit, "up", None)
        if up is None:
            issues.append(_error(ValidationCode.MISSING_UP_METHOD, "Migration script is missing up()", script.name))
            return
        if not callable(up):
            issues.append(
                _error(ValidationCode.INVALID_UP_SIGNATURE, "up() must be callable", f"Found type: {type(up).__name__}")
            )
            return
        if not inspect.iscoroutinefunction(up):
            issues.append(
                _warning(
                    ValidationCode.UP_NOT_ASYNC_FUNCTION,
                    "up() is not declared async",
                    "Declare up() with async def or return an awaitable",
                )
            )

        down = getattr(unit, "down", None)
        if down is None:
            return
        if not callable(down):
            issues.append(
                _error(
                    ValidationCode.INVALID_DOWN_SIGNATURE,
                    "down() must be callable",
                    f"Found type: {type(down).__name__}",
                )
            )
        elif not inspect.iscoroutinefunction(down):
            issues.append(
                _warning(
                    ValidationCode.DOWN_NOT_ASYNC_FUNCTION,
                    "down() is not declared async",
                    "Declare down() with async def or return an awaitable",
                )
            )

    def _validate_down_method(
        self, script: MigrationScript, config: MigrationConfig, issues: List[ValidationIssue]
    ) -> None:
        if script.script is None or script.has_down:
            return

        policy = resolve_down_policy(config)
        if policy is DownMethodPolicy.REQUIRED:
            issues.append(
                _error(
                    ValidationCode.MISSING_DOWN_WITH_DOWN_STRATEGY,
                    "Migration is missing required down()",
                    f"Rollback strategy {config.rollback_strategy.value} requires down() for rollback",
                )
            )
        elif policy is DownMethodPolicy.RECOMMENDED:
            issues.append(
                _warning(
                    ValidationCode.MISSING_DOWN_WITH_BOTH_STRATEGY,
                    "Migration is missing recommended down()",
                    "Add down() to enable fast rollback; backup is used as fallback",
                )
            )

    async def validate_migrated_file_integrity(
        self,
        migrated: Sequence[MigrationScript],
        config: MigrationConfig,
        all_scripts: Sequence[MigrationScript] = (),
    ) -> List[ValidationIssue]:
        """Check that executed scripts still exist and are unchanged.

        History rows usually carry no file location; the file is looked up
        among the discovered scripts by version.
        """
        issues: List[ValidationIssue] = []
        if not config.validate_migrated_files:
            return issues

        checksums = ChecksumService(config.checksum_algorithm)
        discovered: Dict[int, MigrationScript] = {s.version: s for s in all_scripts}

        for script in migrated:
            location = script.source_location
            if location is None and script.version in discovered:
                location = discovered[script.version].source_location

            if location is None or not Path(location).exists():
                if config.validate_migrated_files_location:
                    issues.append(
                        _error(
                            ValidationCode.MIGRATED_FILE_MISSING,
                            f"Previously executed migration file is missing: {script.name}",
                            f"Expected at: {location}" if location else None,
                        )
                    )
                else:
                    logger.warning("Executed migration file missing", script=script.name)
                continue

            if not script.checksum:
                continue
            try:
                current = await checksums.calculate_for_file(location)
            except OSError as e:
                issues.append(
                    _error(
                        ValidationCode.IMPORT_FAILED,
                        f"Failed to read migration file for checksum validation: {script.name}",
                        str(e),
                    )
                )
                continue
            if current != script.checksum:
                issues.append(
                    _error(
                        ValidationCode.MIGRATED_FILE_CHECKSUM_MISMATCH,
                        f"Migration file has been modified after execution: {script.name}",
                        f"Expected checksum: {script.checksum}, current: {current}",
                    )
                )
        return issues

    def validate_transaction_configuration(
        self, handler: Any, config: MigrationConfig, scripts: Sequence[MigrationScript]
    ) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        tx = config.transaction
        if tx.mode is TransactionMode.NONE or not scripts:
            return issues
        if getattr(handler, "transaction_manager", None) is not None:
            return issues

        db = handler.db
        if not is_transactional(db):
            issues.append(
                _error(
                    ValidationCode.TRANSACTIONS_NOT_SUPPORTED,
                    f"Transaction mode {tx.mode.value} is configured but the database does not support transactions",
                    "Implement begin_transaction/commit/rollback or run_in_transaction, "
                    "or set transaction mode to NONE",
                )
            )
        elif is_callback_transactional(db) and tx.isolation is not None:
            issues.append(
                _warning(
                    ValidationCode.ISOLATION_NOT_SUPPORTED,
                    f"Isolation level {tx.isolation.value} is ignored for callback-style transactions",
                )
            )
        return issues


class MigrationValidationOrchestrator:
    """Applies validation at the points a run needs it and raises on fatal findings."""

    def __init__(
        self,
        validation_service: MigrationValidationService,
        config: MigrationConfig,
        loader_registry: LoaderRegistry,
        handler: Any,
    ):
        self.validation_service = validation_service
        self.config = config
        self.loader_registry = loader_registry
        self.handler = handler

    async def validate_pending(self, pending: Sequence[MigrationScript]) -> List[ValidationResult]:
        if not self.config.validate_before_run:
            logger.info("Skipping pending migration validation")
            return []
        if not pending:
            return []

        logger.info("Validating pending migrations", count=len(pending))
        results = await self.validation_service.validate_all(pending, self.config, self.loader_registry)

        failed = [r for r in results if not r.valid]
        if failed:
            self._log_results(failed, ValidationIssueType.ERROR)
            raise ValidationError("Pending migration validation failed", failed)

        warned = [r for r in results if r.warnings]
        if warned:
            self._log_results(warned, ValidationIssueType.WARNING)
            if self.config.strict_validation:
                raise ValidationError("Strict validation: warnings treated as errors", warned)

        logger.info("Validated pending migrations", count=len(pending))
        return results

    async def validate_migrated(
        self, migrated: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript] = ()
    ) -> List[ValidationIssue]:
        if not self.config.validate_migrated_files or not migrated:
            return []

        logger.info("Validating integrity of executed migrations", count=len(migrated))
        issues = await self.validation_service.validate_migrated_file_integrity(migrated, self.config, all_scripts)
        if issues:
            results = [ValidationResult(script=None, issues=[issue]) for issue in issues]
            self._log_results(results, ValidationIssueType.ERROR)
            raise ValidationError("Migration file integrity check failed", results)
        return issues

    async def validate_transaction_configuration(self, scripts: Sequence[MigrationScript]) -> List[ValidationIssue]:
        issues = self.validation_service.validate_transaction_configuration(self.handler, self.config, scripts)
        if not issues:
            return issues

        result = ValidationResult(script=None, issues=list(issues))
        if result.errors:
            self._log_results([result], ValidationIssueType.ERROR)
            raise ValidationError(
                "Transaction configuration validation failed",
                [ValidationResult(script=None, issues=result.errors)],
            )
        self._log_results([result], ValidationIssueType.WARNING)
        return issues

    async def validate(self, scanner: Any, schema_version_service: Any) -> None:
        """Standalone validation: connection, history, pending and executed scripts."""
        if not await self.handler.db.check_connection():
            raise DatabaseConnectionError("Database connection check failed")

        await schema_version_service.init(self.config.table_name)
        scripts = await scanner.scan()
        await self.validate_pending(scripts.pending)
        await self.validate_migrated(scripts.migrated, scripts.all)
        logger.info("All migration validation checks passed")

    @staticmethod
    def _log_results(results: Sequence[ValidationResult], issue_type: ValidationIssueType) -> None:
        log = logger.error if issue_type is ValidationIssueType.ERROR else logger.warning
        for result in results:
            name = result.script.name if result.script is not None else None
            for issue in result.issues:
                if issue.type is issue_type:
                    log(issue.message, script=name, code=issue.code, details=issue.details)
