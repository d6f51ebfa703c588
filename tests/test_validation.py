"""Tests for script and configuration validation."""

import textwrap

import pytest

from fakes import (
    CallbackDatabase,
    FakeHandler,
    ImperativeDatabase,
    InMemoryHistory,
    PlainDatabase,
    write_python_script,
)
from schemarunner.checksum import ChecksumService
from schemarunner.core.errors import DatabaseConnectionError, ValidationError
from schemarunner.loaders import LoaderRegistry
from schemarunner.models import (
    DownMethodPolicy,
    MigrationScript,
    RollbackStrategy,
    TransactionMode,
    ValidationIssue,
    ValidationIssueType,
    ValidationResult,
)
from schemarunner.scanner import MigrationScanner, MigrationService
from schemarunner.schema_version import SchemaVersionService
from schemarunner.selector import MigrationScriptSelector
from schemarunner.validation import (
    MigrationValidationOrchestrator,
    MigrationValidationService,
    ValidationCode,
    resolve_down_policy,
)


def script_for(path, version):
    return MigrationScript(name=path.name, version=version, source_location=path)


def codes(result):
    return [issue.code for issue in result.issues]


class TestValidateOne:
    """Structure, interface and down() policy checks."""

    @pytest.mark.asyncio
    async def test_valid_script(self, make_config, migrations_dir):
        script = script_for(write_python_script(migrations_dir, 1), 1)

        result = await MigrationValidationService().validate_one(script, make_config(), LoaderRegistry.create_default())

        assert result.valid
        assert result.issues == []
        assert script.is_loaded

    @pytest.mark.asyncio
    async def test_missing_file(self, make_config, migrations_dir):
        script = script_for(migrations_dir / "V1_gone.py", 1)

        result = await MigrationValidationService().validate_one(script, make_config(), LoaderRegistry.create_default())

        assert codes(result) == [ValidationCode.FILE_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_loader_code_is_reported(self, make_config, migrations_dir):
        path = migrations_dir / "V1_empty.py"
        path.write_text("VALUE = 1\n")

        result = await MigrationValidationService().validate_one(
            script_for(path, 1), make_config(), LoaderRegistry.create_default()
        )

        assert codes(result) == [ValidationCode.NO_EXPORT]

    @pytest.mark.asyncio
    async def test_sync_up_is_a_warning(self, make_config, migrations_dir):
        path = migrations_dir / "V1_sync.py"
        path.write_text(
            textwrap.dedent(
                """
                def up(db, info, handler):
                    return "sync"
                """
            )
        )

        result = await MigrationValidationService().validate_one(
            script_for(path, 1), make_config(), LoaderRegistry.create_default()
        )

        assert result.valid
        assert codes(result) == [ValidationCode.UP_NOT_ASYNC_FUNCTION]

    @pytest.mark.asyncio
    async def test_down_required_by_down_strategy(self, make_config, migrations_dir):
        script = script_for(write_python_script(migrations_dir, 1, with_down=False), 1)
        config = make_config(rollback_strategy=RollbackStrategy.DOWN)

        result = await MigrationValidationService().validate_one(script, config, LoaderRegistry.create_default())

        assert not result.valid
        assert codes(result) == [ValidationCode.MISSING_DOWN_WITH_DOWN_STRATEGY]

    @pytest.mark.asyncio
    async def test_down_recommended_by_both_strategy(self, make_config, migrations_dir):
        script = script_for(write_python_script(migrations_dir, 1, with_down=False), 1)
        config = make_config(rollback_strategy=RollbackStrategy.BOTH)

        result = await MigrationValidationService().validate_one(script, config, LoaderRegistry.create_default())

        assert result.valid
        assert codes(result) == [ValidationCode.MISSING_DOWN_WITH_BOTH_STRATEGY]

    @pytest.mark.asyncio
    async def test_custom_validator_runs_after_builtin_checks(self, make_config, migrations_dir):
        class NamingValidator:
            async def validate(self, script, config):
                return ValidationResult(
                    script=script,
                    issues=[ValidationIssue(ValidationIssueType.WARNING, "NAMING", "prefer snake case")],
                )

        script = script_for(write_python_script(migrations_dir, 1), 1)
        service = MigrationValidationService([NamingValidator()])

        result = await service.validate_one(script, make_config(), LoaderRegistry.create_default())

        assert codes(result) == ["NAMING"]

    @pytest.mark.asyncio
    async def test_custom_validator_exception_becomes_issue(self, make_config, migrations_dir):
        class BrokenValidator:
            async def validate(self, script, config):
                raise RuntimeError("validator bug")

        script = script_for(write_python_script(migrations_dir, 1), 1)
        service = MigrationValidationService([BrokenValidator()])

        result = await service.validate_one(script, make_config(), LoaderRegistry.create_default())

        assert codes(result) == [ValidationCode.CUSTOM_VALIDATION_FAILED]

    @pytest.mark.asyncio
    async def test_custom_validators_skipped_after_errors(self, make_config, migrations_dir):
        class CountingValidator:
            calls = 0

            async def validate(self, script, config):
                CountingValidator.calls += 1
                return ValidationResult(script=script)

        script = script_for(migrations_dir / "V1_gone.py", 1)
        service = MigrationValidationService([CountingValidator()])

        await service.validate_one(script, make_config(), LoaderRegistry.create_default())

        assert CountingValidator.calls == 0


class TestDownPolicy:
    @pytest.mark.parametrize(
        "strategy,expected",
        [
            (RollbackStrategy.DOWN, DownMethodPolicy.REQUIRED),
            (RollbackStrategy.BOTH, DownMethodPolicy.RECOMMENDED),
            (RollbackStrategy.BACKUP, DownMethodPolicy.OPTIONAL),
            (RollbackStrategy.NONE, DownMethodPolicy.OPTIONAL),
        ],
    )
    def test_auto_follows_strategy(self, make_config, strategy, expected):
        assert resolve_down_policy(make_config(rollback_strategy=strategy)) is expected

    def test_explicit_policy_wins(self, make_config):
        config = make_config(rollback_strategy=RollbackStrategy.DOWN, down_method_policy=DownMethodPolicy.OPTIONAL)

        assert resolve_down_policy(config) is DownMethodPolicy.OPTIONAL


class TestMigratedFileIntegrity:
    """Executed scripts must still exist and be unchanged."""

    @pytest.mark.asyncio
    async def test_unchanged_file_passes(self, make_config, migrations_dir):
        path = write_python_script(migrations_dir, 1)
        migrated = MigrationScript(
            name=path.name, version=1, checksum=await ChecksumService().calculate_for_file(path)
        )

        issues = await MigrationValidationService().validate_migrated_file_integrity(
            [migrated], make_config(), [script_for(path, 1)]
        )

        assert issues == []

    @pytest.mark.asyncio
    async def test_modified_file_is_an_error(self, make_config, migrations_dir):
        path = write_python_script(migrations_dir, 1)
        migrated = MigrationScript(name=path.name, version=1, checksum="0" * 64)

        issues = await MigrationValidationService().validate_migrated_file_integrity(
            [migrated], make_config(), [script_for(path, 1)]
        )

        assert [i.code for i in issues] == [ValidationCode.MIGRATED_FILE_CHECKSUM_MISMATCH]

    @pytest.mark.asyncio
    async def test_missing_file_only_reported_when_location_validated(self, make_config):
        migrated = MigrationScript(name="V1_gone.py", version=1, checksum="abc")
        service = MigrationValidationService()

        lenient = await service.validate_migrated_file_integrity([migrated], make_config())
        strict = await service.validate_migrated_file_integrity(
            [migrated], make_config(validate_migrated_files_location=True)
        )

        assert lenient == []
        assert [i.code for i in strict] == [ValidationCode.MIGRATED_FILE_MISSING]

    @pytest.mark.asyncio
    async def test_disabled(self, make_config, migrations_dir):
        path = write_python_script(migrations_dir, 1)
        migrated = MigrationScript(name=path.name, version=1, checksum="0" * 64)

        issues = await MigrationValidationService().validate_migrated_file_integrity(
            [migrated], make_config(validate_migrated_files=False), [script_for(path, 1)]
        )

        assert issues == []


class TestTransactionConfiguration:
    """Transaction mode against database capability."""

    def test_plain_database_with_transactions_configured(self, make_config):
        issues = MigrationValidationService().validate_transaction_configuration(
            FakeHandler(db=PlainDatabase()), make_config(), [MigrationScript(name="V1_a.py", version=1)]
        )

        assert [i.code for i in issues] == [ValidationCode.TRANSACTIONS_NOT_SUPPORTED]

    def test_none_mode_needs_nothing(self, make_config):
        issues = MigrationValidationService().validate_transaction_configuration(
            FakeHandler(db=PlainDatabase()),
            make_config(transaction={"mode": TransactionMode.NONE}),
            [MigrationScript(name="V1_a.py", version=1)],
        )

        assert issues == []

    def test_callback_database_ignores_isolation(self, make_config):
        issues = MigrationValidationService().validate_transaction_configuration(
            FakeHandler(db=CallbackDatabase()), make_config(), [MigrationScript(name="V1_a.py", version=1)]
        )

        assert [(i.type, i.code) for i in issues] == [
            (ValidationIssueType.WARNING, ValidationCode.ISOLATION_NOT_SUPPORTED)
        ]

    def test_imperative_database(self, make_config):
        issues = MigrationValidationService().validate_transaction_configuration(
            FakeHandler(db=ImperativeDatabase()), make_config(), [MigrationScript(name="V1_a.py", version=1)]
        )

        assert issues == []


class TestValidationOrchestrator:
    """Which findings abort a run."""

    def make(self, config, handler=None):
        return MigrationValidationOrchestrator(
            MigrationValidationService(), config, LoaderRegistry.create_default(), handler or FakeHandler()
        )

    @pytest.mark.asyncio
    async def test_errors_raise(self, make_config, migrations_dir):
        orchestrator = self.make(make_config())
        scripts = [script_for(migrations_dir / "V1_gone.py", 1)]

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.validate_pending(scripts)

        assert exc_info.value.error_count == 1

    @pytest.mark.asyncio
    async def test_warnings_pass_unless_strict(self, make_config, migrations_dir):
        path = write_python_script(migrations_dir, 1, with_down=False)
        lenient = self.make(make_config(rollback_strategy=RollbackStrategy.BOTH))
        strict = self.make(make_config(rollback_strategy=RollbackStrategy.BOTH, strict_validation=True))

        results = await lenient.validate_pending([script_for(path, 1)])
        assert results[0].warnings

        with pytest.raises(ValidationError) as exc_info:
            await strict.validate_pending([script_for(path, 1)])
        assert exc_info.value.warning_count == 1

    @pytest.mark.asyncio
    async def test_validation_can_be_disabled(self, make_config, migrations_dir):
        orchestrator = self.make(make_config(validate_before_run=False))

        assert await orchestrator.validate_pending([script_for(migrations_dir / "V1_gone.py", 1)]) == []

    @pytest.mark.asyncio
    async def test_transaction_errors_raise(self, make_config):
        orchestrator = self.make(make_config(), FakeHandler(db=PlainDatabase()))

        with pytest.raises(ValidationError):
            await orchestrator.validate_transaction_configuration([MigrationScript(name="V1_a.py", version=1)])

    @pytest.mark.asyncio
    async def test_standalone_validate(self, make_config, migrations_dir):
        write_python_script(migrations_dir, 1)
        config = make_config()
        history = InMemoryHistory()
        schema_version_service = SchemaVersionService(history)
        scanner = MigrationScanner(MigrationService(), schema_version_service, MigrationScriptSelector(), config)

        await self.make(config).validate(scanner, schema_version_service)

        assert history.initialized

    @pytest.mark.asyncio
    async def test_standalone_validate_checks_connection(self, make_config):
        config = make_config()
        handler = FakeHandler(db=ImperativeDatabase(connected=False))
        schema_version_service = SchemaVersionService(handler.schema_version)
        scanner = MigrationScanner(MigrationService(), schema_version_service, MigrationScriptSelector(), config)

        with pytest.raises(DatabaseConnectionError):
            await self.make(config, handler).validate(scanner, schema_version_service)
