"""Tests for the schema-runner command line."""

import asyncio
import io

import pytest
from rich.console import Console

from fakes import write_python_script
from schemarunner import cli
from schemarunner.core.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    HybridBatchError,
    LockAcquisitionError,
    MigrationError,
    OwnershipVerificationError,
    ValidationError,
)
from schemarunner.models import MigrationResult


def run(migrations_dir, *command, handler="fakes:create_handler"):
    return cli.main(["--handler", handler, "--folder", str(migrations_dir), *command])


class TestExitCodes:
    """Error to exit code mapping."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (ValidationError("x"), cli.EXIT_VALIDATION_ERROR),
            (HybridBatchError("x"), cli.EXIT_VALIDATION_ERROR),
            (LockAcquisitionError("x"), cli.EXIT_LOCK_ERROR),
            (OwnershipVerificationError("exec-1"), cli.EXIT_LOCK_ERROR),
            (DatabaseConnectionError("x"), cli.EXIT_CONNECTION_ERROR),
            (ConfigurationError("x"), cli.EXIT_CONFIG_ERROR),
            (MigrationError("x"), cli.EXIT_MIGRATION_FAILED),
        ],
    )
    def test_exit_code_for(self, error, code):
        assert cli.exit_code_for(error) == code

    def test_result_codes(self):
        assert cli.exit_code_for_result(MigrationResult(success=True)) == cli.EXIT_SUCCESS
        assert cli.exit_code_for_result(MigrationResult(success=False, errors=[RuntimeError("script")])) == 1
        assert cli.exit_code_for_result(MigrationResult(success=False, errors=[ValidationError("bad")])) == 2
        assert cli.exit_code_for_result(MigrationResult(success=False, errors=[ConfigurationError("bad")])) == 5


class TestParser:
    """Argument parsing."""

    def test_migrate_options(self):
        args = cli.build_parser().parse_args(["--folder", "db", "migrate", "--to", "42", "--dry-run"])

        assert args.command == "migrate"
        assert args.target_version == 42
        assert cli._overrides(args) == {"folder": args.folder, "dry_run": True}

    def test_down_requires_version(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["down"])

    def test_lock_release_requires_force(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["lock-release"])

    def test_backup_requires_subcommand(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["backup"])

    def test_backup_restore_path_is_optional(self):
        args = cli.build_parser().parse_args(["backup", "restore"])

        assert args.backup_command == "restore"
        assert args.path is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_handler_from_environment(self, monkeypatch):
        monkeypatch.setenv("MSR_HANDLER", "mypkg.db:factory")

        assert cli.build_parser().parse_args(["list"]).handler == "mypkg.db:factory"


class TestHandlerLoading:
    def test_async_factory(self, make_config):
        handler = asyncio.run(cli.load_handler("fakes:create_handler_async", make_config()))

        assert handler.lock_store is not None

    @pytest.mark.parametrize("factory_path", [None, "fakes", "fakes:does_not_exist", "no_such_module:factory"])
    def test_invalid_factory_path(self, make_config, factory_path):
        with pytest.raises(ConfigurationError):
            asyncio.run(cli.load_handler(factory_path, make_config()))


class TestCommands:
    """main() end to end."""

    def test_migrate(self, migrations_dir):
        write_python_script(migrations_dir, 1)

        assert run(migrations_dir, "migrate") == cli.EXIT_SUCCESS

    def test_migrate_dry_run_and_target(self, migrations_dir):
        write_python_script(migrations_dir, 1)
        write_python_script(migrations_dir, 2)

        assert run(migrations_dir, "migrate", "--to", "1", "--dry-run") == cli.EXIT_SUCCESS

    def test_failing_script(self, migrations_dir):
        write_python_script(migrations_dir, 1, fail=True)

        assert run(migrations_dir, "migrate") == cli.EXIT_MIGRATION_FAILED

    def test_validation_failure(self, migrations_dir):
        (migrations_dir / "V1_empty.py").write_text("VALUE = 1\n")

        assert run(migrations_dir, "migrate") == cli.EXIT_VALIDATION_ERROR
        assert run(migrations_dir, "validate") == cli.EXIT_VALIDATION_ERROR

    def test_lock_held(self, migrations_dir):
        write_python_script(migrations_dir, 1)

        assert run(migrations_dir, "migrate", handler="fakes:create_locked_handler") == cli.EXIT_LOCK_ERROR

    def test_connection_failure(self, migrations_dir):
        assert run(migrations_dir, "migrate", handler="fakes:create_disconnected_handler") == cli.EXIT_CONNECTION_ERROR

    def test_missing_handler(self, migrations_dir):
        assert cli.main(["--folder", str(migrations_dir), "migrate"]) == cli.EXIT_CONFIG_ERROR

    def test_missing_folder(self, tmp_path):
        assert run(tmp_path / "absent", "migrate") == cli.EXIT_CONFIG_ERROR

    def test_down(self, migrations_dir):
        write_python_script(migrations_dir, 1)

        # A fresh handler has no history, so there is nothing to roll back.
        assert run(migrations_dir, "down", "0") == cli.EXIT_SUCCESS

    def test_validate(self, migrations_dir):
        write_python_script(migrations_dir, 1)

        assert run(migrations_dir, "validate") == cli.EXIT_SUCCESS

    def test_lock_commands_need_lock_store(self, migrations_dir):
        code = run(migrations_dir, "lock-status", handler="fakes:create_handler_without_lock_store")

        assert code == cli.EXIT_CONFIG_ERROR


class TestRunCommandOutput:
    """Console output of the informational commands."""

    def run_command(self, migrations_dir, *argv, handler="fakes:create_handler"):
        console = Console(file=io.StringIO(), width=120, color_system=None)
        args = cli.build_parser().parse_args(["--handler", handler, "--folder", str(migrations_dir), *argv])
        code = asyncio.run(cli.run_command(args, console))
        return code, console.file.getvalue()

    def test_lock_status_free(self, migrations_dir):
        code, output = self.run_command(migrations_dir, "lock-status")

        assert code == cli.EXIT_SUCCESS
        assert "Lock is free" in output

    def test_lock_status_held(self, migrations_dir):
        code, output = self.run_command(migrations_dir, "lock-status", handler="fakes:create_locked_handler")

        assert code == cli.EXIT_SUCCESS
        assert "other-host-1" in output

    def test_lock_release(self, migrations_dir):
        code, output = self.run_command(migrations_dir, "lock-release", "--force", handler="fakes:create_locked_handler")

        assert code == cli.EXIT_SUCCESS
        assert "force-released" in output

    def test_validate_message(self, migrations_dir):
        write_python_script(migrations_dir, 1)

        code, output = self.run_command(migrations_dir, "validate")

        assert code == cli.EXIT_SUCCESS
        assert "validation checks passed" in output

    def test_backup_create(self, migrations_dir, tmp_path):
        code, output = self.run_command(migrations_dir, "backup", "create", handler="fakes:create_handler_with_backup")

        assert code == cli.EXIT_SUCCESS
        assert "Backup created" in output
        assert (tmp_path / "backup-1.bak").exists()

    def test_backup_create_without_capability(self, migrations_dir):
        code, output = self.run_command(migrations_dir, "backup", "create")

        assert code == cli.EXIT_BACKUP_FAILED
        assert "Backup creation failed" in output

    def test_backup_restore_path(self, migrations_dir, tmp_path):
        backup_file = tmp_path / "nightly.bak"
        backup_file.write_text("backup")

        code, output = self.run_command(
            migrations_dir, "backup", "restore", str(backup_file), handler="fakes:create_handler_with_backup"
        )

        assert code == cli.EXIT_SUCCESS
        assert "restored" in output

    def test_backup_restore_without_backup(self, migrations_dir):
        code, output = self.run_command(migrations_dir, "backup", "restore", handler="fakes:create_handler_with_backup")

        assert code == cli.EXIT_RESTORE_FAILED
        assert "Restore failed" in output

    def test_backup_delete_path(self, migrations_dir, tmp_path):
        backup_file = tmp_path / "old.bak"
        backup_file.write_text("backup")

        code, _ = self.run_command(
            migrations_dir, "backup", "delete", str(backup_file), handler="fakes:create_handler_with_backup"
        )

        assert code == cli.EXIT_SUCCESS
        assert not backup_file.exists()
