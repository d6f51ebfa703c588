"""
Command line interface.

    schema-runner --handler myproject.db:create_handler migrate --to 202501010000
    schema-runner --handler myproject.db:create_handler down 202401010000
    schema-runner --handler myproject.db:create_handler lock-release --force
    schema-runner --handler myproject.db:create_handler backup restore ./backups/backup-1.bak

The handler factory is called with the loaded MigrationConfig and may be a
coroutine function.
"""

import argparse
import asyncio
import importlib
import inspect
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console

from .config.logging_config import get_logger, setup_logging
from .config.settings import MigrationConfig, load_config
from .core.errors import (
    BackupError,
    ConfigurationError,
    DatabaseConnectionError,
    LockAcquisitionError,
    MigrationError,
    ValidationError,
)
from .executor import MigrationScriptExecutor
from .models import MigrationResult

logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_MIGRATION_FAILED = 1
EXIT_VALIDATION_ERROR = 2
EXIT_LOCK_ERROR = 3
EXIT_CONNECTION_ERROR = 4
EXIT_CONFIG_ERROR = 5
EXIT_BACKUP_FAILED = 6
EXIT_RESTORE_FAILED = 7

HANDLER_ENV_VAR = "MSR_HANDLER"


def exit_code_for(error: BaseException) -> int:
    """Map an error to the process exit code."""
    if isinstance(error, ValidationError):
        return EXIT_VALIDATION_ERROR
    if isinstance(error, LockAcquisitionError):
        return EXIT_LOCK_ERROR
    if isinstance(error, DatabaseConnectionError):
        return EXIT_CONNECTION_ERROR
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIG_ERROR
    if isinstance(error, MigrationError):
        return EXIT_MIGRATION_FAILED
    return EXIT_CONFIG_ERROR


def exit_code_for_result(result: MigrationResult) -> int:
    if result.success:
        return EXIT_SUCCESS
    error = result.errors[0] if result.errors else None
    # Script failures surface as whatever the script raised.
    if not isinstance(error, MigrationError):
        return EXIT_MIGRATION_FAILED
    return exit_code_for(error)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schema-runner",
        description="Database-agnostic migration runner",
    )
    parser.add_argument(
        "--handler",
        default=os.environ.get(HANDLER_ENV_VAR),
        help=f"Handler factory as module:callable (default: ${HANDLER_ENV_VAR})",
    )
    parser.add_argument("--config", type=Path, help="Config file (YAML or JSON)")
    parser.add_argument("--folder", type=Path, help="Migration scripts folder")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-file", help="Also log to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", help="Run pending migrations")
    migrate.add_argument("--to", type=int, dest="target_version", help="Stop at this version")
    migrate.add_argument("--dry-run", action="store_true", help="Execute inside transactions and roll back")

    down = subparsers.add_parser("down", help="Roll back to a version using down()")
    down.add_argument("target_version", type=int, help="Version to roll back to (exclusive)")

    subparsers.add_parser("validate", help="Validate migration scripts")
    subparsers.add_parser("list", help="Show migration status")
    subparsers.add_parser("lock-status", help="Show the migration lock")

    release = subparsers.add_parser("lock-release", help="Force-release the migration lock")
    release.add_argument("--force", action="store_true", required=True, help="Confirm releasing any holder's lock")

    backup = subparsers.add_parser("backup", help="Create, restore or delete a database backup")
    backup_commands = backup.add_subparsers(dest="backup_command", required=True)
    backup_commands.add_parser("create", help="Create a backup")
    restore = backup_commands.add_parser("restore", help="Restore from a backup file")
    restore.add_argument("path", nargs="?", help="Backup file to restore")
    delete = backup_commands.add_parser("delete", help="Delete a backup file")
    delete.add_argument("path", nargs="?", help="Backup file to delete")

    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.folder is not None:
        overrides["folder"] = args.folder
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_file:
        overrides["log_file"] = args.log_file
    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    return overrides


async def load_handler(factory_path: Optional[str], config: MigrationConfig) -> Any:
    """Import ``module:callable`` and call it with the config."""
    if not factory_path or ":" not in factory_path:
        raise ConfigurationError(
            "A handler factory is required as module:callable (--handler or MSR_HANDLER)",
            config_key=HANDLER_ENV_VAR,
        )
    module_name, _, attr = factory_path.partition(":")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load handler factory {factory_path}: {e}", config_key=HANDLER_ENV_VAR) from e

    handler = factory(config) if callable(factory) else factory
    if inspect.isawaitable(handler):
        handler = await handler
    return handler


async def run_command(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    console = console or Console()
    config = load_config(args.config, **_overrides(args))
    setup_logging(config.log_level, config.log_file)

    handler = await load_handler(args.handler, config)
    executor = MigrationScriptExecutor(handler, config)

    if args.command == "migrate":
        result = await executor.migrate(args.target_version)
        return exit_code_for_result(result)

    if args.command == "down":
        result = await executor.down(args.target_version)
        return exit_code_for_result(result)

    if args.command == "validate":
        await executor.validate()
        console.print("[green]All migration validation checks passed[/green]")
        return EXIT_SUCCESS

    if args.command == "list":
        scripts = await executor.list_migrations()
        if not config.show_status:
            console.print(executor.reporter.build_status_table(scripts))
        return EXIT_SUCCESS

    if args.command == "lock-status":
        status = await executor.get_lock_status()
        if status is None or not status.is_locked:
            console.print("Lock is [green]free[/green]")
        else:
            console.print(f"Lock held by [yellow]{status.locked_by}[/yellow]")
            if status.locked_at:
                console.print(f"  acquired: {status.locked_at.isoformat()}")
            if status.expires_at:
                expired = " [red](expired)[/red]" if status.is_expired() else ""
                console.print(f"  expires:  {status.expires_at.isoformat()}{expired}")
        return EXIT_SUCCESS

    if args.command == "lock-release":
        await executor.force_release_lock()
        console.print("[yellow]Lock force-released[/yellow]")
        return EXIT_SUCCESS

    if args.command == "backup":
        return await _run_backup(args, executor, console)

    raise ConfigurationError(f"Unknown command: {args.command}")


async def _run_backup(args: argparse.Namespace, executor: MigrationScriptExecutor, console: Console) -> int:
    if args.backup_command == "create":
        try:
            path = await executor.create_backup()
        except BackupError as e:
            console.print(f"[red]Backup creation failed:[/red] {e.message}")
            return EXIT_BACKUP_FAILED
        console.print(f"[green]Backup created:[/green] {path}")
        return EXIT_SUCCESS

    if args.backup_command == "restore":
        try:
            await executor.restore_backup(args.path)
        except BackupError as e:
            console.print(f"[red]Restore failed:[/red] {e.message}")
            return EXIT_RESTORE_FAILED
        console.print(f"[green]Database restored from[/green] {args.path or 'the latest backup'}")
        return EXIT_SUCCESS

    await executor.delete_backup(args.path)
    console.print("[green]Backup deleted[/green]")
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the schema-runner command."""
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run_command(args))
    except MigrationError as e:
        logger.error("Command failed", command=args.command, error=e.message, error_code=e.error_code)
        return exit_code_for(e)
    except Exception as e:
        logger.exception("Unexpected error", command=args.command, error=str(e))
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
