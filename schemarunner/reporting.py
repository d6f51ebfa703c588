"""Console status rendering with rich."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from .config.logging_config import get_logger
from .models import MigrationResult, MigrationScript, ScriptSet

logger = get_logger(__name__)


def _format_time(script: MigrationScript) -> str:
    if script.finished_at is None:
        return "-"
    return script.finished_at.strftime("%Y-%m-%d %H:%M:%S")


def _format_duration(script: MigrationScript) -> str:
    duration = script.duration_ms
    return f"{duration / 1000:.2f}s" if duration is not None else "-"


class MigrationReporter:
    """Renders the migration table and summary lines."""

    def __init__(self, show_status: bool = True, console: Optional[Console] = None):
        self.show_status = show_status
        self.console = console or Console()

    def build_status_table(self, scripts: ScriptSet) -> Table:
        table = Table(title="Migrations")
        table.add_column("Version", style="cyan", justify="right")
        table.add_column("Name", style="white")
        table.add_column("Status", style="white")
        table.add_column("Executed", style="yellow")
        table.add_column("Duration", style="yellow", justify="right")

        migrated_versions = {s.version for s in scripts.migrated}
        rows = {s.version: (s, "[green]MIGRATED[/green]") for s in scripts.migrated}
        for script in scripts.all:
            if script.version in migrated_versions:
                continue
            if script in scripts.ignored:
                rows[script.version] = (script, "[yellow]IGNORED[/yellow]")
            else:
                rows[script.version] = (script, "[blue]PENDING[/blue]")

        for version in sorted(rows):
            script, status = rows[version]
            table.add_row(str(version), script.name, status, _format_time(script), _format_duration(script))
        return table

    def render_status(self, scripts: ScriptSet) -> None:
        if not self.show_status:
            return
        self.console.print(self.build_status_table(scripts))

    def report_ignored(self, scripts: ScriptSet) -> None:
        for script in scripts.ignored:
            logger.warning(
                "Out-of-order migration will not run",
                script=script.name,
                version=script.version,
            )

    def report_dry_run_start(self, pending: int) -> None:
        logger.info("Dry run: changes will be rolled back", pending=pending)

    def report_dry_run_complete(self, executed: int) -> None:
        logger.info("Dry run completed, no changes were committed", executed=executed)

    def report_no_pending(self) -> None:
        logger.info("Nothing to migrate, database is up to date")

    def report_result(self, result: MigrationResult) -> None:
        if result.success:
            logger.info("Migrations completed", executed=len(result.executed))
        else:
            logger.error(
                "Migrations failed",
                executed=len(result.executed),
                errors=[str(e) for e in result.errors or []],
            )
