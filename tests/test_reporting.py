"""Tests for console status rendering."""

import io
from datetime import timedelta

from rich.console import Console

from schemarunner.models import MigrationResult, MigrationScript, ScriptSet, utcnow
from schemarunner.reporting import MigrationReporter


def make_reporter(show_status=True):
    console = Console(file=io.StringIO(), width=120, color_system=None)
    return MigrationReporter(show_status=show_status, console=console), console


def script_set():
    finished = utcnow()
    migrated = MigrationScript(
        name="V1_init.py", version=1, started_at=finished - timedelta(seconds=2), finished_at=finished
    )
    ignored = MigrationScript(name="V2_late.py", version=2)
    pending = MigrationScript(name="V4_next.py", version=4)
    return ScriptSet(
        all=[MigrationScript(name="V1_init.py", version=1), ignored, pending],
        migrated=[migrated, MigrationScript(name="V3_done.py", version=3)],
        pending=[pending],
        ignored=[ignored],
    )


class TestMigrationReporter:
    """Rich table output."""

    def test_status_table_rows(self):
        reporter, _ = make_reporter()

        table = reporter.build_status_table(script_set())

        assert table.row_count == 4
        assert [c.header for c in table.columns] == ["Version", "Name", "Status", "Executed", "Duration"]

    def test_render_status(self):
        reporter, console = make_reporter()

        reporter.render_status(script_set())

        output = console.file.getvalue()
        assert "MIGRATED" in output
        assert "IGNORED" in output
        assert "PENDING" in output
        assert "V4_next.py" in output
        assert "2.00s" in output

    def test_render_disabled(self):
        reporter, console = make_reporter(show_status=False)

        reporter.render_status(script_set())

        assert console.file.getvalue() == ""

    def test_report_result_does_not_print_table(self):
        reporter, console = make_reporter()

        reporter.report_result(MigrationResult(success=False, errors=[RuntimeError("boom")]))
        reporter.report_result(MigrationResult(success=True))

        assert console.file.getvalue() == ""
