"""Tests for version-based script selection."""

import pytest

from schemarunner.models import MigrationScript
from schemarunner.selector import MigrationScriptSelector


def scripts(*versions):
    return [MigrationScript(name=f"V{v}_s.py", version=v) for v in versions]


class TestPendingAndIgnored:
    """Partitioning against history."""

    def setup_method(self):
        self.selector = MigrationScriptSelector()

    def test_everything_pending_without_history(self):
        pending = self.selector.get_pending([], scripts(3, 1, 2))

        assert [s.version for s in pending] == [1, 2, 3]

    def test_pending_is_newer_than_last_executed(self):
        migrated = scripts(1, 3)
        all_scripts = scripts(1, 2, 3, 4, 5)

        assert [s.version for s in self.selector.get_pending(migrated, all_scripts)] == [4, 5]

    def test_out_of_order_script_is_ignored(self):
        migrated = scripts(1, 3)
        all_scripts = scripts(1, 2, 3, 4)

        ignored = self.selector.get_ignored(migrated, all_scripts)

        assert [s.version for s in ignored] == [2]

    @pytest.mark.parametrize(
        "migrated,all_versions,pending,ignored",
        [
            ([], [100, 200], [100, 200], []),
            ([100], [100, 200, 300], [200, 300], []),
            ([500], [100, 300, 500, 700], [700], [100, 300]),
            ([1, 3, 5], [1, 2, 3, 4, 5, 6], [6], [2, 4]),
            ([1, 2, 3], [1, 2, 3], [], []),
        ],
    )
    def test_pending_ignored_and_migrated_partition_all(self, migrated, all_versions, pending, ignored):
        all_scripts = scripts(*all_versions)

        pending_scripts = self.selector.get_pending(scripts(*migrated), all_scripts)
        ignored_scripts = self.selector.get_ignored(scripts(*migrated), all_scripts)

        assert [s.version for s in pending_scripts] == pending
        assert [s.version for s in ignored_scripts] == ignored
        assert not {id(s) for s in pending_scripts} & {id(s) for s in ignored_scripts}
        rebuilt = sorted([s.version for s in pending_scripts + ignored_scripts] + migrated)
        assert rebuilt == sorted(all_versions)

    def test_history_matched_by_version_not_identity(self):
        migrated = scripts(1, 2)
        all_scripts = scripts(1, 2)

        assert self.selector.get_pending(migrated, all_scripts) == []
        assert self.selector.get_ignored(migrated, all_scripts) == []

    def test_pending_up_to_target_is_inclusive(self):
        pending = self.selector.get_pending_up_to(scripts(1), scripts(1, 2, 3, 4), 3)

        assert [s.version for s in pending] == [2, 3]


class TestRollbackSelection:
    """Selection for inverse runs."""

    def setup_method(self):
        self.selector = MigrationScriptSelector()

    def test_down_to_excludes_target_and_orders_latest_first(self):
        selected = self.selector.get_migrated_down_to(scripts(1, 2, 3, 4), 2)

        assert [s.version for s in selected] == [4, 3]

    def test_range_is_exclusive_inclusive(self):
        selected = self.selector.get_migrated_in_range(scripts(1, 2, 3, 4), 1, 3)

        assert [s.version for s in selected] == [3, 2]

    def test_empty_range(self):
        assert self.selector.get_migrated_in_range(scripts(1, 2, 3), 3, 3) == []
        assert self.selector.get_migrated_in_range(scripts(1, 2, 3), 3, 1) == []
