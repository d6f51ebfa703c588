"""Selection of scripts relative to execution history. Pure, no I/O."""

from typing import List, Sequence

from .models import MigrationScript


class MigrationScriptSelector:
    """Partitions and orders scripts by version.

    Scripts are matched against history by version, not identity: two
    scripts at the same version are the same logical unit.
    """

    @staticmethod
    def _last_version(migrated: Sequence[MigrationScript]) -> float:
        return max((s.version for s in migrated), default=float("-inf"))

    def get_pending(
        self, migrated: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript]
    ) -> List[MigrationScript]:
        """Scripts newer than the last executed version, ascending."""
        last_version = self._last_version(migrated)
        pending = [s for s in all_scripts if s.version > last_version]
        return sorted(pending, key=lambda s: s.version)

    def get_ignored(
        self, migrated: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript]
    ) -> List[MigrationScript]:
        """Out-of-order scripts: older than the last executed version but never run."""
        last_version = self._last_version(migrated)
        migrated_versions = {s.version for s in migrated}
        ignored = [
            s for s in all_scripts if s.version <= last_version and s.version not in migrated_versions
        ]
        return sorted(ignored, key=lambda s: s.version)

    def get_pending_up_to(
        self,
        migrated: Sequence[MigrationScript],
        all_scripts: Sequence[MigrationScript],
        target_version: int,
    ) -> List[MigrationScript]:
        """Pending scripts bounded by ``version <= target_version``, ascending."""
        return [s for s in self.get_pending(migrated, all_scripts) if s.version <= target_version]

    def get_migrated_down_to(
        self, migrated: Sequence[MigrationScript], target_version: int
    ) -> List[MigrationScript]:
        """Executed scripts newer than the target, latest first."""
        scripts = [s for s in migrated if s.version > target_version]
        return sorted(scripts, key=lambda s: s.version, reverse=True)

    def get_migrated_in_range(
        self, migrated: Sequence[MigrationScript], from_version: int, to_version: int
    ) -> List[MigrationScript]:
        """Executed scripts with ``from_version < version <= to_version``, latest first."""
        if from_version >= to_version:
            return []
        scripts = [s for s in migrated if from_version < s.version <= to_version]
        return sorted(scripts, key=lambda s: s.version, reverse=True)
