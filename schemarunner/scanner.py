"""Discovery of script files and partitioning against history."""

import asyncio
import os
from pathlib import Path
from typing import List, Optional

from .config.logging_config import get_logger
from .config.settings import MigrationConfig
from .core.errors import ConfigurationError
from .models import MigrationScript, ScriptSet
from .schema_version import SchemaVersionService
from .selector import MigrationScriptSelector

logger = get_logger(__name__)


class MigrationService:
    """Finds script files on disk."""

    @staticmethod
    def _list_files(folder: Path, recursive: bool) -> List[Path]:
        files: List[Path] = []
        with os.scandir(folder) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                if recursive:
                    files.extend(MigrationService._list_files(Path(entry.path), recursive))
            elif entry.is_file():
                files.append(Path(entry.path))
        return files

    async def find_migration_scripts(self, config: MigrationConfig) -> List[MigrationScript]:
        """Versioned scripts in ``config.folder``, ascending by version."""
        folder = Path(config.folder)
        if not folder.is_dir():
            raise ConfigurationError(f"Migration folder does not exist: {folder}", config_key="folder")

        files = self._list_files(folder, config.recursive)
        if not files:
            logger.warning("Migration scripts folder is empty, check your configuration", folder=str(folder))

        patterns = config.compiled_patterns
        scripts = []
        for path in files:
            for pattern in patterns:
                match = pattern.match(path.name)
                if match:
                    scripts.append(MigrationScript(name=path.name, version=int(match.group(1)), source_location=path))
                    break

        scripts.sort(key=lambda s: s.version)
        logger.debug("Found migration scripts", folder=str(folder), count=len(scripts))
        return scripts

    async def find_before_migrate_script(self, config: MigrationConfig) -> Optional[MigrationScript]:
        """The optional setup script run before history initialization."""
        if not config.before_migrate_name:
            return None
        folder = Path(config.folder)
        if not folder.is_dir():
            return None

        for path in sorted(folder.iterdir()):
            if path.is_file() and path.name.split(".")[0] == config.before_migrate_name:
                return MigrationScript(name=path.name, version=0, source_location=path)
        return None


class MigrationScanner:
    """Builds the ScriptSet for one run."""

    def __init__(
        self,
        migration_service: MigrationService,
        schema_version_service: SchemaVersionService,
        selector: MigrationScriptSelector,
        config: MigrationConfig,
    ):
        self.migration_service = migration_service
        self.schema_version_service = schema_version_service
        self.selector = selector
        self.config = config

    async def scan(self) -> ScriptSet:
        migrated, all_scripts = await asyncio.gather(
            self.schema_version_service.get_all_migrated(),
            self.migration_service.find_migration_scripts(self.config),
        )

        scripts = ScriptSet(
            all=all_scripts,
            migrated=migrated,
            pending=self.selector.get_pending(migrated, all_scripts),
            ignored=self.selector.get_ignored(migrated, all_scripts),
        )
        logger.debug(
            "Scan complete",
            total=len(scripts.all),
            migrated=len(scripts.migrated),
            pending=len(scripts.pending),
            ignored=len(scripts.ignored),
        )
        return scripts
