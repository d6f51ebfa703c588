"""Schema history access."""

from typing import List

from .config.logging_config import get_logger
from .core.errors import MigrationError
from .interfaces import SchemaHistory
from .models import MigrationScript

logger = get_logger(__name__)


class SchemaVersionService:
    """Thin wrapper over the handler's history store."""

    def __init__(self, history: SchemaHistory):
        self.history = history

    async def init(self, table_name: str) -> None:
        """Create the history table when missing, then validate it."""
        if not await self.history.is_initialized(table_name):
            logger.info("Creating schema history table", table=table_name)
            if not await self.history.create_table(table_name):
                raise MigrationError(f"Cannot create schema history table: {table_name}")

        if not await self.history.validate_table(table_name):
            raise MigrationError(f"Schema history table is invalid: {table_name}")

    async def get_all_migrated(self) -> List[MigrationScript]:
        migrated = await self.history.get_all_executed()
        return sorted(migrated, key=lambda s: s.version)

    async def save(self, script: MigrationScript) -> None:
        await self.history.save(script)

    async def remove(self, version: int) -> None:
        await self.history.remove(version)
