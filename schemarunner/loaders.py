"""
Script loaders.

A loader turns a discovered file into an executable unit exposing
``up(db, info, handler)`` and, optionally, ``down(db, info, handler)``.
Loaders are tried in registration order and the first one whose
``can_handle`` accepts the path wins.
"""

import importlib.util
import inspect
import re
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

import aiofiles

from .config.logging_config import get_logger
from .core.errors import LoaderError
from .interfaces import RunnableScript, ScriptLoader
from .models import MigrationScript

logger = get_logger(__name__)

# Codes carried in LoaderError.context["code"]; shared with validation.
IMPORT_FAILED = "IMPORT_FAILED"
NO_EXPORT = "NO_EXPORT"
MULTIPLE_EXPORTS = "MULTIPLE_EXPORTS"
NOT_INSTANTIABLE = "NOT_INSTANTIABLE"
FILE_NOT_FOUND = "FILE_NOT_FOUND"


def _loader_error(message: str, path: Any, code: str) -> LoaderError:
    return LoaderError(message, path=str(path), context={"code": code})


class _ModuleScript:
    """Module-level ``up``/``down`` functions exposed as a runnable unit."""

    manages_own_transactions = False

    def __init__(self, up: Callable, down: Optional[Callable] = None):
        self.up = up
        if down is not None:
            self.down = down


class PythonScriptLoader(ScriptLoader):
    """Loads ``*.py`` scripts.

    The module must define exactly one class exposing ``up`` (instantiated
    with no arguments) or module-level ``up``/``down`` functions.
    """

    name = "python"

    def can_handle(self, path: Union[str, Path]) -> bool:
        return Path(path).suffix == ".py"

    async def load(self, script: MigrationScript) -> Any:
        path = script.source_location
        if path is None or not Path(path).exists():
            raise _loader_error(f"{script.name}: file not found: {path}", path, FILE_NOT_FOUND)

        module = self._import(script)

        candidates = [
            obj
            for _, obj in inspect.getmembers(module, inspect.isclass)
            if obj.__module__ == module.__name__ and callable(getattr(obj, "up", None))
        ]
        if len(candidates) > 1:
            names = ", ".join(c.__name__ for c in candidates)
            raise _loader_error(
                f"{script.name}: expected one migration class, found {len(candidates)} ({names})",
                path,
                MULTIPLE_EXPORTS,
            )
        if candidates:
            cls = candidates[0]
            try:
                return cls()
            except Exception as e:
                raise _loader_error(
                    f"{script.name}: cannot instantiate {cls.__name__}: {e}", path, NOT_INSTANTIABLE
                ) from e

        up = getattr(module, "up", None)
        if callable(up):
            down = getattr(module, "down", None)
            return _ModuleScript(up, down if callable(down) else None)

        raise _loader_error(
            f"{script.name}: no migration class or module-level up() found", path, NO_EXPORT
        )

    @staticmethod
    def _import(script: MigrationScript) -> Any:
        path = Path(script.source_location)
        safe_stem = re.sub(r"\W", "_", path.stem)
        module_name = f"schemarunner_script_{script.version}_{safe_stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise _loader_error(f"{script.name}: cannot import {path}", path, IMPORT_FAILED)

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise _loader_error(f"{script.name}: import failed: {e}", path, IMPORT_FAILED) from e
        logger.debug("Imported migration module", script=script.name, module=module_name)
        return module


class SqlScript(RunnableScript):
    """Runs the whole body of a SQL file as one ``db.execute`` call."""

    manages_own_transactions = True

    def __init__(self, name: str, up_sql: str, down_sql: Optional[str] = None):
        self.name = name
        self.up_sql = up_sql
        self.down_sql = down_sql
        if down_sql:
            self.down = self._down

    async def up(self, db, info, handler) -> str:
        logger.debug("Executing SQL", script=self.name)
        await db.execute(self.up_sql)
        return f"Executed {self.name}"

    async def _down(self, db, info, handler) -> str:
        logger.debug("Executing rollback SQL", script=self.name)
        await db.execute(self.down_sql)
        return f"Rolled back {self.name}"


class SqlScriptLoader(ScriptLoader):
    """Loads ``*.up.sql`` files with an optional sibling ``*.down.sql``."""

    name = "sql"
    manages_own_transactions = True

    UP_SUFFIX = re.compile(r"\.up\.sql$", re.IGNORECASE)

    def can_handle(self, path: Union[str, Path]) -> bool:
        return bool(self.UP_SUFFIX.search(str(path)))

    @classmethod
    def down_path(cls, up_path: Union[str, Path]) -> Path:
        return Path(cls.UP_SUFFIX.sub(".down.sql", str(up_path)))

    async def load(self, script: MigrationScript) -> SqlScript:
        path = script.source_location
        if path is None or not Path(path).exists():
            raise _loader_error(f"{script.name}: SQL file not found: {path}", path, FILE_NOT_FOUND)

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            up_sql = (await f.read()).strip()

        down_sql = None
        down_path = self.down_path(path)
        if down_path.exists():
            async with aiofiles.open(down_path, "r", encoding="utf-8") as f:
                down_sql = (await f.read()).strip() or None
            logger.debug("Found rollback SQL file", script=script.name, path=str(down_path))

        return SqlScript(script.name, up_sql, down_sql)


class LoaderRegistry:
    """Registration-ordered list of loaders; first match wins."""

    def __init__(self, loaders: Optional[List[ScriptLoader]] = None):
        self._loaders: List[ScriptLoader] = list(loaders or [])

    @classmethod
    def create_default(cls) -> "LoaderRegistry":
        return cls([PythonScriptLoader(), SqlScriptLoader()])

    def register(self, loader: ScriptLoader) -> None:
        self._loaders.append(loader)

    def get_loaders(self) -> List[ScriptLoader]:
        return list(self._loaders)

    def find_loader(self, path: Union[str, Path]) -> ScriptLoader:
        for loader in self._loaders:
            if loader.can_handle(path):
                return loader
        supported = ", ".join(loader.name for loader in self._loaders) or "none"
        raise LoaderError(
            f"No loader can handle {Path(path).name}. Registered loaders: {supported}",
            path=str(path),
        )
