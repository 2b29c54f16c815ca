"""
Schema Store

Persistence for the trained schema of each connection. The engine reads
through ``BaseSchemaStore``; ``JsonFileSchemaStore`` keeps one JSON file per
connection and a parsed in-memory cache that is refreshed on every write.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from sqlcopilot.models.schema import TableInfo, TableList
from sqlcopilot.utils.naming import storage_name

logger = logging.getLogger(__name__)


def _copy_tables(tables: list[TableInfo]) -> list[TableInfo]:
    return [table.model_copy(deep=True) for table in tables]


class SchemaStoreError(Exception):
    """Raised when a stored schema cannot be read or written."""

    pass


class BaseSchemaStore(ABC):
    """Stored schema keyed by connection id."""

    @abstractmethod
    async def get_by_connection_id(self, connection_id: str) -> list[TableInfo] | None:
        """Return the trained tables, or None if the connection has no schema."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def upsert(self, connection_id: str, tables: list[TableInfo]) -> None:
        """Insert or replace the whole schema of a connection."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def delete(self, connection_id: str) -> bool:
        """Remove a connection's schema. Returns False if there was none."""
        pass  # pragma: no cover - abstract method


class JsonFileSchemaStore(BaseSchemaStore):
    """Stores each connection's schema as ``<directory>/<storage name>.json``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._cache: dict[str, list[TableInfo]] = {}

    def path_for(self, connection_id: str) -> Path:
        return self.directory / f"{storage_name(connection_id)}.json"

    async def get_by_connection_id(self, connection_id: str) -> list[TableInfo] | None:
        if connection_id in self._cache:
            return _copy_tables(self._cache[connection_id])

        path = self.path_for(connection_id)
        if not path.exists():
            return None

        try:
            raw = await asyncio.to_thread(path.read_bytes)
            tables = TableList.validate_json(raw)
        except (OSError, ValidationError) as e:
            logger.error(f"Failed to load schema for {connection_id}: {e}")
            raise SchemaStoreError(f"Failed to load schema for {connection_id}: {e}") from e

        self._cache[connection_id] = tables
        logger.debug(f"Loaded {len(tables)} tables for {connection_id}")
        return _copy_tables(tables)

    async def upsert(self, connection_id: str, tables: list[TableInfo]) -> None:
        path = self.path_for(connection_id)
        self._cache.pop(connection_id, None)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, TableList.dump_json(tables, indent=2))
        except OSError as e:
            logger.error(f"Failed to save schema for {connection_id}: {e}")
            raise SchemaStoreError(f"Failed to save schema for {connection_id}: {e}") from e

        self._cache[connection_id] = _copy_tables(tables)
        logger.info(f"Saved {len(tables)} tables for {connection_id}")

    async def delete(self, connection_id: str) -> bool:
        self._cache.pop(connection_id, None)
        path = self.path_for(connection_id)
        if not path.exists():
            return False
        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            raise SchemaStoreError(f"Failed to delete schema for {connection_id}: {e}") from e
        logger.info(f"Deleted schema for {connection_id}")
        return True
