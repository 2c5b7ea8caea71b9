"""
Database entry point for kvtables.

open_database() binds a fixed schema to a key-value store and returns a
Database whose tables are reached by name.

Example:
    >>> async with await open_database(
    ...     {"countries": {"name": "str", "color?": "str"}}
    ... ) as db:
    ...     res = await db.table("countries").insert({"name": "USA"})
    ...     res.id
    1

Invariants:
    - The schema is frozen for the lifetime of the database
    - Every table handle shares the database's single store
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from .config import DatabaseConfig
from .engine import RowEngine
from .errors import SchemaError
from .kv.base import KvStore, create_kv_store
from .kv.sqlite import SqliteKvStore
from .registry import SchemaRegistry
from .schema import DatabaseSchema
from .table import Table
from .validate import SchemaBinding

logger = logging.getLogger(__name__)

SchemaLike = Union[DatabaseSchema, Mapping[str, Any]]


class Database:
    """Handle on an open database.

    Use open_database() rather than constructing this directly.
    """

    def __init__(self, store: KvStore, registry: SchemaRegistry) -> None:
        self.store = store
        self.registry = registry
        self._engine = RowEngine(store, SchemaBinding(registry))
        self._closed = False

    @property
    def fingerprint(self) -> Optional[str]:
        """Fingerprint of the frozen schema (``sha256:<hex>``)."""
        return self.registry.fingerprint

    @property
    def table_names(self) -> list[str]:
        return self.registry.table_names()

    def table(self, name: str) -> Table:
        """Get a handle on a declared table.

        Raises:
            UnknownTableError: If name is not declared
        """
        return Table(self._engine, name)

    def from_(self, name: str) -> Table:
        """Alias of table()."""
        return self.table(name)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close the underlying store. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.store.close()
        logger.info("Database closed", extra={"fingerprint": self.fingerprint})

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _coerce_schema(schema: SchemaLike) -> DatabaseSchema:
    if isinstance(schema, DatabaseSchema):
        return schema
    if isinstance(schema, Mapping):
        return DatabaseSchema.from_dict(schema)
    raise SchemaError(
        f"Schema must be a DatabaseSchema or a mapping, got {type(schema).__name__}"
    )


async def open_database(
    schema: SchemaLike,
    location: Optional[str] = None,
    *,
    config: Optional[DatabaseConfig] = None,
    store: Optional[KvStore] = None,
) -> Database:
    """Open a database over a key-value store.

    The store is chosen as follows: an explicit store wins; otherwise a
    location opens a SQLite store at that path; otherwise the backend
    named by config (or the environment) is used.

    Args:
        schema: DatabaseSchema, or a descriptor accepted by
            DatabaseSchema.from_dict()
        location: SQLite file path
        config: Configuration; read from the environment when None
        store: Already-open store to use

    Returns:
        Open Database

    Raises:
        SchemaError: If the schema descriptor is invalid
        ValueError: If the configuration is invalid
    """
    db_schema = _coerce_schema(schema)
    registry = SchemaRegistry.from_schema(db_schema)
    fingerprint = registry.freeze()

    if store is None:
        if location is not None:
            storage = (config or DatabaseConfig()).storage
            store = SqliteKvStore(
                location,
                wal_mode=storage.wal_mode,
                busy_timeout_ms=storage.busy_timeout_ms,
            )
        else:
            config = config or DatabaseConfig.from_env()
            config.validate()
            config.log_config()
            store = create_kv_store(config.storage)

    logger.info(
        "Database opened",
        extra={
            "tables": registry.table_names(),
            "fingerprint": fingerprint,
            "store": type(store).__name__,
        },
    )
    return Database(store, registry)
