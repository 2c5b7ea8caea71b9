"""
kvtables - Relational tables over an ordered key-value store.

This package stores rows of declared tables in any ordered key-value
store offering atomic check-and-set commits:
- Schema types (DatabaseSchema, TableDef, ColumnDef)
- Validated inserts, reads, updates and deletes
- Auto-incrementing row ids that are never reused
- Optimistic concurrency through per-column versionstamps

Example:
    >>> from kvtables import open_database
    >>>
    >>> db = await open_database({"countries": {"name": "str", "color?": "str"}})
    >>> countries = db.table("countries")
    >>> res = await countries.insert({"name": "USA", "color": "blue"})
    >>> await countries.by_id(res.id).update({"color": "red"})
    >>> (await countries.by_id(res.id).read()).value
    {'name': 'USA', 'color': 'red'}

Invariants:
    - The schema is fixed when the database opens
    - Every insert, update and delete is one atomic commit
    - Conflicts are returned as results, never raised

Version: 0.1.0
"""

__version__ = "0.1.0"

from .config import DatabaseConfig, ObservabilityConfig, StorageConfig, StoreBackend, setup_logging
from .database import Database, open_database
from .engine import CommitResult, InsertResult, RowEngine, RowResult
from .errors import (
    CorruptDataError,
    KvTablesError,
    RowNotFoundError,
    SchemaError,
    UnknownTableError,
    ValidationError,
)
from .kv import (
    Consistency,
    InMemoryKvStore,
    KvError,
    KvStore,
    SqliteKvStore,
    StoreClosedError,
)
from .registry import SchemaRegistry
from .schema import ColumnDef, ColumnKind, DatabaseSchema, TableDef, column
from .table import Row, Table

__all__ = [
    # Version
    "__version__",
    # Entry point
    "open_database",
    "Database",
    "Table",
    "Row",
    "RowEngine",
    # Schema types
    "DatabaseSchema",
    "TableDef",
    "ColumnDef",
    "ColumnKind",
    "column",
    "SchemaRegistry",
    # Results
    "RowResult",
    "CommitResult",
    "InsertResult",
    # Stores
    "KvStore",
    "Consistency",
    "InMemoryKvStore",
    "SqliteKvStore",
    # Config
    "DatabaseConfig",
    "StorageConfig",
    "ObservabilityConfig",
    "StoreBackend",
    "setup_logging",
    # Errors
    "KvTablesError",
    "ValidationError",
    "UnknownTableError",
    "RowNotFoundError",
    "CorruptDataError",
    "SchemaError",
    "KvError",
    "StoreClosedError",
]
