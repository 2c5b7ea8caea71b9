"""
Schema registry for kvtables.

This module provides the table registry a database resolves names against:
- Registering table definitions
- Table lookup by name
- Schema fingerprinting

The registry is frozen when the database opens to prevent runtime
modifications; the schema is read-only for the database's lifetime.

Example:
    >>> registry = SchemaRegistry.from_schema(schema)
    >>> registry.freeze()
    'sha256:...'
    >>> registry.get_table("countries")
    TableDef(name='countries', ...)
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Iterator

from .schema import DatabaseSchema, TableDef


class RegistryFrozenError(Exception):
    """Registry is frozen and cannot be modified."""

    pass


class DuplicateRegistrationError(Exception):
    """Table with this name is already registered."""

    pass


class SchemaRegistry:
    """Registry of table definitions keyed by table name.

    Example:
        >>> registry = SchemaRegistry()
        >>> registry.register_table(Countries)
        >>> registry.freeze()
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._tables: dict[str, TableDef] = {}
        self._frozen = False
        self._fingerprint: str | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_schema(cls, schema: DatabaseSchema) -> SchemaRegistry:
        """Build an unfrozen registry holding every table of schema."""
        registry = cls()
        for table in schema:
            registry.register_table(table)
        return registry

    @property
    def frozen(self) -> bool:
        """Whether registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> str | None:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def register_table(self, table: TableDef) -> None:
        """Register a table.

        Args:
            table: TableDef to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Cannot register: registry is frozen")

            if table.name in self._tables:
                raise DuplicateRegistrationError(
                    f"table '{table.name}' already registered"
                )

            self._tables[table.name] = table

    def get_table(self, name: str) -> TableDef | None:
        """Get table by name."""
        return self._tables.get(name)

    def table_names(self) -> list[str]:
        return list(self._tables)

    def tables(self) -> Iterator[TableDef]:
        """Iterate over all tables."""
        yield from self._tables.values()

    def freeze(self) -> str:
        """Freeze registry and compute fingerprint.

        Returns:
            Schema fingerprint

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert to dictionary (list form, tables sorted by name)."""
        return {
            "tables": [self._tables[name].to_dict() for name in sorted(self._tables)],
        }

    def to_json(self, indent: int | None = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)
