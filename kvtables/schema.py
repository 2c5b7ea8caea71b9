"""
Schema types for kvtables.

This module provides the declarative schema model:
- ColumnKind: Supported column value types
- ColumnDef: One named, typed column
- TableDef: A named set of columns
- DatabaseSchema: The fixed set of tables of a database

The schema is supplied when a database is opened and is immutable for
the database's lifetime. The row id is not a column: every table gets
an implicit auto-incrementing integer id.

Invariants:
    - A schema has at least one table, a table at least one column
    - Table and column names are non-empty and unique in their scope
    - The column name "id" is reserved for the implicit row id

Example:
    >>> schema = DatabaseSchema.from_dict({
    ...     "countries": {"name": "str", "color?": "str"},
    ... })
    >>> schema.get_table("countries").column_names()
    ['name', 'color']
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Iterator, Mapping

from .errors import SchemaError

RESERVED_COLUMN = "id"


class ColumnKind(Enum):
    """Supported column types."""

    STRING = "str"
    INTEGER = "int"
    FLOAT = "float"
    BOOLEAN = "bool"
    TIMESTAMP = "timestamp"
    JSON = "json"
    ENUM = "enum"
    LIST_STRING = "list_str"
    LIST_INT = "list_int"

    @classmethod
    def from_str(cls, value: str) -> ColumnKind:
        """Convert string (or a known alias) to ColumnKind."""
        value = _KIND_ALIASES.get(value, value)
        for kind in cls:
            if kind.value == value:
                return kind
        raise SchemaError(f"Invalid column kind: {value}")


# Type names used by the declarative list form
_KIND_ALIASES = {
    "string": "str",
    "number": "float",
    "bigint": "int",
    "integer": "int",
    "boolean": "bool",
}


@dataclass(frozen=True)
class ColumnDef:
    """Column definition within a table.

    Attributes:
        name: Column name
        kind: Data type
        optional: Whether the column may be omitted on insert and cleared
            on update
        enum_values: Valid values for enum columns
        description: Documentation
    """

    name: str
    kind: ColumnKind
    optional: bool = False
    enum_values: tuple[str, ...] | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate column definition."""
        if not self.name:
            raise SchemaError("Column name cannot be empty")
        if self.name == RESERVED_COLUMN:
            raise SchemaError(f"Column name '{RESERVED_COLUMN}' is reserved for the row id")
        if self.kind == ColumnKind.ENUM and not self.enum_values:
            raise SchemaError(f"enum_values required for ENUM column '{self.name}'")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"name": self.name, "type": self.kind.value}
        if self.optional:
            result["optional"] = True
        if self.enum_values:
            result["enum_values"] = list(self.enum_values)
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ColumnDef:
        """Create from the list-form column dictionary."""
        try:
            name = data["name"]
            kind = data.get("type", data.get("kind"))
        except (KeyError, TypeError):
            raise SchemaError(f"Column definition must have a name: {data!r}")
        if kind is None:
            raise SchemaError(f"Column '{name}' has no type")
        enum_values = data.get("enum_values")
        return column(
            name,
            kind,
            optional=bool(data.get("optional", False)),
            enum_values=tuple(enum_values) if enum_values else None,
            description=data.get("description", ""),
        )


def column(
    name: str,
    kind: str | ColumnKind,
    *,
    optional: bool = False,
    enum_values: tuple[str, ...] | None = None,
    description: str = "",
) -> ColumnDef:
    """Convenience function to create a ColumnDef.

    Example:
        >>> title = column("title", "str")
        >>> status = column("status", "enum", enum_values=("todo", "done"))
    """
    if isinstance(kind, str):
        kind = ColumnKind.from_str(kind)
    return ColumnDef(
        name=name,
        kind=kind,
        optional=optional,
        enum_values=enum_values,
        description=description,
    )


@dataclass(frozen=True)
class TableDef:
    """Definition of a table.

    Attributes:
        name: Table name
        columns: Tuple of column definitions, in declaration order
        description: Documentation
    """

    name: str
    columns: tuple[ColumnDef, ...] = dataclass_field(default_factory=tuple)
    description: str = ""

    def __post_init__(self) -> None:
        """Validate table definition."""
        if not self.name:
            raise SchemaError("Table name cannot be empty")
        if not self.columns:
            raise SchemaError(f"Table '{self.name}' must have at least one column")

        names = [c.name for c in self.columns]
        if len(names) != len(set(names)):
            raise SchemaError(f"Duplicate column name in table '{self.name}'")

    def get_column(self, name: str) -> ColumnDef | None:
        """Get column by name."""
        for c in self.columns:
            if c.name == name:
                return c
        return None

    def column_names(self) -> list[str]:
        """Get list of column names in declaration order."""
        return [c.name for c in self.columns]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
        }
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TableDef:
        """Create from the list-form table dictionary.

        A column named "id" is the implicit row id and is skipped.
        """
        name = data.get("name", "")
        columns = tuple(
            ColumnDef.from_dict(c)
            for c in data.get("columns", ())
            if c.get("name") != RESERVED_COLUMN
        )
        return cls(name=name, columns=columns, description=data.get("description", ""))

    @classmethod
    def from_mapping(cls, name: str, columns: Mapping[str, Any]) -> TableDef:
        """Create from ``{column: kind}``; a trailing "?" marks optional."""
        defs = []
        for col_name, spec in columns.items():
            optional = col_name.endswith("?")
            col_name = col_name.rstrip("?")
            if isinstance(spec, ColumnDef):
                defs.append(spec)
            elif isinstance(spec, Mapping):
                defs.append(ColumnDef.from_dict({"name": col_name, "optional": optional, **spec}))
            else:
                defs.append(column(col_name, spec, optional=optional))
        return cls(name=name, columns=tuple(defs))


@dataclass(frozen=True)
class DatabaseSchema:
    """The fixed set of tables of a database.

    Attributes:
        tables: Tuple of table definitions
    """

    tables: tuple[TableDef, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Validate schema."""
        if not self.tables:
            raise SchemaError("Schema must have at least one table")
        names = [t.name for t in self.tables]
        if len(names) != len(set(names)):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise SchemaError(f"Duplicate table name(s): {dupes}")

    def get_table(self, name: str) -> TableDef | None:
        """Get table by name."""
        for t in self.tables:
            if t.name == name:
                return t
        return None

    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]

    def __iter__(self) -> Iterator[TableDef]:
        return iter(self.tables)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the list-form dictionary."""
        return {"tables": [t.to_dict() for t in self.tables]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DatabaseSchema:
        """Create a schema from either descriptor form.

        Accepts the list form ``{"tables": [{"name": ..., "columns": [...]}]}``
        or the mapping form ``{table: {column: kind}}``.

        Raises:
            SchemaError: If the descriptor is malformed
        """
        if not isinstance(data, Mapping):
            raise SchemaError(f"Schema descriptor must be a mapping, got {type(data).__name__}")

        tables = data.get("tables")
        if isinstance(tables, (list, tuple)):
            return cls(tables=tuple(TableDef.from_dict(t) for t in tables))

        defs = []
        for name, columns in data.items():
            if isinstance(columns, TableDef):
                defs.append(columns)
            elif isinstance(columns, Mapping):
                defs.append(TableDef.from_mapping(name, columns))
            else:
                raise SchemaError(
                    f"Table '{name}' must map column names to kinds",
                    path=name,
                )
        return cls(tables=tuple(defs))
