"""
Table and row handles for kvtables.

Handles are thin, immutable views that bind a table name (and for rows,
a validated condition) to the row engine. They hold no data and no
locks; every method is one engine call.

Example:
    >>> countries = db.table("countries")
    >>> res = await countries.insert({"name": "USA", "color": "blue"})
    >>> row = countries.by_id(res.id)
    >>> await row.update({"color": "red"})
    CommitResult(ok=True, versionstamp='...')
    >>> (await row.read()).value
    {'name': 'USA', 'color': 'red'}
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .engine import CommitResult, InsertResult, RowEngine, RowResult
from .kv.base import Consistency
from .validate import Condition


class Row:
    """Handle on one row, addressed by id and optional expected versionstamps."""

    def __init__(self, engine: RowEngine, table: str, condition: Condition) -> None:
        self._engine = engine
        self._table = table
        self._condition = condition

    @property
    def id(self) -> int:
        return self._condition.id

    @property
    def table_name(self) -> str:
        return self._table

    @property
    def condition(self) -> Condition:
        return self._condition

    async def read(
        self,
        columns: Optional[Sequence[str]] = None,
        *,
        consistency: Consistency = Consistency.STRONG,
    ) -> RowResult:
        """Read the row, or only the given columns."""
        return await self._engine.read(self._table, self._condition, columns, consistency)

    async def update(self, partial: Mapping[str, Any]) -> CommitResult:
        """Write the given columns if the row has not changed concurrently.

        Raises:
            RowNotFoundError: If the row does not exist
        """
        return await self._engine.update(self._table, self._condition, partial)

    async def delete(self) -> CommitResult:
        return await self._engine.delete(self._table, self._condition)

    def __repr__(self) -> str:
        return f"Row(table={self._table!r}, id={self._condition.id!r})"


class Table:
    """Handle on one declared table."""

    def __init__(self, engine: RowEngine, name: str) -> None:
        self._engine = engine
        self._binding = engine.table(name)
        self.name = name

    @property
    def column_names(self) -> Tuple[str, ...]:
        return self._binding.column_names

    async def insert(self, row: Mapping[str, Any]) -> InsertResult:
        """Insert a row and return its new id.

        Returns:
            InsertResult; ok=False when a concurrent insert took the id

        Raises:
            ValidationError: If the row does not match the table
        """
        return await self._engine.insert(self.name, row)

    def by_id(self, row_id: int, versionstamps: Optional[Dict[str, Optional[str]]] = None) -> Row:
        """Address a row by id.

        Args:
            row_id: Positive row id
            versionstamps: Expected versionstamp per column for update
                and delete, None meaning "must be absent"

        Raises:
            ValidationError: If the id or versionstamps are invalid
        """
        return self.where({"id": row_id, "versionstamps": versionstamps})

    def where(self, condition: Any) -> Row:
        """Address a row by a ``{"id": ..., "versionstamps": {...}}`` condition.

        Raises:
            ValidationError: If the condition is invalid
        """
        return Row(self._engine, self.name, self._binding.validate_condition(condition))

    def __repr__(self) -> str:
        return f"Table(name={self.name!r})"
