"""
Row transaction engine for kvtables.

Rows are stored one key per column at ``(table, id, column)``. This
module implements the four row operations on top of the store's atomic
check-and-set commit:

- insert: allocate an id and write every column in one commit
- read: batched point reads of the requested columns
- update: pin every column of the row, then write the changed columns
- delete: remove every column key of the row

Each write is exactly one atomic commit. Conflicts (a check that no
longer holds) are returned as results with ok=False and are never
raised: they are expected under contention and the caller decides
whether to retry. Validation and table lookup happen before the store
is touched, so a failed call writes nothing.

Invariants:
    - A row exists iff at least one of its column keys exists
    - An update commits only if no column of the row changed since it
      was read
    - Ids are never reused, even after a delete

How to change safely:
    - Keep every mutation inside a single AtomicOperation
    - Never retry inside the engine; retries belong to the caller
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from .errors import RowNotFoundError
from .ids import allocate_row_id
from .keys import row_key
from .kv.base import AtomicOperation, Consistency, KvCommitResult, KvStore
from .validate import Condition, SchemaBinding, TableBinding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResult:
    """Result of a row write.

    Attributes:
        ok: False when the commit lost a race (a conflict)
        versionstamp: Versionstamp of the commit when ok
    """

    ok: bool
    versionstamp: Optional[str] = None

    @property
    def is_conflict(self) -> bool:
        return not self.ok

    @classmethod
    def conflict(cls) -> CommitResult:
        return cls(ok=False)

    @classmethod
    def from_kv(cls, result: KvCommitResult) -> CommitResult:
        return cls(ok=result.ok, versionstamp=result.versionstamp)


@dataclass(frozen=True)
class InsertResult(CommitResult):
    """Result of an insert.

    Attributes:
        id: The new row's id, None on conflict
    """

    id: Optional[int] = None


@dataclass(frozen=True)
class RowResult:
    """Result of a read.

    Attributes:
        id: Row id
        value: Present columns, or None when the row does not exist
        versionstamps: Versionstamp per requested column, None if absent
    """

    id: int
    value: Optional[Dict[str, Any]] = None
    versionstamps: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return self.value is not None


class RowEngine:
    """Executes row operations against a store.

    The engine is stateless apart from its store and schema binding and
    may be shared by any number of concurrent callers.

    Example:
        >>> engine = RowEngine(store, SchemaBinding(registry))
        >>> res = await engine.insert("countries", {"name": "USA"})
        >>> row = await engine.read("countries", Condition(id=res.id))
        >>> row.value
        {'name': 'USA'}
    """

    def __init__(self, store: KvStore, binding: SchemaBinding) -> None:
        self.store = store
        self.binding = binding

    def table(self, name: str) -> TableBinding:
        return self.binding.table(name)

    async def insert(self, table: str, row: Any) -> InsertResult:
        """Insert a row under a freshly allocated id.

        Args:
            table: Table name
            row: Column values; required columns must be present

        Returns:
            InsertResult with the new id, or a conflict when another
            insert claimed the same id first

        Raises:
            UnknownTableError: If the table is not declared
            ValidationError: If the row does not match the table
            CorruptDataError: If stored keys of the table are malformed
        """
        binding = self.table(table)
        values = binding.validate_insert(row)

        allocation = await allocate_row_id(self.store, table, binding.column_names)
        op = allocation.apply(self.store.atomic(), table)
        for name, value in values.items():
            op.set(row_key(table, allocation.id, name), value)

        result = await op.commit()
        if not result.ok:
            logger.warning(
                "Insert conflict",
                extra={"table": table, "row_id": allocation.id},
            )
            return InsertResult(ok=False)

        logger.debug(
            "Inserted row",
            extra={"table": table, "row_id": allocation.id, "versionstamp": result.versionstamp},
        )
        return InsertResult(ok=True, versionstamp=result.versionstamp, id=allocation.id)

    async def read(
        self,
        table: str,
        condition: Any,
        columns: Optional[Sequence[str]] = None,
        consistency: Consistency = Consistency.STRONG,
    ) -> RowResult:
        """Read some or all columns of a row.

        A row with no present column reads as RowResult(value=None); this
        is not an error. Expected versionstamps in the condition are
        ignored by reads.

        Raises:
            UnknownTableError: If the table is not declared
            ValidationError: If the condition or columns are invalid
        """
        binding = self.table(table)
        cond = binding.validate_condition(condition)
        names = binding.validate_columns(columns)

        entries = await self.store.get_many(
            [row_key(table, cond.id, name) for name in names],
            consistency=consistency,
        )

        value: Dict[str, Any] = {}
        versionstamps: Dict[str, Optional[str]] = {}
        for name, entry in zip(names, entries):
            versionstamps[name] = entry.versionstamp
            if entry.exists:
                value[name] = entry.value

        return RowResult(id=cond.id, value=value or None, versionstamps=versionstamps)

    async def update(self, table: str, condition: Any, partial: Any) -> CommitResult:
        """Write some columns of an existing row.

        Every column of the row is pinned to the versionstamp observed
        just before the commit, on top of any versionstamps the caller
        expects. None on an optional column clears it.

        Returns:
            CommitResult; ok=False when the row changed concurrently or
            a caller-supplied versionstamp did not match

        Raises:
            UnknownTableError: If the table is not declared
            ValidationError: If the condition or partial row is invalid
            RowNotFoundError: If no column of the row exists
        """
        binding = self.table(table)
        cond = binding.validate_condition(condition)
        values = binding.validate_partial(partial)

        names = binding.column_names
        entries = await self.store.get_many([row_key(table, cond.id, name) for name in names])
        if not any(entry.exists for entry in entries):
            raise RowNotFoundError(table, cond.id)

        op = self.store.atomic()
        for entry in entries:
            op.check(entry.key, entry.versionstamp)
        _check_expected(op, table, cond)

        for name, value in values.items():
            key = row_key(table, cond.id, name)
            if value is None:
                op.delete(key)
            else:
                op.set(key, value)

        return self._finish("Update", table, cond.id, await op.commit())

    async def delete(self, table: str, condition: Any) -> CommitResult:
        """Delete every column of a row.

        Deleting a row that does not exist commits as a no-op.

        Raises:
            UnknownTableError: If the table is not declared
            ValidationError: If the condition is invalid
        """
        binding = self.table(table)
        cond = binding.validate_condition(condition)

        op = self.store.atomic()
        _check_expected(op, table, cond)
        for name in binding.column_names:
            op.delete(row_key(table, cond.id, name))

        return self._finish("Delete", table, cond.id, await op.commit())

    def _finish(self, action: str, table: str, row_id: int, result: KvCommitResult) -> CommitResult:
        extra = {"table": table, "row_id": row_id, "versionstamp": result.versionstamp}
        if result.ok:
            logger.debug(f"{action} committed", extra=extra)
        else:
            logger.warning(f"{action} conflict", extra=extra)
        return CommitResult.from_kv(result)


def _check_expected(op: AtomicOperation, table: str, cond: Condition) -> None:
    if not cond.versionstamps:
        return
    for name, versionstamp in cond.versionstamps.items():
        op.check(row_key(table, cond.id, name), versionstamp)
