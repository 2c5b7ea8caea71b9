"""
Auto-incrementing row ids for kvtables.

A new id is the next integer after both the highest row id present under
the table prefix and the table's id sequence (the highest id ever
allocated, kept so ids of deleted rows are never handed out again).

The generator does not reserve anything. It returns the id together
with the atomic checks that must hold when the row's first write
commits, so id allocation and the insert land in one atomic unit:

- the last entry seen under the table prefix is unchanged (or, for an
  empty table, nothing exists at ``(table, 1)``)
- the sequence key is unchanged
- no column entry exists yet at ``(table, id, *)``

Two inserts racing for the same id therefore cannot both commit; the
loser gets a conflict result and may retry.

Invariants:
    - Every id in [1, last allocated] was allocated exactly once
    - Ids start at 1 and grow by exactly 1 per successful insert
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .errors import CorruptDataError
from .keys import decode_row_key, row_key, row_prefix, sequence_key, table_prefix
from .kv.base import AtomicCheck, AtomicOperation, KvEntry, KvStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdAllocation:
    """A candidate row id and the checks that pin it.

    Attributes:
        id: Candidate row id
        checks: Preconditions to add to the insert's atomic operation
    """

    id: int
    checks: Tuple[AtomicCheck, ...]

    def apply(self, op: AtomicOperation, table: str) -> AtomicOperation:
        """Add the checks and the sequence bump to op."""
        for check in self.checks:
            op = op.check(check.key, check.versionstamp)
        return op.set(sequence_key(table), self.id)


def _is_row_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


async def last_row_entry(store: KvStore, table: str) -> Optional[Tuple[int, KvEntry]]:
    """Return ``(row_id, entry)`` of the highest key under the table, or None.

    Raises:
        CorruptDataError: If the key does not decode or its id is not an int
    """
    entries = [e async for e in store.list(table_prefix(table), limit=1, reverse=True)]
    if not entries:
        return None

    entry = entries[0]
    try:
        parts = decode_row_key(entry.key)
    except ValueError as e:
        raise CorruptDataError(f"Undecodable key under table '{table}': {e}") from e
    if len(parts) < 2 or not _is_row_id(parts[1]):
        raise CorruptDataError(
            f"Key under table '{table}' has a non-integer row id",
            key=parts,
        )
    return parts[1], entry


async def last_allocated_id(store: KvStore, table: str) -> int:
    """Highest id ever allocated for table (0 when none)."""
    last = await last_row_entry(store, table)
    seq = await store.get(sequence_key(table))
    return max(last[0] if last else 0, _sequence_value(table, seq.value, seq.exists))


def _sequence_value(table: str, value: object, exists: bool) -> int:
    if not exists:
        return 0
    if not _is_row_id(value):
        raise CorruptDataError(
            f"Id sequence of table '{table}' holds a non-integer value",
            key=(None, "seq", table),
        )
    return value  # type: ignore[return-value]


async def allocate_row_id(
    store: KvStore,
    table: str,
    columns: Sequence[str],
) -> IdAllocation:
    """Compute the next row id for table.

    Args:
        store: Key-value store
        table: Table name
        columns: Every declared column of the table

    Returns:
        IdAllocation whose checks must be committed with the insert

    Raises:
        CorruptDataError: If stored keys or the sequence are malformed
    """
    checks = []

    last = await last_row_entry(store, table)
    if last is None:
        last_id = 0
        # Empty table: nothing may appear at (table, 1) meanwhile
        checks.append(AtomicCheck(key=row_prefix(table, 1), versionstamp=None))
    else:
        last_id, entry = last
        checks.append(AtomicCheck(key=entry.key, versionstamp=entry.versionstamp))

    seq = await store.get(sequence_key(table))
    seq_id = _sequence_value(table, seq.value, seq.exists)
    checks.append(AtomicCheck(key=seq.key, versionstamp=seq.versionstamp))

    new_id = max(last_id, seq_id) + 1
    for name in columns:
        checks.append(AtomicCheck(key=row_key(table, new_id, name), versionstamp=None))

    logger.debug(
        "Allocated row id",
        extra={"table": table, "row_id": new_id, "last_row_id": last_id, "seq_id": seq_id},
    )
    return IdAllocation(id=new_id, checks=tuple(checks))
