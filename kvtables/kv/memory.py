"""
In-memory ordered key-value store.

This module provides a process-local KvStore backend for:
- Unit tests
- Short-lived databases (open_database without a location)
- Local development without a database file

Invariants:
    - All data is lost when the process exits or the store is closed
    - Provides the same ordering and atomicity guarantees as SqliteKvStore
    - Values are deep-copied on write and on read, so callers never share
      mutable state with the store

How to change safely:
    - Keep interface compatible with the KvStore protocol
    - Keep commit_atomic free of awaits between check and apply
"""

from __future__ import annotations

import asyncio
import bisect
import copy
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from .base import (
    AtomicCheck,
    AtomicOperation,
    Consistency,
    KvCommitResult,
    KvEntry,
    Mutation,
    StoreClosedError,
    format_versionstamp,
)

logger = logging.getLogger(__name__)


class InMemoryKvStore:
    """In-memory implementation of KvStore.

    Keys are kept in a sorted list next to a dict of
    ``key -> (value, versionstamp)``.

    Thread safety:
        Uses an asyncio lock around commits. Safe to use from
        multiple coroutines on one event loop.

    Example:
        >>> store = InMemoryKvStore()
        >>> await store.atomic().set(b"a", 1).commit()
        >>> [e.key async for e in store.list(b"")]
        [b'a']
    """

    def __init__(self) -> None:
        self._keys: List[bytes] = []
        self._data: Dict[bytes, Tuple[Any, str]] = {}
        self._version = 0
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Store is closed")

    def _entry(self, key: bytes) -> KvEntry:
        stored = self._data.get(key)
        if stored is None:
            return KvEntry(key=key)
        value, versionstamp = stored
        return KvEntry(key=key, value=copy.deepcopy(value), versionstamp=versionstamp)

    async def get(
        self,
        key: bytes,
        consistency: Consistency = Consistency.STRONG,
    ) -> KvEntry:
        self._ensure_open()
        return self._entry(key)

    async def get_many(
        self,
        keys: Sequence[bytes],
        consistency: Consistency = Consistency.STRONG,
    ) -> List[KvEntry]:
        self._ensure_open()
        return [self._entry(key) for key in keys]

    async def list(
        self,
        prefix: bytes,
        *,
        limit: Optional[int] = None,
        reverse: bool = False,
        consistency: Consistency = Consistency.STRONG,
    ) -> AsyncIterator[KvEntry]:
        self._ensure_open()
        start = bisect.bisect_right(self._keys, prefix)
        end = start
        while end < len(self._keys) and self._keys[end].startswith(prefix):
            end += 1

        # Snapshot matching keys; entries are read as iteration proceeds
        matched = self._keys[start:end]
        if reverse:
            matched.reverse()

        count = 0
        for key in matched:
            if limit is not None and count >= limit:
                return
            entry = self._entry(key)
            if not entry.exists:
                continue
            count += 1
            yield entry

    def atomic(self) -> AtomicOperation:
        return AtomicOperation(self)

    async def commit_atomic(
        self,
        checks: Sequence[AtomicCheck],
        mutations: Sequence[Mutation],
    ) -> KvCommitResult:
        self._ensure_open()
        async with self._lock:
            for check in checks:
                stored = self._data.get(check.key)
                current = stored[1] if stored is not None else None
                if current != check.versionstamp:
                    logger.debug(
                        "Atomic check failed",
                        extra={"key": check.key.hex(), "expected": check.versionstamp},
                    )
                    return KvCommitResult(ok=False)

            self._version += 1
            versionstamp = format_versionstamp(self._version)

            for mutation in mutations:
                if mutation.delete:
                    if self._data.pop(mutation.key, None) is not None:
                        index = bisect.bisect_left(self._keys, mutation.key)
                        del self._keys[index]
                else:
                    if mutation.key not in self._data:
                        bisect.insort(self._keys, mutation.key)
                    self._data[mutation.key] = (copy.deepcopy(mutation.value), versionstamp)

        return KvCommitResult(ok=True, versionstamp=versionstamp)

    async def close(self) -> None:
        """Close and clear all data."""
        self._closed = True
        self._keys.clear()
        self._data.clear()
        logger.debug("InMemoryKvStore closed")

    # Testing helpers

    def key_count(self) -> int:
        """Number of keys currently stored (testing helper)."""
        return len(self._keys)

    def raw_set(self, key: bytes, value: Any) -> str:
        """Write a key outside any atomic check (testing helper).

        Returns:
            The versionstamp assigned to the write
        """
        self._ensure_open()
        self._version += 1
        versionstamp = format_versionstamp(self._version)
        if key not in self._data:
            bisect.insort(self._keys, key)
        self._data[key] = (copy.deepcopy(value), versionstamp)
        return versionstamp
