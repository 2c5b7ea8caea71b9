"""
Ordered key-value store abstraction for kvtables.

This module provides a pluggable store interface supporting:
- SQLite (persistent, one file per database)
- In-memory (tests and short-lived databases)

The row layer only needs point reads, batched reads, ordered prefix
listing and atomic check-and-set commits; any backend offering those
can be plugged in by implementing the KvStore protocol.

Invariants:
    - Keys are byte strings ordered by byte comparison
    - commit() is all-or-nothing
    - Failed checks are reported as KvCommitResult(ok=False), never raised
"""

from .base import (
    AtomicCheck,
    AtomicOperation,
    Consistency,
    KvCommitResult,
    KvEntry,
    KvError,
    KvSerializationError,
    KvStore,
    Mutation,
    StoreClosedError,
    create_kv_store,
)
from .memory import InMemoryKvStore
from .sqlite import SqliteKvStore

__all__ = [
    # Protocol and types
    "KvStore",
    "KvEntry",
    "AtomicCheck",
    "AtomicOperation",
    "Mutation",
    "KvCommitResult",
    "Consistency",
    "KvError",
    "KvSerializationError",
    "StoreClosedError",
    # Factory
    "create_kv_store",
    # Implementations
    "InMemoryKvStore",
    "SqliteKvStore",
]
