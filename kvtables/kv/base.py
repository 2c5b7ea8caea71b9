"""
Base protocol and types for the ordered key-value store abstraction.

This module defines the KvStore protocol that all backends must implement,
along with the entry, check and commit result types shared by them.

Keys are byte strings produced by ``kvtables.keys`` and ordered by byte
comparison. Values are JSON-compatible Python values. Every write stamps
the key with the versionstamp of its commit; versionstamps are opaque
and only ever compared for equality.

Invariants:
    - An absent key reads as KvEntry(value=None, versionstamp=None)
    - All mutations of one commit share one versionstamp
    - A commit applies all of its mutations or none of them
    - A commit fails iff any check's expected versionstamp differs from
      the current one (None meaning "key must be absent")

How to change safely:
    - Protocol changes require updating all implementations
    - Keep commit all-or-nothing; the row layer depends on it
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)


class KvError(Exception):
    """Base exception for store operations."""
    pass


class StoreClosedError(KvError):
    """Operation attempted on a closed store."""
    pass


class KvSerializationError(KvError):
    """Failed to serialize/deserialize a stored value."""
    pass


class Consistency(Enum):
    """Read consistency level, forwarded to the store unchanged."""

    STRONG = "strong"
    EVENTUAL = "eventual"


@dataclass(frozen=True)
class KvEntry:
    """One key with its current value and versionstamp.

    Attributes:
        key: Packed key bytes
        value: Stored value (None when absent)
        versionstamp: Versionstamp of the last write (None when absent)
    """
    key: bytes
    value: Any = None
    versionstamp: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.versionstamp is not None


@dataclass(frozen=True)
class AtomicCheck:
    """Precondition of an atomic commit.

    Attributes:
        key: Packed key bytes
        versionstamp: Expected versionstamp, None to require absence
    """
    key: bytes
    versionstamp: Optional[str] = None


@dataclass(frozen=True)
class Mutation:
    """A set (value given) or delete (delete=True) of one key."""
    key: bytes
    value: Any = None
    delete: bool = False


@dataclass(frozen=True)
class KvCommitResult:
    """Outcome of AtomicOperation.commit().

    Attributes:
        ok: False when a check failed and nothing was written
        versionstamp: Versionstamp of the commit when ok
    """
    ok: bool
    versionstamp: Optional[str] = None


def format_versionstamp(version: int) -> str:
    """Render a commit counter as a fixed-width versionstamp string."""
    return f"{version:020x}"


class AtomicOperation:
    """Builder for one all-or-nothing commit.

    Checks and mutations are collected locally and handed to the store
    in a single call. Methods return self for chaining.

    Example:
        >>> res = await (
        ...     store.atomic()
        ...     .check(key, versionstamp)
        ...     .set(key, "value")
        ...     .commit()
        ... )
        >>> res.ok
        True
    """

    def __init__(self, store: KvStore) -> None:
        self._store = store
        self._checks: List[AtomicCheck] = []
        self._mutations: List[Mutation] = []
        self._committed = False

    @property
    def checks(self) -> List[AtomicCheck]:
        return list(self._checks)

    @property
    def mutations(self) -> List[Mutation]:
        return list(self._mutations)

    def check(self, key: bytes, versionstamp: Optional[str]) -> AtomicOperation:
        """Require key to still carry versionstamp (None: be absent)."""
        self._checks.append(AtomicCheck(key=_require_bytes(key), versionstamp=versionstamp))
        return self

    def set(self, key: bytes, value: Any) -> AtomicOperation:
        self._mutations.append(Mutation(key=_require_bytes(key), value=value))
        return self

    def delete(self, key: bytes) -> AtomicOperation:
        """Remove key; deleting an absent key is a no-op."""
        self._mutations.append(Mutation(key=_require_bytes(key), delete=True))
        return self

    async def commit(self) -> KvCommitResult:
        """Apply all mutations if every check holds.

        Returns:
            KvCommitResult with ok=False on a failed check

        Raises:
            KvError: If the operation was already committed
            StoreClosedError: If the store is closed
        """
        if self._committed:
            raise KvError("Atomic operation already committed")
        self._committed = True
        return await self._store.commit_atomic(self._checks, self._mutations)


def _require_bytes(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray)):
        raise TypeError(f"Store keys must be bytes, got {type(key).__name__}")
    return bytes(key)


@runtime_checkable
class KvStore(Protocol):
    """Protocol for ordered key-value store backends.

    Example:
        >>> store = InMemoryKvStore()
        >>> res = await store.atomic().set(b"k", 1).commit()
        >>> entry = await store.get(b"k")
        >>> entry.versionstamp == res.versionstamp
        True
    """

    @abstractmethod
    async def get(
        self,
        key: bytes,
        consistency: Consistency = Consistency.STRONG,
    ) -> KvEntry:
        """Read one key."""
        ...

    @abstractmethod
    async def get_many(
        self,
        keys: Sequence[bytes],
        consistency: Consistency = Consistency.STRONG,
    ) -> List[KvEntry]:
        """Read several keys; one entry per requested key, in order.

        Not transactional across keys.
        """
        ...

    @abstractmethod
    def list(
        self,
        prefix: bytes,
        *,
        limit: Optional[int] = None,
        reverse: bool = False,
        consistency: Consistency = Consistency.STRONG,
    ) -> AsyncIterator[KvEntry]:
        """Iterate entries whose key starts with prefix, in key order.

        A key equal to prefix itself is not included.
        """
        ...

    def atomic(self) -> AtomicOperation:
        """Start building an atomic commit."""
        ...

    @abstractmethod
    async def commit_atomic(
        self,
        checks: Sequence[AtomicCheck],
        mutations: Sequence[Mutation],
    ) -> KvCommitResult:
        """Backend hook used by AtomicOperation.commit()."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Further operations raise StoreClosedError."""
        ...

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        ...


def create_kv_store(config: "StorageConfig") -> KvStore:
    """Factory function to create a store from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate KvStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryKvStore
    from .sqlite import SqliteKvStore

    if config.backend == StoreBackend.MEMORY:
        return InMemoryKvStore()
    elif config.backend == StoreBackend.SQLITE:
        return SqliteKvStore(
            config.path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")
