"""
Unit tests for the row transaction engine.

Tests cover:
- Insert, read, update and delete
- Full-row pinning and caller versionstamps
- Conflicts returned as results
- Validation before any store access
"""

import logging

import pytest

from kvtables.engine import CommitResult, InsertResult, RowEngine, RowResult
from kvtables.errors import RowNotFoundError, UnknownTableError, ValidationError
from kvtables.keys import row_key
from kvtables.kv.base import Consistency
from kvtables.kv.memory import InMemoryKvStore
from kvtables.registry import SchemaRegistry
from kvtables.schema import DatabaseSchema
from kvtables.validate import Condition, SchemaBinding

SCHEMA = {"countries": {"name": "str", "color?": "str"}}


class RacingStore(InMemoryKvStore):
    """Store that writes one key behind the caller's back before the next commit."""

    def __init__(self):
        super().__init__()
        self.intruder = None

    async def commit_atomic(self, checks, mutations):
        if self.intruder is not None:
            key, self.intruder = self.intruder, None
            self.raw_set(key, "intruder")
        return await super().commit_atomic(checks, mutations)


def make_engine(store):
    """Helper to build an engine over the test schema."""
    registry = SchemaRegistry.from_schema(DatabaseSchema.from_dict(SCHEMA))
    registry.freeze()
    return RowEngine(store, SchemaBinding(registry))


class TestResults:
    """Tests for result types."""

    def test_conflict(self):
        """conflict() builds a failed result."""
        res = CommitResult.conflict()
        assert not res.ok
        assert res.is_conflict
        assert res.versionstamp is None

    def test_insert_result_is_commit_result(self):
        """Insert results carry the new id."""
        res = InsertResult(ok=True, versionstamp="00000000000000000001", id=1)
        assert isinstance(res, CommitResult)
        assert not res.is_conflict

    def test_row_result_exists(self):
        """A row exists iff it has a value."""
        assert RowResult(id=1, value={"name": "a"}).exists
        assert not RowResult(id=1, value=None).exists


class TestInsertAndRead:
    """Tests for insert and read."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryKvStore()

    @pytest.fixture
    def engine(self, store):
        """Create an engine over the store."""
        return make_engine(store)

    @pytest.mark.asyncio
    async def test_insert_then_read(self, engine):
        """A read returns exactly the inserted columns."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})

        row = await engine.read("countries", {"id": res.id})

        assert res.ok and res.id == 1
        assert row.value == {"name": "USA", "color": "blue"}
        assert row.versionstamps == {"name": res.versionstamp, "color": res.versionstamp}

    @pytest.mark.asyncio
    async def test_omitted_optional_reads_absent(self, engine):
        """An omitted optional column reads as absent."""
        res = await engine.insert("countries", {"name": "USA"})

        row = await engine.read("countries", Condition(id=res.id))

        assert row.value == {"name": "USA"}
        assert row.versionstamps["color"] is None

    @pytest.mark.asyncio
    async def test_read_subset(self, engine):
        """Reads may select columns."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})

        row = await engine.read("countries", {"id": res.id}, ["color"])

        assert row.value == {"color": "blue"}
        assert list(row.versionstamps) == ["color"]

    @pytest.mark.asyncio
    async def test_read_missing_row(self, engine):
        """A never-inserted id reads as no row, not an error."""
        row = await engine.read("countries", {"id": 99})

        assert not row.exists
        assert row.value is None
        assert row.versionstamps == {"name": None, "color": None}

    @pytest.mark.asyncio
    async def test_read_eventual(self, engine):
        """Eventual consistency is accepted."""
        res = await engine.insert("countries", {"name": "USA"})

        row = await engine.read("countries", {"id": res.id}, consistency=Consistency.EVENTUAL)

        assert row.value == {"name": "USA"}

    @pytest.mark.asyncio
    async def test_invalid_insert_writes_nothing(self, engine, store):
        """Validation fails before the store is touched."""
        with pytest.raises(ValidationError, match="name"):
            await engine.insert("countries", {})

        assert store.key_count() == 0

    @pytest.mark.asyncio
    async def test_unknown_table(self, engine):
        """Unknown tables raise before anything else."""
        with pytest.raises(UnknownTableError):
            await engine.insert("cities", {"name": "Paris"})

    @pytest.mark.asyncio
    async def test_insert_conflict(self, caplog):
        """An insert that loses the id race returns a conflict."""
        store = RacingStore()
        engine = make_engine(store)
        store.intruder = row_key("countries", 1, "name")

        with caplog.at_level(logging.WARNING, logger="kvtables.engine"):
            res = await engine.insert("countries", {"name": "USA"})

        assert not res.ok
        assert res.id is None
        assert "Insert conflict" in caplog.text

    @pytest.mark.asyncio
    async def test_retry_after_conflict(self):
        """Retrying after a conflict allocates the next id."""
        store = RacingStore()
        engine = make_engine(store)
        store.intruder = row_key("countries", 1, "name")

        first = await engine.insert("countries", {"name": "USA"})
        second = await engine.insert("countries", {"name": "USA"})

        assert not first.ok
        assert second.ok and second.id == 2


class TestUpdate:
    """Tests for update."""

    @pytest.fixture
    def store(self):
        """Create a store that can simulate concurrent writes."""
        return RacingStore()

    @pytest.fixture
    def engine(self, store):
        """Create an engine over the store."""
        return make_engine(store)

    @pytest.mark.asyncio
    async def test_update_changes_only_given_columns(self, engine):
        """Unmentioned columns keep their value."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})

        upd = await engine.update("countries", {"id": res.id}, {"color": "red"})
        row = await engine.read("countries", {"id": res.id})

        assert upd.ok
        assert row.value == {"name": "USA", "color": "red"}
        assert row.versionstamps["name"] == res.versionstamp
        assert row.versionstamps["color"] == upd.versionstamp

    @pytest.mark.asyncio
    async def test_update_missing_row(self, engine):
        """Updating a row with no columns raises RowNotFoundError."""
        with pytest.raises(RowNotFoundError) as exc_info:
            await engine.update("countries", {"id": 1}, {"color": "red"})

        assert exc_info.value.code == "ROW_NOT_FOUND"
        assert "doesn't exist" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, engine):
        """An empty partial row fails validation."""
        await engine.insert("countries", {"name": "USA"})

        with pytest.raises(ValidationError, match="must update at least one column"):
            await engine.update("countries", {"id": 1}, {})

    @pytest.mark.asyncio
    async def test_concurrent_change_to_other_column_conflicts(self, engine, store):
        """The whole row is pinned, not just the written columns."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})
        store.intruder = row_key("countries", res.id, "name")

        upd = await engine.update("countries", {"id": res.id}, {"color": "red"})
        row = await engine.read("countries", {"id": res.id})

        assert upd.is_conflict
        assert row.value == {"name": "intruder", "color": "blue"}

    @pytest.mark.asyncio
    async def test_column_appearing_concurrently_conflicts(self, engine, store):
        """An absent column is pinned as absent."""
        res = await engine.insert("countries", {"name": "USA"})
        store.intruder = row_key("countries", res.id, "color")

        upd = await engine.update("countries", {"id": res.id}, {"name": "United States"})

        assert not upd.ok

    @pytest.mark.asyncio
    async def test_caller_versionstamps(self, engine):
        """Caller versionstamps are checked on top of the row pin."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})

        stale = await engine.update(
            "countries",
            {"id": res.id, "versionstamps": {"color": "00000000000000000000"}},
            {"color": "red"},
        )
        current = await engine.update(
            "countries",
            {"id": res.id, "versionstamps": {"color": res.versionstamp}},
            {"color": "red"},
        )

        assert not stale.ok
        assert current.ok

    @pytest.mark.asyncio
    async def test_expected_absent(self, engine):
        """A None versionstamp requires the column to be absent."""
        res = await engine.insert("countries", {"name": "USA"})

        upd = await engine.update(
            "countries",
            {"id": res.id, "versionstamps": {"color": None}},
            {"color": "red"},
        )

        assert upd.ok

    @pytest.mark.asyncio
    async def test_none_clears_optional_column(self, engine):
        """None on an optional column deletes its entry."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})

        upd = await engine.update("countries", {"id": res.id}, {"color": None})
        row = await engine.read("countries", {"id": res.id})

        assert upd.ok
        assert row.value == {"name": "USA"}
        assert row.versionstamps["color"] is None

    @pytest.mark.asyncio
    async def test_partial_row_still_updatable(self, engine, store):
        """A row with only some columns present still exists."""
        store.raw_set(row_key("countries", 5, "color"), "green")

        upd = await engine.update("countries", {"id": 5}, {"name": "Ireland"})
        row = await engine.read("countries", {"id": 5})

        assert upd.ok
        assert row.value == {"name": "Ireland", "color": "green"}


class TestDelete:
    """Tests for delete."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryKvStore()

    @pytest.fixture
    def engine(self, store):
        """Create an engine over the store."""
        return make_engine(store)

    @pytest.mark.asyncio
    async def test_delete_removes_every_column(self, engine):
        """After delete the row reads as missing."""
        res = await engine.insert("countries", {"name": "USA", "color": "blue"})

        deleted = await engine.delete("countries", {"id": res.id})
        row = await engine.read("countries", {"id": res.id})

        assert deleted.ok
        assert not row.exists

    @pytest.mark.asyncio
    async def test_delete_missing_row_is_noop(self, engine):
        """Deleting a nonexistent row commits."""
        res = await engine.delete("countries", {"id": 42})
        assert res.ok

    @pytest.mark.asyncio
    async def test_delete_with_stale_versionstamp(self, engine):
        """A mismatched caller versionstamp blocks the delete."""
        res = await engine.insert("countries", {"name": "USA"})
        await engine.update("countries", {"id": res.id}, {"name": "United States"})

        deleted = await engine.delete(
            "countries",
            {"id": res.id, "versionstamps": {"name": res.versionstamp}},
        )
        row = await engine.read("countries", {"id": res.id})

        assert not deleted.ok
        assert row.value == {"name": "United States"}

    @pytest.mark.asyncio
    async def test_delete_invalid_condition(self, engine):
        """Conditions are validated."""
        with pytest.raises(ValidationError, match="id"):
            await engine.delete("countries", {"id": 0})
