"""
Unit tests for row id allocation.

Tests cover:
- First id and increments
- Racing allocations
- No reuse after delete
- Corrupt keys and sequences
"""

import pytest

from kvtables.errors import CorruptDataError
from kvtables.ids import allocate_row_id, last_allocated_id
from kvtables.keys import pack, row_key, sequence_key, table_prefix
from kvtables.kv.memory import InMemoryKvStore

COLUMNS = ("name", "color")


async def insert(store, table, **values):
    """Allocate an id and write values the way an insert does."""
    allocation = await allocate_row_id(store, table, COLUMNS)
    op = allocation.apply(store.atomic(), table)
    for name, value in values.items():
        op.set(row_key(table, allocation.id, name), value)
    return allocation, await op.commit()


class TestAllocateRowId:
    """Tests for allocate_row_id."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryKvStore()

    @pytest.mark.asyncio
    async def test_first_id_is_one(self, store):
        """An empty table allocates id 1."""
        allocation = await allocate_row_id(store, "countries", COLUMNS)
        assert allocation.id == 1

    @pytest.mark.asyncio
    async def test_ids_increment(self, store):
        """Each committed insert advances the id by one."""
        ids = []
        for name in ["a", "b", "c"]:
            allocation, res = await insert(store, "countries", name=name)
            assert res.ok
            ids.append(allocation.id)

        assert ids == [1, 2, 3]
        assert await last_allocated_id(store, "countries") == 3

    @pytest.mark.asyncio
    async def test_tables_are_independent(self, store):
        """Ids are allocated per table."""
        await insert(store, "countries", name="a")
        await insert(store, "countries", name="b")

        allocation = await allocate_row_id(store, "cities", COLUMNS)
        assert allocation.id == 1

    @pytest.mark.asyncio
    async def test_racing_allocations_conflict(self, store):
        """Two allocations of the same id cannot both commit."""
        first = await allocate_row_id(store, "countries", COLUMNS)
        second = await allocate_row_id(store, "countries", COLUMNS)
        assert first.id == second.id == 1

        r1 = await first.apply(store.atomic(), "countries").set(
            row_key("countries", 1, "name"), "a"
        ).commit()
        r2 = await second.apply(store.atomic(), "countries").set(
            row_key("countries", 1, "name"), "b"
        ).commit()

        assert r1.ok
        assert not r2.ok
        assert (await store.get(row_key("countries", 1, "name"))).value == "a"

    @pytest.mark.asyncio
    async def test_racing_after_existing_rows(self, store):
        """Racing allocations conflict on a non-empty table too."""
        await insert(store, "countries", name="a")
        first = await allocate_row_id(store, "countries", COLUMNS)
        second = await allocate_row_id(store, "countries", COLUMNS)

        r1 = await first.apply(store.atomic(), "countries").commit()
        r2 = await second.apply(store.atomic(), "countries").commit()

        assert first.id == second.id == 2
        assert r1.ok and not r2.ok

    @pytest.mark.asyncio
    async def test_deleted_last_row_id_not_reused(self, store):
        """Deleting the newest row does not free its id."""
        await insert(store, "countries", name="a")
        await insert(store, "countries", name="b")
        await store.atomic().delete(row_key("countries", 2, "name")).commit()

        allocation = await allocate_row_id(store, "countries", COLUMNS)
        assert allocation.id == 3

    @pytest.mark.asyncio
    async def test_existing_rows_without_sequence(self, store):
        """Rows written without a sequence key still advance the id."""
        store.raw_set(row_key("countries", 7, "name"), "x")

        allocation = await allocate_row_id(store, "countries", COLUMNS)
        assert allocation.id == 8

    @pytest.mark.asyncio
    async def test_checks_cover_new_columns(self, store):
        """The new id's column keys are checked for absence."""
        allocation = await allocate_row_id(store, "countries", COLUMNS)

        absent = {c.key for c in allocation.checks if c.versionstamp is None}
        assert row_key("countries", 1, "name") in absent
        assert row_key("countries", 1, "color") in absent
        assert sequence_key("countries") in absent

    @pytest.mark.asyncio
    async def test_apply_bumps_sequence(self, store):
        """Committing an allocation records the id in the sequence."""
        allocation, res = await insert(store, "countries", name="a")

        assert res.ok
        assert (await store.get(sequence_key("countries"))).value == allocation.id


class TestCorruptData:
    """Tests for malformed stored data."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryKvStore()

    @pytest.mark.asyncio
    async def test_non_integer_row_id(self, store):
        """A key with a non-int id component is corrupt data."""
        store.raw_set(pack(("countries", "seven", "name")), "x")

        with pytest.raises(CorruptDataError) as exc_info:
            await allocate_row_id(store, "countries", COLUMNS)

        assert exc_info.value.code == "CORRUPT_DATA"

    @pytest.mark.asyncio
    async def test_bool_row_id(self, store):
        """A bool id component is corrupt data even though bool is an int."""
        store.raw_set(pack(("countries", True, "name")), "x")

        with pytest.raises(CorruptDataError):
            await allocate_row_id(store, "countries", COLUMNS)

    @pytest.mark.asyncio
    async def test_non_integer_sequence(self, store):
        """A sequence holding a non-int is corrupt data."""
        store.raw_set(sequence_key("countries"), "three")

        with pytest.raises(CorruptDataError, match="sequence"):
            await allocate_row_id(store, "countries", COLUMNS)

    @pytest.mark.asyncio
    async def test_truncated_integer_key(self, store):
        """A key cut off after an integer type code is corrupt data."""
        store.raw_set(table_prefix("countries") + b"\x12", "x")

        with pytest.raises(CorruptDataError, match="Undecodable"):
            await allocate_row_id(store, "countries", COLUMNS)

    @pytest.mark.asyncio
    async def test_truncated_negative_integer_key(self, store):
        """A negative integer code with no length byte is corrupt data."""
        store.raw_set(table_prefix("countries") + b"\x10", "x")

        with pytest.raises(CorruptDataError):
            await allocate_row_id(store, "countries", COLUMNS)
