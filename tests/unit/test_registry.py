"""
Unit tests for schema registry.

Tests cover:
- Table registration
- Registry freezing
- Fingerprint generation
- Duplicate detection
"""

import pytest

from kvtables.registry import (
    DuplicateRegistrationError,
    RegistryFrozenError,
    SchemaRegistry,
)
from kvtables.schema import DatabaseSchema, TableDef


def make_table(name: str, **columns) -> TableDef:
    """Helper to create table definitions."""
    return TableDef.from_mapping(name, columns or {"name": "str"})


class TestSchemaRegistry:
    """Tests for SchemaRegistry."""

    def test_register_table(self):
        """Can register a table."""
        registry = SchemaRegistry()
        countries = make_table("countries")

        registry.register_table(countries)

        assert registry.get_table("countries") == countries
        assert registry.get_table("cities") is None

    def test_duplicate_name_raises(self):
        """Registering a duplicate name raises error."""
        registry = SchemaRegistry()
        registry.register_table(make_table("countries"))

        with pytest.raises(DuplicateRegistrationError, match="already registered"):
            registry.register_table(make_table("countries", code="str"))

    def test_from_schema(self):
        """A registry can be built from a schema."""
        schema = DatabaseSchema.from_dict({"a": {"x": "str"}, "b": {"y": "int"}})

        registry = SchemaRegistry.from_schema(schema)

        assert registry.table_names() == ["a", "b"]
        assert not registry.frozen


class TestRegistryFreeze:
    """Tests for freezing and fingerprints."""

    def test_freeze_blocks_registration(self):
        """Frozen registry rejects new tables."""
        registry = SchemaRegistry()
        registry.register_table(make_table("countries"))
        registry.freeze()

        assert registry.frozen
        with pytest.raises(RegistryFrozenError):
            registry.register_table(make_table("cities"))

    def test_double_freeze_raises(self):
        """Freezing twice raises error."""
        registry = SchemaRegistry()
        registry.freeze()

        with pytest.raises(RegistryFrozenError, match="already frozen"):
            registry.freeze()

    def test_fingerprint_format(self):
        """Fingerprint is a sha256 digest."""
        registry = SchemaRegistry()
        registry.register_table(make_table("countries"))

        fingerprint = registry.freeze()

        assert fingerprint.startswith("sha256:")
        assert len(fingerprint) == len("sha256:") + 64
        assert registry.fingerprint == fingerprint

    def test_fingerprint_ignores_registration_order(self):
        """Same tables in a different order give the same fingerprint."""
        r1 = SchemaRegistry()
        r1.register_table(make_table("a"))
        r1.register_table(make_table("b"))

        r2 = SchemaRegistry()
        r2.register_table(make_table("b"))
        r2.register_table(make_table("a"))

        assert r1.freeze() == r2.freeze()

    def test_fingerprint_changes_with_columns(self):
        """Different columns give a different fingerprint."""
        r1 = SchemaRegistry()
        r1.register_table(make_table("a", x="str"))
        r2 = SchemaRegistry()
        r2.register_table(make_table("a", x="int"))

        assert r1.freeze() != r2.freeze()

    def test_to_json_is_sorted(self):
        """JSON export lists tables sorted by name."""
        registry = SchemaRegistry()
        registry.register_table(make_table("b"))
        registry.register_table(make_table("a"))

        names = [t["name"] for t in registry.to_dict()["tables"]]

        assert names == ["a", "b"]
        assert '"tables"' in registry.to_json()
