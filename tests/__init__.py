"""
kvtables Test Suite.

This package contains:
- unit/: Unit tests per module (in-memory and temporary SQLite stores)
- integration/: Database handle scenarios end to end
"""
