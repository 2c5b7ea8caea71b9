"""
Inspect CLI tool for kvtables.

Prints rows of a SQLite-backed database as JSON, one object per line.
The store is opened read-only and rows are read through the normal
table API, so the output is exactly what an application would see.

Usage:
    kvtables-inspect --schema schema.json --db data.db countries
    kvtables-inspect --schema schema.json --db data.db countries --id 1
    kvtables-inspect --schema schema.json --db data.db countries --columns name

Invariants:
    - Never writes to the database file
    - Unknown tables and invalid arguments exit with code 1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from typing import Any, Dict, List, Optional, Sequence, TextIO

from ..database import Database, open_database
from ..errors import KvTablesError, UnknownTableError, ValidationError
from ..ids import last_allocated_id
from ..kv.sqlite import SqliteKvStore

logger = logging.getLogger(__name__)


class InspectCLI:
    """Reads rows of one table for display.

    Example:
        >>> cli = InspectCLI(db)
        >>> rows = await cli.rows("countries")
        >>> rows[0]
        {'id': 1, 'value': {'name': 'USA'}, 'versionstamps': {...}}
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def rows(
        self,
        table: str,
        row_id: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Read one row, or every existing row up to the last allocated id.

        Raises:
            UnknownTableError: If table is not declared
            ValidationError: If row_id or columns are invalid
        """
        handle = self.db.table(table)
        if row_id is not None:
            ids = [row_id]
        else:
            ids = list(range(1, await last_allocated_id(self.db.store, table) + 1))

        output = []
        for current in ids:
            result = await handle.by_id(current).read(columns)
            # Ids of deleted rows are skipped when scanning
            if not result.exists and row_id is None:
                continue
            output.append(
                {
                    "id": result.id,
                    "value": result.value,
                    "versionstamps": result.versionstamps,
                }
            )
        return output


def _load_schema(path: str) -> Dict[str, Any]:
    with open(path) as f:
        return json.load(f)


async def run(args: argparse.Namespace, out: TextIO) -> int:
    """Execute a parsed command line. Returns the exit code."""
    columns = [c.strip() for c in args.columns.split(",")] if args.columns else None

    schema = _load_schema(args.schema)
    store = SqliteKvStore(args.db, read_only=True)
    try:
        db = await open_database(schema, store=store)
        rows = await InspectCLI(db).rows(args.table, args.id, columns)
    except (UnknownTableError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()

    for row in rows:
        out.write(json.dumps(row, sort_keys=True) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print rows of a kvtables SQLite database")
    parser.add_argument("--schema", required=True, help="Path to schema JSON descriptor")
    parser.add_argument("--db", required=True, help="Path to SQLite database file")
    parser.add_argument("table", help="Table name")
    parser.add_argument("--id", type=int, help="Row id (default: every row)")
    parser.add_argument("--columns", help="Comma-separated column names (default: all)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point for the inspect tool."""
    args = build_parser().parse_args(argv)
    try:
        code = asyncio.run(run(args, sys.stdout))
    except (KvTablesError, sqlite3.Error, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
