"""
Error types for kvtables.

This module defines the exceptions raised by the table layer:
- KvTablesError: Base exception
- ValidationError: Row, condition or column list failed schema rules
- UnknownTableError: Table name is not declared in the schema
- RowNotFoundError: Update targets a row with no present columns
- CorruptDataError: Store holds a value the layer cannot interpret
- SchemaError: Schema descriptor is malformed

Commit conflicts are NOT exceptions. They are returned as a
CommitResult with ok=False so callers can decide whether to retry.

Invariants:
    - All errors inherit from KvTablesError
    - Every error carries a stable code and a details dict
    - Validation and lookup errors are raised before any store mutation
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class KvTablesError(Exception):
    """Base exception for all kvtables errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "KVTABLES_ERROR"
        self.details = details or {}


class ValidationError(KvTablesError):
    """Candidate data failed schema validation.

    Raised when:
    - A required column is missing or has the wrong type
    - An unknown column is supplied
    - An update carries no columns
    - A condition has a non-positive id or unknown versionstamp keys

    Attributes:
        errors: One message per offending field
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class UnknownTableError(KvTablesError):
    """Table name is not declared in the database schema."""

    def __init__(
        self,
        table_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown table '{table_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_TABLE",
            details={"table_name": table_name, "suggestions": suggestions},
        )
        self.table_name = table_name
        self.suggestions = suggestions


class RowNotFoundError(KvTablesError):
    """Row has no present columns."""

    def __init__(self, table_name: str, row_id: int) -> None:
        super().__init__(
            f"A row with id '{row_id}' doesn't exist in table '{table_name}'",
            code="ROW_NOT_FOUND",
            details={"table_name": table_name, "row_id": row_id},
        )
        self.table_name = table_name
        self.row_id = row_id


class CorruptDataError(KvTablesError):
    """Store contents violate the key or value layout.

    Raised when:
    - A key under a table prefix has a non-integer row id
    - The id sequence holds a non-integer value

    This indicates external tampering or a bug and is never retried.
    """

    def __init__(self, message: str, key: Optional[tuple] = None) -> None:
        super().__init__(
            message,
            code="CORRUPT_DATA",
            details={"key": repr(key) if key is not None else None},
        )
        self.key = key


class SchemaError(KvTablesError):
    """Schema descriptor is malformed.

    Raised when:
    - A table has no columns or the schema has no tables
    - Names are empty or duplicated
    - A column kind is not recognised
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SCHEMA_ERROR",
            details={"path": path},
        )
        self.path = path
