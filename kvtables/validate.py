"""
Schema binding and validation for kvtables.

This module turns table definitions into validators:
- Insert rows: required columns present, no unknown columns
- Partial rows (update): any non-empty subset of columns
- Conditions: positive row id plus optional expected versionstamps
- Column subsets (read): non-empty list of declared columns

Validators are pydantic models generated once per table when the
database opens. Column values are checked without coercion: "1" is not
an int and True is not an int.

Invariants:
    - Validation errors list every offending field, not just the first
    - Nothing is written for a value that failed validation
    - Unknown fields and tables suggest similar valid names
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import get_close_matches
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Type

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    create_model,
)
from pydantic import ValidationError as PydanticValidationError

from .errors import UnknownTableError, ValidationError
from .keys import MAX_INT_PART
from .registry import SchemaRegistry
from .schema import ColumnDef, ColumnKind, TableDef

Versionstamps = Dict[str, Optional[str]]


def _check_key_range(value: int) -> int:
    if value > MAX_INT_PART:
        raise ValueError("too large to address a row")
    return value


RowId = Annotated[StrictInt, Field(gt=0), AfterValidator(_check_key_range)]


@dataclass(frozen=True)
class Condition:
    """Validated row address.

    Attributes:
        id: Row id
        versionstamps: Expected versionstamp per column, None meaning
            "expected absent"; None when the caller gave no expectations
    """

    id: int
    versionstamps: Optional[Versionstamps] = None


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _annotation(col: ColumnDef) -> Any:
    """Map a column kind to a pydantic annotation."""
    kind = col.kind
    if kind == ColumnKind.STRING:
        return StrictStr
    if kind == ColumnKind.INTEGER:
        return StrictInt
    if kind == ColumnKind.FLOAT:
        return StrictFloat
    if kind == ColumnKind.BOOLEAN:
        return StrictBool
    if kind == ColumnKind.TIMESTAMP:
        return Annotated[StrictInt, Field(ge=0)]
    if kind == ColumnKind.JSON:
        return JsonValue
    if kind == ColumnKind.ENUM:
        return Literal[tuple(col.enum_values or ())]
    if kind == ColumnKind.LIST_STRING:
        return List[StrictStr]
    if kind == ColumnKind.LIST_INT:
        return List[StrictInt]
    raise ValueError(f"Unsupported column kind: {kind}")


def _build_model(
    model_name: str,
    columns: Sequence[ColumnDef],
    *,
    partial: bool,
) -> Type[BaseModel]:
    """Generate a model with one aliased field per column.

    Fields are named positionally and addressed by alias so that column
    names never clash with BaseModel attributes.

    Insert models require non-optional columns. Partial models make every
    column omittable; an explicit None is still rejected for required
    columns since defaults are not validated.
    """
    fields: Dict[str, Any] = {}
    for index, col in enumerate(columns):
        ann = _annotation(col)
        if col.optional:
            fields[f"c{index}"] = (Optional[ann], Field(default=None, alias=col.name))
        elif partial:
            fields[f"c{index}"] = (ann, Field(default=None, alias=col.name))
        else:
            fields[f"c{index}"] = (ann, Field(alias=col.name))
    return create_model(model_name, __base__=_StrictModel, **fields)  # type: ignore[call-overload]


def format_errors(
    exc: PydanticValidationError,
    subject: str,
    known: Sequence[str] = (),
) -> List[str]:
    """Render pydantic errors as one ``"<field>: <message>"`` line each."""
    messages: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or subject
        if err["type"] == "missing":
            messages.append(f"{loc}: is required")
        elif err["type"] == "extra_forbidden":
            msg = f"{loc}: unknown column"
            suggestions = get_close_matches(str(err["loc"][-1]), list(known), n=3)
            if suggestions:
                msg += f" (did you mean: {', '.join(suggestions)}?)"
            messages.append(msg)
        else:
            messages.append(f"{loc}: {err['msg']}")
    return messages


def _error(errors: List[str]) -> ValidationError:
    field_name = errors[0].split(":", 1)[0] if len(errors) == 1 else None
    return ValidationError(
        f"Validation error: {'; '.join(errors)}",
        field_name=field_name,
        errors=errors,
    )


class TableBinding:
    """Validators for one table.

    Example:
        >>> binding = TableBinding(countries)
        >>> binding.validate_insert({"name": "USA", "color": "blue"})
        {'name': 'USA', 'color': 'blue'}
        >>> binding.validate_partial({})
        Traceback (most recent call last):
        ...
        ValidationError: Validation error: row: must update at least one column
    """

    def __init__(self, table: TableDef) -> None:
        self.table = table
        self.name = table.name
        self.column_names: Tuple[str, ...] = tuple(table.column_names())

        model_base = "".join(part.capitalize() for part in table.name.split("_")) or "Table"
        self._insert_model = _build_model(f"{model_base}Insert", table.columns, partial=False)
        self._partial_model = _build_model(f"{model_base}Update", table.columns, partial=True)

        versionstamp_fields: Dict[str, Any] = {
            f"c{index}": (Optional[StrictStr], Field(default=None, alias=name))
            for index, name in enumerate(self.column_names)
        }
        versionstamps_model = create_model(
            f"{model_base}Versionstamps",
            __base__=_StrictModel,
            **versionstamp_fields,
        )  # type: ignore[call-overload]
        self._versionstamps_model = versionstamps_model
        self._condition_model = create_model(
            f"{model_base}Condition",
            __base__=_StrictModel,
            id=(RowId, ...),
            versionstamps=(Optional[versionstamps_model], None),
        )  # type: ignore[call-overload]

    def _parse(self, model: Type[BaseModel], candidate: Any, subject: str) -> BaseModel:
        try:
            return model.model_validate(candidate)
        except PydanticValidationError as e:
            raise _error(format_errors(e, subject, self.column_names)) from None

    def validate_insert(self, candidate: Any) -> Dict[str, Any]:
        """Validate a full row for insert.

        Returns:
            Column values to write; omitted or None optional columns are
            left out

        Raises:
            ValidationError: Listing every offending field
        """
        parsed = self._parse(self._insert_model, candidate, "row")
        row = {
            name: value
            for name, value in parsed.model_dump(by_alias=True, exclude_unset=True).items()
            if value is not None
        }
        if not row:
            raise _error(["row: must insert at least one column"])
        return row

    def validate_partial(self, candidate: Any) -> Dict[str, Any]:
        """Validate a partial row for update.

        Returns:
            Column values present in candidate; None marks an optional
            column to clear

        Raises:
            ValidationError: If empty or any present field is invalid
        """
        if isinstance(candidate, Mapping) and not candidate:
            raise _error(["row: must update at least one column"])
        parsed = self._parse(self._partial_model, candidate, "row")
        return parsed.model_dump(by_alias=True, exclude_unset=True)

    def validate_condition(self, candidate: Any) -> Condition:
        """Validate ``{"id": ..., "versionstamps": {...}}``.

        Raises:
            ValidationError: If the id is not a positive int or a
                versionstamp key is not a declared column
        """
        if isinstance(candidate, Condition):
            candidate = {"id": candidate.id, "versionstamps": candidate.versionstamps}
        parsed = self._parse(self._condition_model, candidate, "condition")
        versionstamps = None
        raw = getattr(parsed, "versionstamps")
        if raw is not None:
            versionstamps = raw.model_dump(by_alias=True, exclude_unset=True)
        return Condition(id=getattr(parsed, "id"), versionstamps=versionstamps)

    def validate_columns(self, columns: Optional[Sequence[str]]) -> Tuple[str, ...]:
        """Resolve the columns a read should fetch.

        Returns:
            columns when given, every declared column when None

        Raises:
            ValidationError: If columns is empty, has duplicates or
                unknown names
        """
        if columns is None:
            return self.column_names
        if isinstance(columns, (str, bytes)) or not isinstance(columns, Sequence):
            raise _error(["columns: must be a list of column names"])
        if not columns:
            raise _error(["columns: must select at least one column"])

        errors: List[str] = []
        seen = set()
        for name in columns:
            if name in seen:
                errors.append(f"columns: duplicate column '{name}'")
                continue
            seen.add(name)
            if name not in self.column_names:
                msg = f"columns: unknown column '{name}'"
                suggestions = get_close_matches(str(name), list(self.column_names), n=3)
                if suggestions:
                    msg += f" (did you mean: {', '.join(suggestions)}?)"
                errors.append(msg)
        if errors:
            raise _error(errors)
        return tuple(columns)


class SchemaBinding:
    """Table-name lookup over a frozen registry.

    Example:
        >>> binding = SchemaBinding(registry)
        >>> binding.table("countries").column_names
        ('name', 'color')
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self._tables: Dict[str, TableBinding] = {
            table.name: TableBinding(table) for table in registry.tables()
        }

    def table(self, name: str) -> TableBinding:
        """Resolve a table name.

        Raises:
            UnknownTableError: If name is not declared
        """
        binding = self._tables.get(name)
        if binding is None:
            suggestions = get_close_matches(str(name), list(self._tables), n=3)
            raise UnknownTableError(str(name), suggestions)
        return binding

    def table_schema(self, name: str) -> TableDef:
        """Column set of a declared table."""
        return self.table(name).table
