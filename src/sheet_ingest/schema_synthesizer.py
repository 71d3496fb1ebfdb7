import datetime as dt
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as dateparser

from sheet_ingest.constants import CORE_COLUMN_CATALOG, TIMESTAMP_COLUMNS
from sheet_ingest.errors import InvalidImportRequest, RowCoercionError

Scalar = Union[str, int, float, bool, None]
RawRow = Dict[str, Scalar]

_INVALID_CHARS = re.compile(r"[^a-z0-9_]")
_UNDERSCORE_RUNS = re.compile(r"__+")
_PLAIN_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
FALSE_STRINGS = {"false", "f", "no", "n", "0"}

# Columns filled client-side when a row leaves them empty
BOOKKEEPING_COLUMNS = ("id",) + TIMESTAMP_COLUMNS


class ColumnType(str, Enum):
    UUID_PK = "uuid_pk"
    INTEGER = "integer"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    TEXT = "text"


@dataclass
class ColumnSpec:
    name: str
    column_type: ColumnType
    is_core: bool = False
    source_key: Optional[str] = None
    default: Optional[str] = None  # "uuid" | "now"

    @property
    def primary_key(self) -> bool:
        return self.column_type is ColumnType.UUID_PK


@dataclass
class TableSchema:
    table_name: str
    display_name: str
    columns: List[ColumnSpec] = field(default_factory=list)

    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def get_column(self, name: str) -> Optional[ColumnSpec]:
        return next((col for col in self.columns if col.name == name), None)

    def column_for_key(self, key: str) -> Optional[ColumnSpec]:
        """
        Resolve a raw row key to the column it was (or would have been) assigned.

        Uses the same sanitize-then-alias resolution as schema synthesis, so a
        later row spelling a header differently ("Qty" vs "Quantity") still
        lands in the right column.
        """
        return self.get_column(resolve_column_name(key))


def sanitize_identifier(name: str) -> str:
    """
    Reduce a name to lowercase `[a-z0-9_]` with collapsed underscores.

    Parameters
    ----------
    name : str
        A display name or spreadsheet header. Surrounding whitespace is ignored.

    Returns
    -------
    str
        The sanitized identifier. Pure and deterministic.
    """
    lowered = str(name).strip().lower()
    return _UNDERSCORE_RUNS.sub("_", _INVALID_CHARS.sub("_", lowered))


def _build_alias_index() -> Dict[str, str]:
    index = {}
    for canonical, entry in CORE_COLUMN_CATALOG.items():
        index[canonical] = canonical
        for alias in entry["aliases"]:
            index[sanitize_identifier(alias)] = canonical
    return index


ALIAS_INDEX = _build_alias_index()


def match_core_column(key: str) -> Optional[str]:
    """Return the canonical core column for a header, or None."""
    return ALIAS_INDEX.get(sanitize_identifier(key))


def resolve_column_name(key: str) -> str:
    return match_core_column(key) or sanitize_identifier(key)


def looks_like_date(value: str) -> bool:
    text = value.strip()
    if not text or not any(ch.isdigit() for ch in text) or _PLAIN_NUMBER.match(text):
        return False
    try:
        dateparser.parse(text)
    except (ValueError, OverflowError):
        return False
    return True


def infer_column_type(value: Scalar) -> ColumnType:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, (int, float)):
        return ColumnType.NUMERIC
    if isinstance(value, str) and looks_like_date(value):
        return ColumnType.TIMESTAMP
    return ColumnType.TEXT


def _default_for(column_type: ColumnType) -> Optional[str]:
    if column_type is ColumnType.UUID_PK:
        return "uuid"
    if column_type is ColumnType.TIMESTAMP:
        return "now"
    return None


def resolve_column(key: str, value: Scalar) -> ColumnSpec:
    canonical = match_core_column(key)
    if canonical is not None:
        column_type = ColumnType(CORE_COLUMN_CATALOG[canonical]["type"])
        return ColumnSpec(
            name=canonical,
            column_type=column_type,
            is_core=True,
            source_key=key,
            default=_default_for(column_type),
        )
    return ColumnSpec(
        name=sanitize_identifier(key),
        column_type=infer_column_type(value),
        source_key=key,
    )


def synthesize_schema(display_name: str, rows: List[RawRow]) -> TableSchema:
    """
    Infer a table schema for a spreadsheet extract.

    Parameters
    ----------
    display_name : str
        Human readable sheet name; the table name is derived from it.
    rows : list of dict
        Raw rows. Only the first row is used to infer column types.

    Returns
    -------
    TableSchema
        Columns in first-row key order, with a synthesized `id` primary key
        first when none was supplied and `created_at`/`updated_at` appended
        when absent.

    Raises
    ------
    InvalidImportRequest
        If the display name is blank, there are no rows, a header sanitizes to
        nothing, or two headers resolve to the same column.
    """
    display_name = (display_name or "").strip()
    if not display_name:
        raise InvalidImportRequest("Invalid input: sheetDisplayName must not be blank.")
    if not rows:
        raise InvalidImportRequest("Invalid input: jsonData must contain at least one row.")
    if not isinstance(rows[0], dict):
        raise InvalidImportRequest("Invalid input: row 0 is not an object.")

    columns: List[ColumnSpec] = []
    seen: Dict[str, str] = {}
    for key, value in rows[0].items():
        column = resolve_column(key, value)
        if not column.name:
            raise InvalidImportRequest(
                f"Invalid input: header {key!r} does not produce a usable column name."
            )
        if column.name in seen:
            raise InvalidImportRequest(
                f"Invalid input: headers {seen[column.name]!r} and {key!r} "
                f"both map to column '{column.name}'."
            )
        seen[column.name] = key
        columns.append(column)

    if not any(col.primary_key for col in columns):
        columns.insert(0, ColumnSpec("id", ColumnType.UUID_PK, is_core=True, default="uuid"))
    for name in TIMESTAMP_COLUMNS:
        if name not in seen:
            columns.append(ColumnSpec(name, ColumnType.TIMESTAMP, is_core=True, default="now"))

    return TableSchema(
        table_name=sanitize_identifier(display_name),
        display_name=display_name,
        columns=columns,
    )


def validate_row_shapes(schema: TableSchema, rows: List[RawRow]) -> None:
    """
    Reject rows that do not fit the schema inferred from the first row.

    Later rows may leave keys out (the cell becomes NULL) or spell a first-row
    header through another alias ("Qty" then "Quantity"). They may not bring
    keys that resolve to no column or to a synthesized column (`id`,
    `created_at`, `updated_at` when the first row lacked them), nor two keys
    resolving to the same column.
    """
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise InvalidImportRequest(f"Invalid input: row {index} is not an object.")
        targets: Dict[str, str] = {}
        for key, value in row.items():
            if value is not None and not isinstance(value, (str, int, float, bool)):
                raise InvalidImportRequest(
                    f"Invalid input: row {index} has a non-scalar value for {key!r}."
                )
            column = schema.column_for_key(key)
            if column is None or column.source_key is None:
                raise InvalidImportRequest(
                    f"Invalid input: row {index} has column {key!r} "
                    "which is not present in the first row."
                )
            if column.name in targets:
                raise InvalidImportRequest(
                    f"Invalid input: row {index} has headers {targets[column.name]!r} "
                    f"and {key!r} for the same column '{column.name}'."
                )
            targets[column.name] = key


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, int):
        return value
    number = Decimal(str(value).strip())
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError("not an integral number")
    return int(number)


def _to_numeric(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers")
    number = Decimal(str(value).strip())
    if not number.is_finite():
        raise ValueError("not a finite number")
    return number


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValueError("not a boolean")


def _to_timestamp(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    if not isinstance(value, str):
        raise ValueError("timestamps must be given as text")
    return dateparser.parse(value)


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value).strip())


COERCERS = {
    ColumnType.UUID_PK: _to_uuid,
    ColumnType.INTEGER: _to_integer,
    ColumnType.NUMERIC: _to_numeric,
    ColumnType.BOOLEAN: _to_boolean,
    ColumnType.TIMESTAMP: _to_timestamp,
    ColumnType.TEXT: _to_text,
}


def coerce_value(column: ColumnSpec, value: Scalar, row_index: int) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip() and column.column_type is not ColumnType.TEXT:
        return None
    try:
        return COERCERS[column.column_type](value)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise RowCoercionError(row_index, column.name, value, column.column_type.value) from exc


def prepare_rows(schema: TableSchema, rows: List[RawRow]) -> List[Dict[str, Any]]:
    """
    Re-map raw rows onto the schema's columns and coerce every value.

    Every prepared row carries every column so the batch can go through a
    single executemany. Empty `id`, `created_at` and `updated_at` cells get a
    fresh uuid4 and the current UTC time.

    Raises
    ------
    RowCoercionError
        If a value does not fit its column type.
    """
    now = dt.datetime.now(dt.timezone.utc)
    prepared = []
    for index, row in enumerate(rows):
        record: Dict[str, Any] = {name: None for name in schema.column_names()}
        for key, value in row.items():
            column = schema.column_for_key(key)
            record[column.name] = coerce_value(column, value, index)
        for name in BOOKKEEPING_COLUMNS:
            if record[name] is None:
                record[name] = uuid.uuid4() if name == "id" else now
        prepared.append(record)
    return prepared
