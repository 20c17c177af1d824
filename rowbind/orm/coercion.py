"""Bidirectional conversion between stored column values and typed field values."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from enum import Enum
from typing import Any, Callable

from dateutil import parser as date_parser

from rowbind.database.types import ColumnDescriptor
from rowbind.shared.exceptions import ValidationError

ZERO_DATETIME = "0000-00-00 00:00:00"
ZERO_DATE = "0000-00-00"
ZERO_DATES = frozenset({ZERO_DATETIME, ZERO_DATE, ""})
STORAGE_FORMAT = "%Y-%m-%d %H:%M:%S"
LIST_SEPARATOR = ","

_LEADING_INT = re.compile(r"^\s*[+-]?\d+")
_LEADING_FLOAT = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_BOOL_COLUMN_TYPES = frozenset({"bool", "boolean", "tinyint(1)", "smallint(1)", "int(1)"})


class FieldType(str, Enum):
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    DATETIME = "datetime"
    LIST = "list"
    JSON = "json"
    STRING = "string"

    @classmethod
    def of(cls, spec: Any) -> FieldType:
        """Accept a FieldType, its name, or the matching Python type."""
        if spec is None:
            return cls.STRING
        if isinstance(spec, cls):
            return spec
        if isinstance(spec, str):
            try:
                return cls(spec.lower())
            except ValueError as exc:
                raise ValidationError(f"Unknown field type '{spec}'") from exc
        by_python_type = {
            bool: cls.BOOL,
            int: cls.INT,
            float: cls.FLOAT,
            datetime: cls.DATETIME,
            date: cls.DATETIME,
            list: cls.LIST,
            tuple: cls.LIST,
            dict: cls.JSON,
            str: cls.STRING,
        }
        if spec in by_python_type:
            return by_python_type[spec]
        raise ValidationError(f"Unknown field type {spec!r}")


def guess_field_type(column: ColumnDescriptor) -> FieldType:
    """Pick a field type from a declared column type."""
    declared = column.type.strip().lower().replace(" ", "")
    if declared in _BOOL_COLUMN_TYPES:
        return FieldType.BOOL
    base = column.parsed_type.base
    if base in {"date", "datetime", "timestamp"}:
        return FieldType.DATETIME
    if "int" in base:
        return FieldType.INT
    if base in {"float", "double", "decimal", "numeric", "real"}:
        return FieldType.FLOAT
    if base == "json":
        return FieldType.JSON
    if base == "set":
        return FieldType.LIST
    return FieldType.STRING


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() not in ("", "0")
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(0)) if match else 0


def _to_float(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_FLOAT.match(str(value))
    return float(match.group(0)) if match else 0.0


def _to_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        return value.split(LIST_SEPARATOR) if value else []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _to_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


@dataclass(slots=True)
class Coercer:
    """Casts values to and from storage using one active time zone."""

    timezone: tzinfo = timezone.utc
    utc_dates: bool = False

    # ------------------------------------------------------------------
    # Stored value -> field value

    def to_python(self, field_type: FieldType, value: Any, *, nullable: bool = False) -> Any:
        if value is None:
            return [] if field_type is FieldType.LIST else None
        if value == "" and nullable:
            return None
        caster: Callable[[Any], Any] = {
            FieldType.BOOL: _to_bool,
            FieldType.INT: _to_int,
            FieldType.FLOAT: _to_float,
            FieldType.DATETIME: self.to_datetime,
            FieldType.LIST: _to_list,
            FieldType.JSON: _to_json,
        }.get(field_type, lambda raw: raw)
        return caster(value)

    def to_datetime(self, value: Any) -> datetime | None:
        """Interpret ``value`` as a moment in the active time zone, or None."""
        if self.utc_dates and self._is_epoch(value):
            moment = datetime.fromtimestamp(int(value), tz=timezone.utc)
            return moment.astimezone(self.timezone)
        if isinstance(value, str):
            if value.strip() in ZERO_DATES:
                return None
            try:
                parsed = date_parser.parse(value)
            except (ValueError, OverflowError) as exc:
                raise ValidationError(f"Unable to parse date/time value '{value}'") from exc
            return self._localize(parsed)
        if isinstance(value, datetime):
            return self._localize(value)
        if isinstance(value, date):
            return datetime.combine(value, time(), tzinfo=self.timezone)
        return None

    @staticmethod
    def _is_epoch(value: Any) -> bool:
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return True
        return isinstance(value, str) and value.isdigit()

    def _localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.timezone)
        return moment.astimezone(self.timezone)

    # ------------------------------------------------------------------
    # Field value -> storable value

    def to_storage(
        self,
        field_type: FieldType,
        value: Any,
        *,
        nullable: bool = False,
        column_type: str = "",
    ) -> Any:
        """Return the value to bind for a column; None binds as SQL NULL."""
        if value is None and nullable:
            return None
        if field_type in (FieldType.INT, FieldType.BOOL):
            if value is None:
                return 0
            return int(_to_bool(value)) if field_type is FieldType.BOOL else _to_int(value)
        if field_type is FieldType.DATETIME:
            moment = value if isinstance(value, datetime) else self.to_python(FieldType.DATETIME, value)
            if moment is None:
                if nullable:
                    return None
                return ZERO_DATE if column_type.strip().lower() == "date" else ZERO_DATETIME
            return self._localize(moment).strftime(STORAGE_FORMAT)
        if field_type is FieldType.LIST:
            items = _to_list(value) if value is not None else []
            return LIST_SEPARATOR.join(str(item) for item in items if item is not None and item != "")
        if field_type is FieldType.JSON:
            return json.dumps(value)
        if field_type is FieldType.FLOAT:
            if value is None:
                return None
            return repr(_to_float(value))
        return value

    def to_sql_literal(
        self,
        field_type: FieldType,
        value: Any,
        quote: Callable[[Any], str],
        *,
        nullable: bool = False,
        column_type: str = "",
    ) -> str:
        """Render a value for inlining into raw SQL text; NULL stays an unquoted keyword."""
        stored = self.to_storage(field_type, value, nullable=nullable, column_type=column_type)
        if stored is None:
            return "NULL"
        if isinstance(stored, int) and not isinstance(stored, bool):
            return str(stored)
        return quote(stored)
