"""Field declarations binding record attributes to table columns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from rowbind.database.types import ColumnType

from .coercion import FieldType

if TYPE_CHECKING:
    from .record import ActiveRecord


class Field:
    """A typed binding between a record attribute and a column.

    ``Field(int)``, ``Field("datetime")`` and ``Field(FieldType.LIST)`` are equivalent
    spellings. ``column`` defaults to the attribute name. ``shared`` routes parent
    lookups through the context-wide record cache.
    """

    def __init__(self, type: Any = None, *, column: str | None = None, shared: bool = False) -> None:
        self.type = FieldType.of(type)
        self.column = column
        self.shared = shared
        self.name: str | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        if self.column is None:
            self.column = name

    def __get__(self, instance: ActiveRecord | None, owner: type) -> Any:
        if instance is None:
            return self
        return instance._values.get(self.name)

    def __set__(self, instance: ActiveRecord, value: Any) -> None:
        instance._assign(self.name, value)

    def __repr__(self) -> str:
        return f"Field({self.type.value!r}, column={self.column!r})"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """What a form builder needs to know about one bound field."""

    name: str
    column: str
    type: FieldType
    nullable: bool
    emptiable: bool
    key: bool
    generated: bool
    column_type: ColumnType
    default: Any
    value: Any
