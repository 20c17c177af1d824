"""Schema metadata records produced by the schema cache."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Sequence

_TYPE_PATTERN = re.compile(r"^\s*(\w+)\s*(?:\(([^)]*)\))?\s*(unsigned)?", re.IGNORECASE)

# Types whose value may legitimately be an empty string.
EMPTIABLE_TYPES = frozenset({"char", "varchar", "text", "tinytext", "mediumtext", "longtext", "clob"})

# SQLite reports an unspecified ON DELETE action as NO ACTION, which blocks the delete as well.
RESTRICTING_RULES = frozenset({"RESTRICT", "NO ACTION"})


@dataclass(frozen=True, slots=True)
class ColumnType:
    """Declared column type split into its parts, e.g. ``decimal(10,2) unsigned``."""

    base: str
    length: tuple[str, ...] = ()
    unsigned: bool = False

    @classmethod
    def parse(cls, declared: str) -> ColumnType:
        match = _TYPE_PATTERN.match(declared or "")
        if not match:
            return cls(base="")
        base = match.group(1).lower()
        raw_length = match.group(2)
        length: tuple[str, ...] = ()
        if raw_length:
            length = tuple(part.strip().strip("'\"") for part in raw_length.split(","))
        return cls(base=base, length=length, unsigned=bool(match.group(3)))


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """Metadata for one column of a table."""

    name: str
    type: str
    nullable: bool
    key: str = ""
    default: Any = None
    generated: str = ""  # "", "VIRTUAL" or "STORED"
    auto_increment: bool = False
    key_position: int = 0  # 1-based position inside the primary key, 0 when not a key column

    @classmethod
    def from_describe(cls, name: str, row: Sequence[Any]) -> ColumnDescriptor:
        """Build a descriptor from a DESCRIBE-shaped ``(type, null, key, default, extra)`` row."""
        values = list(row) + [None] * (5 - len(row))
        declared, null, key, default, extra = values[:5]
        extra_text = str(extra or "").upper()
        generated = ""
        if "VIRTUAL GENERATED" in extra_text:
            generated = "VIRTUAL"
        elif "STORED GENERATED" in extra_text:
            generated = "STORED"
        return cls(
            name=name,
            type=str(declared or ""),
            nullable=str(null).upper() == "YES" if not isinstance(null, bool) else null,
            key=str(key or ""),
            default=default,
            generated=generated,
            auto_increment="AUTO_INCREMENT" in extra_text,
            key_position=1 if str(key or "") == "PRI" else 0,
        )

    @property
    def parsed_type(self) -> ColumnType:
        return ColumnType.parse(self.type)

    @property
    def is_primary(self) -> bool:
        return self.key == "PRI"

    @property
    def is_generated(self) -> bool:
        return bool(self.generated)

    @property
    def is_virtual_generated(self) -> bool:
        return self.generated == "VIRTUAL"

    @property
    def is_emptiable(self) -> bool:
        return self.parsed_type.base in EMPTIABLE_TYPES


@dataclass(frozen=True, slots=True)
class ForeignKey:
    """A reference from ``table.column`` to ``referenced_table.referenced_column``."""

    table: str
    column: str
    referenced_table: str
    referenced_column: str
    on_update: str = "NO ACTION"
    on_delete: str = "NO ACTION"

    @property
    def restricts_delete(self) -> bool:
        return self.on_delete.upper() in RESTRICTING_RULES


@dataclass(slots=True)
class TableMetadata:
    """Everything the schema cache has memoized for one table."""

    columns: list[ColumnDescriptor] | None = None
    foreign_keys: list[ForeignKey] | None = None
    inverse_foreign_keys: list[ForeignKey] | None = None
    checked_bindings: set[tuple[str, ...]] = field(default_factory=set)
