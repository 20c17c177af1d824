"""Data structures shared across inspector modules."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from rowbind.database.types import ColumnDescriptor, ForeignKey


@dataclass(frozen=True, slots=True)
class RowsResult:
    """One page of table rows returned by the executor layer."""

    table: str
    columns: tuple[str, ...]
    rows: Sequence[tuple[Any, ...]]
    total: int
    page: int
    last_page: int
    per_page: int
    first_row: int | None = None
    last_row: int | None = None

    @property
    def description(self) -> str:
        if not self.total:
            return f"{self.table}: no rows"
        if self.first_row is None:
            return f"{self.table}: page {self.page} is empty ({self.total} rows, {self.last_page} page(s))"
        return (
            f"{self.table}: rows {self.first_row}-{self.last_row} of {self.total} "
            f"(page {self.page} of {self.last_page})"
        )


@dataclass(frozen=True, slots=True)
class SchemaTable:
    """Schema representation for a single table."""

    name: str
    columns: Sequence[ColumnDescriptor]
    primary_key: Sequence[str]
    foreign_keys: Sequence[ForeignKey]
    referenced_by: Sequence[ForeignKey]
    row_count: int | None = None


@dataclass(frozen=True, slots=True)
class SchemaOverview:
    """Aggregated schema details returned by the schema inspector."""

    tables: Sequence[SchemaTable]
    database_path: Path
