"""Per-table schema metadata, introspected once and memoized."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping, Sequence

from rowbind.shared.exceptions import SchemaError
from rowbind.shared.logging import Logger

from .connection import Connection
from .types import ColumnDescriptor, ForeignKey, TableMetadata

# PRAGMA table_xinfo "hidden" flag values.
_HIDDEN_VIRTUAL_TABLE = 1
_GENERATED = {2: "VIRTUAL", 3: "STORED"}

TableDescription = Sequence[ColumnDescriptor] | Mapping[str, Sequence[Any] | ColumnDescriptor]


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _unquote_default(raw: Any) -> Any:
    if isinstance(raw, str) and len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1].replace("''", "'")
    return raw


class SchemaCache:
    """Column and foreign-key metadata for the tables of one connection.

    Entries are cached for the lifetime of the cache; schema changes made while it is
    alive are not picked up.
    """

    def __init__(self, connection: Connection, logger: Logger | None = None) -> None:
        self.connection = connection
        self.logger = logger
        self._tables: dict[str, TableMetadata] = {}

    def _meta(self, table: str) -> TableMetadata:
        meta = self._tables.get(table)
        if meta is None:
            meta = self._tables[table] = TableMetadata()
        return meta

    # ------------------------------------------------------------------
    # Columns

    def describe_table(self, table: str) -> list[ColumnDescriptor]:
        """Return the column descriptors of ``table``; raises SchemaError when it does not exist."""
        meta = self._meta(table)
        if meta.columns is None:
            meta.columns = self._introspect_columns(table)
        return meta.columns

    def set_table_description(self, table: str, description: TableDescription) -> None:
        """Seed the cache with an explicit structure instead of introspecting ``table``."""
        if isinstance(description, Mapping):
            columns = [
                row if isinstance(row, ColumnDescriptor) else ColumnDescriptor.from_describe(name, row)
                for name, row in description.items()
            ]
        else:
            columns = list(description)
        position = 0
        numbered: list[ColumnDescriptor] = []
        for column in columns:
            if column.is_primary:
                position += 1
                column = replace(column, key_position=position)
            numbered.append(column)
        self._meta(table).columns = numbered

    def is_described(self, table: str) -> bool:
        meta = self._tables.get(table)
        return meta is not None and meta.columns is not None

    def describe_column(self, table: str, column: str) -> ColumnDescriptor | None:
        for descriptor in self.describe_table(table):
            if descriptor.name == column:
                return descriptor
        return None

    def column_names(self, table: str) -> list[str]:
        return [descriptor.name for descriptor in self.describe_table(table)]

    def table_keys(self, table: str) -> list[str]:
        keys = [descriptor for descriptor in self.describe_table(table) if descriptor.is_primary]
        keys.sort(key=lambda descriptor: descriptor.key_position)
        return [descriptor.name for descriptor in keys]

    def is_auto_increment(self, table: str) -> bool:
        return any(descriptor.auto_increment for descriptor in self.describe_table(table))

    def is_virtual_generated(self, table: str, column: str) -> bool:
        descriptor = self.describe_column(table, column)
        return descriptor is not None and descriptor.is_virtual_generated

    def is_nullable(self, table: str, column: str) -> bool | None:
        """Nullability of ``table.column``; ``None`` when the column is unknown."""
        descriptor = self.describe_column(table, column)
        return None if descriptor is None else descriptor.nullable

    def table_exists(self, table: str) -> bool:
        if self.is_described(table):
            return True
        return table in self.connection.table_names()

    def check_bindings(self, table: str, columns: Iterable[str]) -> None:
        """Raise SchemaError unless every name in ``columns`` is a column of ``table``."""
        wanted = tuple(columns)
        meta = self._meta(table)
        if wanted in meta.checked_bindings:
            return
        known = set(self.column_names(table))
        missing = [column for column in wanted if column not in known]
        if missing:
            raise SchemaError(
                f"Fields bound to missing columns in table '{table}': {', '.join(missing)}"
            )
        meta.checked_bindings.add(wanted)

    # ------------------------------------------------------------------
    # Foreign keys

    def foreign_keys(self, table: str) -> list[ForeignKey]:
        """References from columns of ``table`` to other tables."""
        meta = self._meta(table)
        if meta.foreign_keys is None:
            self.describe_table(table)
            meta.foreign_keys = self._introspect_foreign_keys(table)
        return meta.foreign_keys

    def inverse_foreign_keys(self, table: str) -> list[ForeignKey]:
        """References from other tables' columns to ``table``."""
        meta = self._meta(table)
        if meta.inverse_foreign_keys is None:
            self.describe_table(table)
            inverse: list[ForeignKey] = []
            for other in self.connection.table_names():
                for foreign_key in self.foreign_keys(other):
                    if foreign_key.referenced_table.lower() == table.lower():
                        inverse.append(foreign_key)
            meta.inverse_foreign_keys = inverse
        return meta.inverse_foreign_keys

    # ------------------------------------------------------------------
    # Introspection

    def _introspect_columns(self, table: str) -> list[ColumnDescriptor]:
        rows = self.connection.query(f"PRAGMA table_xinfo({_quote_identifier(table)})")
        if not rows:
            raise SchemaError(f"Table '{table}' does not exist in the database.")

        key_rows = [row for row in rows if row["pk"]]
        # A lone INTEGER PRIMARY KEY aliases the rowid and is assigned on insert.
        auto_column = None
        if len(key_rows) == 1 and (key_rows[0]["type"] or "").strip().upper() == "INTEGER":
            auto_column = key_rows[0]["name"]

        columns: list[ColumnDescriptor] = []
        for row in rows:
            if row["hidden"] == _HIDDEN_VIRTUAL_TABLE:
                continue
            is_key = bool(row["pk"])
            columns.append(
                ColumnDescriptor(
                    name=row["name"],
                    type=row["type"] or "",
                    nullable=not row["notnull"] and not is_key,
                    key="PRI" if is_key else "",
                    default=_unquote_default(row["dflt_value"]),
                    generated=_GENERATED.get(row["hidden"], ""),
                    auto_increment=row["name"] == auto_column,
                    key_position=int(row["pk"]),
                )
            )
        if self.logger is not None:
            self.logger.debug(f"Described table {table}: {len(columns)} column(s)")
        return columns

    def _introspect_foreign_keys(self, table: str) -> list[ForeignKey]:
        rows = self.connection.query(f"PRAGMA foreign_key_list({_quote_identifier(table)})")
        foreign_keys: list[ForeignKey] = []
        for row in rows:
            referenced_column = row["to"]
            if referenced_column is None:
                # FOREIGN KEY (x) REFERENCES parent, without a column list, targets the primary key.
                parent_keys = self.table_keys(row["table"])
                seq = int(row["seq"])
                if seq < len(parent_keys):
                    referenced_column = parent_keys[seq]
                else:
                    referenced_column = parent_keys[0] if parent_keys else "rowid"
            foreign_keys.append(
                ForeignKey(
                    table=table,
                    column=row["from"],
                    referenced_table=row["table"],
                    referenced_column=referenced_column,
                    on_update=str(row["on_update"] or "NO ACTION").upper(),
                    on_delete=str(row["on_delete"] or "NO ACTION").upper(),
                )
            )
        return foreign_keys
