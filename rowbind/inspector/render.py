"""Output rendering helpers for the inspector CLI."""

from __future__ import annotations

import csv
import json
import sys
from datetime import date, datetime
from typing import IO

from rich import box
from rich.console import Console
from rich.table import Table

from rowbind.shared.logging import Logger

from .types import RowsResult, SchemaOverview


def render_rows(
    result: RowsResult,
    *,
    output_format: str,
    logger: Logger,
    stream=None,
) -> None:
    """Render a page of rows to the desired format."""
    output_stream = stream or sys.stdout
    fmt = (output_format or "table").lower()

    if fmt == "table":
        _render_table(result, logger=logger, stream=output_stream)
    elif fmt == "csv":
        _render_delimited(result, stream=output_stream, delimiter=",")
    elif fmt == "tsv":
        _render_delimited(result, stream=output_stream, delimiter="\t")
    elif fmt == "json":
        _render_json(result, stream=output_stream)
    else:  # pragma: no cover - Click validation should prevent this
        raise ValueError(f"Unsupported output format '{output_format}'.")

    if result.page > result.last_page and result.total:
        logger.warning(f"Page {result.page} is past the last page ({result.last_page}).")


def render_schema_overview(
    overview: SchemaOverview,
    *,
    output_format: str,
    logger: Logger,
    stream=None,
) -> None:
    """Render schema metadata to the output stream."""
    output_stream = stream or sys.stdout
    fmt = (output_format or "table").lower()

    if fmt == "json":
        payload = {
            "database": str(overview.database_path),
            "tables": [
                {
                    "name": table.name,
                    "primary_key": list(table.primary_key),
                    "columns": [
                        {
                            "name": column.name,
                            "type": column.type,
                            "nullable": column.nullable,
                            "default": column.default,
                            "generated": column.generated or None,
                            "auto_increment": column.auto_increment,
                        }
                        for column in table.columns
                    ],
                    "foreign_keys": [
                        {
                            "from": fk.column,
                            "table": fk.referenced_table,
                            "to": fk.referenced_column,
                            "on_delete": fk.on_delete,
                        }
                        for fk in table.foreign_keys
                    ],
                    "referenced_by": [
                        {
                            "table": fk.table,
                            "from": fk.column,
                            "to": fk.referenced_column,
                            "on_delete": fk.on_delete,
                        }
                        for fk in table.referenced_by
                    ],
                    "rows": table.row_count,
                }
                for table in overview.tables
            ],
        }
        json.dump(payload, output_stream, indent=2)
        output_stream.write("\n")
        return

    console = Console(file=output_stream, highlight=False, force_terminal=False)
    for table in overview.tables:
        console.print(f"[bold]{table.name}[/bold]")
        column_table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
        column_table.add_column("Column")
        column_table.add_column("Type")
        column_table.add_column("Null")
        column_table.add_column("Key")
        column_table.add_column("Default")
        column_table.add_column("Extra")
        for column in table.columns:
            extra = "auto increment" if column.auto_increment else (
                f"{column.generated.lower()} generated" if column.generated else ""
            )
            column_table.add_row(
                column.name,
                column.type,
                "YES" if column.nullable else "NO",
                column.key,
                _stringify(column.default),
                extra,
            )
        console.print(column_table)

        if table.foreign_keys:
            fk_table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
            fk_table.add_column("From")
            fk_table.add_column("References")
            fk_table.add_column("On Delete")
            for fk in table.foreign_keys:
                fk_table.add_row(fk.column, f"{fk.referenced_table}.{fk.referenced_column}", fk.on_delete)
            console.print(fk_table)

        if table.referenced_by:
            ref_table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
            ref_table.add_column("Referenced By")
            ref_table.add_column("Column")
            ref_table.add_column("On Delete")
            for fk in table.referenced_by:
                ref_table.add_row(f"{fk.table}.{fk.column}", fk.referenced_column, fk.on_delete)
            console.print(ref_table)

        if table.row_count is not None:
            console.print(f"{table.row_count} rows\n")

    if not overview.tables:
        logger.info(f"No tables found in database {overview.database_path}.")


def _render_table(result: RowsResult, *, logger: Logger, stream: IO[str]) -> None:
    console = Console(file=stream, highlight=False, force_terminal=False)
    console.print(result.description, markup=False)

    table = Table(box=box.SIMPLE_HEAVY, show_header=bool(result.columns), header_style="bold")
    for column in result.columns:
        table.add_column(column or "")

    if result.rows:
        for row in result.rows:
            table.add_row(*[_stringify(cell) for cell in row])
    else:
        logger.info("Query returned zero rows.")

    console.print(table)


def _render_delimited(result: RowsResult, *, stream: IO[str], delimiter: str) -> None:
    writer = csv.writer(stream, delimiter=delimiter)
    if result.columns:
        writer.writerow(result.columns)
    for row in result.rows:
        writer.writerow(_stringify(cell) for cell in row)


def _render_json(result: RowsResult, *, stream: IO[str]) -> None:
    payload = {
        "table": result.table,
        "total": result.total,
        "page": result.page,
        "last_page": result.last_page,
        "per_page": result.per_page,
        "from": result.first_row,
        "to": result.last_row,
        "rows": [
            {column: _convert_json_value(value) for column, value in zip(result.columns, row)}
            for row in result.rows
        ],
    }
    json.dump(payload, stream, indent=2)
    stream.write("\n")


def _stringify(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _convert_json_value(value: object) -> object:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value
