"""Schema inspection, row browsing and class scaffolding for the inspector CLI."""

from __future__ import annotations

import keyword
from collections.abc import Mapping
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from rowbind.context import DatabaseContext
from rowbind.database.types import ColumnDescriptor, ForeignKey
from rowbind.orm.coercion import FieldType, guess_field_type
from rowbind.shared.exceptions import QueryError, SchemaError
from rowbind.shared.utils import class_name_for_table, snake_case

from .types import RowsResult, SchemaOverview, SchemaTable

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
RECORD_TEMPLATE = "record.py.j2"

_JINJA_ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)

_FIELD_ARGUMENTS = {
    FieldType.STRING: "",
    FieldType.INT: "int",
    FieldType.FLOAT: "float",
    FieldType.BOOL: "bool",
    FieldType.DATETIME: '"datetime"',
    FieldType.LIST: '"list"',
    FieldType.JSON: '"json"',
}


def describe_schema(*, context: DatabaseContext, table_filter: str | None = None) -> SchemaOverview:
    """Collect columns, keys and foreign keys for every table (or just ``table_filter``)."""
    tables = context.connection.table_names()
    if table_filter:
        if table_filter not in tables:
            raise QueryError(f"Table '{table_filter}' does not exist in the database.")
        tables = [table_filter]

    schema = context.schema
    overview: list[SchemaTable] = []
    for table in tables:
        overview.append(
            SchemaTable(
                name=table,
                columns=schema.describe_table(table),
                primary_key=schema.table_keys(table),
                foreign_keys=schema.foreign_keys(table),
                referenced_by=schema.inverse_foreign_keys(table),
                row_count=context.table(table).count(),
            )
        )
    return SchemaOverview(tables=overview, database_path=context.config.database.path)


def fetch_rows(
    *,
    context: DatabaseContext,
    table: str,
    filters: Mapping[str, str] | None = None,
    order: str | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> RowsResult:
    """Return one page of ``table`` filtered by equality on ``filters``.

    ``order`` names a column; a leading ``-`` sorts descending.
    """
    schema = context.schema
    if not schema.table_exists(table):
        raise SchemaError(f"Table '{table}' does not exist in the database.")
    filters = dict(filters or {})
    schema.check_bindings(table, filters)

    query = context.table(table)
    for column, value in filters.items():
        query.where(column, value)
    if order:
        column = order.lstrip("-")
        schema.check_bindings(table, [column])
        query.order_by(column, "desc" if order.startswith("-") else "asc")

    result = query.paginate(per_page=per_page, page=page)
    columns = tuple(schema.column_names(table))
    rows = [tuple(item.get(column) for column in columns) for item in result.items]
    context.logger.debug(f"Fetched {len(rows)} of {result.total} row(s) from {table}")
    return RowsResult(
        table=table,
        columns=columns,
        rows=rows,
        total=result.total,
        page=result.current_page,
        last_page=result.last_page,
        per_page=result.per_page,
        first_row=result.from_,
        last_row=result.to,
    )


def scaffold_record(*, context: DatabaseContext, table: str, class_name: str | None = None) -> str:
    """Python source for an ActiveRecord subclass mapped onto ``table``."""
    schema = context.schema
    columns = schema.describe_table(table)
    parents = _parents(schema.foreign_keys(table))
    children = _children(table, schema.inverse_foreign_keys(table))

    imports = ["ActiveRecord", "Field"]
    if parents:
        imports.append("Parent")
    if children:
        imports.append("Children")

    template = _JINJA_ENV.get_template(RECORD_TEMPLATE)
    rendered = template.render(
        imports=sorted(imports),
        class_name=class_name or class_name_for_table(table),
        table=table,
        keys=schema.table_keys(table),
        fields=[_field(column) for column in columns],
        parents=parents,
        children=children,
    )
    return rendered.rstrip("\n") + "\n"


def _attribute_name(column: str) -> str:
    name = snake_case(column)
    if not name.isidentifier():
        name = "".join(char if char.isalnum() else "_" for char in name)
        if not name or name[0].isdigit():
            name = f"field_{name}"
    if keyword.iskeyword(name):
        name += "_"
    return name


def _field(column: ColumnDescriptor) -> dict[str, str]:
    name = _attribute_name(column.name)
    arguments = [_FIELD_ARGUMENTS[guess_field_type(column)]]
    if name != column.name:
        arguments.append(f'column="{column.name}"')
    return {"name": name, "arguments": ", ".join(argument for argument in arguments if argument)}


def _parents(foreign_keys: list[ForeignKey]) -> list[dict[str, str]]:
    parents = []
    for foreign_key in foreign_keys:
        column = foreign_key.column
        name = column[: -len("_id")] if column.endswith("_id") and len(column) > 3 else f"{column}_parent"
        parents.append(
            {
                "name": _attribute_name(name),
                "field": _attribute_name(column),
                "target": class_name_for_table(foreign_key.referenced_table),
            }
        )
    return parents


def _children(table: str, inverse: list[ForeignKey]) -> list[dict[str, str]]:
    children = []
    seen: set[str] = set()
    for foreign_key in inverse:
        name = _attribute_name(foreign_key.table)
        if name in seen or foreign_key.table == table:
            name = f"{name}_by_{_attribute_name(foreign_key.column)}"
        seen.add(name)
        children.append(
            {
                "name": name,
                "target": class_name_for_table(foreign_key.table),
                "field": foreign_key.column,
            }
        )
    return children
