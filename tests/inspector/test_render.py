from __future__ import annotations

import io
import json
from datetime import datetime
from pathlib import Path

from rowbind.database.types import ColumnDescriptor, ForeignKey
from rowbind.inspector import render
from rowbind.inspector.types import RowsResult, SchemaOverview, SchemaTable


class StubLogger:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def debug(self, message: str) -> None:
        self.messages.append(("debug", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))


def _rows(**overrides) -> RowsResult:
    values = {
        "table": "users",
        "columns": ("id", "name", "created_at"),
        "rows": [(1, "Ada", datetime(2024, 1, 2, 3, 4, 5)), (2, None, None)],
        "total": 2,
        "page": 1,
        "last_page": 1,
        "per_page": 20,
        "first_row": 1,
        "last_row": 2,
    }
    values.update(overrides)
    return RowsResult(**values)


def _overview(tables=None) -> SchemaOverview:
    users = SchemaTable(
        name="users",
        columns=[
            ColumnDescriptor(name="id", type="INTEGER", nullable=False, key="PRI", auto_increment=True, key_position=1),
            ColumnDescriptor(name="team_id", type="INTEGER", nullable=True),
            ColumnDescriptor(name="label", type="TEXT", nullable=True, generated="VIRTUAL"),
        ],
        primary_key=["id"],
        foreign_keys=[ForeignKey("users", "team_id", "teams", "id", on_delete="RESTRICT")],
        referenced_by=[ForeignKey("posts", "user_id", "users", "id", on_delete="CASCADE")],
        row_count=3,
    )
    return SchemaOverview(tables=[users] if tables is None else tables, database_path=Path("/tmp/rowbind.db"))


def test_render_rows_csv() -> None:
    buffer = io.StringIO()
    logger = StubLogger()

    render.render_rows(_rows(), output_format="csv", logger=logger, stream=buffer)

    output = buffer.getvalue().strip().splitlines()
    assert output[0] == "id,name,created_at"
    assert output[1] == "1,Ada,2024-01-02 03:04:05"
    assert output[2] == "2,,"
    assert logger.messages == []


def test_render_rows_tsv() -> None:
    buffer = io.StringIO()
    render.render_rows(_rows(), output_format="tsv", logger=StubLogger(), stream=buffer)
    assert buffer.getvalue().splitlines()[0] == "id\tname\tcreated_at"


def test_render_rows_json() -> None:
    buffer = io.StringIO()

    render.render_rows(_rows(), output_format="json", logger=StubLogger(), stream=buffer)

    data = json.loads(buffer.getvalue())
    assert data["total"] == 2
    assert data["from"] == 1
    assert data["rows"][0] == {"id": 1, "name": "Ada", "created_at": "2024-01-02T03:04:05"}
    assert data["rows"][1]["name"] is None


def test_render_rows_table_includes_description() -> None:
    buffer = io.StringIO()

    render.render_rows(_rows(), output_format="table", logger=StubLogger(), stream=buffer)

    output = buffer.getvalue()
    assert "users: rows 1-2 of 2 (page 1 of 1)" in output
    assert "Ada" in output


def test_render_rows_warns_past_last_page() -> None:
    logger = StubLogger()
    result = _rows(rows=[], page=4, first_row=None, last_row=None)

    render.render_rows(result, output_format="table", logger=logger, stream=io.StringIO())

    levels = [level for level, _ in logger.messages]
    assert "info" in levels
    assert ("warning", "Page 4 is past the last page (1).") in logger.messages


def test_render_schema_overview_json() -> None:
    buffer = io.StringIO()

    render.render_schema_overview(_overview(), output_format="json", logger=StubLogger(), stream=buffer)

    data = json.loads(buffer.getvalue())
    table = data["tables"][0]
    assert data["database"] == "/tmp/rowbind.db"
    assert table["primary_key"] == ["id"]
    assert table["columns"][0]["auto_increment"] is True
    assert table["columns"][2]["generated"] == "VIRTUAL"
    assert table["foreign_keys"] == [{"from": "team_id", "table": "teams", "to": "id", "on_delete": "RESTRICT"}]
    assert table["referenced_by"][0]["table"] == "posts"
    assert table["rows"] == 3


def test_render_schema_overview_table() -> None:
    buffer = io.StringIO()

    render.render_schema_overview(_overview(), output_format="table", logger=StubLogger(), stream=buffer)

    output = buffer.getvalue()
    assert "users" in output
    assert "auto increment" in output
    assert "virtual generated" in output
    assert "teams.id" in output
    assert "posts.user_id" in output
    assert "3 rows" in output


def test_render_empty_schema_overview_logs() -> None:
    logger = StubLogger()
    render.render_schema_overview(_overview([]), output_format="table", logger=logger, stream=io.StringIO())
    assert logger.messages == [("info", "No tables found in database /tmp/rowbind.db.")]
