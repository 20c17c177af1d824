from __future__ import annotations

from zoneinfo import ZoneInfo

import pytest

from rowbind.context import DatabaseContext, open_context
from rowbind.orm.query import Query
from rowbind.shared.exceptions import QueryError


def test_from_config_wires_every_component(app_config) -> None:
    context = DatabaseContext.from_config(app_config)
    try:
        assert context.connection.path == app_config.database.path
        assert context.connection.is_open is False
        assert context.schema.connection is context.connection
        assert context.coercer.timezone == ZoneInfo("UTC")
        assert context.is_development is True
        assert context.state == {}
        assert len(context.shared_cache) == 0
    finally:
        context.close()


def test_runtime_settings_reach_the_coercer(context_factory) -> None:
    context = context_factory(ROWBIND_TIMEZONE="Europe/Paris", ROWBIND_ENVIRONMENT="production")

    assert context.coercer.timezone == ZoneInfo("Europe/Paris")
    assert context.is_development is False


def test_table_starts_a_plain_row_query(ctx) -> None:
    query = ctx.table("teams")

    assert isinstance(query, Query)
    assert query.context is ctx
    assert query.order_by("id").pluck("name").all() == ["Core", "Empty"]


def test_transaction_commits(ctx) -> None:
    with ctx.transaction() as inner:
        assert inner is ctx
        ctx.table("teams").insert({"name": "Committed"})

    assert ctx.table("teams").where("name", "Committed").exists()


def test_transaction_rolls_back_on_error(ctx) -> None:
    with pytest.raises(RuntimeError):
        with ctx.transaction():
            ctx.table("teams").insert({"name": "Rolled back"})
            raise RuntimeError("boom")

    assert ctx.table("teams").where("name", "Rolled back").doesnt_exist()


def test_close_clears_caches_and_connection(ctx, models) -> None:
    models.User(ctx, 1).team
    ctx.state["anything"] = 1
    assert ctx.connection.is_open is True

    ctx.close()

    assert len(ctx.shared_cache) == 0
    assert ctx.state == {}
    assert ctx.connection.is_open is False


def test_open_context_closes_on_exit(app_config) -> None:
    with open_context(app_config) as context:
        assert context.table("users").count() == 3
        connection = context.connection

    assert connection.is_open is False


def test_query_without_context_cannot_execute() -> None:
    with pytest.raises(QueryError):
        Query(table="teams").get()
