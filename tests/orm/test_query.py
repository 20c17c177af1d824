from __future__ import annotations

import pytest

from rowbind.orm.grammar import raw
from rowbind.orm.query import Page, Query
from rowbind.shared.exceptions import QueryError


def users() -> Query:
    return Query(table="users")


def test_simple_where_compiles_to_placeholders() -> None:
    query = users().where("id", 1)
    assert query.to_sql() == "SELECT * FROM `users` WHERE `id` = ?"
    assert query.get_bindings() == [1]


def test_bindings_follow_clause_order() -> None:
    query = (
        users()
        .select_raw("? AS marker", ["m"])
        .join("posts", lambda join: join.on("posts.user_id", "=", "users.id").where("posts.views", ">", 1))
        .where("users.active", 1)
        .group_by("users.id")
        .having("total", ">", 2)
        .order_by_raw("CASE WHEN users.name = ? THEN 0 ELSE 1 END", ["Ada"])
        .limit(10)
        .offset(5)
    )

    assert query.to_sql() == (
        "SELECT ? AS marker FROM `users` "
        "INNER JOIN `posts` ON `posts`.`user_id` = `users`.`id` AND `posts`.`views` > ? "
        "WHERE `users`.`active` = ? GROUP BY `users`.`id` HAVING `total` > ? "
        "ORDER BY CASE WHEN users.name = ? THEN 0 ELSE 1 END LIMIT 10 OFFSET 5"
    )
    assert query.get_bindings() == ["m", 1, 1, 2, "Ada"]


def test_bound_value_count_matches_value_bearing_clauses() -> None:
    query = (
        users()
        .join("posts", "posts.user_id", "=", "users.id")
        .where("name", "Ada")
        .order_by("name")
        .limit(10)
        .offset(5)
    )
    assert query.to_sql().count("?") == len(query.get_bindings()) == 1


def test_empty_in_lists_compile_to_constant_predicates() -> None:
    assert users().where_in("id", []).to_sql() == "SELECT * FROM `users` WHERE 0 = 1"
    assert users().where_not_in("id", []).to_sql() == "SELECT * FROM `users` WHERE 1 = 1"
    assert users().where_in("id", []).get_bindings() == []


def test_nested_conditions_are_parenthesized() -> None:
    query = users().where("active", 1).where(lambda q: q.where("name", "Ada").or_where("name", "Linus"))
    assert query.to_sql() == "SELECT * FROM `users` WHERE `active` = ? AND (`name` = ? OR `name` = ?)"
    assert query.get_bindings() == [1, "Ada", "Linus"]


def test_mapping_conditions() -> None:
    query = users().where({"team_id": 1, "active": 1})
    assert query.to_sql() == "SELECT * FROM `users` WHERE `team_id` = ? AND `active` = ?"

    either = users().where("id", 1).or_where({"team_id": 2, "active": 0})
    assert either.to_sql() == "SELECT * FROM `users` WHERE `id` = ? OR (`team_id` = ? AND `active` = ?)"
    assert either.get_bindings() == [1, 2, 0]


def test_none_values_become_null_checks() -> None:
    assert users().where("email", None).to_sql() == "SELECT * FROM `users` WHERE `email` IS NULL"
    assert users().where("email", "!=", None).to_sql() == "SELECT * FROM `users` WHERE `email` IS NOT NULL"
    assert users().where_not_null("email").or_where_null("team_id").to_sql() == (
        "SELECT * FROM `users` WHERE `email` IS NOT NULL OR `team_id` IS NULL"
    )


def test_or_variants_of_list_and_range_conditions() -> None:
    query = (
        users()
        .where("active", 1)
        .or_where_in("id", [1, 2])
        .or_where_not_in("team_id", [3])
        .or_where_between("score", [1, 2])
        .where_not_between("score", [5, 6])
    )
    assert query.to_sql() == (
        "SELECT * FROM `users` WHERE `active` = ? OR `id` IN (?, ?) OR `team_id` NOT IN (?) "
        "OR `score` BETWEEN ? AND ? AND `score` NOT BETWEEN ? AND ?"
    )
    assert query.get_bindings() == [1, 1, 2, 3, 1, 2, 5, 6]


def test_or_variants_of_column_raw_and_negated_conditions() -> None:
    query = (
        users()
        .where("id", 1)
        .or_where_column("name", "email")
        .or_where_not("active", 0)
        .or_where_raw("score > ?", [5])
        .or_where_not_null("email")
    )
    assert query.to_sql() == (
        "SELECT * FROM `users` WHERE `id` = ? OR `name` = `email` OR NOT (`active` = ?) "
        "OR score > ? OR `email` IS NOT NULL"
    )
    assert query.get_bindings() == [1, 0, 5]


def test_join_kinds() -> None:
    query = (
        users()
        .right_join("teams", "teams.id", "=", "users.team_id")
        .cross_join("posts")
        .join_raw("LEFT JOIN memberships m ON m.user_id = users.id AND m.role = ?", ["owner"])
    )
    assert query.to_sql() == (
        "SELECT * FROM `users` RIGHT JOIN `teams` ON `teams`.`id` = `users`.`team_id` "
        "CROSS JOIN `posts` LEFT JOIN memberships m ON m.user_id = users.id AND m.role = ?"
    )
    assert query.get_bindings() == ["owner"]

    either = users().join("teams", lambda join: join.on("teams.id", "users.team_id").or_on("teams.name", "=", "users.name"))
    assert either.to_sql() == (
        "SELECT * FROM `users` INNER JOIN `teams` ON `teams`.`id` = `users`.`team_id` OR `teams`.`name` = `users`.`name`"
    )


def test_raw_grouping_and_or_havings() -> None:
    query = (
        users()
        .group_by_raw("strftime('%Y', created_at)")
        .having("total", ">", 1)
        .or_having("total", "<", 0)
        .or_having_raw("MAX(score) > ?", [9])
    )
    assert query.to_sql() == (
        "SELECT * FROM `users` GROUP BY strftime('%Y', created_at) "
        "HAVING `total` > ? OR `total` < ? OR MAX(score) > ?"
    )
    assert query.get_bindings() == [1, 0, 9]


def test_negated_and_or_exists() -> None:
    query = users().where_not_exists(
        lambda sub: sub.table("posts").where_column("posts.user_id", "users.id")
    ).or_where_exists(Query(table="memberships").where("role", "owner"))

    assert query.to_sql() == (
        "SELECT * FROM `users` WHERE NOT EXISTS (SELECT * FROM `posts` WHERE `posts`.`user_id` = `users`.`id`) "
        "OR EXISTS (SELECT * FROM `memberships` WHERE `role` = ?)"
    )
    assert query.get_bindings() == ["owner"]


def test_unwrapped_identifiers_and_oldest() -> None:
    query = users().without_wrapping().select("u.id").where("u.name", "Ada")
    assert query.to_sql() == "SELECT u.id FROM users WHERE u.name = ?"
    assert users().oldest().to_sql() == "SELECT * FROM `users` ORDER BY `created_at` ASC"


def test_illegal_operators_and_directions_are_rejected() -> None:
    with pytest.raises(QueryError):
        users().where("id", "~~", 1)
    with pytest.raises(QueryError):
        users().order_by("id", "sideways")
    with pytest.raises(QueryError):
        users().where_between("id", [1])
    with pytest.raises(QueryError):
        users().where("id")


def test_word_operators_are_upper_cased() -> None:
    assert users().where("name", "like", "A%").to_sql() == "SELECT * FROM `users` WHERE `name` LIKE ?"


def test_subqueries() -> None:
    query = users().where_in("id", lambda q: q.table("posts").select("user_id").where("views", ">", 3))
    assert query.to_sql() == (
        "SELECT * FROM `users` WHERE `id` IN (SELECT `user_id` FROM `posts` WHERE `views` > ?)"
    )
    assert query.get_bindings() == [3]

    exists = users().where_exists(
        Query(table="posts").select(raw("1")).where_column("posts.user_id", "users.id")
    )
    assert exists.to_sql() == (
        "SELECT * FROM `users` WHERE EXISTS (SELECT 1 FROM `posts` WHERE `posts`.`user_id` = `users`.`id`)"
    )


def test_between_and_not() -> None:
    query = users().where_between("score", [1, 5]).where_not("name", "Ada")
    assert query.to_sql() == "SELECT * FROM `users` WHERE `score` BETWEEN ? AND ? AND NOT (`name` = ?)"
    assert query.get_bindings() == [1, 5, "Ada"]


def test_unions_drop_branch_ordering_and_keep_binding_order() -> None:
    first = users().select("id").where("id", 1)
    second = users().select("id").where("id", 2).order_by("id")
    query = first.union(second)
    assert query.to_sql() == "SELECT `id` FROM `users` WHERE `id` = ? UNION SELECT `id` FROM `users` WHERE `id` = ?"
    assert query.get_bindings() == [1, 2]
    assert users().union_all(users()).to_sql() == "SELECT * FROM `users` UNION ALL SELECT * FROM `users`"


def test_limit_offset_and_paging_clauses() -> None:
    assert users().offset(5).to_sql() == "SELECT * FROM `users` LIMIT -1 OFFSET 5"
    assert users().for_page(2, 10).to_sql() == "SELECT * FROM `users` LIMIT 10 OFFSET 10"
    assert users().take(3).to_sql() == "SELECT * FROM `users` LIMIT 3"


def test_aliases_distinct_and_locks() -> None:
    assert users().select("name as label").distinct().to_sql() == "SELECT DISTINCT `name` AS `label` FROM `users`"
    assert users().lock_for_update().to_sql().endswith("FOR UPDATE")
    assert users().shared_lock().to_sql().endswith("LOCK IN SHARE MODE")


def test_alias_is_only_split_outside_parentheses() -> None:
    assert users().select("CAST(score AS INTEGER)").to_sql() == "SELECT CAST(score AS INTEGER) FROM `users`"
    assert (
        users().select("CAST(score AS INTEGER) as whole").to_sql()
        == "SELECT CAST(score AS INTEGER) AS `whole` FROM `users`"
    )


def test_ordering_helpers() -> None:
    assert users().latest().to_sql() == "SELECT * FROM `users` ORDER BY `created_at` DESC"
    assert users().order_by("name").reorder("id", "desc").to_sql() == "SELECT * FROM `users` ORDER BY `id` DESC"
    assert users().in_random_order().to_sql() == "SELECT * FROM `users` ORDER BY RANDOM()"


def test_when_applies_callback_conditionally() -> None:
    assert users().when(None, lambda q, value: q.where("id", value)).to_sql() == "SELECT * FROM `users`"
    assert users().when(7, lambda q, value: q.where("id", value)).get_bindings() == [7]


def test_clone_does_not_share_clause_lists() -> None:
    base = users().where("active", 1)
    branch = base.clone().where("id", 2)
    assert base.get_bindings() == [1]
    assert branch.get_bindings() == [1, 2]


def test_to_raw_sql_inlines_bindings() -> None:
    assert users().where("name", "O'Neil").to_raw_sql() == "SELECT * FROM `users` WHERE `name` = 'O''Neil'"


def test_unbound_query_cannot_execute() -> None:
    with pytest.raises(QueryError, match="not bound"):
        users().get()


# ----------------------------------------------------------------------
# Execution against the seeded database


def test_get_first_find_value_and_pluck(ctx) -> None:
    rows = ctx.table("users").order_by("id").get()
    assert rows.pluck("name").all() == ["Ada", "Linus", "Grace"]
    assert ctx.table("users").where("team_id", 1).order_by_desc("id").first()["name"] == "Linus"
    assert ctx.table("users").find(3)["name"] == "Grace"
    assert ctx.table("users").find(99) is None
    assert ctx.table("users").where("id", 2).value("name") == "Linus"
    assert ctx.table("users").order_by("id").pluck("name", "id").get(3) == "Grace"
    assert ctx.table("users").order_by("id").get("id", "name").first() == {"id": 1, "name": "Ada"}


def test_model_queries_hydrate_records(ctx, models) -> None:
    found = models.User.query(ctx).where("team_id", 1).order_by("id").get()
    assert [user.id for user in found] == [1, 2]
    assert all(isinstance(user, models.User) and user.is_loaded() for user in found)
    assert models.User.query(ctx).find(3).name == "Grace"


def test_aggregates(ctx) -> None:
    posts = ctx.table("posts")
    assert posts.count() == 3
    assert posts.sum("views") == 15
    assert posts.avg("views") == 5
    assert posts.min("views") == 0
    assert posts.max("views") == 10
    assert ctx.table("posts").where("views", ">", 100).sum("views") == 0
    assert ctx.table("posts").order_by("id").limit(1).count() == 3


def test_aggregates_over_grouped_distinct_and_unioned_queries(ctx) -> None:
    assert ctx.table("posts").select("user_id").group_by("user_id").count() == 2
    assert ctx.table("posts").select("user_id").distinct().count() == 2
    union = ctx.table("users").select("id").where("id", 1).union(ctx.table("users").select("id").where("id", 2))
    assert union.count() == 2
    assert len(union.get()) == 2


def test_exists(ctx) -> None:
    assert ctx.table("users").where("name", "Ada").exists() is True
    assert ctx.table("users").where("name", "Nobody").doesnt_exist() is True


def test_exists_over_unioned_grouped_and_distinct_queries(ctx) -> None:
    union = ctx.table("users").select("id", "name").where("id", 1).union(ctx.table("teams").select("id", "name"))
    assert union.exists() is True
    assert union.doesnt_exist() is False

    nothing = (
        ctx.table("users").select("id", "name").where("id", 99)
        .union(ctx.table("teams").select("id", "name").where("id", 99))
    )
    assert nothing.exists() is False
    assert nothing.doesnt_exist() is True

    assert ctx.table("posts").select("user_id").group_by("user_id").having("user_id", ">", 1).exists() is True
    assert ctx.table("posts").select("user_id").distinct().where("views", ">", 100).exists() is False


def test_joins_execute(ctx) -> None:
    rows = (
        ctx.table("posts")
        .select("posts.title", "users.name as author")
        .join("users", "users.id", "=", "posts.user_id")
        .where("posts.views", ">", 0)
        .order_by("posts.id")
        .get()
    )
    assert rows.all() == [{"title": "Hello", "author": "Ada"}, {"title": "Again", "author": "Ada"}]

    counted = (
        ctx.table("users")
        .select("users.name")
        .select_raw("COUNT(posts.id) AS total")
        .left_join("posts", "posts.user_id", "=", "users.id")
        .group_by("users.id")
        .having("total", ">", 0)
        .order_by("users.id")
        .get()
    )
    assert counted.pluck("total", "name").to_array() == {"Ada": 2, "Linus": 1}


def test_paginate(ctx) -> None:
    ctx.connection.execute("CREATE TABLE ticks (id INTEGER PRIMARY KEY, label TEXT)")
    assert ctx.table("ticks").insert([{"label": f"tick {n}"} for n in range(25)]) == 25

    page = ctx.table("ticks").order_by("id").paginate(per_page=10, page=2)
    assert isinstance(page, Page)
    assert page.total == 25
    assert page.last_page == 3
    assert len(page.items) == 10
    assert page.from_ == 11
    assert page.to == 20
    assert page.items.first()["id"] == 11
    assert page.has_more_pages is True

    past_end = ctx.table("ticks").paginate(per_page=10, page=4)
    assert past_end.items.is_empty()
    assert past_end.from_ is None and past_end.to is None


def test_paginate_defaults_to_configured_page_size(context_factory) -> None:
    context = context_factory(ROWBIND_PER_PAGE="2")
    page = context.table("users").paginate()
    assert page.per_page == 2
    assert page.last_page == 2


def test_chunk_walks_every_page(ctx) -> None:
    seen: list[list[int]] = []
    completed = ctx.table("users").order_by("id").chunk(2, lambda rows, page: seen.append(rows.pluck("id").all()))
    assert completed is True
    assert seen == [[1, 2], [3]]

    stopped = ctx.table("users").order_by("id").chunk(1, lambda rows, page: False)
    assert stopped is False


def test_writes(ctx) -> None:
    new_id = ctx.table("teams").insert_get_id({"name": "Ops"})
    assert new_id == 3
    assert ctx.table("teams").where("id", new_id).update({"name": "Platform"}) == 1
    assert ctx.table("teams").find(new_id)["name"] == "Platform"
    assert ctx.table("teams").where("id", new_id).delete() == 1
    assert ctx.table("teams").count() == 2
    assert ctx.table("teams").update({}) == 0
