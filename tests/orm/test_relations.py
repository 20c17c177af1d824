from __future__ import annotations

import pytest

from rowbind import ActiveRecord, Field, Parent
from rowbind.orm.relations import Children, RelationKind, registry
from rowbind.shared.exceptions import MethodNotFound


class PostRanking(ActiveRecord):
    """Declares a foreign key the database itself does not know about."""

    TABLE_NAME = "posts"
    FOREIGN_KEYS = [{"column": "views", "referenced_table": "teams", "referenced_column": "id"}]

    id = Field(int)
    views = Field(int)

    ranked_team = Parent("views", "Team")


def test_parent_relation_through_descriptor_and_getter(ctx, models) -> None:
    user = models.User(ctx, 1)

    assert user.team.name == "Core"
    assert user.get_team() is user.team
    assert user.get_parent("team_id").get_id() == 1
    assert user.get_parent_property("team_id", "name") == "Core"
    assert user.get_errors() == []


def test_parent_of_null_foreign_key_is_none(ctx, models) -> None:
    assert models.User(ctx, 3).team is None
    assert models.User(ctx, 3).get_parent_property("team_id", "name") is None


def test_shared_parents_are_one_instance_per_context(ctx, models) -> None:
    first = models.User(ctx, 1).team
    second = models.User(ctx, 2).team

    assert first is second
    assert ctx.shared_cache.get(models.Team, 1) is first
    assert len(ctx.shared_cache) == 1


def test_unshared_parent_is_cached_on_the_instance(ctx, models) -> None:
    post = models.Post(ctx, 1)
    author = post.author

    assert author.name == "Ada"
    assert post.author is author
    assert models.Post(ctx, 2).author is not author
    assert len(ctx.shared_cache) == 0


def test_children_relation(ctx, models) -> None:
    posts = models.User(ctx, 1).posts
    assert sorted(post.title for post in posts) == ["Again", "Hello"]
    assert all(isinstance(post, models.Post) for post in posts)

    members = models.Team(ctx, 1).users
    assert sorted(user.id for user in members) == [1, 2]
    assert len(models.Team(ctx, 2).users) == 0


def test_children_of_every_referencing_table(ctx, models) -> None:
    children = models.User(ctx, 1).get_children()

    assert sorted(type(child).__name__ for child in children) == ["Membership", "Post", "Post"]


def test_children_by_field_name(ctx, models) -> None:
    team = models.Team(ctx, 1)
    assert sorted(user.id for user in team.get_children("User", "team_id")) == [1, 2]
    assert sorted(member.user_id for member in team.get_children(models.Membership)) == [1, 2]


def test_relationship_problems_are_recorded_not_raised(ctx, models) -> None:
    user = models.User(ctx, 1)

    assert user.get_parent("name") is None
    assert "no foreign key" in user.get_last_error()

    assert user.get_parent("nope") is None
    assert "not declared" in user.get_last_error()

    assert len(user.get_children("NoSuchRecord")) == 0
    assert "NoSuchRecord" in user.get_last_error()

    assert len(user.get_errors()) == 3
    user.reset_errors()
    assert user.get_errors() == []


def test_children_of_unrelated_target_records_an_error(ctx, models) -> None:
    team = models.Team(ctx, 1)

    assert len(team.get_children(models.Post)) == 0
    assert team.get_last_error().startswith("No foreign key references table 'teams'")


def test_declared_foreign_keys_replace_introspection(ctx) -> None:
    ctx.connection.execute("UPDATE posts SET views = 2 WHERE id = 3")

    ranking = PostRanking(ctx, 3)

    assert ranking.ranked_team.name == "Empty"
    assert [fk.referenced_table for fk in ranking.outbound_foreign_keys()] == ["teams"]


def test_relations_are_read_only(ctx, models) -> None:
    user = models.User(ctx, 1)
    with pytest.raises(AttributeError):
        user.team = models.Team(ctx, 2)


def test_relation_declarations() -> None:
    relation = Children("Post", "user_id")
    assert relation.kind is RelationKind.CHILDREN
    assert relation.target == "Post"
    assert relation.field == "user_id"
    assert registry.resolve("Team").TABLE_NAME == "teams"
    assert registry.resolve(None, "users").__name__ == "User"
    assert registry.resolve("Missing") is None


def test_unknown_getter_raises_in_development(ctx, models) -> None:
    user = models.User(ctx, 1)

    with pytest.raises(MethodNotFound, match="get_nickname"):
        user.get_nickname()
    with pytest.raises(AttributeError):
        user.nickname


def test_unknown_getter_is_logged_in_production(context_factory, models, capfd) -> None:
    context = context_factory(ROWBIND_ENVIRONMENT="production")
    user = models.User(context, 1)

    assert user.get_nickname() is None
    assert user.get_nickname("any", argument=1) is None

    captured = capfd.readouterr()
    assert "User.get_nickname() doesn't exist" in captured.err


def test_update_refreshes_and_delete_evicts_shared_records(ctx, models) -> None:
    team = models.User(ctx, 1).team
    team.name = "Core Team"
    team.update()
    assert ctx.shared_cache.get(models.Team, 1) is team

    empty = models.Team(ctx, 2)
    ctx.shared_cache.put(models.Team, 2, empty)
    empty.delete()
    assert ctx.shared_cache.contains(models.Team, 2) is False
