from __future__ import annotations

import json
from datetime import datetime

import pytest

from rowbind.orm.collection import Collection
from rowbind.shared.exceptions import InvalidOperation


@pytest.fixture()
def rows() -> Collection:
    return Collection(
        [
            {"id": 1, "team": "core", "n": 1},
            {"id": 2, "team": "ops", "n": 5},
            {"id": 3, "team": "core", "n": 10},
        ]
    )


def test_empty_collection_accessors_return_none() -> None:
    empty = Collection()
    assert empty.first() is None
    assert empty.last() is None
    assert empty.shift() is None
    assert empty.pop() is None
    assert empty.first(default="fallback") == "fallback"
    assert empty.is_empty() is True
    assert empty.sum() == 0
    assert empty.max() is None


def test_shift_renumbers_integer_keys_and_pop_removes_last() -> None:
    items = Collection(["a", "b", "c"])
    assert items.shift() == "a"
    assert items.get(0) == "b"
    assert items.pop() == "c"
    assert items.all() == ["b"]


def test_push_merge_and_prepend_mutate_in_place() -> None:
    items = Collection([1, 2])
    assert items.push(3) is items
    items.merge([4, 5])
    items.prepend(0)
    assert items.all() == [0, 1, 2, 3, 4, 5]

    named = Collection({"a": 1})
    named.merge({"a": 2, "b": 3})
    assert named.get("a") == 2
    assert named.get("b") == 3
    named.forget("a")
    assert named.has("a") is False
    assert named.get_or_put("c", lambda: 9) == 9
    assert named.pull("c") == 9


def test_where_operators(rows: Collection) -> None:
    assert rows.where("n", ">", 3).pluck("id").all() == [2, 3]
    assert rows.where("team", "core").count() == 2
    assert rows.where("n", "===", "5").is_empty()
    assert rows.where("n", "!=", 5).pluck("id").all() == [1, 3]
    assert rows.first_where("team", "ops")["id"] == 2
    with pytest.raises(InvalidOperation):
        rows.where("n", "~", 1)


def test_filter_keeps_keys_and_values_renumber(rows: Collection) -> None:
    filtered = rows.filter(lambda row: row["n"] > 1)
    assert filtered.keys().all() == [1, 2]
    assert filtered.values().keys().all() == [0, 1]


def test_pluck_key_by_and_group_by(rows: Collection) -> None:
    assert rows.pluck("n", "id").all() == [1, 5, 10]
    assert rows.pluck("n", "id").get(3) == 10
    assert rows.key_by("id").get(2)["team"] == "ops"

    groups = rows.group_by("team")
    assert groups.keys().all() == ["core", "ops"]
    assert groups.get("core").pluck("id").all() == [1, 3]
    assert rows.count_by("team").get("core") == 2


def test_aggregates(rows: Collection) -> None:
    assert rows.sum("n") == 16
    assert rows.avg("n") == pytest.approx(16 / 3)
    assert rows.max("n") == 10
    assert rows.min("n") == 1
    assert Collection(["1", "2.5"]).sum() == 3.5


def test_aggregates_reject_unusable_values(rows: Collection) -> None:
    with pytest.raises(InvalidOperation):
        Collection(["a", "b"]).sum()
    with pytest.raises(InvalidOperation):
        rows.sum("missing")
    with pytest.raises(InvalidOperation):
        Collection().avg()
    with pytest.raises(InvalidOperation):
        Collection([{"n": 1}, {"n": "x"}]).sum("n")
    with pytest.raises(InvalidOperation):
        Collection([1, 2, [3]]).avg()


def test_slicing_and_paging() -> None:
    numbers = Collection(range(10))
    assert numbers.take(3).all() == [0, 1, 2]
    assert numbers.take(-2).all() == [8, 9]
    assert numbers.skip(8).all() == [8, 9]
    assert numbers.slice(2, 3).all() == [2, 3, 4]
    assert numbers.for_page(2, 4).all() == [4, 5, 6, 7]
    assert numbers.chunk(4).map(lambda chunk: chunk.all()).all() == [[0, 1, 2, 3], [4, 5, 6, 7], [8, 9]]
    assert Collection(range(5)).split(2).map(lambda group: group.all()).all() == [[0, 1, 2], [3, 4]]


def test_sorting_and_uniqueness(rows: Collection) -> None:
    assert rows.sort_by("n", descending=True).pluck("id").all() == [3, 2, 1]
    assert Collection([3, None, 1]).sort().all() == [1, 3, None]
    assert Collection([1, 1, 2, 3, 3]).unique().all() == [1, 2, 3]
    assert Collection([1, 1, 2, 3, 3]).duplicates().all() == [1, 3]
    assert Collection([1, 2, 3]).reverse().all() == [3, 2, 1]


def test_search_and_neighbours() -> None:
    letters = Collection(["a", "b", "c"])
    assert letters.search("b") == 1
    assert letters.search("z") is None
    assert letters.before("b") == "a"
    assert letters.after("b") == "c"
    assert letters.after("c") is None
    assert letters.contains("c") is True
    assert letters.contains(lambda letter: letter > "b") is True
    assert Collection([1, 2]).contains_strict("1") is False


def test_combine_flip_and_collapse() -> None:
    assert Collection(["a", "b"]).combine([1, 2]).all() == [1, 2]
    assert Collection(["a", "b"]).combine([1, 2]).get("b") == 2
    assert Collection({"a": "x"}).flip().get("x") == "a"
    assert Collection([[1, 2], Collection([3]), 4]).collapse().all() == [1, 2, 3, 4]
    with pytest.raises(InvalidOperation):
        Collection(["a"]).combine([1, 2])


def test_implode(rows: Collection) -> None:
    assert Collection(["a", "b"]).implode(", ") == "a, b"
    assert rows.implode("n", "-") == "1-5-10"


def test_each_stops_when_callback_returns_false() -> None:
    seen: list[int] = []
    Collection([1, 2, 3]).each(lambda value, key: seen.append(value) or value < 2)
    assert seen == [1, 2]


def test_cursor_iteration() -> None:
    items = Collection(["a", "b"])
    visited = []
    items.rewind()
    while items.valid():
        visited.append((items.key(), items.current()))
        items.next()
    assert visited == [(0, "a"), (1, "b")]
    assert items.current() is None


def test_export_to_plain_data_and_json() -> None:
    assert Collection([1, 2]).to_array() == [1, 2]
    assert Collection({"a": 1}).to_array() == {"a": 1}

    payload = Collection([{"at": datetime(2024, 1, 2, 3, 4, 5)}]).to_json()
    assert json.loads(payload) == [{"at": "2024-01-02 03:04:05"}]


def test_records_export_keyed_by_id(ctx, models) -> None:
    users = models.User.query(ctx).where_in("id", [1, 2]).order_by("id").get()

    exported = users.to_array()
    assert list(exported) == [1, 2]
    assert exported[1]["name"] == "Ada"
    assert users.to_list()[1]["name"] == "Linus"
    assert users.pluck("name").all() == ["Ada", "Linus"]
    assert users.where("active", True).pluck("id").all() == [1]
    assert users.contains(models.User(ctx, 2)) is True


def test_to_frame_builds_a_dataframe(rows: Collection) -> None:
    pytest.importorskip("pandas")
    frame = rows.to_frame()
    assert list(frame.columns) == ["id", "team", "n"]
    assert frame["n"].sum() == 16
