"""Ordered, key-indexed container for records and rows.

Most operations return a new Collection. The mutating ones (``add``, ``push``, ``put``,
``forget``, ``merge``, ``prepend``, ``unshift``, ``get_or_put``) change the receiver and
return it for chaining; ``shift``, ``pop`` and ``pull`` change the receiver and return the
removed item.

On an empty collection ``first``, ``last``, ``shift`` and ``pop`` return ``None`` (or the
``default`` passed to ``first``/``last``); they never raise.
"""

from __future__ import annotations

import json
import math
import operator
from datetime import date, datetime
from numbers import Number
from typing import Any, Callable, Hashable, Iterable, Iterator, Mapping

try:
    import pandas as pd
except ImportError:  # pragma: no cover - pandas is an optional dependency
    pd = None  # type: ignore[assignment]

from rowbind.shared.exceptions import InvalidOperation

_MISSING = object()

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
    "===": lambda left, right: type(left) is type(right) and left == right,
    "!==": lambda left, right: type(left) is not type(right) or left != right,
}


def _ensure_pandas():
    """Return the pandas module or raise a helpful error if missing."""
    if pd is None:
        raise ImportError(
            "pandas is required for Collection.to_frame(). Install the 'frames' extra (pip install .[frames])."
        )
    return pd


def value_of(item: Any, key: Any) -> Any:
    """Read ``key`` from a record, mapping, sequence or plain object; callables are applied."""
    if callable(key):
        return key(item)
    reader = getattr(type(item), "value_of", None)
    if reader is not None:
        return reader(item, key)
    if isinstance(item, Mapping):
        return item.get(key)
    if isinstance(item, (list, tuple)) and isinstance(key, int):
        return item[key] if -len(item) <= key < len(item) else None
    return getattr(item, key, None)


def _has_value(item: Any, key: Any) -> bool:
    checker = getattr(type(item), "has_value", None)
    if checker is not None:
        return checker(item, key)
    if isinstance(item, Mapping):
        return key in item
    return hasattr(item, key)


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, Number):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def _number(value: Any) -> float | int:
    if isinstance(value, (int, float)):
        return value
    text = str(value)
    return int(text) if text.lstrip("+-").isdigit() else float(text)


def _plain(value: Any) -> Any:
    """Expand records and nested collections into plain structured data."""
    if isinstance(value, Collection):
        return value.to_array()
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict) and hasattr(value, "get_id"):
        return to_dict()
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is None, value)


class Collection:
    """Insertion-ordered container of items under integer or hashable keys."""

    def __init__(self, items: Iterable[Any] | Mapping[Hashable, Any] | None = None) -> None:
        if items is None:
            self._items: dict[Hashable, Any] = {}
        elif isinstance(items, Collection):
            self._items = dict(items._items)
        elif isinstance(items, Mapping):
            self._items = dict(items)
        else:
            self._items = dict(enumerate(items))
        self._position = 0

    # ------------------------------------------------------------------
    # Python protocol

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __getitem__(self, key: Hashable) -> Any:
        return self._items[key]

    def __setitem__(self, key: Hashable, value: Any) -> None:
        self._items[key] = value

    def __delitem__(self, key: Hashable) -> None:
        del self._items[key]

    def __contains__(self, value: Any) -> bool:
        return value in self._items.values()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Collection):
            return self._items == other._items
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Collection({self._items!r})"

    # ------------------------------------------------------------------
    # Cursor

    def current(self) -> Any:
        keys = list(self._items)
        return self._items[keys[self._position]] if self.valid() else None

    def key(self) -> Hashable | None:
        keys = list(self._items)
        return keys[self._position] if self.valid() else None

    def next(self) -> None:
        self._position += 1

    def rewind(self) -> None:
        self._position = 0

    def valid(self) -> bool:
        return 0 <= self._position < len(self._items)

    # ------------------------------------------------------------------
    # Internal helpers

    def _next_index(self) -> int:
        int_keys = [key for key in self._items if isinstance(key, int) and not isinstance(key, bool)]
        return max(int_keys) + 1 if int_keys else 0

    def _new(self, items: Iterable[Any] | Mapping[Hashable, Any] | None = None) -> Collection:
        return type(self)(items)

    def _reindexed(self, pairs: Iterable[tuple[Hashable, Any]]) -> dict[Hashable, Any]:
        """Renumber integer keys from zero and keep other keys, like an array merge."""
        result: dict[Hashable, Any] = {}
        index = 0
        for key, value in pairs:
            if isinstance(key, int) and not isinstance(key, bool):
                result[index] = value
                index += 1
            else:
                result[key] = value
        return result

    @staticmethod
    def _pairs(items: Any) -> list[tuple[Hashable, Any]]:
        if isinstance(items, Collection):
            return list(items._items.items())
        if isinstance(items, Mapping):
            return list(items.items())
        return list(enumerate(items))

    def _numeric_values(self, key: Any, operation: str) -> list[float | int]:
        first = self.first()
        if key is not None:
            if not _has_value(first, key):
                raise InvalidOperation(f"The key '{key}' is not valid for {operation}.")
            values = [value_of(item, key) for item in self]
        else:
            values = list(self)
        if not _is_numeric(values[0]):
            raise InvalidOperation(f"Values are not valid for {operation}.")
        try:
            return [_number(value) for value in values if value is not None]
        except (TypeError, ValueError) as exc:
            raise InvalidOperation(f"Values are not valid for {operation}.") from exc

    # ------------------------------------------------------------------
    # Mutators (return the receiver or the removed item)

    def add(self, item: Any) -> Collection:
        return self.push(item)

    def push(self, *values: Any) -> Collection:
        for value in values:
            self._items[self._next_index()] = value
        return self

    def put(self, key: Hashable, value: Any) -> Collection:
        self._items[key] = value
        return self

    def forget(self, *keys: Hashable) -> Collection:
        for key in keys:
            self._items.pop(key, None)
        return self

    def merge(self, items: Iterable[Any] | Mapping[Hashable, Any]) -> Collection:
        """Append integer-keyed items and overwrite string-keyed ones, in place."""
        for key, value in self._pairs(items):
            if isinstance(key, int) and not isinstance(key, bool):
                self._items[self._next_index()] = value
            else:
                self._items[key] = value
        return self

    def prepend(self, value: Any, key: Hashable | None = None) -> Collection:
        if key is None:
            self._items = self._reindexed([(0, value)] + list(self._items.items()))
        else:
            rest = [(existing, item) for existing, item in self._items.items() if existing != key]
            self._items = dict([(key, value)] + rest)
        return self

    def unshift(self, value: Any, key: Hashable | None = None) -> Collection:
        return self.prepend(value, key)

    def get_or_put(self, key: Hashable, value: Any) -> Any:
        if key not in self._items:
            self._items[key] = value() if callable(value) else value
        return self._items[key]

    def pull(self, key: Hashable, default: Any = None) -> Any:
        return self._items.pop(key, default)

    def shift(self) -> Any:
        if not self._items:
            return None
        first_key = next(iter(self._items))
        value = self._items.pop(first_key)
        self._items = self._reindexed(self._items.items())
        return value

    def pop(self) -> Any:
        if not self._items:
            return None
        last_key = next(reversed(self._items))
        return self._items.pop(last_key)

    # ------------------------------------------------------------------
    # Accessors

    def all(self) -> list[Any]:
        return list(self._items.values())

    def count(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def is_not_empty(self) -> bool:
        return bool(self._items)

    def contains_one_item(self) -> bool:
        return len(self._items) == 1

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._items.get(key, default)

    def has(self, *keys: Hashable) -> bool:
        return all(key in self._items for key in keys)

    def has_any(self, *keys: Hashable) -> bool:
        if not self._items:
            return False
        return any(key in self._items for key in keys)

    def keys(self) -> Collection:
        return self._new(list(self._items))

    def values(self) -> Collection:
        return self._new(list(self._items.values()))

    def first(self, callback: Callable[[Any], bool] | None = None, default: Any = None) -> Any:
        for value in self._items.values():
            if callback is None or callback(value):
                return value
        return default

    def last(self, callback: Callable[[Any], bool] | None = None, default: Any = None) -> Any:
        for value in reversed(list(self._items.values())):
            if callback is None or callback(value):
                return value
        return default

    def first_where(self, key: Any, operator_or_value: Any = _MISSING, value: Any = _MISSING) -> Any:
        return self.where(key, operator_or_value, value).first()

    def before(self, value: Any, strict: bool = False) -> Any:
        """The item preceding the first occurrence of ``value``."""
        values = self.all()
        position = self._locate(values, value, strict)
        if position is None or position == 0:
            return None
        return values[position - 1]

    def after(self, value: Any, strict: bool = False) -> Any:
        """The item following the first occurrence of ``value``."""
        values = self.all()
        position = self._locate(values, value, strict)
        if position is None or position + 1 >= len(values):
            return None
        return values[position + 1]

    @staticmethod
    def _locate(values: list[Any], value: Any, strict: bool) -> int | None:
        for position, item in enumerate(values):
            if callable(value) and value(item):
                return position
            if strict and type(item) is type(value) and item == value:
                return position
            if not strict and item == value:
                return position
        return None

    def search(self, value: Any, strict: bool = False) -> Hashable | None:
        for key, item in self._items.items():
            if callable(value):
                if value(item):
                    return key
            elif (type(item) is type(value) or not strict) and item == value:
                return key
        return None

    def contains(self, key: Any, value: Any = _MISSING) -> bool:
        """Membership test by value, by predicate, by record identity, or by ``key == value``."""
        if value is _MISSING:
            if callable(key):
                return any(key(item) for item in self)
            if hasattr(key, "get_id"):
                return any(
                    type(item) is type(key) and item.get_id() == key.get_id()
                    for item in self
                    if hasattr(item, "get_id")
                )
            return key in self._items.values()
        return any(value_of(item, key) == value for item in self)

    def contains_strict(self, key: Any, value: Any = _MISSING) -> bool:
        if value is _MISSING:
            if hasattr(key, "get_id"):
                return self.contains(key)
            return any(type(item) is type(key) and item == key for item in self)
        return any(
            type(found) is type(value) and found == value
            for found in (value_of(item, key) for item in self)
        )

    # ------------------------------------------------------------------
    # Transformations (new collections)

    def map(self, callback: Callable[[Any], Any]) -> Collection:
        return self._new({key: callback(value) for key, value in self._items.items()})

    def filter(self, callback: Callable[[Any], bool] | None = None) -> Collection:
        test = callback or bool
        return self._new({key: value for key, value in self._items.items() if test(value)})

    def reject(self, callback: Callable[[Any], bool]) -> Collection:
        return self._new({key: value for key, value in self._items.items() if not callback(value)})

    def each(self, callback: Callable[[Any, Hashable], Any]) -> Collection:
        """Call ``callback(item, key)`` for every item; stops early when it returns False."""
        for key, value in list(self._items.items()):
            if callback(value, key) is False:
                break
        return self

    def where(self, key: Any, operator_or_value: Any = _MISSING, value: Any = _MISSING) -> Collection:
        """``where("active")`` keeps truthy values; ``where(key, value)`` implies ``=``."""
        if operator_or_value is _MISSING:
            return self.filter(lambda item: bool(value_of(item, key)))
        if value is _MISSING:
            compare, expected = operator.eq, operator_or_value
        else:
            try:
                compare = _OPERATORS[operator_or_value]
            except KeyError as exc:
                raise InvalidOperation(f"Unsupported comparison operator '{operator_or_value}'.") from exc
            expected = value

        def _test(item: Any) -> bool:
            found = value_of(item, key)
            try:
                return compare(found, expected)
            except TypeError:
                return False

        return self.filter(_test)

    def where_in(self, key: Any, values: Iterable[Any]) -> Collection:
        wanted = list(values)
        return self.filter(lambda item: value_of(item, key) in wanted)

    def where_not_in(self, key: Any, values: Iterable[Any]) -> Collection:
        wanted = list(values)
        return self.filter(lambda item: value_of(item, key) not in wanted)

    def where_null(self, key: Any = None) -> Collection:
        if key is None:
            return self.filter(lambda item: item is None)
        return self.filter(lambda item: value_of(item, key) is None)

    def where_not_null(self, key: Any = None) -> Collection:
        if key is None:
            return self.filter(lambda item: item is not None)
        return self.filter(lambda item: value_of(item, key) is not None)

    def pluck(self, value: Any, key: Any = None) -> Collection:
        if key is None:
            return self._new([value_of(item, value) for item in self])
        return self._new({value_of(item, key): value_of(item, value) for item in self})

    def key_by(self, key: Any) -> Collection:
        return self._new({value_of(item, key): item for item in self})

    def group_by(self, key: Any) -> Collection:
        groups: dict[Hashable, Collection] = {}
        for item in self:
            group = value_of(item, key)
            if group not in groups:
                groups[group] = self._new()
            groups[group].push(item)
        return self._new(groups)

    def count_by(self, key: Any = None) -> Collection:
        counts: dict[Hashable, int] = {}
        for item in self:
            bucket = item if key is None else value_of(item, key)
            counts[bucket] = counts.get(bucket, 0) + 1
        return self._new(counts)

    def duplicates(self, key: Any = None) -> Collection:
        seen: list[Any] = []
        found: dict[Hashable, Any] = {}
        for position, item in self._items.items():
            probe = item if key is None else value_of(item, key)
            if probe in seen:
                found[position] = probe
            else:
                seen.append(probe)
        return self._new(found)

    def unique(self, key: Any = None) -> Collection:
        seen: list[Any] = []
        kept: dict[Hashable, Any] = {}
        for position, item in self._items.items():
            probe = item if key is None else value_of(item, key)
            if probe not in seen:
                seen.append(probe)
                kept[position] = item
        return self._new(kept)

    def diff(self, values: Iterable[Any]) -> Collection:
        other = list(values)
        return self._new({key: item for key, item in self._items.items() if item not in other})

    def only(self, *keys: Hashable) -> Collection:
        return self._new({key: self._items[key] for key in keys if key in self._items})

    def flip(self) -> Collection:
        return self._new({value: key for key, value in self._items.items()})

    def combine(self, values: Iterable[Any]) -> Collection:
        """Use this collection's values as keys for ``values``."""
        paired = list(values)
        if len(paired) != len(self._items):
            raise InvalidOperation("Both collections must have the same number of items to combine.")
        return self._new(dict(zip(self._items.values(), paired)))

    def concat(self, values: Iterable[Any] | Mapping[Hashable, Any]) -> Collection:
        merged = self._new(self._items)
        for value in (values.values() if isinstance(values, Mapping) else values):
            merged.push(value)
        return merged

    def collapse(self) -> Collection:
        items: list[Any] = []
        for item in self:
            if isinstance(item, Collection):
                items.extend(item.all())
            elif isinstance(item, (list, tuple)):
                items.extend(item)
            else:
                items.append(item)
        return self._new(items)

    def chunk(self, size: int) -> Collection:
        if size < 1:
            return self._new()
        values = self.all()
        return self._new([self._new(values[start : start + size]) for start in range(0, len(values), size)])

    def split(self, number_of_groups: int) -> Collection:
        """Split into ``number_of_groups`` collections of as even a size as possible."""
        groups = self._new()
        if not self._items or number_of_groups < 1:
            return groups
        values = self.all()
        group_size, remain = divmod(len(values), number_of_groups)
        start = 0
        for index in range(number_of_groups):
            size = group_size + (1 if index < remain else 0)
            if size:
                groups.push(self._new(values[start : start + size]))
                start += size
        return groups

    def slice(self, offset: int, length: int | None = None) -> Collection:
        pairs = list(self._items.items())
        if offset < 0:
            offset = max(len(pairs) + offset, 0)
        if length is None:
            selected = pairs[offset:]
        elif length < 0:
            selected = pairs[offset:length]
        else:
            selected = pairs[offset : offset + length]
        return self._new(dict(selected))

    def skip(self, count: int) -> Collection:
        return self.slice(count)

    def take(self, limit: int) -> Collection:
        if limit < 0:
            return self.slice(limit, abs(limit))
        return self.slice(0, limit)

    def for_page(self, page: int, per_page: int) -> Collection:
        page = max(page, 1)
        return self.slice((page - 1) * per_page, per_page)

    def reverse(self) -> Collection:
        return self._new(dict(reversed(list(self._items.items()))))

    def sort(self, key: Callable[[Any], Any] | None = None) -> Collection:
        """Sort by value (or by ``key(value)``), keeping the original keys."""
        extract = key or (lambda value: value)
        ordered = sorted(self._items.items(), key=lambda pair: _sort_key(extract(pair[1])))
        return self._new(dict(ordered))

    def sort_desc(self, key: Callable[[Any], Any] | None = None) -> Collection:
        return self.sort(key).reverse()

    def sort_by(self, key: Any, descending: bool = False) -> Collection:
        ordered = sorted(
            self._items.items(),
            key=lambda pair: _sort_key(value_of(pair[1], key)),
            reverse=descending,
        )
        return self._new(dict(ordered))

    # ------------------------------------------------------------------
    # Aggregates

    def sum(self, key: Any = None) -> float | int:
        if not self._items:
            return 0
        return sum(self._numeric_values(key, "sum"))

    def avg(self, key: Any = None) -> float:
        if not self._items:
            raise InvalidOperation("Cannot average an empty collection.")
        values = self._numeric_values(key, "avg")
        if not values:
            raise InvalidOperation("Cannot average a collection without values.")
        return math.fsum(values) / len(values)

    def max(self, key: Any = None) -> Any:
        values = [value for value in (self.pluck(key) if key is not None else self) if value is not None]
        return max(values) if values else None

    def min(self, key: Any = None) -> Any:
        values = [value for value in (self.pluck(key) if key is not None else self) if value is not None]
        return min(values) if values else None

    def implode(self, value: Any, glue: str | None = None) -> str:
        """``implode(", ")`` joins scalar items; ``implode("name", ", ")`` joins a field."""
        if glue is None:
            return str(value).join(str(item) for item in self)
        return glue.join("" if item is None else str(item) for item in self.pluck(value))

    # ------------------------------------------------------------------
    # Export

    def to_array(self) -> dict[Hashable, Any] | list[Any]:
        """Plain data; records become dicts keyed by their id when the key is simple."""
        result: dict[Hashable, Any] = {}
        for key, item in self._items.items():
            plain = _plain(item)
            has_simple_key = getattr(type(item), "has_simple_key", None)
            if has_simple_key is not None and has_simple_key() and item.get_id() is not None:
                result[item.get_id()] = plain
            else:
                result[key] = plain
        if list(result) == list(range(len(result))):
            return list(result.values())
        return result

    def to_list(self) -> list[Any]:
        return [_plain(item) for item in self]

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_array(), default=_json_default, **kwargs)

    def to_frame(self):
        """Return the items as a pandas DataFrame (one row per item)."""
        pandas = _ensure_pandas()
        return pandas.DataFrame(self.to_list())
