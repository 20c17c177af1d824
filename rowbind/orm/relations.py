"""Relation declarations, the record class registry and the shared record cache."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .record import ActiveRecord


class RelationKind(str, Enum):
    PARENT = "parent"
    CHILDREN = "children"


class Relation:
    """Base descriptor for a declared relationship; resolved lazily on attribute access."""

    kind: RelationKind

    def __init__(self, target: type | str | None = None, field: str | None = None) -> None:
        self.target = target
        self.field = field
        self.name: str | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: ActiveRecord | None, owner: type) -> Any:
        if instance is None:
            return self
        return self.resolve(instance)

    def __set__(self, instance: ActiveRecord, value: Any) -> None:
        raise AttributeError(f"Relation '{self.name}' is read-only")

    def resolve(self, instance: ActiveRecord) -> Any:
        raise NotImplementedError


class Parent(Relation):
    """The record referenced by ``field`` through an outbound foreign key.

    ``group = Parent("group_id", "Group")``
    """

    kind = RelationKind.PARENT

    def __init__(self, field: str, target: type | str | None = None) -> None:
        super().__init__(target=target, field=field)

    def resolve(self, instance: ActiveRecord) -> Any:
        return instance.get_parent(self.field, self.target)


class Children(Relation):
    """Records of ``target`` whose foreign key points at this record.

    ``field`` narrows the lookup when the child table references this one more than once.
    """

    kind = RelationKind.CHILDREN

    def resolve(self, instance: ActiveRecord) -> Any:
        return instance.get_children(self.target, field=self.field)


class RecordRegistry:
    """Record classes by name and by table, filled in as subclasses are defined."""

    def __init__(self) -> None:
        self._by_name: dict[str, type[ActiveRecord]] = {}
        self._by_table: dict[str, list[type[ActiveRecord]]] = {}

    def register(self, cls: type[ActiveRecord]) -> None:
        self._by_name[cls.__name__] = cls
        self._by_name[f"{cls.__module__}.{cls.__qualname__}"] = cls
        classes = self._by_table.setdefault(cls.TABLE_NAME, [])
        # Redefinitions (module reloads, test modules) replace the older class.
        classes[:] = [known for known in classes if known.__qualname__ != cls.__qualname__ or known.__module__ != cls.__module__]
        classes.append(cls)

    def for_table(self, table: str) -> list[type[ActiveRecord]]:
        return list(self._by_table.get(table, ()))

    def resolve(
        self,
        target: type[ActiveRecord] | str | None,
        table: str | None = None,
    ) -> type[ActiveRecord] | None:
        """Return the class named by ``target``, else the first class mapped to ``table``."""
        if isinstance(target, type):
            return target
        if isinstance(target, str):
            return self._by_name.get(target)
        if table is not None:
            candidates = self._by_table.get(table)
            if candidates:
                return candidates[0]
        return None


registry = RecordRegistry()


class SharedRecordCache:
    """Loaded records keyed by ``(record class, key values)``, shared by every record of a context."""

    def __init__(self) -> None:
        self._entries: dict[tuple[type, tuple[Any, ...]], ActiveRecord] = {}

    @staticmethod
    def _key(cls: type, key: Any) -> tuple[type, tuple[Any, ...]]:
        values = tuple(key) if isinstance(key, (list, tuple)) else (key,)
        return cls, values

    def get(self, cls: type, key: Any) -> ActiveRecord | None:
        return self._entries.get(self._key(cls, key))

    def put(self, cls: type, key: Any, record: ActiveRecord) -> None:
        self._entries[self._key(cls, key)] = record

    def discard(self, cls: type, key: Any) -> None:
        self._entries.pop(self._key(cls, key), None)

    def contains(self, cls: type, key: Any) -> bool:
        return self._key(cls, key) in self._entries

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def records(self) -> Iterable[ActiveRecord]:
        return list(self._entries.values())
