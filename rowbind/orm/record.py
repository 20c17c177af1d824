"""ActiveRecord: typed entities bound to one table each."""

from __future__ import annotations

import copy
import json
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Mapping, Sequence

from rowbind.database.connection import ResultShape
from rowbind.database.types import ColumnType, ForeignKey
from rowbind.shared.exceptions import (
    ConstraintError,
    KeyNotPopulatedError,
    MethodNotFound,
    NotFoundError,
    SchemaError,
    ValidationError,
)

from .coercion import STORAGE_FORMAT, FieldType
from .collection import Collection, _json_default
from .fields import Field, FieldSpec
from .query import Query
from .relations import Relation, registry

if TYPE_CHECKING:
    from rowbind.context import DatabaseContext

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"


def _loosely_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return not left and not right
    if left == right:
        return True
    scalars = (int, float, str)
    if isinstance(left, scalars) and isinstance(right, scalars):
        try:
            return float(left) == float(right)
        except ValueError:
            return False
    return False


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _as_foreign_key(table: str, declared: ForeignKey | Mapping[str, Any]) -> ForeignKey:
    if isinstance(declared, ForeignKey):
        return declared
    return ForeignKey(
        table=table,
        column=declared["column"],
        referenced_table=declared["referenced_table"],
        referenced_column=declared["referenced_column"],
        on_update=str(declared.get("on_update", "NO ACTION")).upper(),
        on_delete=str(declared.get("on_delete", "NO ACTION")).upper(),
    )


class ActiveRecord:
    """Base class for entities mapped onto a table.

    Subclasses declare ``TABLE_NAME``, ``TABLE_KEY`` (a column or a tuple of columns) and
    one :class:`Field` per bound column::

        class User(ActiveRecord):
            TABLE_NAME = "users"
            id = Field(int)
            group_id = Field(int, shared=True)
            name = Field()
            group = Parent("group_id", "Group")

    An instance is built from a context and optionally a row mapping (hydration) or a key
    value (load). Columns of a hydrated row without a declared field land in ``extras``.
    """

    TABLE_NAME: ClassVar[str] = ""
    TABLE_KEY: ClassVar[str | tuple[str, ...]] = "id"
    # Optional explicit structure: a ColumnDescriptor list or {column: (type, null, key, default, extra)}.
    TABLE_DESCRIPTION: ClassVar[Any] = None
    # Optional static outbound foreign keys; skips introspection in get_parent().
    FOREIGN_KEYS: ClassVar[Sequence[ForeignKey | Mapping[str, Any]]] = ()

    _fields: ClassVar[dict[str, Field]] = {}
    _relations: ClassVar[dict[str, Relation]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        fields: dict[str, Field] = {}
        relations: dict[str, Relation] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, Field):
                    fields[name] = value
                elif isinstance(value, Relation):
                    relations[name] = value
        columns: dict[str, str] = {}
        for name, declared in fields.items():
            if declared.column in columns:
                raise SchemaError(
                    f"{cls.__name__} binds both '{columns[declared.column]}' and '{name}' to column '{declared.column}'"
                )
            columns[declared.column] = name
        cls._fields = fields
        cls._relations = relations
        if cls.TABLE_NAME:
            registry.register(cls)

    def __init__(self, context: DatabaseContext, init: Any = None) -> None:
        self._ctx = context
        self._values: dict[str, Any] = {}
        self._cache: dict[str, Any] = {}
        self._errors: list[str] = []
        self._touched: list[str] = []
        self._extras: dict[str, Any] = {}
        self._loaded = False
        self._hydrating = False
        self._prepare_schema()
        self.init()
        if init is None:
            return
        if isinstance(init, Mapping):
            self.populate(init)
            self._loaded = True
        else:
            self._load(init)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.TABLE_NAME} id={self.get_id()!r}>"

    def __getattr__(self, name: str) -> Any:
        # Only reached for attributes that do not exist.
        if name.startswith("_") or not name.startswith("get_"):
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
        relation = type(self)._relations.get(name[4:])
        if relation is not None:
            return lambda: relation.resolve(self)
        message = f"Method {type(self).__name__}.{name}() doesn't exist"
        context = self.__dict__.get("_ctx")
        if context is None or context.is_development:
            raise MethodNotFound(message)
        context.logger.error(message)
        return lambda *args, **kwargs: None

    def __copy__(self) -> ActiveRecord:
        clone = type(self).__new__(type(self))
        clone.__dict__.update(self.__dict__)
        clone._values = dict(self._values)
        clone._extras = dict(self._extras)
        clone._touched = []
        clone._errors = []
        clone._cache = {}
        clone._loaded = False
        for name in self.key_fields():
            clone._values[name] = None
        return clone

    def clone(self) -> ActiveRecord:
        """Copy with key fields reset, ready to be created as a new row."""
        return copy.copy(self)

    # ------------------------------------------------------------------
    # Hooks

    def init(self) -> None:
        """Called once per instance before it is populated or loaded."""

    def before_create(self) -> None:
        pass

    def after_create(self) -> None:
        pass

    def before_update(self) -> None:
        pass

    def after_update(self) -> None:
        pass

    def before_delete(self) -> None:
        pass

    def after_delete(self) -> None:
        pass

    def before_store(self) -> None:
        pass

    def after_store(self) -> None:
        pass

    def before_populate(self, row: dict[str, Any]) -> None:
        """May edit ``row`` before its values are cast into fields."""

    def after_populate(self, row: dict[str, Any]) -> None:
        pass

    def before_prepare_data(self, draft: dict[str, Any]) -> None:
        pass

    def after_prepare_data(self, draft: dict[str, Any]) -> None:
        """May edit the column -> storage value mapping about to be written."""

    # ------------------------------------------------------------------
    # Declaration surface

    @classmethod
    def binds(cls) -> dict[str, str]:
        """Field name -> column name."""
        return {name: declared.column for name, declared in cls._fields.items()}

    @classmethod
    def field_types(cls) -> dict[str, FieldType]:
        return {name: declared.type for name, declared in cls._fields.items()}

    @classmethod
    def relations(cls) -> dict[str, Relation]:
        return dict(cls._relations)

    @classmethod
    def key_columns(cls) -> tuple[str, ...]:
        return (cls.TABLE_KEY,) if isinstance(cls.TABLE_KEY, str) else tuple(cls.TABLE_KEY)

    @classmethod
    def mapped_field(cls, column: str) -> str | None:
        for name, declared in cls._fields.items():
            if declared.column == column:
                return name
        return None

    @classmethod
    def key_fields(cls) -> list[str]:
        names = []
        for column in cls.key_columns():
            name = cls.mapped_field(column)
            if name is None:
                raise SchemaError(f"{cls.__name__} has no field bound to key column '{column}'")
            names.append(name)
        return names

    @classmethod
    def has_simple_key(cls) -> bool:
        return len(cls.key_columns()) == 1

    def _prepare_schema(self) -> None:
        cls = type(self)
        if not cls.TABLE_NAME:
            raise SchemaError(f"{cls.__name__} does not declare TABLE_NAME")
        schema = self._ctx.schema
        if cls.TABLE_DESCRIPTION and not schema.is_described(cls.TABLE_NAME):
            schema.set_table_description(cls.TABLE_NAME, cls.TABLE_DESCRIPTION)
        schema.check_bindings(cls.TABLE_NAME, [declared.column for declared in cls._fields.values()])
        cls.key_fields()

    def get_id(self) -> Any:
        """Key value: a scalar for a simple key, a tuple for a composite one."""
        values = tuple(self._values.get(name) for name in self.key_fields())
        return values[0] if len(values) == 1 else values

    def are_keys_populated(self) -> bool:
        return all(not _is_blank(self._values.get(name)) for name in self.key_fields())

    def is_loaded(self) -> bool:
        return self._loaded

    def is_nullable(self, column: str) -> bool | None:
        return self._ctx.schema.is_nullable(self.TABLE_NAME, column)

    def is_emptiable(self, column: str) -> bool | None:
        descriptor = self._ctx.schema.describe_column(self.TABLE_NAME, column)
        return None if descriptor is None else descriptor.is_emptiable

    def column_type(self, column: str) -> ColumnType | None:
        descriptor = self._ctx.schema.describe_column(self.TABLE_NAME, column)
        return None if descriptor is None else descriptor.parsed_type

    def describe_fields(self) -> list[FieldSpec]:
        """One FieldSpec per bound field, enough for a generic form builder."""
        keys = set(self.key_fields())
        specs = []
        for name, declared in self._fields.items():
            descriptor = self._ctx.schema.describe_column(self.TABLE_NAME, declared.column)
            specs.append(
                FieldSpec(
                    name=name,
                    column=declared.column,
                    type=declared.type,
                    nullable=descriptor.nullable,
                    emptiable=descriptor.is_emptiable,
                    key=name in keys,
                    generated=descriptor.is_generated,
                    column_type=descriptor.parsed_type,
                    default=descriptor.default,
                    value=self._values.get(name),
                )
            )
        return specs

    # ------------------------------------------------------------------
    # Field values

    @property
    def extras(self) -> dict[str, Any]:
        """Columns of the hydrating row that have no declared field."""
        return self._extras

    def get_extra(self, column: str, default: Any = None) -> Any:
        return self._extras.get(column, default)

    def value_of(self, name: str) -> Any:
        if name in self._fields:
            return self._values.get(name)
        if name in self._extras:
            return self._extras[name]
        return getattr(self, name, None)

    def has_value(self, name: str) -> bool:
        return name in self._fields or name in self._extras or hasattr(self, name)

    def _nullable(self, declared: Field) -> bool:
        return bool(self._ctx.schema.is_nullable(self.TABLE_NAME, declared.column))

    def _assign(self, name: str, value: Any) -> None:
        declared = self._fields[name]
        hydrating = self._hydrating
        if not hydrating and self._ctx.schema.is_virtual_generated(self.TABLE_NAME, declared.column):
            self.add_error(f"Cannot set value for virtual generated column '{declared.column}'")
            return
        previous = self._values.get(name)
        value = self._ctx.coercer.to_python(declared.type, value, nullable=self._nullable(declared))
        self._values[name] = value
        if not hydrating and name not in self._touched and not _loosely_equal(previous, value):
            self._touched.append(name)

    def _set_quietly(self, name: str, value: Any) -> None:
        self._hydrating = True
        try:
            self._assign(name, value)
        finally:
            self._hydrating = False

    def touched_fields(self) -> list[str]:
        """Fields changed since the last load or save, in order of first change."""
        return list(self._touched)

    def has_field_updated(self, name: str) -> bool:
        return name in self._touched

    def has_changed(self) -> bool:
        """True when a bound field differs from the stored row, or no row exists."""
        if not self.are_keys_populated():
            return True
        fresh = type(self)(self._ctx, self.get_id())
        if not fresh.is_loaded():
            return True
        return any(
            not _loosely_equal(self._values.get(name), fresh._values.get(name)) for name in self._fields
        )

    def storage_value(self, name: str) -> Any:
        """The value of field ``name`` as it would be bound in a write."""
        declared = self._fields[name]
        descriptor = self._ctx.schema.describe_column(self.TABLE_NAME, declared.column)
        return self._ctx.coercer.to_storage(
            declared.type,
            self._values.get(name),
            nullable=descriptor.nullable,
            column_type=descriptor.parsed_type.base,
        )

    def populate(self, row: Mapping[str, Any]) -> None:
        """Cast the columns of ``row`` into fields without touching the change tracker."""
        row = dict(row)
        self.before_populate(row)
        bound = set()
        self._hydrating = True
        try:
            for name, declared in self._fields.items():
                bound.add(declared.column)
                if declared.column in row:
                    self._assign(name, row[declared.column])
        finally:
            self._hydrating = False
        for column, value in row.items():
            if column not in bound:
                self._extras[column] = value
        self.after_populate(row)

    def prepare_data(self, names: Iterable[str]) -> dict[str, Any]:
        """Column -> storage value for ``names``; generated columns are skipped."""
        draft: dict[str, Any] = {}
        self.before_prepare_data(draft)
        for name in names:
            declared = self._fields[name]
            descriptor = self._ctx.schema.describe_column(self.TABLE_NAME, declared.column)
            if descriptor is not None and descriptor.is_generated:
                continue
            draft[declared.column] = self.storage_value(name)
        self.after_prepare_data(draft)
        return draft

    # ------------------------------------------------------------------
    # Keys and loading

    @classmethod
    def _key_values(cls, key: Any) -> tuple[Any, ...]:
        columns = cls.key_columns()
        values = tuple(key) if isinstance(key, (list, tuple)) else (key,)
        if len(values) != len(columns):
            raise ValidationError(
                f"{cls.__name__} key needs {len(columns)} value(s) ({', '.join(columns)}), got {len(values)}"
            )
        return values

    @classmethod
    def _key_conditions(cls, context: DatabaseContext, values: Sequence[Any]) -> dict[str, Any]:
        conditions = {}
        for column, value in zip(cls.key_columns(), values):
            if _is_blank(value):
                raise KeyNotPopulatedError(f"{cls.__name__}: {', '.join(cls.key_columns())} not populated")
            declared = cls._fields[cls.mapped_field(column)]
            conditions[column] = context.coercer.to_storage(declared.type, value)
        return conditions

    def _require_keys(self) -> None:
        if not self.are_keys_populated():
            raise KeyNotPopulatedError(f"{type(self).__name__}: {', '.join(self.key_fields())} not populated")

    def _key_query(self) -> Query:
        self._require_keys()
        values = [self._values.get(name) for name in self.key_fields()]
        return Query(self._ctx, self.TABLE_NAME).where(self._key_conditions(self._ctx, values))

    def _load(self, key: Any) -> None:
        values = self._key_values(key)
        query = Query(self._ctx, self.TABLE_NAME).where(self._key_conditions(self._ctx, values)).limit(1)
        row = self._ctx.connection.query(query.to_sql(), query.get_bindings(), ResultShape.RECORD)
        if row is not None:
            self.populate(row)
            self._loaded = True
            return
        self._loaded = False
        for name, value in zip(self.key_fields(), values):
            self._set_quietly(name, value)

    def reload(self) -> None:
        """Re-read the row for the current key, dropping every other piece of state."""
        self._require_keys()
        key = self.get_id()
        self._values = {name: self._values.get(name) for name in self.key_fields()}
        self._extras = {}
        self._touched = []
        self._cache = {}
        self._errors = []
        self._load(key)
        self._ctx.logger.debug(f"Reloaded {type(self).__name__} with id={key!r}")

    @classmethod
    def from_row(cls, context: DatabaseContext, row: Mapping[str, Any]) -> ActiveRecord:
        return cls(context, row)

    @classmethod
    def exists(cls, context: DatabaseContext, key: Any) -> bool:
        conditions = cls._key_conditions(context, cls._key_values(key))
        return Query(context, cls.TABLE_NAME).where(conditions).exists()

    def exists_in_db(self) -> bool:
        return self._key_query().exists()

    # ------------------------------------------------------------------
    # Writes

    def _now(self) -> datetime:
        return datetime.now(self._ctx.coercer.timezone)

    def _auto_key(self) -> str | None:
        if self.has_simple_key() and self._ctx.schema.is_auto_increment(self.TABLE_NAME):
            return self.key_fields()[0]
        return None

    def create(self) -> bool:
        """Insert this record as a new row; an auto-increment key is read back afterwards."""
        auto_key = self._auto_key()
        if auto_key is None:
            self._require_keys()
        self.before_create()
        now = self._now()
        for stamp in (CREATED_AT, UPDATED_AT):
            if stamp in self._fields and self._values.get(stamp) is None:
                setattr(self, stamp, now)

        data = self.prepare_data(self._fields)
        if auto_key is not None and _is_blank(self._values.get(auto_key)):
            data.pop(self._fields[auto_key].column, None)
        # NULL is written only where the column accepts it; NOT NULL columns fall back to their defaults.
        data = {
            column: value
            for column, value in data.items()
            if value is not None or self._ctx.schema.is_nullable(self.TABLE_NAME, column) is not False
        }
        Query(self._ctx, self.TABLE_NAME).insert(data)

        if auto_key is not None and _is_blank(self._values.get(auto_key)):
            self._set_quietly(auto_key, self._ctx.connection.last_insert_id())
        self._touched = []
        self._loaded = True
        self._ctx.logger.debug(f"Created a new {type(self).__name__} with id={self.get_id()!r}")
        self.after_create()
        return True

    def update(self, fields: str | Iterable[str] | None = None) -> bool:
        """Write ``fields`` (default: every bound field) to the row with this key."""
        self._require_keys()
        self.before_update()
        if UPDATED_AT in self._fields:
            setattr(self, UPDATED_AT, self._now())

        names = [fields] if isinstance(fields, str) else list(fields or ())
        if not names:
            names = list(self._fields)
        unknown = [name for name in names if name not in self._fields]
        if unknown:
            raise ValidationError(f"{type(self).__name__} has no field(s) {', '.join(unknown)}")

        data = self.prepare_data(names)
        affected = self._key_query().update(data)
        if data and not affected:
            raise NotFoundError(f"No {self.TABLE_NAME} row with id={self.get_id()!r} to update")
        self._touched = []

        shared = self._ctx.shared_cache
        if shared.contains(type(self), self.get_id()):
            shared.put(type(self), self.get_id(), self)
        self._ctx.logger.debug(f"Updated {type(self).__name__} with id={self.get_id()!r}")
        self.after_update()
        return True

    def update_subset(self, fields: str | Iterable[str]) -> bool:
        names = [fields] if isinstance(fields, str) else list(fields)
        if not names:
            raise ValidationError("update_subset() needs at least one field")
        return self.update(names)

    def update_not_null(self) -> bool:
        """Write only the fields whose value is not None."""
        return self.update([name for name in self._fields if self._values.get(name) is not None])

    def store(self) -> bool:
        """Update the row when one exists for this key, otherwise create it."""
        existing = self.are_keys_populated() and type(self).exists(self._ctx, self.get_id())
        self.before_store()
        if existing:
            self.update()
        else:
            self.create()
        self.after_store()
        return True

    def delete(self) -> bool:
        """Delete the row; refused with ConstraintError while restricting children exist."""
        self._require_keys()
        if not self.is_deletable():
            raise ConstraintError(
                f"{type(self).__name__} id={self.get_id()!r} is referenced by rows that restrict deletion"
            )
        self.before_delete()
        key = self.get_id()
        affected = self._key_query().delete()
        self.after_delete()

        self._ctx.shared_cache.discard(type(self), key)
        self._values = {}
        self._extras = {}
        self._touched = []
        self._errors = []
        self._loaded = False
        self._ctx.logger.debug(f"Deleted {type(self).__name__} with id={key!r}")
        return affected > 0

    # ------------------------------------------------------------------
    # Relationships

    def _column_value(self, column: str) -> Any:
        name = self.mapped_field(column)
        if name is not None:
            return self.storage_value(name)
        if not self.are_keys_populated():
            return None
        return self._key_query().value(column)

    def outbound_foreign_keys(self) -> list[ForeignKey]:
        if self.FOREIGN_KEYS:
            return [_as_foreign_key(self.TABLE_NAME, declared) for declared in self.FOREIGN_KEYS]
        return self._ctx.schema.foreign_keys(self.TABLE_NAME)

    def _resolve_class(self, target: Any, table: str) -> type[ActiveRecord] | None:
        cls = registry.resolve(target)
        if cls is not None and cls.TABLE_NAME == table:
            return cls
        return registry.resolve(None, table)

    def get_parent(self, field: str, target: type[ActiveRecord] | str | None = None) -> ActiveRecord | None:
        """The record that ``field`` references through its foreign key, or None.

        Problems (undeclared field, no foreign key, no mapped class) are recorded with
        ``add_error`` instead of raised.
        """
        declared = self._fields.get(field)
        if declared is None:
            self.add_error(f"Field '{field}' is not declared on {type(self).__name__}")
            return None
        cache_name = f"{field}:parent"
        if not declared.shared and cache_name in self._cache:
            return self._cache[cache_name]

        foreign_key = next((fk for fk in self.outbound_foreign_keys() if fk.column == declared.column), None)
        if foreign_key is None:
            self.add_error(f"Field '{field}' has no foreign key in table '{self.TABLE_NAME}'")
            return None
        parent_cls = self._resolve_class(target, foreign_key.referenced_table)
        if parent_cls is None:
            self.add_error(f"No record class is mapped to table '{foreign_key.referenced_table}'")
            return None

        value = self._values.get(field)
        if _is_blank(value):
            parent = None
        elif declared.shared and parent_cls.key_columns() == (foreign_key.referenced_column,):
            shared = self._ctx.shared_cache
            parent = shared.get(parent_cls, value)
            if parent is None:
                parent = parent_cls.find(self._ctx, value)
                if parent is not None:
                    shared.put(parent_cls, value, parent)
            return parent
        else:
            parent = self._load_parent(parent_cls, foreign_key, value)
        self._cache[cache_name] = parent
        return parent

    def _load_parent(self, parent_cls: type[ActiveRecord], foreign_key: ForeignKey, value: Any) -> ActiveRecord | None:
        if parent_cls.key_columns() == (foreign_key.referenced_column,):
            return parent_cls.find(self._ctx, value)
        return parent_cls.query(self._ctx).where(foreign_key.referenced_column, value).first()

    def get_parent_property(self, field: str, name: str) -> Any:
        parent = self.get_parent(field)
        return None if parent is None else parent.value_of(name)

    def get_children(
        self,
        target: type[ActiveRecord] | str | None = None,
        field: str | None = None,
    ) -> Collection:
        """Records whose foreign key points at this one.

        Without ``target`` every table with an inbound reference is searched. ``field``
        (a field or column of the child) picks one reference when there are several.
        """
        children = Collection()
        found = False
        if target is None:
            for foreign_key in self._ctx.schema.inverse_foreign_keys(self.TABLE_NAME):
                child_cls = registry.resolve(None, foreign_key.table)
                if child_cls is None:
                    self.add_error(f"No record class is mapped to table '{foreign_key.table}'")
                    continue
                found = True
                children.merge(self._children_via(child_cls, foreign_key))
        else:
            child_cls = registry.resolve(target)
            if child_cls is None:
                self.add_error(f"Record class '{target}' is not defined")
                return children
            column = child_cls.binds().get(field, field) if field else None
            for foreign_key in self._ctx.schema.foreign_keys(child_cls.TABLE_NAME):
                if foreign_key.referenced_table != self.TABLE_NAME:
                    continue
                if column is not None and foreign_key.column != column:
                    continue
                found = True
                children.merge(self._children_via(child_cls, foreign_key))
        if not found:
            self.add_error(f"No foreign key references table '{self.TABLE_NAME}'" + (f" from {target}" if target else ""))
        return children

    def _children_via(self, child_cls: type[ActiveRecord], foreign_key: ForeignKey) -> Collection:
        value = self._column_value(foreign_key.referenced_column)
        if _is_blank(value):
            return Collection()
        return child_cls.query(self._ctx).where(foreign_key.column, value).get()

    # ------------------------------------------------------------------
    # Deletion safety

    def _referencing_rows(self, restricting_only: bool) -> bool:
        for foreign_key in self._ctx.schema.inverse_foreign_keys(self.TABLE_NAME):
            if restricting_only and not foreign_key.restricts_delete:
                continue
            value = self._column_value(foreign_key.referenced_column)
            if _is_blank(value):
                continue
            if Query(self._ctx, foreign_key.table).where(foreign_key.column, value).exists():
                return True
        return False

    def is_deletable(self) -> bool:
        """False while a restricting inbound foreign key has a referencing row."""
        return not self._referencing_rows(restricting_only=True)

    def is_referenced(self) -> bool:
        return self._referencing_rows(restricting_only=False)

    # ------------------------------------------------------------------
    # Cache and errors

    def get_cache(self, name: str) -> Any:
        return self._cache.get(name)

    def set_cache(self, name: str, value: Any) -> None:
        self._cache[name] = value

    def isset_cache(self, name: str) -> bool:
        return name in self._cache

    def unset_cache(self, name: str) -> None:
        self._cache.pop(name, None)

    def add_error(self, message: str) -> None:
        self._errors.append(message)
        self._ctx.logger.debug(f"{type(self).__name__}: {message}")

    def get_errors(self) -> list[str]:
        return list(self._errors)

    def get_last_error(self) -> str | None:
        return self._errors[-1] if self._errors else None

    def reset_errors(self) -> None:
        self._errors = []

    # ------------------------------------------------------------------
    # Lookups

    @classmethod
    def query(cls, context: DatabaseContext) -> Query:
        """A query over this table whose results are instances of this class."""
        return Query(context, cls.TABLE_NAME, model=cls)

    @classmethod
    def find(cls, context: DatabaseContext, key: Any) -> ActiveRecord | None:
        try:
            values = cls._key_values(key)
        except ValidationError:
            return None
        if any(_is_blank(value) for value in values):
            return None
        record = cls(context, values if len(values) > 1 else values[0])
        return record if record.is_loaded() else None

    @classmethod
    def find_or_fail(cls, context: DatabaseContext, key: Any) -> ActiveRecord:
        record = cls.find(context, key)
        if record is None:
            raise NotFoundError(f"{cls.__name__} with id={key!r} not found")
        return record

    @classmethod
    def _filtered_query(cls, context: DatabaseContext, filters: Mapping[str, Any] | None) -> Query:
        query = cls.query(context)
        for name, value in (filters or {}).items():
            declared = cls._fields.get(name)
            if declared is None:
                raise ValidationError(f"{cls.__name__} has no field '{name}' to filter on")
            if value is None:
                query.where_null(declared.column)
            else:
                query.where(declared.column, context.coercer.to_storage(declared.type, value, nullable=True))
        return query

    @classmethod
    def find_by_attributes(cls, context: DatabaseContext, attributes: Mapping[str, Any]) -> ActiveRecord | None:
        return cls._filtered_query(context, attributes).first()

    @classmethod
    def all(cls, context: DatabaseContext) -> Collection:
        return cls.query(context).get()

    @classmethod
    def get_all_objects(
        cls,
        context: DatabaseContext,
        filters: Mapping[str, Any] | None = None,
        order_by: str | Sequence[str] | Mapping[str, str] | None = None,
    ) -> Collection:
        """Records matching ``filters`` ({field: value}, None meaning IS NULL).

        ``order_by`` is a field name, a list of names, or {field: "asc" | "desc"}.
        """
        query = cls._filtered_query(context, filters)
        if isinstance(order_by, str):
            order_by = [order_by]
        orders = order_by.items() if isinstance(order_by, Mapping) else ((name, "asc") for name in order_by or ())
        for name, direction in orders:
            declared = cls._fields.get(name)
            if declared is None:
                raise ValidationError(f"{cls.__name__} has no field '{name}' to order by")
            direction = str(direction or "asc").lower()
            query.order_by(declared.column, direction if direction in ("asc", "desc") else "asc")
        objects = query.get()
        context.logger.debug(f"Loaded {len(objects)} {cls.__name__} object(s)")
        return objects

    @classmethod
    def count_all_objects(cls, context: DatabaseContext, filters: Mapping[str, Any] | None = None) -> int:
        return cls._filtered_query(context, filters).count()

    @classmethod
    def get_object_by_query(cls, context: DatabaseContext, sql: str, params: Sequence[Any] = ()) -> ActiveRecord | None:
        """Hydrate the first row of ``sql``; unbound columns land in ``extras``."""
        row = context.connection.query(sql, params, ResultShape.RECORD)
        return None if row is None else cls.from_row(context, row)

    @classmethod
    def get_objects_by_query(cls, context: DatabaseContext, sql: str, params: Sequence[Any] = ()) -> Collection:
        rows = context.connection.query(sql, params)
        return Collection([cls.from_row(context, row) for row in rows])

    @classmethod
    def get_last(cls, context: DatabaseContext) -> ActiveRecord | None:
        """The most recently inserted record, for auto-increment or created_at tables."""
        if not cls.has_simple_key():
            return None
        if context.schema.is_auto_increment(cls.TABLE_NAME):
            return cls.query(context).order_by_desc(cls.key_columns()[0]).first()
        if CREATED_AT in cls._fields:
            return cls.query(context).latest(cls._fields[CREATED_AT].column).first()
        return None

    def get_previous(self) -> ActiveRecord | None:
        """The record with the next lower auto-increment key."""
        if self._auto_key() is None or not self.are_keys_populated():
            return None
        column = self.key_columns()[0]
        return type(self).query(self._ctx).where(column, "<", self.get_id()).order_by_desc(column).first()

    @classmethod
    def _cached_list_name(cls) -> str:
        return f"{cls.__module__}.{cls.__qualname__}:objects"

    @classmethod
    def get_object_by_cached_list(cls, context: DatabaseContext, name: str, value: Any) -> ActiveRecord | None:
        """First record whose ``name`` equals ``value``, searched in a per-context copy of the table.

        Meant for small lookup tables read many times.
        """
        state_name = cls._cached_list_name()
        if state_name not in context.state:
            context.state[state_name] = cls.all(context)
        for record in context.state[state_name]:
            if _loosely_equal(record.value_of(name), value):
                return record
        return None

    @classmethod
    def unset_cached_list(cls, context: DatabaseContext) -> None:
        context.state.pop(cls._cached_list_name(), None)

    # ------------------------------------------------------------------
    # Serialization

    def to_dict(self) -> dict[str, Any]:
        return {name: self._values.get(name) for name in self._fields}

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=_json_default, **kwargs)

    def convert_to_dict(self, fields: Iterable[str] | None = None) -> dict[str, Any]:
        """Bound fields as a dict, limited to ``fields`` when a non-empty list is given."""
        wanted = list(fields or ())
        return {name: self._values.get(name) for name in self._fields if not wanted or name in wanted}

    def fill(self, data: Mapping[str, Any], fields: Iterable[str] | None = None) -> ActiveRecord:
        """Assign submitted values; a bool field missing from ``data`` is set to False."""
        names = list(fields) if fields is not None else list(self._fields)
        for name in names:
            declared = self._fields.get(name)
            if declared is None:
                continue
            if name in data:
                setattr(self, name, data[name])
            elif declared.type is FieldType.BOOL:
                setattr(self, name, False)
        return self

    def format_datetime(self, field: str, fmt: str = STORAGE_FORMAT) -> str | None:
        value = self._values.get(field)
        if not isinstance(value, datetime):
            return None
        return value.astimezone(self._ctx.coercer.timezone).strftime(fmt)
