"""Fluent query builder compiled into parameterized SQL."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from rowbind.database.connection import Connection, ResultShape, interpolate
from rowbind.shared.exceptions import QueryError

from .collection import Collection
from .grammar import Clause, Expression, Grammar, _result_name

if TYPE_CHECKING:
    from rowbind.context import DatabaseContext

    from .record import ActiveRecord

_MISSING = object()

OPERATORS = frozenset(
    {
        "=",
        "==",
        "<",
        ">",
        "<=",
        ">=",
        "<>",
        "!=",
        "is",
        "is not",
        "like",
        "not like",
        "glob",
        "regexp",
        "match",
    }
)
DIRECTIONS = ("asc", "desc")
LOCK_FOR_UPDATE = "FOR UPDATE"
LOCK_SHARED = "LOCK IN SHARE MODE"
DEFAULT_PER_PAGE = 20


def _normalize_operator(operator: Any) -> str:
    if not isinstance(operator, str) or operator.strip().lower() not in OPERATORS:
        raise QueryError(f"Illegal operator {operator!r}")
    return operator.strip().lower()


def _flatten(columns: Iterable[Any]) -> list[Any]:
    flat: list[Any] = []
    for column in columns:
        if isinstance(column, (list, tuple)):
            flat.extend(column)
        else:
            flat.append(column)
    return flat


@dataclass(frozen=True, slots=True)
class Page:
    """One page of results plus the bounds needed to render a pager."""

    items: Collection
    total: int
    per_page: int
    current_page: int
    last_page: int
    from_: int | None
    to: int | None

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page


class _ConditionsMixin:
    """Clause-appending helpers shared by queries and join clauses."""

    wheres: list[Clause]

    def _add(self, clause: Clause) -> Any:
        self.wheres.append(clause)
        return self

    def where_raw(self, sql: str, bindings: Sequence[Any] = (), boolean: str = "and") -> Any:
        return self._add(Clause("raw", boolean, sql=sql, values=list(bindings)))

    def or_where_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Any:
        return self.where_raw(sql, bindings, boolean="or")

    def where_null(self, columns: str | Sequence[str], boolean: str = "and", negate: bool = False) -> Any:
        for column in [columns] if isinstance(columns, str) else columns:
            self._add(Clause("null", boolean, column=column, negate=negate))
        return self

    def where_not_null(self, columns: str | Sequence[str], boolean: str = "and") -> Any:
        return self.where_null(columns, boolean, negate=True)

    def or_where_null(self, columns: str | Sequence[str]) -> Any:
        return self.where_null(columns, boolean="or")

    def or_where_not_null(self, columns: str | Sequence[str]) -> Any:
        return self.where_null(columns, boolean="or", negate=True)


class JoinClause(_ConditionsMixin):
    """``JOIN table ON ...`` with its own clause list and bindings."""

    def __init__(self, type: str, table: Any, raw: Expression | None = None) -> None:
        self.type = type.lower()
        self.table = table
        self.raw = raw
        self.wheres: list[Clause] = []

    @property
    def clauses(self) -> list[Clause]:
        return self.wheres

    def on(self, first: Any, operator: str | None = None, second: Any = None, boolean: str = "and") -> JoinClause:
        if callable(first):
            nested = JoinClause(self.type, self.table)
            first(nested)
            holder = Query()
            holder.wheres = nested.wheres
            return self._add(Clause("nested", boolean, query=holder))
        if second is None:
            operator, second = "=", operator
        return self._add(Clause("column", boolean, column=first, operator=_normalize_operator(operator), second=second))

    def or_on(self, first: Any, operator: str | None = None, second: Any = None) -> JoinClause:
        return self.on(first, operator, second, boolean="or")

    def where(self, column: str, operator: Any = _MISSING, value: Any = _MISSING, boolean: str = "and") -> JoinClause:
        if value is _MISSING:
            operator, value = "=", operator
        if value is _MISSING:
            raise QueryError("Join where() needs a value.")
        if value is None:
            return self.where_null(column, boolean, negate=_normalize_operator(operator) in {"!=", "<>", "is not"})
        return self._add(Clause("basic", boolean, column=column, operator=_normalize_operator(operator), value=value))

    def or_where(self, column: str, operator: Any = _MISSING, value: Any = _MISSING) -> JoinClause:
        return self.where(column, operator, value, boolean="or")

    def where_in(self, column: str, values: Iterable[Any], boolean: str = "and", negate: bool = False) -> JoinClause:
        return self._add(Clause("in", boolean, column=column, values=list(values), negate=negate))

    def bindings(self) -> list[Any]:
        if self.raw is not None:
            return list(self.raw.bindings)
        return _clause_bindings(self.wheres)


def _value_bindings(value: Any) -> list[Any]:
    if isinstance(value, Expression):
        return list(value.bindings)
    if isinstance(value, Query):
        return value.get_bindings()
    return [value]


def _clause_bindings(clauses: Sequence[Clause]) -> list[Any]:
    """Bind values of a clause list, in the order the grammar emits placeholders."""
    bindings: list[Any] = []
    for clause in clauses:
        if clause.kind == "basic":
            bindings.extend(_value_bindings(clause.value))
        elif clause.kind == "raw":
            bindings.extend(clause.values)
        elif clause.kind == "nested":
            bindings.extend(_clause_bindings(clause.query.wheres))
        elif clause.kind in ("in", "between"):
            for value in clause.values:
                bindings.extend(_value_bindings(value))
        elif clause.kind in ("in_sub", "exists"):
            bindings.extend(clause.query.get_bindings())
    return bindings


class Query(_ConditionsMixin):
    """Mutable builder for one SELECT (plus simple INSERT/UPDATE/DELETE).

    Bound to a :class:`~rowbind.context.DatabaseContext` to execute; without one it can
    still compile SQL. With ``model`` set, ``get()`` hydrates record instances.
    """

    def __init__(
        self,
        context: DatabaseContext | None = None,
        table: Any = None,
        *,
        model: type[ActiveRecord] | None = None,
        grammar: Grammar | None = None,
    ) -> None:
        self.context = context
        self.model = model
        self.grammar = grammar or Grammar()
        self.columns: list[Any] = []
        self.is_distinct = False
        self.from_table = table
        self.joins: list[JoinClause] = []
        self.wheres: list[Clause] = []
        self.groups: list[Any] = []
        self.havings: list[Clause] = []
        self.orders: list[tuple[Any, str] | Expression] = []
        self.limit_value: int | None = None
        self.offset_value: int | None = None
        self.unions: list[tuple[Query, bool]] = []
        self.lock_value: str | None = None
        self.wrap_identifiers = True

    def __repr__(self) -> str:
        return f"<Query {self.to_sql()!r}>"

    def __copy__(self) -> Query:
        clone = Query.__new__(Query)
        clone.__dict__.update(self.__dict__)
        for name in ("columns", "joins", "wheres", "groups", "havings", "orders", "unions"):
            setattr(clone, name, list(getattr(self, name)))
        return clone

    def clone(self) -> Query:
        return copy.copy(self)

    def new_query(self) -> Query:
        query = Query(self.context, grammar=self.grammar)
        query.wrap_identifiers = self.wrap_identifiers
        return query

    # ------------------------------------------------------------------
    # SELECT / FROM

    def select(self, *columns: Any) -> Query:
        self.columns = _flatten(columns) or ["*"]
        return self

    def add_select(self, *columns: Any) -> Query:
        if self.columns == ["*"]:
            self.columns = []
        self.columns.extend(_flatten(columns))
        return self

    def select_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Query:
        return self.add_select(Expression(sql, tuple(bindings)))

    def distinct(self, value: bool = True) -> Query:
        self.is_distinct = value
        return self

    def table(self, table: Any) -> Query:
        self.from_table = table
        return self

    from_ = table

    def without_wrapping(self) -> Query:
        """Emit identifiers exactly as given (pre-quoted or computed expressions)."""
        self.wrap_identifiers = False
        return self

    # ------------------------------------------------------------------
    # JOIN

    def join(
        self,
        table: Any,
        first: Any,
        operator: str | None = None,
        second: Any = None,
        type: str = "inner",
    ) -> Query:
        join = JoinClause(type, table)
        if callable(first):
            first(join)
        else:
            join.on(first, operator, second)
        self.joins.append(join)
        return self

    def left_join(self, table: Any, first: Any, operator: str | None = None, second: Any = None) -> Query:
        return self.join(table, first, operator, second, type="left")

    def right_join(self, table: Any, first: Any, operator: str | None = None, second: Any = None) -> Query:
        return self.join(table, first, operator, second, type="right")

    def cross_join(self, table: Any) -> Query:
        self.joins.append(JoinClause("cross", table))
        return self

    def join_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Query:
        self.joins.append(JoinClause("raw", None, raw=Expression(sql, tuple(bindings))))
        return self

    # ------------------------------------------------------------------
    # WHERE

    def where(
        self,
        column: Any,
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: str = "and",
    ) -> Query:
        """``where(col, value)`` implies ``=``; a ``None`` value becomes IS [NOT] NULL."""
        if isinstance(column, Mapping):
            if boolean == "or":
                return self.where_nested(lambda query: query.where(dict(column)), boolean)
            for key, item in column.items():
                self.where(key, "=", item, boolean)
            return self
        if callable(column) and not isinstance(column, (str, Expression)):
            return self.where_nested(column, boolean)
        if operator is _MISSING:
            raise QueryError(f"where() on {column!r} needs a value.")
        if value is _MISSING:
            operator, value = "=", operator
        operator = _normalize_operator(operator)
        if value is None:
            if operator in {"=", "==", "is"}:
                return self.where_null(column, boolean)
            if operator in {"!=", "<>", "is not"}:
                return self.where_null(column, boolean, negate=True)
        if callable(value) and not isinstance(value, Query):
            sub = self.new_query()
            value(sub)
            value = sub
        return self._add(Clause("basic", boolean, column=column, operator=operator, value=value))

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Query:
        return self.where(column, operator, value, boolean="or")

    def where_nested(self, callback: Callable[[Query], Any], boolean: str = "and", negate: bool = False) -> Query:
        nested = self.new_query()
        nested.from_table = self.from_table
        callback(nested)
        if nested.wheres:
            self._add(Clause("nested", boolean, query=nested, negate=negate))
        return self

    def where_not(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING, boolean: str = "and") -> Query:
        if callable(column) and not isinstance(column, (str, Expression)):
            return self.where_nested(column, boolean, negate=True)
        return self.where_nested(lambda query: query.where(column, operator, value), boolean, negate=True)

    def or_where_not(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Query:
        return self.where_not(column, operator, value, boolean="or")

    def where_column(self, first: Any, operator: Any, second: Any = _MISSING, boolean: str = "and") -> Query:
        if second is _MISSING:
            operator, second = "=", operator
        return self._add(
            Clause("column", boolean, column=first, operator=_normalize_operator(operator), second=second)
        )

    def or_where_column(self, first: Any, operator: Any, second: Any = _MISSING) -> Query:
        return self.where_column(first, operator, second, boolean="or")

    def where_in(self, column: Any, values: Any, boolean: str = "and", negate: bool = False) -> Query:
        if isinstance(values, Query) or (callable(values) and not isinstance(values, Collection)):
            sub = values
            if not isinstance(sub, Query):
                sub = self.new_query()
                values(sub)
            return self._add(Clause("in_sub", boolean, column=column, query=sub, negate=negate))
        if isinstance(values, Collection):
            values = values.all()
        return self._add(Clause("in", boolean, column=column, values=list(values), negate=negate))

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> Query:
        return self.where_in(column, values, boolean, negate=True)

    def or_where_in(self, column: Any, values: Any) -> Query:
        return self.where_in(column, values, boolean="or")

    def or_where_not_in(self, column: Any, values: Any) -> Query:
        return self.where_in(column, values, boolean="or", negate=True)

    def where_between(self, column: Any, values: Sequence[Any], boolean: str = "and", negate: bool = False) -> Query:
        bounds = list(values)
        if len(bounds) != 2:
            raise QueryError("where_between() needs exactly two values.")
        return self._add(Clause("between", boolean, column=column, values=bounds, negate=negate))

    def where_not_between(self, column: Any, values: Sequence[Any], boolean: str = "and") -> Query:
        return self.where_between(column, values, boolean, negate=True)

    def or_where_between(self, column: Any, values: Sequence[Any]) -> Query:
        return self.where_between(column, values, boolean="or")

    def where_exists(self, query: Query | Callable[[Query], Any], boolean: str = "and", negate: bool = False) -> Query:
        if not isinstance(query, Query):
            sub = self.new_query()
            query(sub)
            query = sub
        return self._add(Clause("exists", boolean, query=query, negate=negate))

    def where_not_exists(self, query: Query | Callable[[Query], Any], boolean: str = "and") -> Query:
        return self.where_exists(query, boolean, negate=True)

    def or_where_exists(self, query: Query | Callable[[Query], Any]) -> Query:
        return self.where_exists(query, boolean="or")

    # ------------------------------------------------------------------
    # GROUP BY / HAVING

    def group_by(self, *columns: Any) -> Query:
        self.groups.extend(_flatten(columns))
        return self

    def group_by_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Query:
        self.groups.append(Expression(sql, tuple(bindings)))
        return self

    def having(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING, boolean: str = "and") -> Query:
        if operator is _MISSING:
            raise QueryError(f"having() on {column!r} needs a value.")
        if value is _MISSING:
            operator, value = "=", operator
        self.havings.append(
            Clause("basic", boolean, column=column, operator=_normalize_operator(operator), value=value)
        )
        return self

    def or_having(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Query:
        return self.having(column, operator, value, boolean="or")

    def having_raw(self, sql: str, bindings: Sequence[Any] = (), boolean: str = "and") -> Query:
        self.havings.append(Clause("raw", boolean, sql=sql, values=list(bindings)))
        return self

    def or_having_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Query:
        return self.having_raw(sql, bindings, boolean="or")

    def having_between(self, column: Any, values: Sequence[Any], boolean: str = "and", negate: bool = False) -> Query:
        bounds = list(values)
        if len(bounds) != 2:
            raise QueryError("having_between() needs exactly two values.")
        self.havings.append(Clause("between", boolean, column=column, values=bounds, negate=negate))
        return self

    # ------------------------------------------------------------------
    # ORDER / LIMIT / UNION / LOCK

    def order_by(self, column: Any, direction: str = "asc") -> Query:
        direction = direction.lower()
        if direction not in DIRECTIONS:
            raise QueryError(f"Order direction must be 'asc' or 'desc', got '{direction}'.")
        self.orders.append((column, direction))
        return self

    def order_by_desc(self, column: Any) -> Query:
        return self.order_by(column, "desc")

    def latest(self, column: str = "created_at") -> Query:
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> Query:
        return self.order_by(column, "asc")

    def order_by_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Query:
        self.orders.append(Expression(sql, tuple(bindings)))
        return self

    def in_random_order(self) -> Query:
        return self.order_by_raw("RANDOM()")

    def reorder(self, column: Any = None, direction: str = "asc") -> Query:
        self.orders = []
        if column is not None:
            return self.order_by(column, direction)
        return self

    def limit(self, value: int | None) -> Query:
        self.limit_value = None if value is None or value < 0 else int(value)
        return self

    take = limit

    def offset(self, value: int | None) -> Query:
        self.offset_value = None if value is None else max(int(value), 0)
        return self

    skip = offset

    def for_page(self, page: int, per_page: int = DEFAULT_PER_PAGE) -> Query:
        page = max(int(page), 1)
        return self.offset((page - 1) * per_page).limit(per_page)

    def union(self, query: Query | Callable[[Query], Any], all: bool = False) -> Query:
        if not isinstance(query, Query):
            sub = self.new_query()
            query(sub)
            query = sub
        self.unions.append((query, all))
        return self

    def union_all(self, query: Query | Callable[[Query], Any]) -> Query:
        return self.union(query, all=True)

    def union_branch(self) -> Query:
        """This query as a UNION member: trailing order, limit, offset and lock dropped."""
        branch = self.clone()
        branch.orders = []
        branch.limit_value = None
        branch.offset_value = None
        branch.lock_value = None
        return branch

    def lock(self, value: bool | str = True) -> Query:
        if value is True:
            self.lock_value = LOCK_FOR_UPDATE
        elif value is False:
            self.lock_value = LOCK_SHARED
        else:
            self.lock_value = str(value) or None
        return self

    def lock_for_update(self) -> Query:
        return self.lock(True)

    def shared_lock(self) -> Query:
        return self.lock(False)

    def when(self, condition: Any, callback: Callable[[Query, Any], Any], default: Callable[[Query, Any], Any] | None = None) -> Query:
        if condition:
            callback(self, condition)
        elif default is not None:
            default(self, condition)
        return self

    # ------------------------------------------------------------------
    # Compilation

    def to_sql(self) -> str:
        return self.grammar.compile_select(self)

    def get_bindings(self) -> list[Any]:
        """Flat bind values in select, from, join, where, group, having, union, order order."""
        bindings: list[Any] = []
        for column in self.columns:
            bindings.extend(_value_bindings(column) if isinstance(column, (Expression, Query)) else [])
        if isinstance(self.from_table, (Expression, Query)):
            bindings.extend(_value_bindings(self.from_table))
        for join in self.joins:
            bindings.extend(join.bindings())
        bindings.extend(_clause_bindings(self.wheres))
        for group in self.groups:
            if isinstance(group, Expression):
                bindings.extend(group.bindings)
        bindings.extend(_clause_bindings(self.havings))
        for union, _ in self.unions:
            bindings.extend(union.union_branch().get_bindings())
        for order in self.orders:
            if isinstance(order, Expression):
                bindings.extend(order.bindings)
        return bindings

    def to_raw_sql(self) -> str:
        """SQL with the bindings inlined, for debugging output."""
        return interpolate(self.to_sql(), self.get_bindings())

    # ------------------------------------------------------------------
    # Execution

    @property
    def connection(self) -> Connection:
        if self.context is None:
            raise QueryError("This query is not bound to a database context.")
        return self.context.connection

    def _hydrate(self, rows: list[dict[str, Any]]) -> Collection:
        if self.model is None:
            return Collection(rows)
        return Collection([self.model.from_row(self.context, row) for row in rows])

    def get(self, *columns: Any) -> Collection:
        query = self.clone().select(*columns) if columns else self
        rows = self.connection.query(query.to_sql(), query.get_bindings())
        return self._hydrate(rows)

    def first(self, *columns: Any) -> Any:
        return self.clone().limit(1).get(*columns).first()

    def find(self, key: Any, column: str | None = None) -> Any:
        if column is None:
            column = self.model.key_columns()[0] if self.model is not None else "id"
        return self.clone().where(column, key).first()

    def value(self, column: Any) -> Any:
        query = self.clone().select(column).limit(1)
        return self.connection.query(query.to_sql(), query.get_bindings(), ResultShape.SCALAR)

    def pluck(self, column: Any, key: Any = None) -> Collection:
        selected = [column] if key is None else [column, key]
        query = self.clone().select(*selected)
        rows = self.connection.query(query.to_sql(), query.get_bindings())
        value_name = _result_name(column)
        if key is None:
            return Collection([row[value_name] for row in rows])
        key_name = _result_name(key)
        return Collection({row[key_name]: row[value_name] for row in rows})

    def _without_ordering(self) -> Query:
        stripped = self.clone()
        stripped.orders = []
        stripped.limit_value = None
        stripped.offset_value = None
        stripped.lock_value = None
        return stripped

    def aggregate(self, function: str, column: str = "*") -> Any:
        """Run ``function(column)`` over this query with its ordering and limits stripped."""
        stripped = self._without_ordering()
        if stripped.unions or stripped.groups or stripped.is_distinct:
            sql = self.grammar.compile_wrapped_aggregate(stripped, function, column)
        else:
            stripped.columns = [self.grammar.aggregate_expression(function, column, stripped.wrap_identifiers)]
            sql = stripped.to_sql()
        return self.connection.query(sql, stripped.get_bindings(), ResultShape.SCALAR)

    def count(self, column: str = "*") -> int:
        return int(self.aggregate("count", column) or 0)

    def sum(self, column: str) -> Any:
        return self.aggregate("sum", column) or 0

    def avg(self, column: str) -> Any:
        return self.aggregate("avg", column)

    def min(self, column: str) -> Any:
        return self.aggregate("min", column)

    def max(self, column: str) -> Any:
        return self.aggregate("max", column)

    def exists(self) -> bool:
        stripped = self._without_ordering()
        if stripped.unions or stripped.groups or stripped.is_distinct:
            sql = self.grammar.compile_wrapped_exists(stripped)
        else:
            stripped.columns = [Expression("1")]
            stripped.limit(1)
            sql = stripped.to_sql()
        return self.connection.query(sql, stripped.get_bindings(), ResultShape.RECORD) is not None

    def doesnt_exist(self) -> bool:
        return not self.exists()

    def paginate(self, per_page: int | None = None, page: int = 1) -> Page:
        if per_page is None:
            per_page = self.context.config.query.per_page if self.context is not None else DEFAULT_PER_PAGE
        per_page = max(int(per_page), 1)
        page = max(int(page), 1)
        total = self.count()
        items = self.clone().for_page(page, per_page).get()
        last_page = max(math.ceil(total / per_page), 1)
        first_item = (page - 1) * per_page + 1 if len(items) else None
        last_item = first_item + len(items) - 1 if first_item is not None else None
        return Page(
            items=items,
            total=total,
            per_page=per_page,
            current_page=page,
            last_page=last_page,
            from_=first_item,
            to=last_item,
        )

    def chunk(self, size: int, callback: Callable[[Collection, int], Any]) -> bool:
        """Feed results to ``callback`` one page at a time; False from the callback stops early."""
        page = 1
        while True:
            results = self.clone().for_page(page, size).get()
            if not len(results):
                return True
            if callback(results, page) is False:
                return False
            if len(results) < size:
                return True
            page += 1

    # ------------------------------------------------------------------
    # Writes

    def insert(self, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> int:
        rows = [dict(values)] if isinstance(values, Mapping) else [dict(row) for row in values]
        if not rows:
            return 0
        columns = list(rows[0])
        sql = self.grammar.compile_insert(self, columns, rows)
        bindings: list[Any] = []
        for row in rows:
            for column in columns:
                value = row.get(column)
                bindings.extend(value.bindings if isinstance(value, Expression) else [value])
        return self.connection.execute(sql, bindings)

    def insert_get_id(self, values: Mapping[str, Any]) -> int | None:
        self.insert(values)
        return self.connection.last_insert_id()

    def update(self, values: Mapping[str, Any]) -> int:
        if not values:
            return 0
        values = dict(values)
        sql = self.grammar.compile_update(self, values)
        bindings: list[Any] = []
        for value in values.values():
            bindings.extend(_value_bindings(value))
        bindings.extend(_clause_bindings(self.wheres))
        return self.connection.execute(sql, bindings)

    def delete(self) -> int:
        sql = self.grammar.compile_delete(self)
        return self.connection.execute(sql, _clause_bindings(self.wheres))
