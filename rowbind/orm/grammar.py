"""Compiles query builder state into SQLite SQL text.

Placeholders are emitted in the same section order that :meth:`Query.get_bindings`
collects values: select, from, join, where, group, having, union, order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from .query import JoinClause, Query

_ALIAS = re.compile(r"\s+as\s+", re.IGNORECASE)
_NUMERIC = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_WORD_OPERATORS = {"like", "not like", "glob", "regexp", "is", "is not", "match"}


@dataclass(frozen=True, slots=True)
class Expression:
    """SQL fragment inserted verbatim, with its own positional bindings."""

    sql: str
    bindings: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.sql


def raw(sql: str, *bindings: Any) -> Expression:
    return Expression(sql, tuple(bindings))


def _split_alias(text: str) -> tuple[str, str] | None:
    """Split ``expr AS alias`` on the last AS that sits outside parentheses."""
    for match in reversed(list(_ALIAS.finditer(text))):
        before = text[: match.start()]
        if before.count("(") == before.count(")"):
            return before, text[match.end():]
    return None


@dataclass(slots=True)
class Clause:
    """One predicate of a WHERE, HAVING or JOIN ... ON list."""

    kind: str  # basic, raw, nested, column, null, in, in_sub, between, exists
    boolean: str = "and"
    column: Any = None
    operator: str = "="
    value: Any = None
    values: list[Any] = field(default_factory=list)
    sql: str = ""
    query: Query | None = None
    second: Any = None
    negate: bool = False


class Grammar:
    """SQLite flavoured compiler using backtick identifier quoting."""

    quote_char = "`"

    # ------------------------------------------------------------------
    # Identifiers

    def wrap(self, value: Any, enabled: bool = True) -> str:
        from .query import Query

        if isinstance(value, Expression):
            return value.sql
        if isinstance(value, Query):
            return f"({self.compile_select(value)})"
        text = str(value).strip()
        if not enabled:
            return text
        aliased = _split_alias(text)
        if aliased is not None:
            return f"{self.wrap(aliased[0], enabled)} AS {self.wrap_segment(aliased[1])}"
        if self._is_expression(text):
            return text
        return ".".join(self.wrap_segment(segment) for segment in text.split("."))

    def wrap_segment(self, segment: str) -> str:
        if segment == "*" or self.quote_char in segment:
            return segment
        return f"{self.quote_char}{segment}{self.quote_char}"

    def _is_expression(self, text: str) -> bool:
        if _NUMERIC.match(text):
            return True
        if self.quote_char in text:
            return True
        return any(char in text for char in " (),'\"")

    def parameter(self, value: Any) -> str:
        from .query import Query

        if isinstance(value, Expression):
            return value.sql
        if isinstance(value, Query):
            return f"({self.compile_select(value)})"
        return "?"

    # ------------------------------------------------------------------
    # SELECT

    def compile_select(self, query: Query) -> str:
        components = (
            self._compile_columns(query),
            self._compile_from(query),
            self._compile_joins(query),
            self._compile_wheres(query),
            self._compile_groups(query),
            self._compile_havings(query),
            self._compile_unions(query),
            self._compile_orders(query),
            self._compile_limit(query),
            self._compile_offset(query),
            query.lock_value or "",
        )
        return " ".join(part for part in components if part)

    def _compile_columns(self, query: Query) -> str:
        columns = query.columns or ["*"]
        select = "SELECT DISTINCT" if query.is_distinct else "SELECT"
        return f"{select} {self.columnize(columns, query.wrap_identifiers)}"

    def columnize(self, columns: Sequence[Any], enabled: bool = True) -> str:
        return ", ".join(self.wrap(column, enabled) for column in columns)

    def _compile_from(self, query: Query) -> str:
        if query.from_table is None:
            return ""
        return f"FROM {self.wrap(query.from_table, query.wrap_identifiers)}"

    def _compile_joins(self, query: Query) -> str:
        return " ".join(self.compile_join(join, query.wrap_identifiers) for join in query.joins)

    def compile_join(self, join: JoinClause, enabled: bool = True) -> str:
        if join.raw is not None:
            return join.raw.sql
        table = self.wrap(join.table, enabled)
        if join.type == "cross":
            return f"CROSS JOIN {table}"
        sql = f"{join.type.upper()} JOIN {table}"
        if join.clauses:
            sql += f" ON {self.compile_conditions(join.clauses, enabled)}"
        return sql

    def _compile_wheres(self, query: Query) -> str:
        if not query.wheres:
            return ""
        return f"WHERE {self.compile_conditions(query.wheres, query.wrap_identifiers)}"

    def _compile_groups(self, query: Query) -> str:
        if not query.groups:
            return ""
        return f"GROUP BY {self.columnize(query.groups, query.wrap_identifiers)}"

    def _compile_havings(self, query: Query) -> str:
        if not query.havings:
            return ""
        return f"HAVING {self.compile_conditions(query.havings, query.wrap_identifiers)}"

    def _compile_unions(self, query: Query) -> str:
        pieces = []
        for union, union_all in query.unions:
            keyword = "UNION ALL" if union_all else "UNION"
            pieces.append(f"{keyword} {self.compile_select(union.union_branch())}")
        return " ".join(pieces)

    def _compile_orders(self, query: Query) -> str:
        if not query.orders:
            return ""
        pieces = []
        for order in query.orders:
            if isinstance(order, Expression):
                pieces.append(order.sql)
            else:
                column, direction = order
                pieces.append(f"{self.wrap(column, query.wrap_identifiers)} {direction.upper()}")
        return "ORDER BY " + ", ".join(pieces)

    def _compile_limit(self, query: Query) -> str:
        if query.limit_value is not None:
            return f"LIMIT {int(query.limit_value)}"
        if query.offset_value is not None:
            # SQLite only accepts OFFSET after a LIMIT; -1 means no limit.
            return "LIMIT -1"
        return ""

    def _compile_offset(self, query: Query) -> str:
        if query.offset_value is None:
            return ""
        return f"OFFSET {int(query.offset_value)}"

    # ------------------------------------------------------------------
    # Predicates

    def compile_conditions(self, clauses: Sequence[Clause], enabled: bool = True) -> str:
        pieces = []
        for index, clause in enumerate(clauses):
            compiled = self.compile_clause(clause, enabled)
            pieces.append(compiled if index == 0 else f"{clause.boolean.upper()} {compiled}")
        return " ".join(pieces)

    def compile_clause(self, clause: Clause, enabled: bool = True) -> str:
        kind = clause.kind
        if kind == "raw":
            return clause.sql
        if kind == "nested":
            inner = self.compile_conditions(clause.query.wheres, clause.query.wrap_identifiers)
            return f"NOT ({inner})" if clause.negate else f"({inner})"
        if kind == "exists":
            keyword = "NOT EXISTS" if clause.negate else "EXISTS"
            return f"{keyword} ({self.compile_select(clause.query)})"

        column = self.wrap(clause.column, enabled)
        if kind == "basic":
            return f"{column} {self._operator(clause.operator)} {self.parameter(clause.value)}"
        if kind == "column":
            return f"{column} {self._operator(clause.operator)} {self.wrap(clause.second, enabled)}"
        if kind == "null":
            return f"{column} IS NOT NULL" if clause.negate else f"{column} IS NULL"
        if kind == "in":
            if not clause.values:
                return "1 = 1" if clause.negate else "0 = 1"
            placeholders = ", ".join(self.parameter(value) for value in clause.values)
            keyword = "NOT IN" if clause.negate else "IN"
            return f"{column} {keyword} ({placeholders})"
        if kind == "in_sub":
            keyword = "NOT IN" if clause.negate else "IN"
            return f"{column} {keyword} ({self.compile_select(clause.query)})"
        if kind == "between":
            keyword = "NOT BETWEEN" if clause.negate else "BETWEEN"
            low, high = clause.values
            return f"{column} {keyword} {self.parameter(low)} AND {self.parameter(high)}"
        raise ValueError(f"Unknown clause kind '{kind}'")

    @staticmethod
    def _operator(operator: str) -> str:
        return operator.upper() if operator.lower() in _WORD_OPERATORS else operator

    # ------------------------------------------------------------------
    # Aggregates and writes

    def aggregate_expression(self, function: str, column: str = "*", enabled: bool = True) -> Expression:
        target = "*" if column == "*" else self.wrap(column, enabled)
        return Expression(f"{function.upper()}({target}) AS {self.wrap_segment('aggregate')}")

    def compile_wrapped_aggregate(self, query: Query, function: str, column: str = "*") -> str:
        """Aggregate over the full result of a grouped, distinct or unioned query."""
        target = "*" if column == "*" else self.wrap(_result_name(column), query.wrap_identifiers)
        return (
            f"SELECT {function.upper()}({target}) AS {self.wrap_segment('aggregate')} "
            f"FROM ({self.compile_select(query)}) AS {self.wrap_segment('aggregate_table')}"
        )

    def compile_wrapped_exists(self, query: Query) -> str:
        return f"SELECT 1 FROM ({self.compile_select(query)}) AS {self.wrap_segment('exists_table')} LIMIT 1"

    def compile_insert(self, query: Query, columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> str:
        table = self.wrap(query.from_table, query.wrap_identifiers)
        if not columns:
            return f"INSERT INTO {table} DEFAULT VALUES"
        column_list = self.columnize(columns, query.wrap_identifiers)
        groups = []
        for row in rows:
            placeholders = ", ".join(self.parameter(row.get(column)) for column in columns)
            groups.append(f"({placeholders})")
        return f"INSERT INTO {table} ({column_list}) VALUES {', '.join(groups)}"

    def compile_update(self, query: Query, values: dict[str, Any]) -> str:
        table = self.wrap(query.from_table, query.wrap_identifiers)
        assignments = ", ".join(
            f"{self.wrap(column, query.wrap_identifiers)} = {self.parameter(value)}"
            for column, value in values.items()
        )
        sql = f"UPDATE {table} SET {assignments}"
        wheres = self._compile_wheres(query)
        return f"{sql} {wheres}" if wheres else sql

    def compile_delete(self, query: Query) -> str:
        sql = f"DELETE FROM {self.wrap(query.from_table, query.wrap_identifiers)}"
        wheres = self._compile_wheres(query)
        return f"{sql} {wheres}" if wheres else sql


def _result_name(column: str) -> str:
    """Name under which a selected column appears in the result row."""
    aliased = _split_alias(str(column).strip())
    if aliased is not None:
        return aliased[1].strip("`\"")
    return str(column).strip().split(".")[-1].strip("`\"")
