"""SQLite connection wrapper: parameterized execution, result shapes and classified failures."""

from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Sequence

from rowbind.shared.config import AppConfig
from rowbind.shared.exceptions import (
    ConstraintError,
    DatabaseConnectionError,
    DatabaseError,
    QueryError,
    SchemaError,
)
from rowbind.shared.logging import Logger

if TYPE_CHECKING:
    from rowbind.orm.collection import Collection

MEMORY_PATH = ":memory:"

Params = Sequence[Any] | Mapping[str, Any]

_PLACEHOLDER = re.compile(r"\?")


class ResultShape(Enum):
    """How :meth:`Connection.query` packages the fetched rows."""

    RECORDS = "records"
    RECORD = "record"
    SCALARS = "scalars"
    SCALAR = "scalar"
    COUNT = "count"
    DICTIONARIES = "dictionaries"
    COLLECTION = "collection"


def _open_connection(path: str | Path, *, read_only: bool = False) -> sqlite3.Connection:
    # isolation_level=None keeps the driver in autocommit; transactions are explicit BEGIN/COMMIT.
    if read_only and str(path) != MEMORY_PATH:
        uri = f"file:{path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, isolation_level=None)
    else:
        conn = sqlite3.connect(path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def classify_error(exc: sqlite3.Error, sql: str | None = None) -> DatabaseError:
    """Map a driver error onto the engine's error taxonomy."""
    message = str(exc)
    lowered = message.lower()
    context = f" [{sql.strip()}]" if sql else ""
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintError(f"Constraint violation: {message}{context}")
    if isinstance(exc, sqlite3.ProgrammingError) and "bindings" in lowered:
        return QueryError(f"Parameter count does not match the placeholders: {message}{context}")
    if isinstance(exc, sqlite3.OperationalError):
        if "no such table" in lowered:
            return SchemaError(f"Missing table: {message}{context}")
        if "unable to open" in lowered or "disk i/o" in lowered or "not a database" in lowered:
            return DatabaseConnectionError(f"Database unavailable: {message}")
    return QueryError(f"SQLite error: {message}{context}")


def quote_literal(text: Any) -> str:
    """Return ``text`` as a single-quoted SQL string literal."""
    return "'" + str(text).replace("'", "''") + "'"


def interpolate(sql: str, params: Params | None = None) -> str:
    """Render ``sql`` with positional values inlined; for log output only."""
    if not params or isinstance(params, Mapping):
        return sql
    values = iter(_adapt_params(params))

    def _replace(_: re.Match[str]) -> str:
        try:
            value = next(values)
        except StopIteration:
            return "?"
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        return quote_literal(value)

    return _PLACEHOLDER.sub(_replace, sql)


def _adapt(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _adapt_params(params: Params | None) -> Any:
    if not params:
        return ()
    if isinstance(params, Mapping):
        return {key: _adapt(value) for key, value in params.items()}
    return tuple(_adapt(value) for value in params)


class Connection:
    """Lazily opened SQLite handle shared by a :class:`~rowbind.context.DatabaseContext`.

    Not safe for concurrent use from several threads; give each worker its own instance.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        read_only: bool = False,
        logger: Logger | None = None,
        log_queries: bool = False,
    ) -> None:
        self.path = path
        self.read_only = read_only
        self.logger = logger
        self.log_queries = log_queries
        self._handle: sqlite3.Connection | None = None
        self._last_insert_id: int | None = None

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def handle(self) -> sqlite3.Connection:
        if self._handle is None:
            self._handle = self._open()
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def in_transaction(self) -> bool:
        return self._handle is not None and self._handle.in_transaction

    def _open(self) -> sqlite3.Connection:
        if str(self.path) != MEMORY_PATH:
            db_path = Path(self.path)
            if self.read_only and not db_path.exists():
                raise DatabaseConnectionError(f"Database path not found: {db_path}")
            if not self.read_only:
                db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            return _open_connection(self.path, read_only=self.read_only)
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(f"Unable to open database {self.path}: {exc}") from exc

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def execute(self, sql: str, params: Params | None = None) -> int:
        """Run a write statement and return the number of affected rows."""
        cursor = self._run(sql, params)
        self._last_insert_id = cursor.lastrowid
        affected = max(cursor.rowcount, 0)
        self._log(sql, params, affected)
        return affected

    def query(
        self,
        sql: str,
        params: Params | None = None,
        shape: ResultShape = ResultShape.RECORDS,
    ) -> Any:
        """Run a read statement and package the rows according to ``shape``."""
        cursor = self._run(sql, params)
        if shape is ResultShape.RECORD:
            row = cursor.fetchone()
            self._log(sql, params, 0 if row is None else 1)
            return None if row is None else dict(row)
        if shape is ResultShape.SCALAR:
            row = cursor.fetchone()
            self._log(sql, params, 0 if row is None else 1)
            return None if row is None else row[0]

        rows = cursor.fetchall()
        self._log(sql, params, len(rows))
        if shape is ResultShape.RECORDS:
            return [dict(row) for row in rows]
        if shape is ResultShape.SCALARS:
            return [row[0] for row in rows]
        if shape is ResultShape.COUNT:
            return len(rows)
        if shape is ResultShape.DICTIONARIES:
            return [
                {key: None if row[key] is None else str(row[key]) for key in row.keys()}
                for row in rows
            ]
        if shape is ResultShape.COLLECTION:
            from rowbind.orm.collection import Collection

            return Collection([dict(row) for row in rows])
        raise QueryError(f"Unsupported result shape: {shape!r}")

    def last_insert_id(self) -> int | None:
        return self._last_insert_id

    def quote(self, text: Any) -> str:
        return quote_literal(text)

    def interpolate(self, sql: str, params: Params | None = None) -> str:
        return interpolate(sql, params)

    def begin(self) -> None:
        self._run("BEGIN", None)

    def commit(self) -> None:
        if self.in_transaction:
            self._run("COMMIT", None)

    def rollback(self) -> None:
        if self.in_transaction:
            self._run("ROLLBACK", None)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Wrap the block in BEGIN/COMMIT, rolling back when it raises."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def table_names(self) -> list[str]:
        return self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name",
            shape=ResultShape.SCALARS,
        )

    def _run(self, sql: str, params: Params | None) -> sqlite3.Cursor:
        try:
            return self.handle.execute(sql, _adapt_params(params))
        except sqlite3.Error as exc:
            raise classify_error(exc, sql) from exc

    def _log(self, sql: str, params: Params | None, affected: int) -> None:
        if self.log_queries and self.logger is not None:
            self.logger.query(self.interpolate(sql, params), affected)


@contextmanager
def connect(
    config: AppConfig,
    *,
    read_only: bool | None = None,
    logger: Logger | None = None,
) -> Iterator[Connection]:
    """Yield a Connection for the configured database and close it afterwards."""
    connection = Connection(
        config.database.path,
        read_only=config.database.read_only if read_only is None else read_only,
        logger=logger,
        log_queries=config.logging.log_queries,
    )
    try:
        yield connection
    finally:
        connection.close()
