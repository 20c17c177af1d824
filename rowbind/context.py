"""Per-application database context injected into records and queries."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from rowbind.database.connection import Connection
from rowbind.database.schema import SchemaCache
from rowbind.orm.coercion import Coercer
from rowbind.orm.query import Query
from rowbind.orm.relations import SharedRecordCache
from rowbind.shared.config import AppConfig
from rowbind.shared.logging import Logger, get_logger


@dataclass(slots=True)
class DatabaseContext:
    """Everything one worker needs to talk to its database.

    Owns the connection, the schema cache and the shared record cache. Not safe to share
    between threads; create one per worker.
    """

    config: AppConfig
    connection: Connection
    schema: SchemaCache
    coercer: Coercer
    shared_cache: SharedRecordCache = field(default_factory=SharedRecordCache)
    state: dict[str, Any] = field(default_factory=dict)
    logger: Logger = field(default_factory=get_logger)

    @classmethod
    def from_config(cls, config: AppConfig, logger: Logger | None = None) -> DatabaseContext:
        logger = logger or get_logger()
        connection = Connection(
            config.database.path,
            read_only=config.database.read_only,
            logger=logger,
            log_queries=config.logging.log_queries,
        )
        return cls(
            config=config,
            connection=connection,
            schema=SchemaCache(connection, logger),
            coercer=Coercer(timezone=config.runtime.tzinfo, utc_dates=config.runtime.utc_dates),
            logger=logger,
        )

    @property
    def is_development(self) -> bool:
        return self.config.runtime.is_development

    def table(self, name: str) -> Query:
        """Start a query against ``name`` returning plain row dictionaries."""
        return Query(self, name)

    @contextmanager
    def transaction(self) -> Iterator[DatabaseContext]:
        with self.connection.transaction():
            yield self

    def close(self) -> None:
        self.shared_cache.clear()
        self.state.clear()
        self.connection.close()


@contextmanager
def open_context(config: AppConfig, logger: Logger | None = None) -> Iterator[DatabaseContext]:
    """Yield a DatabaseContext for ``config`` and close it afterwards."""
    context = DatabaseContext.from_config(config, logger=logger)
    try:
        yield context
    finally:
        context.close()
