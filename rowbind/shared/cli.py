"""Click plumbing for the rowbind command line: shared options, context and error mapping."""

from __future__ import annotations

import functools
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import click

from .config import ENVIRONMENTS, AppConfig, load_config
from .exceptions import ConfigurationError, DatabaseConnectionError, RowbindError
from .logging import Logger, get_logger

if TYPE_CHECKING:
    from rowbind.context import DatabaseContext

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(slots=True)
class CLIContext:
    """Resolved configuration and logger for one rowbind invocation."""

    config: AppConfig
    db_path: Path
    verbose: bool
    logger: Logger

    @contextmanager
    def open_database(self) -> Iterator[DatabaseContext]:
        """Open the configured database read-only; inspection commands never write."""
        from rowbind.context import open_context

        with open_context(self.config.as_read_only(), logger=self.logger) as context:
            yield context


pass_cli_context = click.make_pass_decorator(CLIContext)


def common_cli_options(func: F) -> F:
    """Attach --config/--db/--env/--log-queries/--verbose and build the CLIContext."""

    @click.option("--config", "config_path", type=click.Path(path_type=str), help="Path to config file.")
    @click.option("--db", "db_path", type=click.Path(path_type=str), help="SQLite database to inspect.")
    @click.option(
        "--env",
        "environment",
        type=click.Choice(ENVIRONMENTS),
        help="Override runtime.environment for this run.",
    )
    @click.option("--log-queries", is_flag=True, help="Echo every executed statement to stderr.")
    @click.option("--verbose", is_flag=True, help="Enable verbose logging output.")
    @click.pass_context
    @functools.wraps(func)
    def wrapper(
        ctx: click.Context,
        *args: Any,
        config_path: str | None = None,
        db_path: str | None = None,
        environment: str | None = None,
        log_queries: bool = False,
        verbose: bool = False,
        **kwargs: Any,
    ) -> Any:
        try:
            app_config = load_config(config_path)
        except ConfigurationError as exc:
            raise click.ClickException(str(exc)) from exc

        if db_path:
            app_config = app_config.with_database_path(db_path)
        if environment:
            app_config = app_config.with_environment(environment)
        if log_queries:
            app_config = app_config.with_query_logging()

        # Statement echo goes through Logger.query, which stays silent unless verbose.
        logger = get_logger(verbose=verbose or app_config.logging.log_queries)
        cli_ctx = CLIContext(
            config=app_config,
            db_path=app_config.database.path,
            verbose=verbose,
            logger=logger,
        )
        ctx.obj = cli_ctx
        kwargs["cli_ctx"] = cli_ctx
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def handle_cli_errors(func: F) -> F:
    """Turn rowbind exceptions into ClickException so the CLI exits 1 with a message."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ConfigurationError as exc:
            raise click.ClickException(f"Configuration error: {exc}") from exc
        except DatabaseConnectionError as exc:
            raise click.ClickException(f"Cannot open database: {exc}") from exc
        except RowbindError as exc:
            raise click.ClickException(str(exc)) from exc
        except click.ClickException:
            raise
        except Exception as exc:  # pragma: no cover
            raise click.ClickException(f"Unexpected error: {exc}") from exc

    return wrapper  # type: ignore[return-value]
