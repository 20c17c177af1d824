"""rowbind CLI entrypoint."""

from __future__ import annotations

from collections.abc import Iterable

import click

from rowbind.shared.cli import CLIContext, common_cli_options, handle_cli_errors, pass_cli_context

from . import executor, render

ROWS_FORMAT_CHOICES = ("table", "csv", "tsv", "json")
SCHEMA_FORMAT_CHOICES = ("table", "json")


@click.group(help="Inspect a database through the rowbind schema cache and query builder.")
@common_cli_options
@handle_cli_errors
def cli(cli_ctx: CLIContext) -> None:
    """Primary Click group for rowbind commands."""
    cli_ctx.logger.debug(f"rowbind invoked against {cli_ctx.db_path}")


@cli.command("schema")
@click.option("--table", "table_filter", type=str, help="Inspect a specific table only.")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(SCHEMA_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def show_schema(cli_ctx: CLIContext, table_filter: str | None, output_format: str) -> None:
    """Display columns, keys and foreign keys of the database tables."""
    _log_subcommand_entry(cli_ctx, "schema")
    with cli_ctx.open_database() as context:
        overview = executor.describe_schema(context=context, table_filter=table_filter)
    render.render_schema_overview(overview, output_format=output_format, logger=cli_ctx.logger)


@cli.command("rows")
@click.argument("table", type=str)
@click.option(
    "-w",
    "--where",
    "conditions",
    multiple=True,
    metavar="COLUMN=VALUE",
    help="Equality filter; repeat to combine with AND.",
)
@click.option("--order", type=str, help="Column to sort by; prefix with '-' for descending.")
@click.option("--page", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--per-page", "per_page", type=click.IntRange(min=1), help="Rows per page (default from config).")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(ROWS_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def show_rows(
    cli_ctx: CLIContext,
    table: str,
    conditions: Iterable[str],
    order: str | None,
    page: int,
    per_page: int | None,
    output_format: str,
) -> None:
    """Page through the rows of TABLE."""
    _log_subcommand_entry(cli_ctx, "rows")
    try:
        filters = _parse_params(conditions)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    with cli_ctx.open_database() as context:
        result = executor.fetch_rows(
            context=context,
            table=table,
            filters=filters,
            order=order,
            page=page,
            per_page=per_page,
        )
    render.render_rows(result, output_format=output_format, logger=cli_ctx.logger)


@cli.command("scaffold")
@click.argument("table", type=str)
@click.option("--class-name", "class_name", type=str, help="Name of the generated class.")
@pass_cli_context
@handle_cli_errors
def scaffold(cli_ctx: CLIContext, table: str, class_name: str | None) -> None:
    """Print an ActiveRecord declaration for TABLE."""
    _log_subcommand_entry(cli_ctx, "scaffold")
    with cli_ctx.open_database() as context:
        source = executor.scaffold_record(context=context, table=table, class_name=class_name)
    click.echo(source, nl=False)


def _log_subcommand_entry(cli_ctx: CLIContext, command: str) -> None:
    cli_ctx.logger.debug(f"rowbind {command} invoked")


def _parse_params(pairs: Iterable[str]) -> dict[str, str]:
    """Convert COLUMN=VALUE CLI options into a dictionary."""
    parsed: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Filter '{pair}' must be in COLUMN=VALUE format.")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Filter columns cannot be empty.")
        parsed[key] = value
    return parsed


def main() -> None:
    """Entry point for console_scripts."""
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
