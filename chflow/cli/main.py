#!/usr/bin/env python3
"""chflow CLI: move data between ClickHouse and delimited flat files.

Connection options are given once on the main command (or through
``CLICKHOUSE_*`` environment variables and a ``.env`` file) and shared by
every subcommand:

    chflow --host ch.example.com --token $TOKEN connect tables
    chflow export users --columns id,name --output users.csv
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console

from chflow.cli.display import (
    display_columns,
    display_env_vars,
    display_error,
    display_json_output,
    display_result_error,
    display_rows,
    display_success,
    display_tables_list,
    display_warning,
)
from chflow.config import Settings, get_settings, reset_settings
from chflow.core import operations
from chflow.core.results import Result
from chflow.logging import configure_logging, get_logger, suppress_third_party_loggers
from chflow.utils.env import list_env_vars, setup_environment

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="chflow",
    help="chflow - move data between ClickHouse and flat files",
    add_completion=False,
)

connect_app = typer.Typer(
    name="connect",
    help="Test the connection and inspect tables",
    rich_markup_mode="rich",
)
app.add_typer(connect_app, name="connect")


@dataclass
class CLIState:
    """Options of the main command, shared with subcommands through ``ctx.obj``."""

    settings: Settings
    connection: Dict[str, Any] = field(default_factory=dict)
    verbose: bool = False

    def params(self, **extra: Any) -> Dict[str, Any]:
        """Connection fields merged with command fields."""
        merged = dict(self.connection)
        merged.update({key: value for key, value in extra.items() if value is not None})
        return merged


def _setup_environment(verbose: bool = False, quiet: bool = False) -> Settings:
    """Load .env, refresh settings and configure logging."""
    env_loaded = setup_environment()
    reset_settings()
    settings = get_settings()

    configure_logging(verbose=verbose, quiet=quiet, level=settings.log_level)
    suppress_third_party_loggers()

    if verbose and env_loaded:
        console.print("✓ [dim]Environment variables loaded from .env file[/dim]")
    return settings


def _state(ctx: typer.Context) -> CLIState:
    return ctx.obj


def _finish(result: Result, state: CLIState) -> Result:
    """Exit with code 1 on a failed result."""
    if not result.success:
        display_result_error(result, verbose=state.verbose)
        raise typer.Exit(1)
    return result


def _report_export(result: Result) -> None:
    display_success(result.message)
    if result.count == 0:
        display_warning("No rows matched; the file holds only the header")


def _load_transforms(path: Optional[str]) -> Optional[Dict[str, Any]]:
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        display_error(f"Cannot read transforms file {path}: {e}")
        raise typer.Exit(1)


def _columns_option(columns: Optional[str]) -> Optional[List[str]]:
    if columns is None:
        return None
    return [name.strip() for name in columns.split(",") if name.strip()]


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="ClickHouse host"),
    port: Optional[int] = typer.Option(None, "--port", "-P", help="ClickHouse HTTP port"),
    database: Optional[str] = typer.Option(None, "--database", "-d", help="Database name"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Username"),
    password: Optional[str] = typer.Option(None, "--password", help="Password"),
    token: Optional[str] = typer.Option(None, "--token", help="Access token (JWT)"),
    secure: Optional[bool] = typer.Option(
        None, "--secure/--insecure", help="Use HTTPS"
    ),
    driver: str = typer.Option(
        "clickhouse", "--driver", help="Store driver: clickhouse or duckdb"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    """chflow - move data between ClickHouse and flat files.

    Examples:
        chflow --host localhost --token $TOKEN connect test
        chflow export users --columns id,name --output users.csv
        chflow import users.csv --table users --columns id,name
    """
    if version:
        from chflow import __version__

        console.print(f"chflow v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()

    settings = _setup_environment(verbose, quiet)
    connection = dict(settings.connection_defaults)
    connection.update(
        {
            key: value
            for key, value in {
                "host": host,
                "port": port,
                "database": database,
                "username": user,
                "password": password,
                "auth_token": token,
                "secure": secure,
            }.items()
            if value is not None
        }
    )
    connection["driver"] = driver
    ctx.obj = CLIState(settings=settings, connection=connection, verbose=verbose)
    logger.debug("Using %s connection to %s", driver, connection.get("host"))


@connect_app.command("test")
def connect_test(ctx: typer.Context) -> None:
    """Test the connection to the store."""
    state = _state(ctx)
    result = _finish(operations.test_connection(state.params(), settings=state.settings), state)
    display_success(result.message)


@connect_app.command("tables")
def connect_tables(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """List the tables of the database."""
    state = _state(ctx)
    result = _finish(operations.list_tables(state.params(), settings=state.settings), state)
    if format == "json":
        display_json_output(result.data)
    else:
        display_tables_list(result.data)


@connect_app.command("describe")
def connect_describe(
    ctx: typer.Context,
    table: str = typer.Argument(..., help="Table to describe"),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """Show the columns of a table."""
    state = _state(ctx)
    result = _finish(
        operations.describe_table(state.params(table=table), settings=state.settings), state
    )
    if format == "json":
        display_json_output(result.data)
    else:
        display_columns(table, result.data)


@app.command()
def query(
    ctx: typer.Context,
    sql: str = typer.Argument(..., help="SQL to run"),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """Run a query and show its rows."""
    state = _state(ctx)
    result = _finish(
        operations.execute_query(state.params(query=sql), settings=state.settings), state
    )
    if format == "json":
        display_json_output(result.data)
    else:
        display_rows(result.data, result.schema, title="Query result")


@app.command()
def preview(
    ctx: typer.Context,
    table: str = typer.Argument(..., help="Table to preview"),
    columns: Optional[str] = typer.Option(None, "--columns", "-c", help="Comma-separated columns"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Rows to show"),
) -> None:
    """Show the first rows of a table."""
    state = _state(ctx)
    result = _finish(
        operations.preview_table(
            state.params(table=table, columns=_columns_option(columns), limit=limit),
            settings=state.settings,
        ),
        state,
    )
    display_rows(result.data, result.schema, title=f"Preview of {table}")


@app.command()
def export(
    ctx: typer.Context,
    table: str = typer.Argument(..., help="Table to export"),
    columns: str = typer.Option(..., "--columns", "-c", help="Comma-separated columns"),
    output: str = typer.Option(..., "--output", "-o", help="File to write"),
    delimiter: str = typer.Option(",", "--delimiter", help="Field delimiter, or 'tab'"),
    where: Optional[str] = typer.Option(None, "--where", help="Row predicate (SQL)"),
    transforms: Optional[str] = typer.Option(
        None, "--transforms", help="JSON file with a transform plan"
    ),
) -> None:
    """Export columns of a table to a flat file."""
    state = _state(ctx)
    result = _finish(
        operations.export_table(
            state.params(
                table=table,
                columns=_columns_option(columns),
                file_name=os.path.abspath(output),
                delimiter=delimiter,
                where=where,
                transforms=_load_transforms(transforms),
            ),
            settings=state.settings,
        ),
        state,
    )
    _report_export(result)


@app.command("export-join")
def export_join(
    ctx: typer.Context,
    tables: List[str] = typer.Option(..., "--table", "-t", help="Table to join, in order"),
    on: List[str] = typer.Option(
        ..., "--on", help="Join predicate for each table after the first"
    ),
    columns: str = typer.Option(..., "--columns", "-c", help="Comma-separated columns"),
    output: str = typer.Option(..., "--output", "-o", help="File to write"),
    delimiter: str = typer.Option(",", "--delimiter", help="Field delimiter, or 'tab'"),
    where: Optional[str] = typer.Option(None, "--where", help="Row predicate (SQL)"),
    transforms: Optional[str] = typer.Option(
        None, "--transforms", help="JSON file with a transform plan"
    ),
) -> None:
    """Export columns of joined tables to a flat file."""
    state = _state(ctx)
    result = _finish(
        operations.export_join(
            state.params(
                tables=list(tables),
                join_conditions=list(on),
                columns=_columns_option(columns),
                file_name=os.path.abspath(output),
                delimiter=delimiter,
                where=where,
                transforms=_load_transforms(transforms),
            ),
            settings=state.settings,
        ),
        state,
    )
    _report_export(result)


@app.command("import")
def import_(
    ctx: typer.Context,
    file_path: str = typer.Argument(..., help="Flat file to import"),
    table: str = typer.Option(..., "--table", "-t", help="Target table"),
    columns: str = typer.Option(..., "--columns", "-c", help="Comma-separated columns"),
    delimiter: str = typer.Option(",", "--delimiter", help="Field delimiter, or 'tab'"),
    header: bool = typer.Option(True, "--header/--no-header", help="First line is a header"),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", help="Rows per INSERT statement"
    ),
    transforms: Optional[str] = typer.Option(
        None, "--transforms", help="JSON file with a transform plan"
    ),
) -> None:
    """Import a flat file into a table, creating the table if needed."""
    state = _state(ctx)
    result = _finish(
        operations.import_file(
            state.params(
                table=table,
                columns=_columns_option(columns),
                file_path=os.path.abspath(file_path),
                delimiter=delimiter,
                has_header=header,
                batch_size=batch_size,
                transforms=_load_transforms(transforms),
            ),
            settings=state.settings,
        ),
        state,
    )
    display_success(result.message)
    if isinstance(result.data, dict) and result.data.get("created_table"):
        console.print(f"   [dim]Created table {table} with string columns[/dim]")


@app.command("preview-file")
def preview_file(
    ctx: typer.Context,
    file_path: str = typer.Argument(..., help="Flat file to preview"),
    delimiter: str = typer.Option(",", "--delimiter", help="Field delimiter, or 'tab'"),
    header: bool = typer.Option(True, "--header/--no-header", help="First line is a header"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Rows to show"),
) -> None:
    """Show the first rows and field names of a flat file."""
    state = _state(ctx)
    result = _finish(
        operations.preview_file(
            {
                "file_path": os.path.abspath(file_path),
                "delimiter": delimiter,
                "has_header": header,
                "limit": limit,
            },
            settings=state.settings,
        ),
        state,
    )
    display_rows(
        result.data,
        result.schema,
        title=f"Preview of {os.path.basename(file_path)}",
        total=result.count,
    )


@app.command()
def env() -> None:
    """Show chflow and ClickHouse environment variables (secrets masked)."""
    variables = list_env_vars("CHFLOW_")
    variables.update(list_env_vars("CLICKHOUSE_"))
    display_env_vars(variables)


def cli() -> None:
    """Entry point for the CLI application."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n⚠️  [yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(130)


if __name__ == "__main__":
    cli()
