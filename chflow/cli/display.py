"""Rich display functions for the chflow CLI."""

import json
import math
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from chflow.connectors.csv.codec import render_value
from chflow.core.results import Result

console = Console()

# Rows shown in a table before the output is cut
MAX_DISPLAY_ROWS = 50


def display_success(message: str) -> None:
    """Display success message."""
    console.print(f"✅ [bold green]{message}[/bold green]")


def display_error(message: str) -> None:
    """Display error message."""
    console.print(f"❌ [bold red]{message}[/bold red]")


def display_warning(message: str) -> None:
    """Display warning message."""
    console.print(f"⚠️  [bold yellow]{message}[/bold yellow]")


def display_result_error(result: Result, verbose: bool = False) -> None:
    """Display a failed result with its kind and, when verbose, its details."""
    kind = result.error_kind.value if result.error_kind else "error"
    display_error(f"{escape(result.message or 'Operation failed')} ({kind})")

    if result.failing_batch_index is not None:
        console.print(
            f"   📍 Failed at batch [bold cyan]{result.failing_batch_index}[/bold cyan], "
            f"{result.inserted_count or 0} rows already inserted"
        )

    details = result.details or {}
    suggestions = details.get("suggested_actions") or []
    if suggestions:
        console.print("💡 [bold yellow]Suggestions:[/bold yellow]")
        for suggestion in suggestions:
            console.print(f"   • {escape(suggestion)}")

    if verbose and details:
        console.print("📊 [bold blue]Details:[/bold blue]")
        for key, value in details.items():
            if key in ("suggested_actions", "traceback"):
                continue
            console.print(f"   {key}: {escape(str(value))}")


def _json_default(value: Any) -> Any:
    return render_value(value)


def display_json_output(data: Any) -> None:
    """Display JSON output with proper formatting."""
    try:
        json_str = json.dumps(data, indent=2, ensure_ascii=False, default=_json_default)
        console.print(json_str, markup=False, highlight=False)
    except (TypeError, ValueError) as e:
        display_error(f"Error formatting JSON output: {e}")


def _cell(value: Any) -> str:
    if isinstance(value, float) and math.isnan(value):
        return "NaN"
    if value is None:
        return "NULL"
    return escape(render_value(value))


def display_rows(
    rows: Sequence[Dict[str, Any]],
    columns: Optional[Sequence[str]] = None,
    title: Optional[str] = None,
    total: Optional[int] = None,
) -> None:
    """Display rows in a table, showing at most ``MAX_DISPLAY_ROWS``."""
    if columns is None:
        columns = list(rows[0].keys()) if rows else []

    if title:
        console.print(f"📋 [bold blue]{title}[/bold blue]")
    if not rows:
        console.print("   No rows")
        return

    table = Table(show_header=True, header_style="bold blue")
    for column in columns:
        table.add_column(str(column), style="cyan", overflow="fold")
    for row in rows[:MAX_DISPLAY_ROWS]:
        table.add_row(*(_cell(row.get(column)) for column in columns))
    console.print(table)

    total = len(rows) if total is None else total
    if total > MAX_DISPLAY_ROWS:
        console.print(f"   [dim]Showing {MAX_DISPLAY_ROWS} of {total} rows[/dim]")
    else:
        console.print(f"   [dim]{total} rows[/dim]")


def display_tables_list(names: List[str]) -> None:
    """Display table names."""
    if not names:
        console.print("📭 [bold blue]No tables found[/bold blue]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Table", style="cyan")
    for name in names:
        table.add_row(name)

    console.print(f"📋 [bold blue]Tables ({len(names)})[/bold blue]")
    console.print(table)


def display_columns(table_name: str, columns: List[Dict[str, str]]) -> None:
    """Display a table description as a two-column table."""
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Column", style="cyan")
    table.add_column("Type", style="white")
    for column in columns:
        table.add_row(column["name"], column["type"])

    console.print(f"📋 [bold blue]Columns of {table_name}[/bold blue]")
    console.print(table)


def display_env_vars(variables: Dict[str, str]) -> None:
    """Display environment variables (secret values arrive masked)."""
    if not variables:
        console.print("📭 [bold blue]No chflow environment variables set[/bold blue]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Variable", style="cyan")
    table.add_column("Value", style="white")
    for name in sorted(variables):
        table.add_row(name, variables[name])
    console.print(table)
