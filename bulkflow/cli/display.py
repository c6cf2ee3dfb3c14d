"""Rich output helpers for the bulkflow CLI."""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bulkflow.core.models import BulkResult, TableSchema
from bulkflow.exceptions import BulkOperationError

console = Console()


def display_bulk_result(result: BulkResult) -> None:
    """Display the summary of a finished bulk operation."""
    console.print(
        f"✅ [bold green]Bulk {result.operation.value} into "
        f"{result.table_name} completed[/bold green]"
    )
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Rows affected", str(result.rows_affected))
    table.add_row("Rows loaded", str(result.rows_loaded))
    table.add_row("Batches", str(result.batches))
    if result.staging_table:
        table.add_row("Staging table", result.staging_table)
    table.add_row("Elapsed", f"{result.elapsed_seconds:.3f}s")
    console.print(table)
    if result.cleanup_error:
        display_warning(str(result.cleanup_error))


def display_table_schema(table: TableSchema, capabilities: Dict[str, Any]) -> None:
    """Display catalog columns of a table and the provider's capabilities."""
    columns = Table(show_header=True, header_style="bold blue")
    columns.add_column("Column", style="cyan")
    columns.add_column("Type", style="white")
    columns.add_column("Nullable")
    columns.add_column("Key", style="yellow")
    for column in table.columns:
        flags = []
        if column.is_primary_key:
            flags.append("PK")
        if column.is_identity:
            flags.append("IDENTITY")
        columns.add_row(
            column.name,
            column.type_name,
            "yes" if column.nullable else "no",
            ", ".join(flags),
        )
    console.print(f"📋 [bold blue]{table.qualified_name}[/bold blue]")
    console.print(columns)
    display_capabilities([capabilities])


def display_capabilities(providers: List[Dict[str, Any]]) -> None:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Provider", style="cyan")
    table.add_column("Temp tables")
    table.add_column("Native load")
    table.add_column("Join update")
    table.add_column("MERGE")
    table.add_column("Hints")
    table.add_column("Batch size", justify="right")
    for info in providers:
        table.add_row(
            info["name"],
            _mark(info["supports_session_temp_tables"]),
            _mark(info["supports_native_bulk_load"]),
            _mark(info["supports_join_update"]),
            _mark(info["supports_merge_statement"]),
            _mark(info["supports_hints"]),
            str(info["default_batch_size"]),
        )
    console.print(table)


def display_json_output(data: Any) -> None:
    console.print(json.dumps(data, indent=2, default=str))


def display_bulk_error(error: BulkOperationError) -> None:
    """Display a classified bulk error with its cleanup diagnostics."""
    content = str(error)
    for cleanup_error in error.cleanup_errors:
        content += f"\n\nCleanup: {cleanup_error}"
    console.print(
        Panel(content, title=f"❌ {type(error).__name__}", border_style="red")
    )


def display_error(message: str, suggestions: Optional[List[str]] = None) -> None:
    console.print(f"❌ [bold red]{message}[/bold red]")
    for suggestion in suggestions or []:
        console.print(f"  💡 {suggestion}")


def display_warning(message: str) -> None:
    console.print(f"⚠️  [yellow]{message}[/yellow]")


def _mark(flag: bool) -> str:
    return "✓" if flag else "-"
