#!/usr/bin/env python3
"""bulkflow CLI.

Loads CSV, Parquet or JSON files into a table with a set-based bulk
operation, and inspects tables and providers.
"""

import json
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import typer
from rich.console import Console

from bulkflow.cli.display import (
    display_bulk_result,
    display_capabilities,
    display_error,
    display_json_output,
    display_table_schema,
    display_bulk_error,
)
from bulkflow.connectors.factory import connect, open_session
from bulkflow.core.models import OperationKind, StagingLifetime
from bulkflow.core.profiles import ProfileManager
from bulkflow.core.settings import BulkSettings
from bulkflow.exceptions import BulkOperationError
from bulkflow.logging import (
    configure_logging,
    get_logger,
    get_logging_status,
    suppress_third_party_loggers,
)
from bulkflow.operations import BulkOperations
from bulkflow.providers import provider_registry

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="bulkflow",
    help="bulkflow CLI - set-based bulk insert, delete, update and merge",
    add_completion=False,
)

SUPPORTED_FORMATS = (".csv", ".parquet", ".json", ".jsonl")


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
) -> None:
    """bulkflow CLI - move rows in bulk through staging tables.

    Examples:
        bulkflow load Customer customers.csv --operation merge --url sqlite:///app.db
        bulkflow inspect Customer --connection warehouse --profile prod
        bulkflow providers
    """
    if version:
        from bulkflow import __version__

        console.print(f"bulkflow v{__version__}")
        raise typer.Exit()

    configure_logging(verbose=verbose, quiet=quiet)
    suppress_third_party_loggers()


def parse_mappings(values: Optional[List[str]]) -> List[Tuple[str, str]]:
    """Parse ``source=target`` pairs given with ``--map``."""
    mappings = []
    for value in values or []:
        source, sep, target = value.partition("=")
        if not sep or not source.strip() or not target.strip():
            raise typer.BadParameter(f"Expected SOURCE=TARGET, got '{value}'")
        mappings.append((source.strip(), target.strip()))
    return mappings


def read_source(path: str) -> Any:
    """Read a data file into a row source the pipeline accepts."""
    extension = os.path.splitext(path)[1].lower()
    if extension not in SUPPORTED_FORMATS:
        raise typer.BadParameter(
            f"Unsupported file type '{extension}'. Use one of: {', '.join(SUPPORTED_FORMATS)}"
        )
    if not os.path.exists(path):
        raise typer.BadParameter(f"File not found: {path}")

    if extension == ".csv":
        return pd.read_csv(path)
    if extension == ".parquet":
        parquet_file = pq.ParquetFile(path)
        return pa.RecordBatchReader.from_batches(
            parquet_file.schema_arrow, parquet_file.iter_batches()
        )
    with open(path, "r", encoding="utf-8") as f:
        if extension == ".jsonl":
            return [json.loads(line) for line in f if line.strip()]
        data = json.load(f)
    if not isinstance(data, list):
        raise typer.BadParameter("JSON input must be an array of objects")
    return data


def resolve_connection(
    url: Optional[str], connection: Optional[str], profile: str, profile_dir: str
) -> Tuple[str, Dict[str, Any], BulkSettings]:
    """Return the URL, engine options and bulk settings to use."""
    if url:
        return url, {}, BulkSettings.from_env()
    if not connection:
        raise typer.BadParameter("Pass --url or --connection")
    manager = ProfileManager(profile_dir, profile)
    conn_profile = manager.get_connection(connection)
    return conn_profile.url, conn_profile.options, manager.get_bulk_settings()


@contextmanager
def _handle_errors(context: str) -> Iterator[None]:
    try:
        yield
    except typer.Exit:
        raise
    except typer.BadParameter:
        raise
    except BulkOperationError as e:
        display_bulk_error(e)
        raise typer.Exit(1)
    except (FileNotFoundError, ValueError) as e:
        display_error(f"Failed to {context}: {e}")
        raise typer.Exit(1)


@app.command()
def load(
    table: str = typer.Argument(..., help="Target table, optionally schema.table"),
    file: str = typer.Argument(..., help="CSV, Parquet, JSON or JSONL file"),
    operation: str = typer.Option(
        "insert", "--operation", "-o", help="insert, delete, update or merge"
    ),
    url: Optional[str] = typer.Option(None, "--url", help="Database URL"),
    connection: Optional[str] = typer.Option(
        None, "--connection", "-c", help="Connection name from the profile"
    ),
    profile: str = typer.Option("dev", "--profile", "-p", help="Profile to use"),
    profile_dir: str = typer.Option(
        "profiles", "--profile-dir", help="Directory holding profile files"
    ),
    qualifier: Optional[List[str]] = typer.Option(
        None, "--qualifier", help="Join key column (repeatable)"
    ),
    mapping: Optional[List[str]] = typer.Option(
        None, "--map", "-m", help="SOURCE=TARGET field mapping (repeatable)"
    ),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Rows per batch"),
    physical_staging: bool = typer.Option(
        False, "--physical-staging", help="Stage in a regular table instead of a temp table"
    ),
    hints: Optional[str] = typer.Option(None, "--hints", help="Table hints (SQL Server)"),
    output_format: str = typer.Option("table", "--format", help="Output: table or json"),
) -> None:
    """Load a file into TABLE with a bulk operation."""
    with _handle_errors("load data"):
        try:
            kind = OperationKind.from_string(operation)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from None
        mappings = parse_mappings(mapping)
        db_url, options, settings = resolve_connection(url, connection, profile, profile_dir)
        source = read_source(file)

        with connect(db_url, options) as conn:
            operations = BulkOperations(conn, settings=settings)
            result = operations.run(
                kind,
                table,
                source,
                mappings=mappings,
                qualifiers=qualifier,
                batch_size=batch_size,
                staging_lifetime=(
                    StagingLifetime.PHYSICAL_PSEUDO if physical_staging else None
                ),
                hints=hints,
            )

        logger.info(f"Loaded {file} into {table} ({kind.value})")
        if output_format == "json":
            display_json_output(result.to_dict())
        else:
            display_bulk_result(result)


@app.command()
def inspect(
    table: str = typer.Argument(..., help="Table, optionally schema.table"),
    url: Optional[str] = typer.Option(None, "--url", help="Database URL"),
    connection: Optional[str] = typer.Option(
        None, "--connection", "-c", help="Connection name from the profile"
    ),
    profile: str = typer.Option("dev", "--profile", "-p", help="Profile to use"),
    profile_dir: str = typer.Option(
        "profiles", "--profile-dir", help="Directory holding profile files"
    ),
) -> None:
    """Show columns, keys and identity of TABLE."""
    with _handle_errors("inspect table"):
        db_url, options, _ = resolve_connection(url, connection, profile, profile_dir)
        schema, name = (None, table)
        if "." in table:
            schema, name = table.split(".", 1)
        with connect(db_url, options) as conn:
            session = open_session(conn)
            provider = provider_registry.for_session(session)
            table_schema = provider.catalog(session).get_table(name, schema)
        display_table_schema(table_schema, provider.describe())


@app.command()
def providers(
    output_format: str = typer.Option("table", "--format", help="Output: table or json"),
) -> None:
    """List registered providers and their capabilities."""
    described = [
        provider_registry.get(dialect).describe()
        for dialect in provider_registry.dialects()
    ]
    if output_format == "json":
        display_json_output(described)
    else:
        display_capabilities(described)


@app.command()
def version(
    show_logging: bool = typer.Option(
        False, "--logging", help="Also show logger levels of bulkflow modules"
    ),
) -> None:
    """Show bulkflow version information."""
    import sqlalchemy

    from bulkflow import __version__

    console.print(f"bulkflow [cyan]{__version__}[/cyan]")
    console.print(f"SQLAlchemy: [dim]{sqlalchemy.__version__}[/dim]")
    console.print(f"Providers: [dim]{', '.join(provider_registry.dialects())}[/dim]")
    if show_logging:
        display_json_output(get_logging_status())


def cli() -> None:
    """Entry point for the bulkflow console script."""
    app()


if __name__ == "__main__":
    cli()
