"""Backend providers for bulk operations.

Providers are registered by dialect name when this package is imported:
- sqlite (reference backend)
- postgresql (requires psycopg2-binary)
- mssql (requires pyodbc)
- duckdb
"""

from bulkflow.providers.base import ProviderCapabilities, ProviderStrategy
from bulkflow.providers.duckdb import DuckDBProvider
from bulkflow.providers.postgres import PostgresProvider
from bulkflow.providers.registry import ProviderRegistry, provider_registry
from bulkflow.providers.sqlite import SQLiteProvider
from bulkflow.providers.sqlserver import SqlServerProvider

provider_registry.register("sqlite", SQLiteProvider)
provider_registry.register("postgresql", PostgresProvider)
provider_registry.register("mssql", SqlServerProvider)
provider_registry.register("duckdb", DuckDBProvider)

__all__ = [
    "DuckDBProvider",
    "PostgresProvider",
    "ProviderCapabilities",
    "ProviderRegistry",
    "ProviderStrategy",
    "SQLiteProvider",
    "SqlServerProvider",
    "provider_registry",
]
