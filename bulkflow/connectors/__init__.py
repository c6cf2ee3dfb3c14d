"""Connection adapters for bulk operations.

Callers pass an open connection; these adapters expose the small surface the
pipeline needs (statement execution, row counts and a unit of work):
- SQLAlchemy connections (SQLite, PostgreSQL, SQL Server)
- native DuckDB connections
"""

from bulkflow.connectors.base.session import BulkSession
from bulkflow.connectors.duckdb_session import DuckDBSession
from bulkflow.connectors.factory import connect, open_session
from bulkflow.connectors.sqlalchemy_session import SqlAlchemySession

__all__ = [
    "BulkSession",
    "DuckDBSession",
    "SqlAlchemySession",
    "connect",
    "open_session",
]
