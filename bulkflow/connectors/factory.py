"""Adapters from caller-supplied connections to bulk sessions."""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import duckdb
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from bulkflow.connectors.base.session import BulkSession
from bulkflow.connectors.duckdb_session import DuckDBSession
from bulkflow.connectors.sqlalchemy_session import SqlAlchemySession
from bulkflow.logging import get_logger

logger = get_logger(__name__)

DUCKDB_URL_PREFIX = "duckdb:///"


def open_session(connection: Any) -> BulkSession:
    """Wrap an open connection in the matching session type.

    Args:
        connection: SQLAlchemy ``Connection``, ``duckdb`` connection, or an
            existing ``BulkSession``

    Returns:
        Session bound to the connection

    Raises:
        TypeError: If the connection type is not supported
    """
    if isinstance(connection, BulkSession):
        return connection
    if isinstance(connection, Connection):
        return SqlAlchemySession(connection)
    if isinstance(connection, duckdb.DuckDBPyConnection):
        return DuckDBSession(connection)
    if isinstance(connection, Engine):
        raise TypeError(
            "Pass an open Connection (engine.connect()), not an Engine; "
            "the caller owns the connection lifecycle"
        )
    raise TypeError(f"Unsupported connection type: {type(connection).__name__}")


@contextmanager
def connect(url: str, options: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
    """Open a connection from a URL for the lifetime of the block.

    ``duckdb:///path`` (or ``duckdb:///:memory:``) opens a native DuckDB
    connection; anything else is handed to SQLAlchemy.
    """
    options = dict(options or {})
    if url.startswith(DUCKDB_URL_PREFIX):
        database = url[len(DUCKDB_URL_PREFIX) :] or ":memory:"
        logger.debug(f"Opening DuckDB database {database}")
        conn = duckdb.connect(database)
        try:
            yield conn
        finally:
            conn.close()
        return

    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        options.setdefault("poolclass", StaticPool)
        options.setdefault("connect_args", {"check_same_thread": False})

    engine = create_engine(url, **options)
    try:
        with engine.connect() as conn:
            yield conn
    finally:
        engine.dispose()
