"""Pytest configuration for bulkflow tests."""

import datetime
import decimal
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generator, List, Optional

import duckdb
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

IDENTITY_TABLE_DDL = """
CREATE TABLE IdentityTable (
    Id INTEGER PRIMARY KEY,
    RowGuid TEXT,
    ColumnBit INTEGER,
    ColumnDateTime DATETIME,
    ColumnDecimal DECIMAL(18, 2),
    ColumnFloat REAL,
    ColumnInt INTEGER,
    ColumnNVarChar TEXT
)
"""

NO_KEY_TABLE_DDL = "CREATE TABLE Events (Code TEXT, Payload TEXT)"

DUCKDB_ITEMS_DDL = """
CREATE TABLE items (
    id INTEGER PRIMARY KEY,
    name VARCHAR,
    qty INTEGER,
    price DOUBLE
)
"""


@dataclass
class IdentityEntity:
    """Typed entity shaped like IdentityTable."""

    Id: Optional[int]
    RowGuid: str
    ColumnBit: bool
    ColumnDateTime: datetime.datetime
    ColumnDecimal: decimal.Decimal
    ColumnFloat: float
    ColumnInt: int
    ColumnNVarChar: str


@pytest.fixture
def sqlite_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine sharing one connection across threads."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def sqlite_conn(sqlite_engine: Engine) -> Generator[Connection, None, None]:
    """Open connection with IdentityTable and Events created and committed."""
    with sqlite_engine.connect() as conn:
        conn.execute(text(IDENTITY_TABLE_DDL))
        conn.execute(text(NO_KEY_TABLE_DDL))
        conn.commit()
        yield conn


@pytest.fixture
def duckdb_conn() -> Generator[duckdb.DuckDBPyConnection, None, None]:
    conn = duckdb.connect(":memory:")
    conn.execute(DUCKDB_ITEMS_DDL)
    yield conn
    conn.close()


@pytest.fixture
def make_entities() -> Callable[..., List[IdentityEntity]]:
    """Factory for IdentityTable entities without identity values."""

    def _make(count: int, start: int = 0, with_id: bool = False) -> List[IdentityEntity]:
        base = datetime.datetime(2024, 1, 1, 12, 0, 0)
        return [
            IdentityEntity(
                Id=(start + i + 1) if with_id else None,
                RowGuid=str(uuid.UUID(int=start + i + 1)),
                ColumnBit=(start + i) % 2 == 0,
                ColumnDateTime=base + datetime.timedelta(days=start + i),
                ColumnDecimal=decimal.Decimal(f"{start + i}.25"),
                ColumnFloat=float(start + i) / 2,
                ColumnInt=start + i,
                ColumnNVarChar=f"row {start + i}",
            )
            for i in range(count)
        ]

    return _make


@pytest.fixture
def make_records(make_entities) -> Callable[..., List[Dict[str, Any]]]:
    """Factory for IdentityTable rows as plain dictionaries."""

    def _make(count: int, start: int = 0) -> List[Dict[str, Any]]:
        return [
            {
                key: value
                for key, value in vars(entity).items()
                if key != "Id"
            }
            for entity in make_entities(count, start)
        ]

    return _make


@pytest.fixture
def staging_tables() -> Callable[[Connection], List[str]]:
    """Return staging tables left in a SQLite database (temp or physical)."""

    def _list(conn: Connection) -> List[str]:
        rows = conn.execute(
            text(
                "SELECT name FROM sqlite_temp_master WHERE name LIKE '\\_bulkflow%' "
                "ESCAPE '\\' UNION ALL "
                "SELECT name FROM sqlite_master WHERE name LIKE '\\_bulkflow%' "
                "ESCAPE '\\'"
            )
        ).fetchall()
        return [row[0] for row in rows]

    return _list


@pytest.fixture
def count_rows() -> Callable[[Connection, str], int]:
    def _count(conn: Connection, table: str) -> int:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()

    return _count
