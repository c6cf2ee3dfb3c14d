from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

import duckdb

from bulkflow.connectors.base.session import BulkSession
from bulkflow.logging import get_logger

logger = get_logger(__name__)


class DuckDBSession(BulkSession):
    """Session over a native ``duckdb.DuckDBPyConnection``."""

    dialect = "duckdb"

    def __init__(self, connection: duckdb.DuckDBPyConnection):
        super().__init__(connection)
        self._depth = 0

    def execute(self, sql: str, parameters: Optional[Any] = None) -> int:
        logger.debug(f"Executing: {sql}")
        if parameters is None:
            result = self.connection.execute(sql)
        else:
            result = self.connection.execute(sql, parameters)
        return self._rowcount(result)

    def execute_many(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        if not rows:
            return 0
        self.connection.executemany(sql, [list(row) for row in rows])
        return len(rows)

    def fetch_all(self, sql: str, parameters: Optional[Any] = None) -> List[tuple]:
        if parameters is None:
            return self.connection.execute(sql).fetchall()
        return self.connection.execute(sql, parameters).fetchall()

    def register(self, name: str, data: Any) -> None:
        self.connection.register(name, data)

    def unregister(self, name: str) -> None:
        self.connection.unregister(name)

    @staticmethod
    def _rowcount(result) -> int:
        # DML statements answer with a single "Count" row
        description = result.description
        if description and description[0][0].lower() == "count":
            row = result.fetchone()
            return int(row[0]) if row else 0
        return -1

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self.connection.execute("BEGIN TRANSACTION")
        self._depth = 1
        try:
            yield
        except BaseException:
            self._depth = 0
            self.connection.execute("ROLLBACK")
            raise
        self._depth = 0
        self.connection.execute("COMMIT")
