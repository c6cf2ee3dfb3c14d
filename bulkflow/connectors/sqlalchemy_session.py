from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

from sqlalchemy.engine import Connection

from bulkflow.connectors.base.session import BulkSession
from bulkflow.logging import get_logger

logger = get_logger(__name__)


class SqlAlchemySession(BulkSession):
    """Session over an open SQLAlchemy ``Connection``.

    Statements produced by providers are backend-specific text, so they are
    sent with ``exec_driver_sql`` using the driver's own parameter style.
    Every statement the pipeline issues runs inside ``unit_of_work``, so a
    transaction found open on entry always belongs to the caller or to an
    enclosing unit.
    """

    def __init__(self, connection: Connection):
        super().__init__(connection)
        self.dialect = connection.dialect.name

    def execute(self, sql: str, parameters: Optional[Any] = None) -> int:
        logger.debug(f"Executing: {sql}")
        if parameters is None:
            result = self.connection.exec_driver_sql(sql)
        else:
            result = self.connection.exec_driver_sql(sql, parameters)
        return result.rowcount

    def execute_many(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        if not rows:
            return 0
        result = self.connection.exec_driver_sql(sql, list(rows))
        return result.rowcount

    def fetch_all(self, sql: str, parameters: Optional[Any] = None) -> List[tuple]:
        if parameters is None:
            result = self.connection.exec_driver_sql(sql)
        else:
            result = self.connection.exec_driver_sql(sql, parameters)
        return [tuple(row) for row in result.fetchall()]

    def dbapi_cursor(self):
        """Return a cursor on the raw DBAPI connection behind this session."""
        return self.connection.connection.cursor()

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        if self.connection.in_transaction():
            # Joined; whoever opened it commits or rolls back
            yield
            return

        with self.connection.begin():
            yield
