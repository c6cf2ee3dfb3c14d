from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence


class BulkSession(ABC):
    """Abstract view of an open connection used by one bulk call.

    The caller owns the underlying connection; a session never opens or
    closes it.
    """

    dialect: str = "default"

    def __init__(self, connection: Any):
        self.connection = connection
        self.cache: Dict[str, Any] = {}

    @abstractmethod
    def execute(self, sql: str, parameters: Optional[Any] = None) -> int:
        """Execute one statement and return the engine-reported row count.

        Returns -1 when the engine reports no count (DDL).
        """
        raise NotImplementedError

    @abstractmethod
    def execute_many(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        """Execute one parameterized statement for many rows."""
        raise NotImplementedError

    @abstractmethod
    def fetch_all(self, sql: str, parameters: Optional[Any] = None) -> List[tuple]:
        raise NotImplementedError

    @abstractmethod
    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Run the enclosed statements as one transaction.

        Joins the caller's transaction when one is already open.
        """
        raise NotImplementedError
