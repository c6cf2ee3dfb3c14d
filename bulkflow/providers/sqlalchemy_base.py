"""Shared loading for providers that talk through a SQLAlchemy connection."""

from typing import Any, Dict, List, Sequence, Tuple, Union

from bulkflow.connectors.base.session import BulkSession
from bulkflow.logging import get_logger
from bulkflow.providers.base import ProviderStrategy

logger = get_logger(__name__)


class SqlAlchemyProvider(ProviderStrategy):
    """Loads through multi-row INSERT statements.

    Used as the fallback bulk primitive: each statement carries as many rows
    as fit under ``capabilities.max_parameters`` bound parameters.
    """

    def _load_batch(
        self,
        session: BulkSession,
        table_ref: str,
        columns: Sequence[str],
        batch: List[Tuple[Any, ...]],
    ) -> int:
        rows_per_statement = max(1, self.capabilities.max_parameters // len(columns))
        paramstyle = _paramstyle(session)
        column_list = self.formatter.format_column_list(columns)
        written = 0
        for start in range(0, len(batch), rows_per_statement):
            chunk = batch[start : start + rows_per_statement]
            values, params = _values_clause(paramstyle, len(columns), chunk, self)
            session.execute(
                f"INSERT INTO {table_ref} ({column_list}) VALUES {values}", params
            )
            written += len(chunk)
        return written


def _paramstyle(session: BulkSession) -> str:
    connection = getattr(session, "connection", None)
    dialect = getattr(connection, "dialect", None)
    return getattr(dialect, "paramstyle", "qmark")


def _values_clause(
    paramstyle: str,
    width: int,
    rows: Sequence[Tuple[Any, ...]],
    provider: ProviderStrategy,
) -> Tuple[str, Union[Tuple[Any, ...], Dict[str, Any]]]:
    """Build ``(?, ?), (?, ?)`` and the matching flat parameter collection."""
    groups = []
    if paramstyle == "named":
        named: Dict[str, Any] = {}
        for r, row in enumerate(rows):
            names = [f"p{r}_{c}" for c in range(width)]
            groups.append("(" + ", ".join(f":{n}" for n in names) + ")")
            named.update(
                {n: provider.convert_value(v) for n, v in zip(names, row)}
            )
        return ", ".join(groups), named

    if paramstyle == "numeric":
        flat: List[Any] = []
        for row in rows:
            start = len(flat)
            groups.append(
                "(" + ", ".join(f":{start + c + 1}" for c in range(width)) + ")"
            )
            flat.extend(provider.convert_value(v) for v in row)
        return ", ".join(groups), tuple(flat)

    marker = "%s" if paramstyle in ("format", "pyformat") else "?"
    group = "(" + ", ".join([marker] * width) + ")"
    flat = []
    for row in rows:
        groups.append(group)
        flat.extend(provider.convert_value(v) for v in row)
    return ", ".join(groups), tuple(flat)
