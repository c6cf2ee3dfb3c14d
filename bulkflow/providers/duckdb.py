from typing import Any, List, Optional, Sequence, Tuple

import pyarrow as pa

from bulkflow.connectors.base.session import BulkSession
from bulkflow.core.catalog import DuckDBCatalog, SchemaCatalog
from bulkflow.core.models import StagingTable, TableSchema
from bulkflow.logging import get_logger
from bulkflow.providers.base import STAGING_ALIAS, ProviderCapabilities, ProviderStrategy

logger = get_logger(__name__)


class DuckDBProvider(ProviderStrategy):
    """DuckDB: Arrow registration as the bulk primitive, joined DML."""

    name = "duckdb"
    dialect = "duckdb"
    capabilities = ProviderCapabilities(
        supports_session_temp_tables=True,
        supports_native_bulk_load=True,
        supports_join_update=True,
        supports_join_delete=True,
        max_parameters=65535,
        max_identifier_length=128,
        default_batch_size=100000,
    )

    def _create_catalog(self, session: BulkSession) -> SchemaCatalog:
        return DuckDBCatalog(session)

    def _load_batch(
        self,
        session: BulkSession,
        table_ref: str,
        columns: Sequence[str],
        batch: List[Tuple[Any, ...]],
    ) -> int:
        data = {
            f"c{i}": [row[i] for row in batch] for i in range(len(columns))
        }
        arrow_table = pa.Table.from_pydict(data)
        view_name = f"_bulkflow_batch_{id(arrow_table):x}"
        session.register(view_name, arrow_table)
        try:
            select_list = ", ".join(f"c{i}" for i in range(len(columns)))
            session.execute(
                f"INSERT INTO {table_ref} "
                f"({self.formatter.format_column_list(columns)}) "
                f"SELECT {select_list} FROM {view_name}"
            )
        finally:
            session.unregister(view_name)
        return len(batch)

    def build_delete(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        hints: Optional[str] = None,
    ) -> str:
        target_name = self.formatter.quote_identifier(target.name)
        return (
            f"DELETE FROM {self.target_ref(target)} "
            f"USING {self.staging_ref(staging)} AS {STAGING_ALIAS} WHERE "
            f"{self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)}"
        )

    def build_update(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        update_columns: Sequence[str],
        hints: Optional[str] = None,
    ) -> str:
        target_name = self.formatter.quote_identifier(target.name)
        return (
            f"UPDATE {self.target_ref(target)} SET "
            f"{self.formatter.format_assignments(update_columns, STAGING_ALIAS)} "
            f"FROM {self.staging_ref(staging)} AS {STAGING_ALIAS} WHERE "
            f"{self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)}"
        )
