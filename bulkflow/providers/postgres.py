import io
from typing import Any, List, Optional, Sequence, Tuple

import pandas as pd

from bulkflow.connectors.base.session import BulkSession
from bulkflow.core.models import MergeCommandType, StagingTable, TableSchema
from bulkflow.logging import get_logger
from bulkflow.providers.base import STAGING_ALIAS, ProviderCapabilities
from bulkflow.providers.sqlalchemy_base import SqlAlchemyProvider

logger = get_logger(__name__)


class PostgresProvider(SqlAlchemyProvider):
    """PostgreSQL through psycopg2: COPY into temp tables, joined DML."""

    name = "postgresql"
    dialect = "postgresql"
    capabilities = ProviderCapabilities(
        supports_session_temp_tables=True,
        supports_native_bulk_load=True,
        supports_join_update=True,
        supports_join_delete=True,
        supports_on_conflict=True,
        indexes_staging_qualifiers=False,
        max_parameters=32767,
        max_identifier_length=63,
        default_batch_size=50000,
    )

    def _load_batch(
        self,
        session: BulkSession,
        table_ref: str,
        columns: Sequence[str],
        batch: List[Tuple[Any, ...]],
    ) -> int:
        """Use PostgreSQL COPY for high-performance bulk loading."""
        frame = pd.DataFrame(batch, columns=list(columns), dtype=object)
        buffer = io.StringIO()
        frame.to_csv(buffer, index=False, header=False, sep="\t", na_rep="\\N")
        buffer.seek(0)

        copy_sql = (
            f"COPY {table_ref} ({self.formatter.format_column_list(columns)}) "
            "FROM STDIN WITH (FORMAT CSV, DELIMITER E'\\t', NULL '\\N')"
        )
        cursor = session.dbapi_cursor()
        try:
            cursor.copy_expert(copy_sql, buffer)
        finally:
            cursor.close()
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

    def build_merge(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        update_columns: Sequence[str],
        insert_columns: Sequence[str],
        hints: Optional[str] = None,
        merge_command_type: MergeCommandType = MergeCommandType.UPDATE_THEN_INSERT,
        keep_identity: bool = False,
    ) -> List[str]:
        if merge_command_type != MergeCommandType.ON_CONFLICT_DO_UPDATE:
            return super().build_merge(
                target, staging, qualifiers, update_columns, insert_columns
            )

        # ON CONFLICT needs a unique index covering exactly the qualifiers
        conflict = self.formatter.format_column_list(qualifiers)
        if update_columns:
            action = "DO UPDATE SET " + ", ".join(
                f"{self.formatter.quote_identifier(c)} = "
                f"EXCLUDED.{self.formatter.quote_identifier(c)}"
                for c in update_columns
            )
        else:
            action = "DO NOTHING"
        insert = self.formatter.build_insert_select(
            self.target_ref(target),
            insert_columns,
            self.staging_ref(staging),
            source_alias=STAGING_ALIAS,
        )
        return [f"{insert} ON CONFLICT ({conflict}) {action}"]
