from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from bulkflow.connectors.base.session import BulkSession
from bulkflow.core.models import (
    MergeCommandType,
    OperationKind,
    StagingLifetime,
    StagingTable,
    TableSchema,
)
from bulkflow.logging import get_logger
from bulkflow.providers.base import STAGING_ALIAS, ProviderCapabilities
from bulkflow.providers.sqlalchemy_base import SqlAlchemyProvider

logger = get_logger(__name__)

TARGET_ALIAS = "T"


class SqlServerProvider(SqlAlchemyProvider):
    """SQL Server: ``#`` temp tables, executemany loads, MERGE and hints."""

    name = "mssql"
    dialect = "mssql"
    capabilities = ProviderCapabilities(
        supports_session_temp_tables=True,
        supports_native_bulk_load=False,
        supports_join_update=True,
        supports_join_delete=True,
        supports_merge_statement=True,
        supports_hints=True,
        indexes_staging_qualifiers=True,
        max_parameters=2100,
        max_identifier_length=116,
        default_batch_size=10000,
    )

    def staging_table_name(
        self,
        table_name: str,
        kind: OperationKind,
        lifetime: StagingLifetime,
        prefix: str = "_bulkflow",
    ) -> str:
        name = super().staging_table_name(table_name, kind, lifetime, prefix)
        if lifetime == StagingLifetime.SESSION_SCOPED:
            return f"#{name}"
        return name

    def create_staging_table(
        self,
        session: BulkSession,
        target: TableSchema,
        columns: Sequence[str],
        lifetime: StagingLifetime,
        name: str,
    ) -> StagingTable:
        # SELECT INTO over a UNION does not carry the IDENTITY property over
        staging = StagingTable(
            name=name,
            columns=list(columns),
            lifetime=lifetime,
            schema=None if lifetime == StagingLifetime.SESSION_SCOPED else target.schema,
        )
        column_list = self.formatter.format_column_list(columns)
        target_ref = self.target_ref(target)
        session.execute(
            f"SELECT TOP 0 {column_list} INTO {self.staging_ref(staging)} "
            f"FROM {target_ref} UNION ALL SELECT TOP 0 {column_list} FROM {target_ref}"
        )
        return staging

    def index_staging_table(
        self, session: BulkSession, staging: StagingTable, qualifiers: Sequence[str]
    ) -> None:
        index_name = self.formatter.quote_identifier(
            f"IX_{staging.name.lstrip('#')}"
        )
        session.execute(
            f"CREATE CLUSTERED INDEX {index_name} ON {self.staging_ref(staging)} "
            f"({self.formatter.format_column_list(qualifiers)})"
        )

    def _load_batch(
        self,
        session: BulkSession,
        table_ref: str,
        columns: Sequence[str],
        batch: List[Tuple[Any, ...]],
    ) -> int:
        placeholders = ", ".join(["?"] * len(columns))
        session.execute_many(
            f"INSERT INTO {table_ref} ({self.formatter.format_column_list(columns)}) "
            f"VALUES ({placeholders})",
            batch,
        )
        return len(batch)

    @contextmanager
    def identity_insert(
        self, session: BulkSession, table_ref: str, enabled: bool
    ) -> Iterator[None]:
        if not enabled:
            yield
            return
        session.execute(f"SET IDENTITY_INSERT {table_ref} ON")
        try:
            yield
        finally:
            session.execute(f"SET IDENTITY_INSERT {table_ref} OFF")

    def _hinted(self, target: TableSchema, hints: Optional[str]) -> str:
        ref = f"{self.target_ref(target)} AS {TARGET_ALIAS}"
        if not hints:
            return ref
        hint_text = hints.strip()
        if not hint_text.upper().startswith("WITH"):
            hint_text = f"WITH ({hint_text})"
        return f"{ref} {hint_text}"

    def build_delete(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        hints: Optional[str] = None,
    ) -> str:
        return (
            f"DELETE {TARGET_ALIAS} FROM {self._hinted(target, hints)} "
            f"INNER JOIN {self.staging_ref(staging)} AS {STAGING_ALIAS} ON "
            f"{self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, TARGET_ALIAS)}"
        )

    def build_update(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        update_columns: Sequence[str],
        hints: Optional[str] = None,
    ) -> str:
        assignments = self.formatter.format_assignments(
            update_columns, STAGING_ALIAS, target=TARGET_ALIAS
        )
        return (
            f"UPDATE {TARGET_ALIAS} SET {assignments} "
            f"FROM {self._hinted(target, hints)} "
            f"INNER JOIN {self.staging_ref(staging)} AS {STAGING_ALIAS} ON "
            f"{self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, TARGET_ALIAS)}"
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
        fmt = self.formatter
        staged = sorted(set(insert_columns) | set(update_columns) | set(qualifiers))
        target_ref = self.target_ref(target)
        if hints:
            hint_text = hints.strip()
            if not hint_text.upper().startswith("WITH"):
                hint_text = f"WITH ({hint_text})"
            target_ref = f"{target_ref} {hint_text}"

        statement = (
            f"MERGE {target_ref} AS {TARGET_ALIAS} "
            f"USING (SELECT {fmt.format_column_list(staged)} "
            f"FROM {self.staging_ref(staging)}) AS {STAGING_ALIAS} "
            f"ON ({fmt.format_join_condition(qualifiers, STAGING_ALIAS, TARGET_ALIAS)}) "
            f"WHEN NOT MATCHED THEN INSERT ({fmt.format_column_list(insert_columns)}) "
            f"VALUES ({fmt.format_column_list(insert_columns, prefix=STAGING_ALIAS)})"
        )
        if update_columns:
            statement += (
                " WHEN MATCHED THEN UPDATE SET "
                f"{fmt.format_assignments(update_columns, STAGING_ALIAS, target=TARGET_ALIAS)}"
            )
        statement += ";"

        if keep_identity and target.identity:
            return [
                f"SET IDENTITY_INSERT {self.target_ref(target)} ON",
                statement,
                f"SET IDENTITY_INSERT {self.target_ref(target)} OFF",
            ]
        return [statement]
