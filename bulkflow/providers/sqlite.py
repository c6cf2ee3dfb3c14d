import datetime
import decimal
import sqlite3
from typing import Any, Optional, Sequence

from bulkflow.core.models import StagingTable, TableSchema
from bulkflow.providers.base import STAGING_ALIAS, ProviderCapabilities
from bulkflow.providers.sqlalchemy_base import SqlAlchemyProvider

# UPDATE ... FROM arrived in SQLite 3.33
JOIN_UPDATE_VERSION = (3, 33, 0)


class SQLiteProvider(SqlAlchemyProvider):
    """Reference backend: temp tables, multi-row INSERT, correlated SQL."""

    name = "sqlite"
    dialect = "sqlite"

    def __init__(self, library_version: Optional[tuple] = None):
        super().__init__()
        version = library_version or sqlite3.sqlite_version_info
        self.capabilities = ProviderCapabilities(
            supports_session_temp_tables=True,
            supports_native_bulk_load=False,
            supports_join_update=tuple(version) >= JOIN_UPDATE_VERSION,
            supports_join_delete=False,
            max_parameters=999,
            max_identifier_length=128,
            default_batch_size=5000,
        )

    def convert_value(self, value: Any) -> Any:
        if isinstance(value, datetime.datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, decimal.Decimal):
            return str(value)
        return value

    def build_update(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        update_columns: Sequence[str],
        hints: Optional[str] = None,
    ) -> str:
        if not self.capabilities.supports_join_update:
            return super().build_update(target, staging, qualifiers, update_columns)
        target_name = self.formatter.quote_identifier(target.name)
        return (
            f"UPDATE {self.target_ref(target)} SET "
            f"{self.formatter.format_assignments(update_columns, STAGING_ALIAS)} "
            f"FROM {self.staging_ref(staging)} AS {STAGING_ALIAS} WHERE "
            f"{self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)}"
        )
