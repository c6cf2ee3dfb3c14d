"""Provider strategy interface.

A provider encapsulates everything backend-specific: how staging tables are
created and dropped, which bulk-load primitive is used, and how the
reconciliation SQL for delete, update and merge is written. The base class
carries an ANSI rendition built on correlated subqueries that any backend
can fall back to.
"""

import re
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from bulkflow.connectors.base.session import BulkSession
from bulkflow.core.catalog import SchemaCatalog, SqlAlchemyCatalog
from bulkflow.core.models import (
    BulkOperationRequest,
    MergeCommandType,
    OperationKind,
    StagingLifetime,
    StagingTable,
    TableSchema,
)
from bulkflow.core.sources import iter_batches
from bulkflow.exceptions import UnsupportedOptionError
from bulkflow.logging import get_logger
from bulkflow.utils.sql_security import SQLSafeFormatter

logger = get_logger(__name__)

# Hints are passed through as SQL text, so only a conservative alphabet is allowed
HINT_PATTERN = re.compile(r"^[A-Za-z0-9_ ,=()]+$")

STAGING_ALIAS = "S"

Checkpoint = Callable[[str], None]


@dataclass(frozen=True)
class ProviderCapabilities:
    """What a backend can do; the orchestrator never checks backend names."""

    supports_session_temp_tables: bool = True
    supports_native_bulk_load: bool = False
    supports_join_update: bool = False
    supports_join_delete: bool = False
    supports_merge_statement: bool = False
    supports_hints: bool = False
    supports_on_conflict: bool = False
    indexes_staging_qualifiers: bool = False
    max_parameters: int = 999
    max_identifier_length: int = 63
    default_batch_size: int = 10000


@dataclass
class LoadResult:
    rows: int = 0
    batches: int = 0


class ProviderStrategy(ABC):
    """Backend-specific bulk behaviour."""

    name: str = "base"
    dialect: str = "default"
    capabilities = ProviderCapabilities()

    def __init__(self):
        self.formatter = SQLSafeFormatter(self.dialect)

    # Catalog

    def catalog(self, session: BulkSession) -> SchemaCatalog:
        """Return the session's catalog, created on first use."""
        catalog = session.cache.get("catalog")
        if catalog is None:
            catalog = self._create_catalog(session)
            session.cache["catalog"] = catalog
        return catalog

    def _create_catalog(self, session: BulkSession) -> SchemaCatalog:
        return SqlAlchemyCatalog(session)

    # Validation

    def validate_options(self, request: BulkOperationRequest) -> None:
        """Reject options this backend cannot honour, before any SQL is sent.

        Raises:
            UnsupportedOptionError: For hints or merge styles the backend lacks
        """
        if request.hints:
            if not self.capabilities.supports_hints:
                raise UnsupportedOptionError("hints", self.name)
            if not HINT_PATTERN.match(request.hints):
                raise UnsupportedOptionError(
                    "hints", self.name, f"invalid hint text {request.hints!r}"
                )
        if (
            request.merge_command_type == MergeCommandType.ON_CONFLICT_DO_UPDATE
            and not self.capabilities.supports_on_conflict
        ):
            raise UnsupportedOptionError("merge_command_type", self.name)

    # Naming

    def table_ref(self, table_name: str, schema: Optional[str] = None) -> str:
        return self.formatter.quote_schema_table(table_name, schema)

    def target_ref(self, target: TableSchema) -> str:
        return self.table_ref(target.name, target.schema)

    def staging_ref(self, staging: StagingTable) -> str:
        return self.table_ref(staging.name, staging.schema)

    def resolve_lifetime(self, requested: Optional[StagingLifetime]) -> StagingLifetime:
        if requested == StagingLifetime.PHYSICAL_PSEUDO:
            return requested
        if not self.capabilities.supports_session_temp_tables:
            return StagingLifetime.PHYSICAL_PSEUDO
        return requested or StagingLifetime.SESSION_SCOPED

    def staging_table_name(
        self,
        table_name: str,
        kind: OperationKind,
        lifetime: StagingLifetime,
        prefix: str = "_bulkflow",
    ) -> str:
        """Generate a staging name unique to one call."""
        suffix = uuid.uuid4().hex[:8]
        head = f"{prefix}_{kind.value}_"
        room = self.capabilities.max_identifier_length - len(head) - len(suffix) - 1
        return f"{head}{table_name[:max(room, 0)]}_{suffix}"

    # Staging lifecycle

    def create_staging_table(
        self,
        session: BulkSession,
        target: TableSchema,
        columns: Sequence[str],
        lifetime: StagingLifetime,
        name: str,
    ) -> StagingTable:
        """Create an empty table shaped like the mapped target columns."""
        temporary = lifetime == StagingLifetime.SESSION_SCOPED
        staging = StagingTable(
            name=name,
            columns=list(columns),
            lifetime=lifetime,
            schema=None if temporary else target.schema,
        )
        session.execute(
            self.formatter.build_empty_copy(
                self.target_ref(target),
                self.staging_ref(staging),
                columns,
                temporary=temporary,
            )
        )
        return staging

    def index_staging_table(
        self, session: BulkSession, staging: StagingTable, qualifiers: Sequence[str]
    ) -> None:
        if not self.capabilities.indexes_staging_qualifiers:
            return
        index_name = self.formatter.quote_identifier(f"ix_{staging.name}")
        session.execute(
            f"CREATE INDEX {index_name} ON {self.staging_ref(staging)} "
            f"({self.formatter.format_column_list(qualifiers)})"
        )

    def drop_staging_table(self, session: BulkSession, staging: StagingTable) -> None:
        session.execute(self.formatter.build_drop_table(self.staging_ref(staging)))

    # Loading

    def bulk_load(
        self,
        session: BulkSession,
        table_ref: str,
        columns: Sequence[str],
        rows: Iterable[Tuple[Any, ...]],
        batch_size: Optional[int] = None,
        checkpoint: Optional[Checkpoint] = None,
        keep_identity: bool = False,
    ) -> LoadResult:
        """Stream rows into ``table_ref`` in batches.

        Args:
            session: Open session
            table_ref: Quoted table reference (staging or target)
            columns: Column names, in row tuple order
            rows: Row tuples
            batch_size: Rows per batch; None means the provider default
            checkpoint: Called before every batch; may raise to cancel
            keep_identity: Whether identity values are written explicitly

        Returns:
            Rows written and batches sent
        """
        size = batch_size or self.capabilities.default_batch_size
        result = LoadResult()
        with self.identity_insert(session, table_ref, keep_identity):
            for batch in iter_batches(rows, size):
                if checkpoint is not None:
                    checkpoint("load")
                written = self._load_batch(session, table_ref, columns, batch)
                result.rows += written
                result.batches += 1
                logger.debug(
                    f"Batch {result.batches}: {written} rows into {table_ref} "
                    f"({result.rows} total)"
                )
        return result

    @contextmanager
    def identity_insert(
        self, session: BulkSession, table_ref: str, enabled: bool
    ) -> Iterator[None]:
        """Allow explicit identity values for the enclosed statements."""
        yield

    @abstractmethod
    def _load_batch(
        self,
        session: BulkSession,
        table_ref: str,
        columns: Sequence[str],
        batch: List[Tuple[Any, ...]],
    ) -> int:
        raise NotImplementedError

    def convert_value(self, value: Any) -> Any:
        """Backend-specific value conversion applied before a batch is sent."""
        return value

    # Reconciliation

    def build_join_back_statements(
        self,
        kind: OperationKind,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        update_columns: Sequence[str],
        insert_columns: Sequence[str],
        hints: Optional[str] = None,
        merge_command_type: MergeCommandType = MergeCommandType.UPDATE_THEN_INSERT,
        keep_identity: bool = False,
    ) -> List[str]:
        """Return the statement(s) reconciling staging rows into the target."""
        if kind == OperationKind.DELETE:
            return [self.build_delete(target, staging, qualifiers, hints)]
        if kind == OperationKind.UPDATE:
            return [self.build_update(target, staging, qualifiers, update_columns, hints)]
        if kind == OperationKind.MERGE:
            return self.build_merge(
                target,
                staging,
                qualifiers,
                update_columns,
                insert_columns,
                hints,
                merge_command_type,
                keep_identity,
            )
        raise ValueError(f"Operation {kind.value} does not reconcile from staging")

    def build_delete(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        hints: Optional[str] = None,
    ) -> str:
        target_name = self.formatter.quote_identifier(target.name)
        return (
            f"DELETE FROM {self.target_ref(target)} WHERE EXISTS ("
            f"SELECT 1 FROM {self.staging_ref(staging)} AS {STAGING_ALIAS} WHERE "
            f"{self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)})"
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
        staging_ref = self.staging_ref(staging)
        join = self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)
        assignments = ", ".join(
            f"{self.formatter.quote_identifier(c)} = ("
            f"SELECT {STAGING_ALIAS}.{self.formatter.quote_identifier(c)} "
            f"FROM {staging_ref} AS {STAGING_ALIAS} WHERE {join})"
            for c in update_columns
        )
        return (
            f"UPDATE {self.target_ref(target)} SET {assignments} WHERE EXISTS ("
            f"SELECT 1 FROM {staging_ref} AS {STAGING_ALIAS} WHERE {join})"
        )

    def build_insert_missing(
        self,
        target: TableSchema,
        staging: StagingTable,
        qualifiers: Sequence[str],
        insert_columns: Sequence[str],
    ) -> str:
        """INSERT the staging rows that have no match in the target."""
        target_name = self.formatter.quote_identifier(target.name)
        join = self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)
        return self.formatter.build_insert_select(
            self.target_ref(target),
            insert_columns,
            self.staging_ref(staging),
            where_clause=(
                f"NOT EXISTS (SELECT 1 FROM {self.target_ref(target)} WHERE {join})"
            ),
            source_alias=STAGING_ALIAS,
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
        # Update first so freshly inserted rows are not touched twice
        statements = []
        if update_columns:
            statements.append(
                self.build_update(target, staging, qualifiers, update_columns, hints)
            )
        statements.append(
            self.build_insert_missing(target, staging, qualifiers, insert_columns)
        )
        return statements

    def build_ambiguity_probe(
        self, target: TableSchema, staging: StagingTable, qualifiers: Sequence[str]
    ) -> str:
        """Count staging keys that join to more than one target row."""
        target_name = self.formatter.quote_identifier(target.name)
        keys = self.formatter.format_column_list(qualifiers, prefix=STAGING_ALIAS)
        join = self.formatter.format_join_condition(qualifiers, STAGING_ALIAS, target_name)
        return (
            f"SELECT COUNT(*) FROM (SELECT {keys} FROM {self.staging_ref(staging)} "
            f"AS {STAGING_ALIAS} INNER JOIN {self.target_ref(target)} ON {join} "
            f"GROUP BY {keys} HAVING COUNT(*) > 1) AS ambiguous_keys"
        )

    def describe(self) -> dict:
        return {"name": self.name, "dialect": self.dialect, **asdict(self.capabilities)}
