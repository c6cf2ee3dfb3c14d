"""Reconciliation of staged rows into the target table."""

from typing import List, Optional, Sequence

from bulkflow.connectors.base.session import BulkSession
from bulkflow.core.models import (
    AmbiguityPolicy,
    MergeCommandType,
    OperationKind,
    StagingTable,
    TableSchema,
)
from bulkflow.exceptions import AmbiguousQualifierError, BulkOperationError, TransferError
from bulkflow.logging import get_logger
from bulkflow.providers.base import ProviderStrategy

logger = get_logger(__name__)


class JoinBackExecutor:
    """Runs the provider's join-back statements and totals affected rows."""

    def __init__(self, session: BulkSession, provider: ProviderStrategy):
        self.session = session
        self.provider = provider

    def execute(
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
        ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.AFFECT_ALL,
    ) -> int:
        """Reconcile and return the engine-reported number of affected rows.

        Raises:
            AmbiguousQualifierError: Under ``AmbiguityPolicy.FAIL`` when a
                staging row matches several target rows
            TransferError: When a statement fails
        """
        try:
            statements = self.provider.build_join_back_statements(
                kind,
                target,
                staging,
                qualifiers,
                update_columns,
                insert_columns,
                hints=hints,
                merge_command_type=merge_command_type,
                keep_identity=keep_identity,
            )
            if ambiguity_policy == AmbiguityPolicy.FAIL:
                self._check_ambiguity(target, staging, qualifiers)
            return self._run(statements)
        except BulkOperationError:
            raise
        except Exception as e:
            raise TransferError(
                str(e),
                phase="reconcile",
                table_name=target.qualified_name,
                original_error=e,
            ) from e

    def _run(self, statements: List[str]) -> int:
        affected = 0
        for statement in statements:
            count = self.session.execute(statement)
            logger.debug(f"Join-back statement affected {count} row(s)")
            # SET and similar statements report -1
            if count and count > 0:
                affected += count
        return affected

    def _check_ambiguity(
        self, target: TableSchema, staging: StagingTable, qualifiers: Sequence[str]
    ) -> None:
        probe = self.provider.build_ambiguity_probe(target, staging, qualifiers)
        rows = self.session.fetch_all(probe)
        matches = int(rows[0][0]) if rows else 0
        if matches:
            raise AmbiguousQualifierError(matches, target.qualified_name)
