"""Bulk operation orchestrator.

Drives one request through the pipeline::

    VALIDATING -> MATERIALIZING -> LOADING -> RECONCILING -> CLEANING_UP
        -> SUCCEEDED | FAILED

Validation touches only the catalog, so every validation error is raised
before a staging table exists. Once staging is acquired, cleanup runs on
every exit path, including cancellation.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from bulkflow.connectors.base.session import BulkSession
from bulkflow.connectors.factory import open_session
from bulkflow.core.accessors import FieldAccessor
from bulkflow.core.join_back import JoinBackExecutor
from bulkflow.core.mapping import (
    MappingResolver,
    insertable_columns,
    resolve_qualifiers,
    updatable_columns,
)
from bulkflow.core.models import (
    BulkOperationRequest,
    BulkResult,
    BulkState,
    FieldMapping,
    IdentityBehavior,
    OperationKind,
    StagingTable,
    TableSchema,
)
from bulkflow.core.settings import BulkSettings
from bulkflow.core.sources import RowSource, as_row_source
from bulkflow.core.staging import StagingTableManager
from bulkflow.exceptions import (
    AsyncBulkOperationError,
    BulkOperationError,
    MappingError,
    NullSourceError,
    OperationCancelledError,
    TransferError,
    UnsupportedOptionError,
)
from bulkflow.logging import get_logger
from bulkflow.providers import provider_registry
from bulkflow.providers.base import LoadResult, ProviderStrategy
from bulkflow.providers.registry import ProviderRegistry

logger = get_logger(__name__)


@dataclass
class _Plan:
    """Everything validation resolved for one request."""

    request: BulkOperationRequest
    source: RowSource
    table: TableSchema
    mappings: Tuple[FieldMapping, ...]
    qualifiers: Tuple[str, ...] = ()
    update_columns: Tuple[str, ...] = ()
    insert_columns: Tuple[str, ...] = ()
    keep_identity: bool = False

    @property
    def columns(self) -> List[str]:
        return [m.target_column for m in self.mappings]


class BulkOperationOrchestrator:
    """Runs bulk requests against one session.

    Args:
        connection: Open SQLAlchemy ``Connection``, ``duckdb`` connection or
            ``BulkSession``; the caller keeps ownership
        settings: Defaults for batch size, staging placement and policies
        provider: Explicit provider; looked up by dialect when omitted
        registry: Provider registry used for the lookup
        accessor: Field accessor for typed entities
    """

    def __init__(
        self,
        connection: Any,
        settings: Optional[BulkSettings] = None,
        provider: Optional[ProviderStrategy] = None,
        registry: ProviderRegistry = provider_registry,
        accessor: Optional[FieldAccessor] = None,
    ):
        self.session: BulkSession = open_session(connection)
        self.provider = provider or registry.for_session(self.session)
        self.settings = settings or BulkSettings()
        self.accessor = accessor
        self.resolver = MappingResolver()
        self.state: Optional[BulkState] = None
        self.transitions: List[BulkState] = []
        self._cancel_event = threading.Event()

    # State

    def _transition(self, state: BulkState) -> None:
        logger.debug(f"{self.state.name if self.state else 'START'} -> {state.name}")
        self.state = state
        self.transitions.append(state)

    def cancel(self) -> None:
        """Request cooperative cancellation at the next checkpoint.

        Applies to the running request, or to the next one when idle. The
        flag is cleared when that request ends.
        """
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _checkpoint(self, where: str, table_name: Optional[str] = None) -> None:
        if self._cancel_event.is_set():
            raise OperationCancelledError(where, table_name)

    # Sync contract

    def execute(self, request: BulkOperationRequest) -> BulkResult:
        """Run a request synchronously.

        Returns:
            BulkResult with the engine-reported number of affected rows

        Raises:
            BulkOperationError: One classified error per failed call
        """
        started = time.perf_counter()
        self.state = None
        self.transitions = []
        self._transition(BulkState.VALIDATING)
        logger.info(
            f"Starting bulk {request.kind.value} into {request.table_name}"
        )
        try:
            plan = self._validate(request)
            if plan is None:
                result = BulkResult(request.kind, request.table_name)
                self._transition(BulkState.SUCCEEDED)
                logger.info(f"Bulk {request.kind.value}: source is empty, nothing to do")
            elif request.kind == OperationKind.INSERT:
                result = self._run_insert(plan)
            else:
                result = self._run_staged(plan)
        except BaseException as e:
            self._transition(BulkState.FAILED)
            logger.error(
                f"Bulk {request.kind.value} into {request.table_name} failed: {e}"
            )
            raise
        finally:
            self._cancel_event.clear()

        result.elapsed_seconds = time.perf_counter() - started
        logger.info(
            f"Bulk {request.kind.value} into {request.table_name}: "
            f"{result.rows_affected} rows affected "
            f"({result.rows_loaded} loaded in {result.batches} batches, "
            f"{result.elapsed_seconds:.3f}s)"
        )
        return result

    # Async contract

    async def execute_async(self, request: BulkOperationRequest) -> BulkResult:
        """Run a request on an executor thread.

        Failures are raised as ``AsyncBulkOperationError`` wrapping the
        classified error. Cancelling the awaiting task cancels the pipeline
        at its next checkpoint and waits for cleanup before re-raising.
        """
        if request.source is None:
            error = NullSourceError(table_name=request.table_name)
            raise AsyncBulkOperationError(error) from error

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.execute, request)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            self.cancel()
            try:
                await future
            except Exception as e:
                logger.debug(f"Pipeline stopped after cancellation: {e}")
            finally:
                # The request may have finished before it saw the flag
                self._cancel_event.clear()
            raise
        except Exception as e:
            raise AsyncBulkOperationError(e) from e

    # Phases

    def _validate(self, request: BulkOperationRequest) -> Optional[_Plan]:
        source = as_row_source(
            request.source, accessor=self.accessor, row_state=request.row_state
        )
        self.provider.validate_options(request)
        if request.batch_size is not None and request.batch_size <= 0:
            raise UnsupportedOptionError(
                "batch_size", self.provider.name, "must be a positive integer"
            )

        schema, table_name = request.schema_and_table
        table = self.provider.catalog(self.session).get_table(table_name, schema)
        if request.mappings:
            self.resolver.check_targets(table, request.mappings)
        # First point where a plain iterator may be read
        if source.is_empty():
            return None

        resolved = self.resolver.resolve(source, table, request.mappings)
        mapped = resolved.target_columns
        keep_identity = request.identity_behavior == IdentityBehavior.KEEP_IDENTITY
        plan = _Plan(
            request=request,
            source=source,
            table=table,
            mappings=resolved.mappings,
            keep_identity=keep_identity,
        )

        if request.kind == OperationKind.INSERT:
            insert = insertable_columns(table, mapped, keep_identity)
            plan.mappings = tuple(m for m in resolved.mappings if m.target_column in insert)
            if not plan.mappings:
                raise MappingError("no insertable columns are mapped", table.qualified_name)
            return plan

        plan.qualifiers = resolve_qualifiers(table, mapped, request.qualifiers)
        if request.kind == OperationKind.DELETE:
            # Only the join key needs staging
            keys = {q.lower() for q in plan.qualifiers}
            plan.mappings = tuple(
                m for m in resolved.mappings if m.target_column.lower() in keys
            )
            return plan

        plan.update_columns = tuple(updatable_columns(table, mapped, plan.qualifiers))
        if request.kind == OperationKind.UPDATE and not plan.update_columns:
            raise MappingError(
                "no updatable columns are mapped besides the qualifiers",
                table.qualified_name,
            )
        plan.insert_columns = tuple(insertable_columns(table, mapped, keep_identity))
        if request.kind == OperationKind.MERGE and not plan.insert_columns:
            raise MappingError(
                "no insertable columns are mapped for rows the merge inserts",
                table.qualified_name,
            )
        return plan

    def _load(self, plan: _Plan, table_ref: str, keep_identity: bool) -> LoadResult:
        table_name = plan.table.qualified_name
        self._transition(BulkState.MATERIALIZING)
        rows = plan.source.open(plan.mappings)
        self._transition(BulkState.LOADING)
        try:
            return self.provider.bulk_load(
                self.session,
                table_ref,
                plan.columns,
                rows,
                batch_size=plan.request.batch_size or self.settings.batch_size,
                checkpoint=lambda where: self._checkpoint(where, table_name),
                keep_identity=keep_identity,
            )
        except BulkOperationError:
            raise
        except Exception as e:
            raise TransferError(
                str(e), phase="load", table_name=table_name, original_error=e
            ) from e

    def _index_staging(self, plan: _Plan, staging: StagingTable) -> None:
        try:
            self.provider.index_staging_table(self.session, staging, plan.qualifiers)
        except Exception as e:
            raise TransferError(
                f"could not index staging table '{staging.name}': {e}",
                phase="staging",
                table_name=plan.table.qualified_name,
                original_error=e,
            ) from e

    def _run_insert(self, plan: _Plan) -> BulkResult:
        target_ref = self.provider.target_ref(plan.table)
        try:
            with self.session.unit_of_work():
                load = self._load(plan, target_ref, plan.keep_identity)
        finally:
            self._transition(BulkState.CLEANING_UP)
        self._transition(BulkState.SUCCEEDED)
        return BulkResult(
            operation=OperationKind.INSERT,
            table_name=plan.table.qualified_name,
            rows_affected=load.rows,
            rows_loaded=load.rows,
            batches=load.batches,
        )

    def _run_staged(self, plan: _Plan) -> BulkResult:
        request = plan.request
        manager = StagingTableManager(
            self.session,
            self.provider,
            prefix=self.settings.staging_prefix,
            keep_on_failure=request.keep_staging_on_failure
            or self.settings.keep_staging_on_failure,
            on_release=lambda staging: self._transition(BulkState.CLEANING_UP),
        )
        lifetime = request.staging_lifetime or self.settings.staging_lifetime
        executor = JoinBackExecutor(self.session, self.provider)

        with manager.acquire(plan.table, plan.columns, request.kind, lifetime) as staging:
            with self.session.unit_of_work():
                load = self._load(plan, self.provider.staging_ref(staging), False)
                self._index_staging(plan, staging)
                self._checkpoint("reconcile", plan.table.qualified_name)
                self._transition(BulkState.RECONCILING)
                affected = executor.execute(
                    request.kind,
                    plan.table,
                    staging,
                    plan.qualifiers,
                    plan.update_columns,
                    plan.insert_columns,
                    hints=request.hints,
                    merge_command_type=request.merge_command_type,
                    keep_identity=plan.keep_identity,
                    ambiguity_policy=request.ambiguity_policy,
                )

        result = BulkResult(
            operation=request.kind,
            table_name=plan.table.qualified_name,
            rows_affected=affected,
            rows_loaded=load.rows,
            batches=load.batches,
            staging_table=staging.name,
        )
        if manager.cleanup_errors:
            result.cleanup_error = manager.cleanup_errors[0]
            logger.warning(f"Bulk {request.kind.value} succeeded but {result.cleanup_error}")
        self._transition(BulkState.SUCCEEDED)
        return result
