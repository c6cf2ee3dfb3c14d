"""Scoped acquisition and release of staging tables."""

from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Sequence

from bulkflow.connectors.base.session import BulkSession
from bulkflow.core.models import OperationKind, StagingLifetime, StagingTable, TableSchema
from bulkflow.exceptions import BulkOperationError, CleanupError, TransferError
from bulkflow.logging import get_logger
from bulkflow.providers.base import ProviderStrategy

logger = get_logger(__name__)


class StagingTableManager:
    """Creates one staging table per call and always releases it.

    Release failures never replace the outcome of the call: they are recorded
    in ``cleanup_errors`` and attached to the error in flight, if any.
    """

    def __init__(
        self,
        session: BulkSession,
        provider: ProviderStrategy,
        prefix: str = "_bulkflow",
        keep_on_failure: bool = False,
        on_release: Optional[Callable[[StagingTable], None]] = None,
    ):
        self.session = session
        self.provider = provider
        self.prefix = prefix
        self.keep_on_failure = keep_on_failure
        self.on_release = on_release
        self.cleanup_errors: List[CleanupError] = []
        self.created: List[StagingTable] = []

    @contextmanager
    def acquire(
        self,
        target: TableSchema,
        columns: Sequence[str],
        kind: OperationKind,
        lifetime: Optional[StagingLifetime] = None,
    ) -> Iterator[StagingTable]:
        """Yield a fresh staging table and drop it on every exit path."""
        resolved = self.provider.resolve_lifetime(lifetime)
        name = self.provider.staging_table_name(target.name, kind, resolved, self.prefix)
        try:
            with self.session.unit_of_work():
                staging = self.provider.create_staging_table(
                    self.session, target, columns, resolved, name
                )
        except BulkOperationError:
            raise
        except Exception as e:
            raise TransferError(
                f"could not create staging table '{name}': {e}",
                phase="staging",
                table_name=target.qualified_name,
                original_error=e,
            ) from e

        self.created.append(staging)
        logger.debug(f"Created {resolved.value} staging table {name}")
        try:
            yield staging
        except BaseException as error:
            self.release(staging, failed=True)
            if isinstance(error, BulkOperationError):
                for cleanup_error in self.cleanup_errors:
                    error.add_cleanup_error(cleanup_error)
            raise
        self.release(staging, failed=False)

    def release(self, staging: StagingTable, failed: bool) -> Optional[CleanupError]:
        """Drop the staging table once; failures are logged, not raised."""
        if staging.dropped or staging.kept:
            return None
        if self.on_release is not None:
            self.on_release(staging)
        if (
            failed
            and self.keep_on_failure
            and staging.lifetime == StagingLifetime.PHYSICAL_PSEUDO
        ):
            logger.warning(
                f"Keeping staging table {staging.name} after failure for inspection"
            )
            staging.kept = True
            return None

        try:
            with self.session.unit_of_work():
                self.provider.drop_staging_table(self.session, staging)
        except Exception as e:
            cleanup_error = CleanupError(staging.name, e)
            self.cleanup_errors.append(cleanup_error)
            logger.error(f"Failed to drop staging table {staging.name}: {e}")
            return cleanup_error

        staging.dropped = True
        logger.debug(f"Dropped staging table {staging.name}")
        return None
