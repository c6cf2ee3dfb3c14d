"""bulkflow - set-based bulk insert, delete, update and merge."""

__version__ = "0.1.0"
__package_name__ = "bulkflow"

# Initialize logging with default configuration
from bulkflow.logging import configure_logging

configure_logging()

from bulkflow.core.models import (  # noqa: E402
    AmbiguityPolicy,
    BulkOperationRequest,
    BulkResult,
    BulkState,
    FieldMapping,
    IdentityBehavior,
    MergeCommandType,
    OperationKind,
    RowState,
    StagingLifetime,
)
from bulkflow.core.orchestrator import BulkOperationOrchestrator  # noqa: E402
from bulkflow.core.settings import BulkSettings  # noqa: E402
from bulkflow.exceptions import (  # noqa: E402
    AmbiguousQualifierError,
    AsyncBulkOperationError,
    BulkOperationError,
    CleanupError,
    MappingError,
    MissingQualifierError,
    NullSourceError,
    OperationCancelledError,
    SchemaResolutionError,
    TransferError,
    UnsupportedOptionError,
    UnsupportedSourceError,
)
from bulkflow.operations import (  # noqa: E402
    BulkOperations,
    bulk_delete,
    bulk_delete_async,
    bulk_delete_by_keys,
    bulk_delete_by_keys_async,
    bulk_insert,
    bulk_insert_async,
    bulk_merge,
    bulk_merge_async,
    bulk_update,
    bulk_update_async,
)

__all__ = [
    "AmbiguityPolicy",
    "AmbiguousQualifierError",
    "AsyncBulkOperationError",
    "BulkOperationError",
    "BulkOperationOrchestrator",
    "BulkOperationRequest",
    "BulkOperations",
    "BulkResult",
    "BulkSettings",
    "BulkState",
    "CleanupError",
    "FieldMapping",
    "IdentityBehavior",
    "MappingError",
    "MergeCommandType",
    "MissingQualifierError",
    "NullSourceError",
    "OperationCancelledError",
    "OperationKind",
    "RowState",
    "SchemaResolutionError",
    "StagingLifetime",
    "TransferError",
    "UnsupportedOptionError",
    "UnsupportedSourceError",
    "bulk_delete",
    "bulk_delete_async",
    "bulk_delete_by_keys",
    "bulk_delete_by_keys_async",
    "bulk_insert",
    "bulk_insert_async",
    "bulk_merge",
    "bulk_merge_async",
    "bulk_update",
    "bulk_update_async",
]
