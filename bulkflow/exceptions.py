"""Exception hierarchy for bulk operations.

Every error raised by a bulk call is one of the classes below. Validation
errors (schema, mapping, qualifier, option, source) are raised before any row
is transferred. Transfer errors are raised after staging was acquired and are
always preceded by cleanup. Cleanup errors are diagnostics: they are attached
to the primary error or to the result and never replace the real outcome.
"""

from typing import List, Optional


class BulkOperationError(Exception):
    """Base exception for bulk operation errors."""

    def __init__(self, message: str, table_name: Optional[str] = None):
        self.message = message
        self.table_name = table_name
        self.cleanup_errors: List["CleanupError"] = []
        if table_name:
            super().__init__(f"[{table_name}] {message}")
        else:
            super().__init__(message)

    def add_cleanup_error(self, error: "CleanupError") -> None:
        self.cleanup_errors.append(error)


class SchemaResolutionError(BulkOperationError):
    """Target table or its columns could not be resolved."""

    def __init__(self, message: str, table_name: Optional[str] = None):
        super().__init__(f"Schema resolution error: {message}", table_name)


class MappingError(BulkOperationError):
    """Explicit mappings are invalid or nothing could be mapped."""

    def __init__(self, message: str, table_name: Optional[str] = None):
        super().__init__(f"Mapping error: {message}", table_name)


class UnsupportedSourceError(MappingError):
    """The row source is not one of the accepted shapes."""


class MissingQualifierError(BulkOperationError):
    """No usable join key for a delete, update or merge."""

    def __init__(self, message: str, table_name: Optional[str] = None):
        super().__init__(f"Qualifier error: {message}", table_name)


class NullSourceError(BulkOperationError):
    """Source is absent, or a single-pass cursor was already consumed."""

    def __init__(self, message: str = "Row source is None", table_name=None):
        super().__init__(message, table_name)


class UnsupportedOptionError(BulkOperationError):
    """An option was requested that the backend cannot honour."""

    def __init__(self, option: str, provider: str, detail: str = ""):
        self.option = option
        self.provider = provider
        message = f"Option '{option}' is not supported by provider '{provider}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class TransferError(BulkOperationError):
    """Failure while loading rows or reconciling staging with the target.

    Args:
    ----
        message: Human readable description
        phase: Pipeline phase that failed ("load", "reconcile", "staging")
        table_name: Target table
        original_error: The underlying driver exception, if any
    """

    def __init__(
        self,
        message: str,
        phase: str = "load",
        table_name: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.phase = phase
        self.original_error = original_error
        super().__init__(f"Transfer error during {phase}: {message}", table_name)


class AmbiguousQualifierError(TransferError):
    """A staging row matched more than one target row."""

    def __init__(self, matches: int, table_name: Optional[str] = None):
        self.matches = matches
        super().__init__(
            f"{matches} staging row(s) match more than one target row on the "
            f"qualifier columns",
            phase="reconcile",
            table_name=table_name,
        )


class OperationCancelledError(BulkOperationError):
    """Cancellation was observed at a pipeline checkpoint."""

    def __init__(self, checkpoint: str, table_name: Optional[str] = None):
        self.checkpoint = checkpoint
        super().__init__(f"Operation cancelled at {checkpoint}", table_name)


class CleanupError(BulkOperationError):
    """A staging table could not be dropped."""

    def __init__(
        self, staging_table: str, original_error: Optional[BaseException] = None
    ):
        self.staging_table = staging_table
        self.original_error = original_error
        detail = f": {original_error}" if original_error else ""
        super().__init__(f"Failed to drop staging table '{staging_table}'{detail}")


class AsyncBulkOperationError(BulkOperationError):
    """Envelope raised by the asynchronous contract.

    The classified error is available as ``error`` and as ``__cause__``.
    """

    def __init__(self, error: BaseException):
        self.error = error
        table_name = getattr(error, "table_name", None)
        super().__init__(
            f"Asynchronous bulk operation failed: {type(error).__name__}: {error}"
        )
        self.table_name = table_name
