"""Public entry points for set-based bulk operations.

Each operation takes an open connection, a target table and a row source and
returns a ``BulkResult``; the ``*_async`` variants return the same result from
a coroutine and raise ``AsyncBulkOperationError`` on failure.

Example:
    >>> with engine.connect() as conn:
    ...     bulk_merge(conn, "Customer", customers, qualifiers=["Email"])
"""

from typing import Any, Optional, Sequence, Union

import pandas as pd

from bulkflow.connectors.factory import open_session
from bulkflow.core.accessors import FieldAccessor
from bulkflow.core.models import (
    AmbiguityPolicy,
    BulkOperationRequest,
    BulkResult,
    IdentityBehavior,
    MappingsLike,
    MergeCommandType,
    OperationKind,
    RowState,
    StagingLifetime,
    normalize_mappings,
    normalize_qualifiers,
)
from bulkflow.core.orchestrator import BulkOperationOrchestrator
from bulkflow.core.settings import BulkSettings
from bulkflow.exceptions import MissingQualifierError
from bulkflow.providers.registry import provider_registry


class BulkOperations:
    """Bulk operations bound to one connection and one set of defaults."""

    def __init__(
        self,
        connection: Any,
        settings: Optional[BulkSettings] = None,
        accessor: Optional[FieldAccessor] = None,
    ):
        self.connection = connection
        self.session = open_session(connection)
        self.settings = settings or BulkSettings()
        self.accessor = accessor

    def build_request(
        self,
        kind: OperationKind,
        table_name: str,
        source: Any,
        mappings: MappingsLike = None,
        qualifiers: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        staging_lifetime: Optional[Union[StagingLifetime, str]] = None,
        hints: Optional[str] = None,
        identity_behavior: Optional[Union[IdentityBehavior, str]] = None,
        merge_command_type: Optional[Union[MergeCommandType, str]] = None,
        row_state: Optional[Union[RowState, str]] = None,
        keep_staging_on_failure: Optional[bool] = None,
        ambiguity_policy: Optional[Union[AmbiguityPolicy, str]] = None,
    ) -> BulkOperationRequest:
        """Build a request, filling unset options from the settings."""
        settings = self.settings
        return BulkOperationRequest(
            table_name=table_name,
            source=source,
            kind=kind,
            mappings=normalize_mappings(mappings),
            qualifiers=normalize_qualifiers(qualifiers),
            batch_size=batch_size if batch_size is not None else settings.batch_size,
            staging_lifetime=_enum(StagingLifetime, staging_lifetime)
            or settings.staging_lifetime,
            hints=hints,
            identity_behavior=_enum(IdentityBehavior, identity_behavior)
            or settings.identity_behavior,
            merge_command_type=_enum(MergeCommandType, merge_command_type)
            or settings.merge_command_type,
            row_state=_enum(RowState, row_state),
            keep_staging_on_failure=(
                settings.keep_staging_on_failure
                if keep_staging_on_failure is None
                else keep_staging_on_failure
            ),
            ambiguity_policy=_enum(AmbiguityPolicy, ambiguity_policy)
            or settings.ambiguity_policy,
        )

    def orchestrator(self) -> BulkOperationOrchestrator:
        return BulkOperationOrchestrator(
            self.session, settings=self.settings, accessor=self.accessor
        )

    def run(self, kind: OperationKind, table_name: str, source: Any, **options) -> BulkResult:
        request = self.build_request(kind, table_name, source, **options)
        return self.orchestrator().execute(request)

    async def run_async(
        self, kind: OperationKind, table_name: str, source: Any, **options
    ) -> BulkResult:
        request = self.build_request(kind, table_name, source, **options)
        return await self.orchestrator().execute_async(request)

    def insert(self, table_name: str, source: Any, **options) -> BulkResult:
        return self.run(OperationKind.INSERT, table_name, source, **options)

    def delete(self, table_name: str, source: Any, **options) -> BulkResult:
        return self.run(OperationKind.DELETE, table_name, source, **options)

    def update(self, table_name: str, source: Any, **options) -> BulkResult:
        return self.run(OperationKind.UPDATE, table_name, source, **options)

    def merge(self, table_name: str, source: Any, **options) -> BulkResult:
        return self.run(OperationKind.MERGE, table_name, source, **options)

    def delete_by_keys(
        self, table_name: str, keys: Sequence[Any], **options
    ) -> BulkResult:
        """Delete rows whose single-column primary key is in ``keys``."""
        key_column = self._single_key(table_name)
        frame = pd.DataFrame({key_column: list(keys)})
        return self.delete(table_name, frame, qualifiers=[key_column], **options)

    async def delete_by_keys_async(
        self, table_name: str, keys: Sequence[Any], **options
    ) -> BulkResult:
        key_column = self._single_key(table_name)
        frame = pd.DataFrame({key_column: list(keys)})
        return await self.run_async(
            OperationKind.DELETE, table_name, frame, qualifiers=[key_column], **options
        )

    def _single_key(self, table_name: str) -> str:
        schema, name = (None, table_name)
        if "." in table_name:
            schema, name = table_name.split(".", 1)
        provider = provider_registry.for_session(self.session)
        table = provider.catalog(self.session).get_table(name, schema)
        key = table.primary_key or ([table.identity] if table.identity else [])
        if len(key) != 1:
            raise MissingQualifierError(
                f"delete by keys needs a single-column primary key, found {key or 'none'}",
                table.qualified_name,
            )
        return key[0]


def _enum(enum_type, value):
    if value is None or isinstance(value, enum_type):
        return value
    return enum_type(str(value).lower())


def bulk_insert(connection: Any, table_name: str, source: Any, **options) -> BulkResult:
    """Insert all rows of ``source`` into ``table_name``."""
    return BulkOperations(connection, options.pop("settings", None)).insert(
        table_name, source, **options
    )


def bulk_delete(connection: Any, table_name: str, source: Any, **options) -> BulkResult:
    """Delete target rows matching any source row on the qualifiers."""
    return BulkOperations(connection, options.pop("settings", None)).delete(
        table_name, source, **options
    )


def bulk_delete_by_keys(
    connection: Any, table_name: str, keys: Sequence[Any], **options
) -> BulkResult:
    """Delete target rows by a list of primary key values."""
    return BulkOperations(connection, options.pop("settings", None)).delete_by_keys(
        table_name, keys, **options
    )


def bulk_update(connection: Any, table_name: str, source: Any, **options) -> BulkResult:
    """Update mapped columns of target rows matching source rows."""
    return BulkOperations(connection, options.pop("settings", None)).update(
        table_name, source, **options
    )


def bulk_merge(connection: Any, table_name: str, source: Any, **options) -> BulkResult:
    """Update matching target rows and insert the rest."""
    return BulkOperations(connection, options.pop("settings", None)).merge(
        table_name, source, **options
    )


async def bulk_insert_async(connection: Any, table_name: str, source: Any, **options):
    return await BulkOperations(connection, options.pop("settings", None)).run_async(
        OperationKind.INSERT, table_name, source, **options
    )


async def bulk_delete_async(connection: Any, table_name: str, source: Any, **options):
    return await BulkOperations(connection, options.pop("settings", None)).run_async(
        OperationKind.DELETE, table_name, source, **options
    )


async def bulk_delete_by_keys_async(
    connection: Any, table_name: str, keys: Sequence[Any], **options
):
    return await BulkOperations(
        connection, options.pop("settings", None)
    ).delete_by_keys_async(table_name, keys, **options)


async def bulk_update_async(connection: Any, table_name: str, source: Any, **options):
    return await BulkOperations(connection, options.pop("settings", None)).run_async(
        OperationKind.UPDATE, table_name, source, **options
    )


async def bulk_merge_async(connection: Any, table_name: str, source: Any, **options):
    return await BulkOperations(connection, options.pop("settings", None)).run_async(
        OperationKind.MERGE, table_name, source, **options
    )


__all__ = [
    "BulkOperations",
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
    "provider_registry",
]
