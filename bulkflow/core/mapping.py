"""Mapping resolution between source fields and target columns."""

from typing import Dict, List, Optional, Sequence, Tuple

from bulkflow.core.models import FieldMapping, ResolvedMapping, TableSchema
from bulkflow.core.sources import RowSource
from bulkflow.core.types import category_of_type_name, is_compatible
from bulkflow.exceptions import MappingError, MissingQualifierError
from bulkflow.logging import get_logger

logger = get_logger(__name__)


class MappingResolver:
    """Validates explicit mappings or infers them by name.

    Names are matched case-insensitively. Resolved mappings always carry the
    exact spelling used by the source and by the catalog.
    """

    def resolve(
        self,
        source: RowSource,
        table: TableSchema,
        mappings: Sequence[FieldMapping] = (),
    ) -> ResolvedMapping:
        """Return the mappings a transfer will use.

        Raises:
            MappingError: On an unknown field or column, a duplicated target,
                a type mismatch, or when no field matches any column
        """
        if mappings:
            self.check_targets(table, mappings)
        fields = _index_names(source.field_names)
        if mappings:
            resolved = self._validate_explicit(source, fields, table, mappings)
        else:
            resolved = self._infer(fields, table)
        logger.debug(
            f"Resolved {len(resolved)} mapping(s) for {table.qualified_name}: "
            + ", ".join(f"{m.source_field}->{m.target_column}" for m in resolved)
        )
        return ResolvedMapping(mappings=tuple(resolved), table=table)

    def check_targets(
        self, table: TableSchema, mappings: Sequence[FieldMapping]
    ) -> None:
        """Check the target side of explicit mappings without touching the source.

        Raises:
            MappingError: On an unknown or duplicated target column
        """
        seen_targets: Dict[str, str] = {}
        for mapping in mappings:
            column = table.find(mapping.target_column)
            if column is None:
                raise MappingError(
                    f"target column '{mapping.target_column}' does not exist",
                    table.qualified_name,
                )
            key = column.name.lower()
            if key in seen_targets:
                raise MappingError(
                    f"target column '{column.name}' is mapped from both "
                    f"'{seen_targets[key]}' and '{mapping.source_field}'",
                    table.qualified_name,
                )
            seen_targets[key] = mapping.source_field

    def _validate_explicit(
        self,
        source: RowSource,
        fields: Dict[str, str],
        table: TableSchema,
        mappings: Sequence[FieldMapping],
    ) -> List[FieldMapping]:
        resolved = []
        for mapping in mappings:
            field = fields.get(mapping.source_field.lower())
            if field is None:
                raise MappingError(
                    f"source field '{mapping.source_field}' does not exist on the "
                    "source",
                    table.qualified_name,
                )
            column = table.find(mapping.target_column)

            source_category = source.field_category(field)
            target_category = category_of_type_name(column.type_name)
            if not is_compatible(source_category, target_category):
                raise MappingError(
                    f"source field '{field}' ({source_category}) cannot be written "
                    f"to column '{column.name}' ({column.type_name})",
                    table.qualified_name,
                )
            resolved.append(FieldMapping(field, column.name))
        return resolved

    def _infer(self, fields: Dict[str, str], table: TableSchema) -> List[FieldMapping]:
        resolved = [
            FieldMapping(fields[column.name.lower()], column.name)
            for column in table.columns
            if column.name.lower() in fields
        ]
        if not resolved:
            raise MappingError(
                "no source field matches a target column by name",
                table.qualified_name,
            )
        ignored = set(fields) - {m.target_column.lower() for m in resolved}
        if ignored:
            logger.debug(f"Ignoring unmatched source fields: {sorted(ignored)}")
        return resolved


def resolve_qualifiers(
    table: TableSchema,
    mapped_columns: Sequence[str],
    qualifiers: Sequence[str] = (),
) -> Tuple[str, ...]:
    """Pick the join key: explicit qualifiers, else primary key, else identity.

    Raises:
        MissingQualifierError: If nothing is resolvable, or a qualifier is not
            a target column or not part of the mapped (staged) columns
    """
    if qualifiers:
        candidates = list(qualifiers)
    elif table.primary_key:
        candidates = table.primary_key
    elif table.identity:
        candidates = [table.identity]
    else:
        raise MissingQualifierError(
            "no qualifiers given and the table has no primary key or identity",
            table.qualified_name,
        )

    mapped = {c.lower() for c in mapped_columns}
    resolved = []
    for name in candidates:
        column = table.find(name)
        if column is None:
            raise MissingQualifierError(
                f"qualifier '{name}' is not a column of the target table",
                table.qualified_name,
            )
        if column.name.lower() not in mapped:
            raise MissingQualifierError(
                f"qualifier '{column.name}' is not mapped from the source",
                table.qualified_name,
            )
        resolved.append(column.name)
    return tuple(resolved)


def updatable_columns(
    table: TableSchema,
    mapped_columns: Sequence[str],
    qualifiers: Sequence[str],
) -> List[str]:
    """Mapped columns an UPDATE may assign: not a qualifier, key or identity."""
    excluded = {q.lower() for q in qualifiers}
    result = []
    for name in mapped_columns:
        column = table.find(name)
        if column is None or name.lower() in excluded:
            continue
        if column.is_primary_key or column.is_identity:
            continue
        result.append(name)
    return result


def insertable_columns(
    table: TableSchema, mapped_columns: Sequence[str], keep_identity: bool
) -> List[str]:
    """Mapped columns an INSERT writes; identity only when kept."""
    if keep_identity:
        return list(mapped_columns)
    identity: Optional[str] = table.identity
    return [c for c in mapped_columns if identity is None or c != identity]


def _index_names(names: Sequence[str]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for name in names:
        index.setdefault(name.lower(), name)
    return index
