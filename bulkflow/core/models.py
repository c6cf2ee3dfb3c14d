"""Data model shared by the bulk pipeline components."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Sequence, Tuple


class OperationKind(Enum):
    """Kind of set-based operation."""

    INSERT = "insert"
    DELETE = "delete"
    UPDATE = "update"
    MERGE = "merge"

    @classmethod
    def from_string(cls, value: str) -> "OperationKind":
        try:
            return cls(value.lower())
        except ValueError:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(
                f"Unknown operation '{value}'. Expected one of: {valid}"
            ) from None


class StagingLifetime(Enum):
    """Where the staging table lives."""

    SESSION_SCOPED = "session"
    PHYSICAL_PSEUDO = "physical"


class RowState(Enum):
    """Per-row state of a tabular buffer."""

    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class IdentityBehavior(Enum):
    """How identity columns are treated on insert and merge."""

    DEFAULT = "default"
    KEEP_IDENTITY = "keep_identity"


class MergeCommandType(Enum):
    """Statement family used for merge on backends that offer a choice."""

    UPDATE_THEN_INSERT = "update_then_insert"
    ON_CONFLICT_DO_UPDATE = "on_conflict_do_update"


class AmbiguityPolicy(Enum):
    """What to do when one staging row matches several target rows."""

    AFFECT_ALL = "affect_all"
    FAIL = "fail"


class BulkState(Enum):
    """Orchestrator state machine."""

    VALIDATING = auto()
    MATERIALIZING = auto()
    LOADING = auto()
    RECONCILING = auto()
    CLEANING_UP = auto()
    SUCCEEDED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class FieldMapping:
    """Maps one source field onto one target column."""

    source_field: str
    target_column: str


@dataclass(frozen=True)
class ColumnInfo:
    """Catalog description of a target column."""

    name: str
    type_name: str = ""
    python_type: Optional[type] = None
    nullable: bool = True
    is_primary_key: bool = False
    is_identity: bool = False


@dataclass
class TableSchema:
    """Catalog description of a target table."""

    name: str
    columns: List[ColumnInfo]
    schema: Optional[str] = None

    def __post_init__(self):
        self._by_lower = {column.name.lower(): column for column in self.columns}

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key(self) -> List[str]:
        return [column.name for column in self.columns if column.is_primary_key]

    @property
    def identity(self) -> Optional[str]:
        for column in self.columns:
            if column.is_identity:
                return column.name
        return None

    def find(self, name: str) -> Optional[ColumnInfo]:
        """Look up a column case-insensitively."""
        return self._by_lower.get(name.lower())

    @property
    def qualified_name(self) -> str:
        if self.schema:
            return f"{self.schema}.{self.name}"
        return self.name


@dataclass
class StagingTable:
    """A transient table created for one bulk call."""

    name: str
    columns: List[str]
    lifetime: StagingLifetime
    schema: Optional[str] = None
    dropped: bool = False
    kept: bool = False


@dataclass(frozen=True, eq=False)
class BulkOperationRequest:
    """Immutable description of one bulk call.

    Attributes:
        table_name: Target table, optionally as ``schema.table``
        source: Caller-owned rows (entities, records, cursor or DataFrame)
        kind: Operation to perform
        mappings: Explicit field mappings; empty means infer by name
        qualifiers: Join key columns; empty means primary key, else identity
        batch_size: Rows per load batch; None means provider default
        staging_lifetime: Override for staging placement
        hints: Table hints for backends that accept them
        identity_behavior: Whether identity values are written
        merge_command_type: Statement family for merge
        row_state: Restrict a tabular buffer to rows in this state
        keep_staging_on_failure: Keep a physical staging table after failure
        ambiguity_policy: Behaviour when qualifiers match several target rows
    """

    table_name: str
    source: Any
    kind: OperationKind
    mappings: Tuple[FieldMapping, ...] = ()
    qualifiers: Tuple[str, ...] = ()
    batch_size: Optional[int] = None
    staging_lifetime: Optional[StagingLifetime] = None
    hints: Optional[str] = None
    identity_behavior: IdentityBehavior = IdentityBehavior.DEFAULT
    merge_command_type: MergeCommandType = MergeCommandType.UPDATE_THEN_INSERT
    row_state: Optional[RowState] = None
    keep_staging_on_failure: bool = False
    ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.AFFECT_ALL

    @property
    def schema_and_table(self) -> Tuple[Optional[str], str]:
        if "." in self.table_name:
            schema, table = self.table_name.split(".", 1)
            return schema, table
        return None, self.table_name


@dataclass
class BulkResult:
    """Outcome of a successful bulk call."""

    operation: OperationKind
    table_name: str
    rows_affected: int = 0
    rows_loaded: int = 0
    batches: int = 0
    staging_table: Optional[str] = None
    state: BulkState = BulkState.SUCCEEDED
    elapsed_seconds: float = 0.0
    cleanup_error: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "table": self.table_name,
            "rows_affected": self.rows_affected,
            "rows_loaded": self.rows_loaded,
            "batches": self.batches,
            "staging_table": self.staging_table,
            "state": self.state.name,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "cleanup_error": str(self.cleanup_error) if self.cleanup_error else None,
        }


MappingsLike = Optional[Any]


def normalize_mappings(mappings: MappingsLike) -> Tuple[FieldMapping, ...]:
    """Accept FieldMapping objects, (source, target) pairs, or a dict."""
    if not mappings:
        return ()
    if isinstance(mappings, dict):
        return tuple(FieldMapping(str(k), str(v)) for k, v in mappings.items())
    result = []
    for item in mappings:
        if isinstance(item, FieldMapping):
            result.append(item)
        elif isinstance(item, (tuple, list)) and len(item) == 2:
            result.append(FieldMapping(str(item[0]), str(item[1])))
        else:
            raise TypeError(
                f"Cannot interpret {item!r} as a field mapping; "
                "use FieldMapping(source, target) or a (source, target) pair"
            )
    return tuple(result)


def normalize_qualifiers(qualifiers: Optional[Sequence[str]]) -> Tuple[str, ...]:
    if not qualifiers:
        return ()
    if isinstance(qualifiers, str):
        return (qualifiers,)
    return tuple(qualifiers)


@dataclass(frozen=True)
class ResolvedMapping:
    """Mapping Resolver output: ordered mappings plus the resolved schema."""

    mappings: Tuple[FieldMapping, ...]
    table: TableSchema = field(compare=False)

    @property
    def target_columns(self) -> List[str]:
        return [m.target_column for m in self.mappings]

    @property
    def source_fields(self) -> List[str]:
        return [m.source_field for m in self.mappings]
