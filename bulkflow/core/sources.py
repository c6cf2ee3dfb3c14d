"""Row source adapters.

Four input shapes are accepted and each is turned into the same thing: an
ordered stream of value tuples laid out in mapping order, with values
normalized to plain Python scalars.

- TypedEntities: a sequence of homogeneous objects read through an accessor
- DynamicRecords: a sequence of mappings
- RowCursor: a forward-only result consumed exactly once
- TabularBuffer: a DataFrame with an optional per-row state
"""

import itertools
import math
import uuid
import weakref
from abc import ABC, abstractmethod
from collections.abc import Iterator as IteratorABC
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
import pyarrow as pa
from sqlalchemy.engine import Result

from bulkflow.core.accessors import FieldAccessor, _instance_fields, default_accessor
from bulkflow.core.models import FieldMapping, RowState
from bulkflow.core.types import (
    category_of_arrow_type,
    category_of_dtype,
    category_of_python_type,
    category_of_value,
)
from bulkflow.exceptions import NullSourceError, UnsupportedSourceError
from bulkflow.logging import get_logger

logger = get_logger(__name__)

ROW_STATE_COLUMN = "_row_state"

# Sample size used to guess value categories of untyped sources
CATEGORY_SAMPLE = 100

# Cursors already handed to a bulk call; they are never restarted
_consumed_cursors: "weakref.WeakSet[Any]" = weakref.WeakSet()

# First rows read from plain iterators that have not been consumed yet
_peeked_heads: "weakref.WeakKeyDictionary[Any, List[Any]]" = weakref.WeakKeyDictionary()

_EXHAUSTED = object()


class SourceKind(Enum):
    TYPED_ENTITIES = "typed_entities"
    DYNAMIC_RECORDS = "dynamic_records"
    ROW_CURSOR = "row_cursor"
    TABULAR_BUFFER = "tabular_buffer"


def normalize_value(value: Any) -> Any:
    """Convert a value into a plain scalar every driver accepts."""
    if value is None:
        return None
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, pd.Timedelta):
        return value.to_pytimedelta()
    if isinstance(value, np.datetime64):
        return None if np.isnat(value) else pd.Timestamp(value).to_pydatetime()
    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class RowSource(ABC):
    """Single interface over the four input shapes."""

    kind: SourceKind

    @property
    @abstractmethod
    def field_names(self) -> List[str]:
        raise NotImplementedError

    def field_category(self, name: str) -> Optional[str]:
        """Coarse type category of a field, or None when unknown."""
        return None

    def is_empty(self) -> bool:
        """True when the source is known to hold no rows."""
        return False

    @abstractmethod
    def open(self, mappings: Iterable[FieldMapping]) -> Iterator[Tuple[Any, ...]]:
        """Start the stream; rows are tuples in mapping order."""
        raise NotImplementedError


class TypedEntities(RowSource):
    kind = SourceKind.TYPED_ENTITIES

    def __init__(self, entities: Sequence, accessor: Optional[FieldAccessor] = None):
        self.entities = entities
        self.accessor = accessor or default_accessor
        self.entity_type = type(entities[0]) if len(entities) else None

    @property
    def field_names(self) -> List[str]:
        if self.entity_type is None:
            return []
        names = self.accessor.field_names(self.entity_type)
        return names or _instance_fields(self.entities[0])

    def field_category(self, name: str) -> Optional[str]:
        if self.entity_type is None:
            return None
        declared = self.accessor.field_types(self.entity_type).get(name)
        if declared is not None:
            return category_of_python_type(declared)
        return _sample_category(
            self.accessor.get(e, name) for e in self.entities[:CATEGORY_SAMPLE]
        )

    def is_empty(self) -> bool:
        return len(self.entities) == 0

    def open(self, mappings: Iterable[FieldMapping]) -> Iterator[Tuple[Any, ...]]:
        fields = [m.source_field for m in mappings]
        get = self.accessor.get
        for entity in self.entities:
            yield tuple(normalize_value(get(entity, f)) for f in fields)


class DynamicRecords(RowSource):
    kind = SourceKind.DYNAMIC_RECORDS

    def __init__(self, records: Sequence[Mapping]):
        self.records = records

    @property
    def field_names(self) -> List[str]:
        seen: Dict[str, None] = {}
        for record in self.records:
            for key in record.keys():
                seen.setdefault(str(key), None)
        return list(seen)

    def field_category(self, name: str) -> Optional[str]:
        return _sample_category(
            record.get(name) for record in self.records[:CATEGORY_SAMPLE]
        )

    def is_empty(self) -> bool:
        return len(self.records) == 0

    def open(self, mappings: Iterable[FieldMapping]) -> Iterator[Tuple[Any, ...]]:
        fields = [m.source_field for m in mappings]
        for record in self.records:
            yield tuple(normalize_value(record.get(f)) for f in fields)


class RowCursor(RowSource):
    """Forward-only source. It is opened at most once and never restarted.

    Accepts a ``pyarrow.RecordBatchReader``, a SQLAlchemy ``Result``, a DB-API
    cursor, or any iterator of tuples (with ``columns``) or mappings.
    """

    kind = SourceKind.ROW_CURSOR

    def __init__(self, cursor: Any, columns: Optional[List[str]] = None):
        self.cursor = cursor
        self._consumed = False
        self._categories: Dict[str, Optional[str]] = {}
        self._head: List[Any] = []
        self._peeked = False
        self._columns = self._describe(cursor, columns)

    def _describe(
        self, cursor: Any, columns: Optional[List[str]]
    ) -> Optional[List[str]]:
        if isinstance(cursor, pa.RecordBatchReader):
            self._categories = {
                f.name: category_of_arrow_type(f.type) for f in cursor.schema
            }
            return list(cursor.schema.names)
        if isinstance(cursor, Result):
            if cursor.closed or not getattr(cursor, "returns_rows", True):
                raise NullSourceError("Row cursor is closed")
            return [str(k) for k in cursor.keys()]
        if _is_dbapi_cursor(cursor):
            if cursor.description is None:
                raise NullSourceError("Row cursor has no open result set")
            return [d[0] for d in cursor.description]
        if columns is not None:
            return list(columns)
        # Plain iterator: names come from its first row, read on demand
        return None

    def _peek(self) -> List[str]:
        """Read the first row of a plain iterator to learn its field names.

        The row is remembered per iterator until the iterator is consumed, so
        a call that fails validation can be retried without losing it.
        """
        head = _peeked_head(self.cursor)
        if head is None:
            first = next(self.cursor, _EXHAUSTED)
            head = [] if first is _EXHAUSTED else [first]
            _remember_head(self.cursor, head)
        self._head = head
        self._peeked = True
        if not head:
            return []
        if not isinstance(head[0], Mapping):
            raise UnsupportedSourceError(
                "Row iterators yielding sequences need explicit column names"
            )
        return [str(k) for k in head[0].keys()]

    @property
    def field_names(self) -> List[str]:
        if self._columns is None:
            self._columns = self._peek()
        return list(self._columns)

    def field_category(self, name: str) -> Optional[str]:
        return self._categories.get(name)

    def is_empty(self) -> bool:
        if self._columns is None:
            self._columns = self._peek()
        return self._peeked and not self._head

    def open(self, mappings: Iterable[FieldMapping]) -> Iterator[Tuple[Any, ...]]:
        if self._consumed:
            raise NullSourceError("Row cursor was already consumed")
        if self._columns is None:
            self._columns = self._peek()
        _claim(self.cursor)
        _forget_head(self.cursor)
        self._consumed = True
        fields = [m.source_field for m in mappings]
        return self._iter_rows(fields)

    def _iter_rows(self, fields: List[str]) -> Iterator[Tuple[Any, ...]]:
        cursor = self.cursor
        if isinstance(cursor, pa.RecordBatchReader):
            for batch in cursor:
                columns = [batch.column(name).to_pylist() for name in fields]
                for row in zip(*columns):
                    yield tuple(normalize_value(v) for v in row)
            return

        positions = {name: i for i, name in enumerate(self._columns)}
        if isinstance(cursor, Result) or _is_dbapi_cursor(cursor):
            index = [positions[f] for f in fields]
            for row in _fetch_rows(cursor):
                yield tuple(normalize_value(row[i]) for i in index)
            return

        for row in itertools.chain(self._head, cursor):
            if isinstance(row, Mapping):
                yield tuple(normalize_value(row.get(f)) for f in fields)
            else:
                yield tuple(normalize_value(row[positions[f]]) for f in fields)


class TabularBuffer(RowSource):
    """DataFrame source. Rows in the DELETED state never participate.

    Row states come from ``row_states`` (aligned with the rows) or from a
    ``_row_state`` column; without either every row is ADDED.
    """

    kind = SourceKind.TABULAR_BUFFER

    def __init__(
        self,
        frame: pd.DataFrame,
        row_states: Optional[Iterable[Any]] = None,
        row_state: Optional[RowState] = None,
    ):
        self.frame = frame
        self.row_state = row_state
        if row_states is None and ROW_STATE_COLUMN in frame.columns:
            row_states = frame[ROW_STATE_COLUMN].tolist()
        self.row_states = (
            [_as_row_state(s) for s in row_states] if row_states is not None else None
        )
        if self.row_states is not None and len(self.row_states) != len(frame):
            raise ValueError(
                f"row_states has {len(self.row_states)} entries for "
                f"{len(frame)} rows"
            )

    @property
    def field_names(self) -> List[str]:
        return [str(c) for c in self.frame.columns if c != ROW_STATE_COLUMN]

    def field_category(self, name: str) -> Optional[str]:
        category = category_of_dtype(self.frame[name].dtype)
        if category is None and self.frame[name].dtype == object:
            return _sample_category(self.frame[name].head(CATEGORY_SAMPLE))
        return category

    def _participating(self) -> pd.DataFrame:
        if self.row_states is None:
            if self.row_state not in (None, RowState.ADDED):
                return self.frame.iloc[0:0]
            return self.frame
        keep = [
            state != RowState.DELETED
            and (self.row_state is None or state == self.row_state)
            for state in self.row_states
        ]
        return self.frame[keep]

    def is_empty(self) -> bool:
        return len(self._participating()) == 0

    def open(self, mappings: Iterable[FieldMapping]) -> Iterator[Tuple[Any, ...]]:
        fields = [m.source_field for m in mappings]
        frame = self._participating()
        if len(frame) < len(self.frame):
            logger.debug(f"{len(self.frame) - len(frame)} rows excluded by row state")
        for row in frame[fields].itertuples(index=False, name=None):
            yield tuple(normalize_value(v) for v in row)


def as_row_source(
    source: Any,
    accessor: Optional[FieldAccessor] = None,
    row_state: Optional[RowState] = None,
    columns: Optional[List[str]] = None,
) -> RowSource:
    """Classify a caller-supplied object into one of the four row sources.

    Raises:
        NullSourceError: If the source is None or a closed/consumed cursor
        UnsupportedSourceError: If the object is none of the accepted shapes
    """
    if source is None:
        raise NullSourceError()
    if isinstance(source, RowSource):
        return source
    if isinstance(source, pd.DataFrame):
        return TabularBuffer(source, row_state=row_state)
    if isinstance(source, pa.Table):
        reader = pa.RecordBatchReader.from_batches(source.schema, source.to_batches())
        return RowCursor(reader)
    if (
        isinstance(source, (pa.RecordBatchReader, Result))
        or _is_dbapi_cursor(source)
        or isinstance(source, IteratorABC)
    ):
        if _is_claimed(source):
            raise NullSourceError("Row cursor was already consumed")
        return RowCursor(source, columns=columns)
    if isinstance(source, (str, bytes, Mapping)):
        raise UnsupportedSourceError(
            f"unsupported row source type: {type(source).__name__}"
        )
    if isinstance(source, Sequence):
        if len(source) and isinstance(source[0], Mapping):
            return DynamicRecords(source)
        if len(source) == 0:
            return DynamicRecords(source)
        return TypedEntities(source, accessor)
    raise UnsupportedSourceError(
        f"unsupported row source type: {type(source).__name__}"
    )


def iter_batches(
    rows: Iterable[Tuple[Any, ...]], batch_size: int
) -> Iterator[List[Tuple[Any, ...]]]:
    """Split a row stream into lists of at most ``batch_size`` rows."""
    if batch_size <= 0:
        raise ValueError("batch_size must be a positive integer")
    iterator = iter(rows)
    while True:
        batch = list(itertools.islice(iterator, batch_size))
        if not batch:
            return
        yield batch


def _is_dbapi_cursor(obj: Any) -> bool:
    return hasattr(obj, "description") and hasattr(obj, "fetchmany")


def _fetch_rows(cursor: Any, size: int = 1000) -> Iterator[Any]:
    while True:
        rows = cursor.fetchmany(size)
        if not rows:
            return
        yield from rows


def _claim(cursor: Any) -> None:
    try:
        _consumed_cursors.add(cursor)
    except TypeError:
        # Not weak-referenceable; exhaustion then shows up as an empty stream
        pass


def _is_claimed(cursor: Any) -> bool:
    try:
        return cursor in _consumed_cursors
    except TypeError:
        return False


def _peeked_head(cursor: Any) -> Optional[List[Any]]:
    try:
        return _peeked_heads.get(cursor)
    except TypeError:
        return None


def _remember_head(cursor: Any, head: List[Any]) -> None:
    try:
        _peeked_heads[cursor] = head
    except TypeError:
        # Not weak-referenceable; the head then lives on the RowCursor only
        pass


def _forget_head(cursor: Any) -> None:
    try:
        _peeked_heads.pop(cursor, None)
    except TypeError:
        pass


def _as_row_state(value: Any) -> RowState:
    if isinstance(value, RowState):
        return value
    return RowState(str(value).lower())


def _sample_category(values: Iterable[Any]) -> Optional[str]:
    for value in values:
        value = normalize_value(value)
        if value is not None:
            return category_of_value(value)
    return None


__all__ = [
    "DynamicRecords",
    "RowCursor",
    "RowSource",
    "SourceKind",
    "TabularBuffer",
    "TypedEntities",
    "as_row_source",
    "iter_batches",
    "normalize_value",
]
