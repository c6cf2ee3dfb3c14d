"""Coarse type categories used to catch cross-wired mappings.

Both catalog type names and Python / pandas / Arrow types are reduced to one
of a few categories. ``None`` means unknown, which is always compatible.
"""

import datetime
import decimal
import uuid
from typing import Any, Optional

import pandas as pd
import pyarrow as pa

NUMERIC = "numeric"
BOOLEAN = "boolean"
STRING = "string"
TEMPORAL = "temporal"
BINARY = "binary"
UUID = "uuid"

# Source category -> target categories it may be written into
_COMPATIBLE = {
    NUMERIC: {NUMERIC, BOOLEAN},
    BOOLEAN: {BOOLEAN, NUMERIC},
    STRING: {STRING, UUID, TEMPORAL},
    TEMPORAL: {TEMPORAL, STRING},
    BINARY: {BINARY},
    UUID: {UUID, STRING, BINARY},
}


def category_of_type_name(type_name: str) -> Optional[str]:
    """Categorize a declared column type such as ``NVARCHAR(50)``."""
    name = (type_name or "").upper()
    if not name:
        return None
    if "BOOL" in name or name == "BIT":
        return BOOLEAN
    if "UUID" in name or "UNIQUEIDENTIFIER" in name:
        return UUID
    if "DATE" in name or "TIME" in name or "INTERVAL" in name:
        return TEMPORAL
    if any(tok in name for tok in ("BLOB", "BINARY", "BYTEA", "IMAGE")):
        return BINARY
    if any(tok in name for tok in ("CHAR", "TEXT", "CLOB", "STRING", "XML")):
        return STRING
    if any(
        tok in name
        for tok in ("INT", "DEC", "NUMERIC", "REAL", "FLOAT", "DOUBLE", "MONEY")
    ):
        return NUMERIC
    return None


def category_of_python_type(py_type: Optional[type]) -> Optional[str]:
    if py_type is None:
        return None
    if issubclass(py_type, bool):
        return BOOLEAN
    if issubclass(py_type, (int, float, decimal.Decimal)):
        return NUMERIC
    if issubclass(py_type, str):
        return STRING
    if issubclass(
        py_type, (datetime.date, datetime.time, datetime.timedelta, pd.Timestamp)
    ):
        return TEMPORAL
    if issubclass(py_type, (bytes, bytearray, memoryview)):
        return BINARY
    if issubclass(py_type, uuid.UUID):
        return UUID
    return None


def category_of_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return category_of_python_type(type(value))


def category_of_dtype(dtype: Any) -> Optional[str]:
    """Categorize a pandas dtype. Object columns are unknown."""
    if pd.api.types.is_bool_dtype(dtype):
        return BOOLEAN
    if pd.api.types.is_numeric_dtype(dtype):
        return NUMERIC
    if pd.api.types.is_datetime64_any_dtype(dtype) or pd.api.types.is_timedelta64_dtype(
        dtype
    ):
        return TEMPORAL
    if isinstance(dtype, pd.StringDtype):
        return STRING
    return None


def category_of_arrow_type(arrow_type: pa.DataType) -> Optional[str]:
    if pa.types.is_boolean(arrow_type):
        return BOOLEAN
    if (
        pa.types.is_integer(arrow_type)
        or pa.types.is_floating(arrow_type)
        or pa.types.is_decimal(arrow_type)
    ):
        return NUMERIC
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return STRING
    if pa.types.is_temporal(arrow_type):
        return TEMPORAL
    if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type):
        return BINARY
    return None


def is_compatible(source: Optional[str], target: Optional[str]) -> bool:
    """Return False only when both categories are known and cross-wired."""
    if source is None or target is None:
        return True
    return target in _COMPATIBLE.get(source, {source})
