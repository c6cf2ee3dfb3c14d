"""Utility modules for bulkflow."""

from .sql_security import SQLIdentifierValidator, SQLSafeFormatter

__all__ = ["SQLIdentifierValidator", "SQLSafeFormatter"]
