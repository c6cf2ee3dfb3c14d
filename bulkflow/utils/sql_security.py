"""
SQL text building for bulk operations.

Table and column names come from the catalog and from caller mappings, so
every identifier is quoted for the target dialect before it reaches SQL text.
Values never appear in generated text; they travel as bound parameters or
through the backend's bulk primitive.
"""

import re
from typing import List, Optional, Sequence


class SQLIdentifierValidator:
    """Validator for SQL identifiers to prevent injection."""

    # Plain identifiers that never need quoting
    VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

    # Sequences that cannot appear in an identifier even when quoted
    FORBIDDEN_SEQUENCES = (";", "--", "/*", "*/", "\x00")

    RESERVED_WORDS = {
        "SELECT",
        "FROM",
        "WHERE",
        "INSERT",
        "UPDATE",
        "DELETE",
        "MERGE",
        "TABLE",
        "INDEX",
        "KEY",
        "PRIMARY",
        "ORDER",
        "GROUP",
        "USER",
        "DEFAULT",
        "VALUES",
        "SET",
        "ON",
        "USING",
        "JOIN",
        "AS",
        "NULL",
    }

    @classmethod
    def is_valid_identifier(cls, identifier: str) -> bool:
        """
        Check if an identifier can be safely quoted.

        Args:
            identifier: The identifier to validate

        Returns:
            True if the identifier is safe to quote, False otherwise
        """
        if not identifier or not isinstance(identifier, str):
            return False
        if identifier.strip() != identifier:
            return False
        return not any(seq in identifier for seq in cls.FORBIDDEN_SEQUENCES)

    @classmethod
    def needs_quoting(cls, identifier: str) -> bool:
        if not cls.VALID_IDENTIFIER_PATTERN.match(identifier):
            return True
        return identifier.upper() in cls.RESERVED_WORDS


class SQLSafeFormatter:
    """Dialect-aware identifier quoting and clause building."""

    DIALECT_ALIASES = {
        "postgres": "postgresql",
        "psycopg2": "postgresql",
        "sqlserver": "mssql",
        "pyodbc": "mssql",
    }

    def __init__(self, dialect: str = "sqlite"):
        """
        Initialize the formatter.

        Args:
            dialect: SQL dialect ("sqlite", "postgresql", "duckdb", "mssql")
        """
        dialect = dialect.lower()
        self.dialect = self.DIALECT_ALIASES.get(dialect, dialect)
        self.validator = SQLIdentifierValidator()

    def quote_identifier(self, identifier: str) -> str:
        """
        Quote an SQL identifier (table name, column name, etc.).

        Embedded quote characters are doubled.

        Raises:
            ValueError: If the identifier is empty or contains a forbidden
                sequence
        """
        if not self.validator.is_valid_identifier(identifier):
            raise ValueError(
                f"Invalid or potentially malicious identifier: {identifier!r}"
            )

        if self.dialect == "mssql":
            return "[" + identifier.replace("]", "]]") + "]"
        if self.dialect == "mysql":
            return "`" + identifier.replace("`", "``") + "`"
        return '"' + identifier.replace('"', '""') + '"'

    def quote_schema_table(
        self, table_name: str, schema_name: Optional[str] = None
    ) -> str:
        """Quote a ``schema.table`` reference."""
        quoted_table = self.quote_identifier(table_name)
        if schema_name:
            return f"{self.quote_identifier(schema_name)}.{quoted_table}"
        return quoted_table

    def format_column_list(
        self, columns: Sequence[str], prefix: Optional[str] = None
    ) -> str:
        """
        Format a comma-separated list of quoted column names.

        Args:
            columns: Column names
            prefix: Optional table reference or alias to qualify each column

        Returns:
            Comma-separated, quoted column list
        """
        if not columns:
            return "*"
        if prefix:
            return ", ".join(f"{prefix}.{self.quote_identifier(c)}" for c in columns)
        return ", ".join(self.quote_identifier(c) for c in columns)

    def format_join_condition(
        self, columns: Sequence[str], left: str, right: str
    ) -> str:
        """Build ``left.c1 = right.c1 AND left.c2 = right.c2``."""
        if not columns:
            raise ValueError("Join condition requires at least one column")
        return " AND ".join(
            f"{left}.{self.quote_identifier(c)} = {right}.{self.quote_identifier(c)}"
            for c in columns
        )

    def format_assignments(
        self,
        columns: Sequence[str],
        source: str,
        target: Optional[str] = None,
    ) -> str:
        """Build ``c1 = source.c1, c2 = source.c2`` for an UPDATE SET clause."""
        if not columns:
            raise ValueError("SET columns list cannot be empty for UPDATE")
        parts = []
        for column in columns:
            quoted = self.quote_identifier(column)
            lhs = f"{target}.{quoted}" if target else quoted
            parts.append(f"{lhs} = {source}.{quoted}")
        return ", ".join(parts)

    def build_insert_select(
        self,
        target: str,
        columns: Sequence[str],
        source: str,
        where_clause: Optional[str] = None,
        source_alias: Optional[str] = None,
    ) -> str:
        """Build ``INSERT INTO target (cols) SELECT cols FROM source``."""
        if not columns:
            raise ValueError("Columns list cannot be empty for INSERT")
        column_str = self.format_column_list(columns)
        alias = f" {source_alias}" if source_alias else ""
        select_cols = self.format_column_list(columns, prefix=source_alias)
        query = (
            f"INSERT INTO {target} ({column_str}) "
            f"SELECT {select_cols} FROM {source}{alias}"
        )
        if where_clause:
            query += f" WHERE {where_clause}"
        return query

    def build_empty_copy(
        self,
        target: str,
        new_table: str,
        columns: Sequence[str],
        temporary: bool = False,
    ) -> str:
        """Build a CREATE TABLE AS SELECT that copies column shapes only."""
        create = "CREATE TEMPORARY TABLE" if temporary else "CREATE TABLE"
        return (
            f"{create} {new_table} AS "
            f"SELECT {self.format_column_list(columns)} FROM {target} WHERE 1 = 0"
        )

    def build_drop_table(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {table}"
