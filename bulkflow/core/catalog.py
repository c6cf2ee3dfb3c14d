"""Schema catalog: columns, keys and identity of a target table."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from bulkflow.connectors.base.session import BulkSession
from bulkflow.exceptions import SchemaResolutionError
from bulkflow.core.models import ColumnInfo, TableSchema
from bulkflow.logging import get_logger

logger = get_logger(__name__)


class SchemaCatalog(ABC):
    """Answers what columns and keys a table has."""

    def __init__(self, session: BulkSession):
        self.session = session
        self._tables: Dict[Tuple[Optional[str], str], TableSchema] = {}

    def get_table(self, table_name: str, schema: Optional[str] = None) -> TableSchema:
        """Return the table schema, cached for the lifetime of the session.

        Raises:
            SchemaResolutionError: If the table is unknown or has no columns
        """
        key = (schema, table_name.lower())
        if key not in self._tables:
            with self.session.unit_of_work():
                table = self._load_table(table_name, schema)
            if not table.columns:
                raise SchemaResolutionError(
                    "table has no columns", table.qualified_name
                )
            logger.debug(
                f"Resolved {table.qualified_name}: {len(table.columns)} columns, "
                f"primary key {table.primary_key}, identity {table.identity}"
            )
            self._tables[key] = table
        return self._tables[key]

    def invalidate(self) -> None:
        self._tables.clear()

    @abstractmethod
    def _load_table(self, table_name: str, schema: Optional[str]) -> TableSchema:
        raise NotImplementedError


class SqlAlchemyCatalog(SchemaCatalog):
    """Catalog backed by the SQLAlchemy inspector."""

    def _load_table(self, table_name: str, schema: Optional[str]) -> TableSchema:
        qualified = f"{schema}.{table_name}" if schema else table_name
        try:
            inspector = inspect(self.session.connection)
            raw_columns = inspector.get_columns(table_name, schema=schema)
            pk = inspector.get_pk_constraint(table_name, schema=schema)
        except NoSuchTableError:
            raise SchemaResolutionError("table does not exist", qualified) from None
        except SQLAlchemyError as e:
            raise SchemaResolutionError(str(e), qualified) from e

        primary_key = set(pk.get("constrained_columns") or [])
        columns = []
        for raw in raw_columns:
            type_name = _type_name(raw["type"])
            columns.append(
                ColumnInfo(
                    name=raw["name"],
                    type_name=type_name,
                    python_type=_python_type(raw["type"]),
                    nullable=bool(raw.get("nullable", True)),
                    is_primary_key=raw["name"] in primary_key,
                    is_identity=self._is_identity(raw, type_name, primary_key),
                )
            )
        return TableSchema(name=table_name, columns=columns, schema=schema)

    def _is_identity(self, raw: dict, type_name: str, primary_key: set) -> bool:
        if raw.get("identity"):
            return True
        default = str(raw.get("default") or "")
        if default.lower().startswith("nextval("):
            return True
        if self.session.dialect == "sqlite":
            # A lone INTEGER primary key aliases the rowid
            return (
                len(primary_key) == 1
                and raw["name"] in primary_key
                and type_name.upper() == "INTEGER"
            )
        if self.session.dialect == "mssql":
            return raw.get("autoincrement") is True
        return False


class DuckDBCatalog(SchemaCatalog):
    """Catalog backed by DuckDB's ``duckdb_columns()`` metadata function."""

    def _load_table(self, table_name: str, schema: Optional[str]) -> TableSchema:
        schema_filter = "AND lower(schema_name) = lower(?)" if schema else ""
        params = [table_name] + ([schema] if schema else [])
        rows = self.session.fetch_all(
            "SELECT column_name, data_type, is_nullable, column_default "
            "FROM duckdb_columns() WHERE lower(table_name) = lower(?) "
            f"{schema_filter} ORDER BY column_index",
            params,
        )
        qualified = f"{schema}.{table_name}" if schema else table_name
        if not rows:
            raise SchemaResolutionError("table does not exist", qualified)

        pk_rows = self.session.fetch_all(
            "SELECT constraint_column_names FROM duckdb_constraints() "
            "WHERE lower(table_name) = lower(?) AND constraint_type = 'PRIMARY KEY' "
            f"{schema_filter}",
            params,
        )
        primary_key = set()
        for (names,) in pk_rows:
            primary_key.update(names or [])

        columns = [
            ColumnInfo(
                name=name,
                type_name=data_type,
                nullable=bool(is_nullable),
                is_primary_key=name in primary_key,
                is_identity=str(default or "").lower().startswith("nextval("),
            )
            for name, data_type, is_nullable, default in rows
        ]
        return TableSchema(name=table_name, columns=columns, schema=schema)


def _type_name(sa_type) -> str:
    try:
        return str(sa_type)
    except SQLAlchemyError:
        # Some dialect-specific types only compile against their dialect
        return type(sa_type).__name__.upper()


def _python_type(sa_type) -> Optional[type]:
    try:
        return sa_type.python_type
    except NotImplementedError:
        return None
