"""End-to-end bulk operations against an in-memory DuckDB database."""

import pandas as pd
import pytest

from bulkflow import (
    BulkOperations,
    MappingError,
    SchemaResolutionError,
    bulk_delete,
    bulk_delete_by_keys,
    bulk_insert,
    bulk_merge,
    bulk_update,
)


def _items(conn):
    return conn.execute("SELECT id, name, qty FROM items ORDER BY id").fetchall()


@pytest.fixture
def seeded(duckdb_conn):
    bulk_insert(
        duckdb_conn,
        "items",
        [{"id": i, "name": f"item {i}", "qty": i * 10, "price": 1.5} for i in range(1, 6)],
    )
    return duckdb_conn


class TestDuckDBBulkOperations:
    def test_insert_from_dataframe(self, duckdb_conn):
        frame = pd.DataFrame({"id": [1, 2], "name": ["a", None], "qty": [3, 4]})
        result = bulk_insert(duckdb_conn, "items", frame)
        assert result.rows_affected == 2
        assert _items(duckdb_conn) == [(1, "a", 3), (2, None, 4)]

    def test_catalog_reads_primary_key(self, duckdb_conn):
        operations = BulkOperations(duckdb_conn)
        provider = operations.orchestrator().provider
        table = provider.catalog(operations.session).get_table("ITEMS")
        assert table.name == "ITEMS"
        assert table.primary_key == ["id"]
        assert table.identity is None

    def test_delete(self, seeded):
        result = bulk_delete(seeded, "items", [{"id": 2}, {"id": 4}, {"id": 99}])
        assert result.rows_affected == 2
        assert [row[0] for row in _items(seeded)] == [1, 3, 5]

    def test_delete_by_keys(self, seeded):
        result = bulk_delete_by_keys(seeded, "items", [1, 5])
        assert result.rows_affected == 2

    def test_update(self, seeded):
        result = bulk_update(seeded, "items", [{"id": 3, "qty": 0}])
        assert result.rows_affected == 1
        assert _items(seeded)[2] == (3, "item 3", 0)

    def test_merge(self, seeded):
        result = bulk_merge(
            seeded,
            "items",
            [{"id": 1, "name": "renamed", "qty": 1}, {"id": 6, "name": "new", "qty": 6}],
        )
        assert result.rows_affected == 2
        rows = _items(seeded)
        assert rows[0] == (1, "renamed", 1)
        assert rows[-1] == (6, "new", 6)

    def test_no_temp_tables_left(self, seeded):
        bulk_update(seeded, "items", [{"id": 3, "qty": 0}])
        leftovers = seeded.execute(
            "SELECT table_name FROM duckdb_tables() WHERE table_name LIKE '%bulkflow%'"
        ).fetchall()
        assert leftovers == []

    def test_unknown_table(self, duckdb_conn):
        with pytest.raises(SchemaResolutionError):
            bulk_insert(duckdb_conn, "nope", [{"id": 1}])

    def test_type_mismatch(self, duckdb_conn):
        with pytest.raises(MappingError):
            bulk_insert(
                duckdb_conn,
                "items",
                pd.DataFrame({"when": pd.to_datetime(["2024-01-01"])}),
                mappings={"when": "qty"},
            )
