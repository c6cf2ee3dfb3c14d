"""Tests for provider strategies: SQL generation, options and bulk primitives."""

import datetime
import decimal
from unittest.mock import MagicMock

import pytest

from bulkflow.core.models import (
    BulkOperationRequest,
    ColumnInfo,
    MergeCommandType,
    OperationKind,
    StagingLifetime,
    StagingTable,
    TableSchema,
)
from bulkflow.exceptions import UnsupportedOptionError
from bulkflow.providers import (
    DuckDBProvider,
    PostgresProvider,
    ProviderRegistry,
    SQLiteProvider,
    SqlServerProvider,
    provider_registry,
)


@pytest.fixture
def target():
    return TableSchema(
        name="Customer",
        columns=[
            ColumnInfo("Id", "INTEGER", is_primary_key=True, is_identity=True),
            ColumnInfo("Email", "TEXT"),
            ColumnInfo("Name", "TEXT"),
        ],
    )


@pytest.fixture
def staging():
    return StagingTable(
        name="stg", columns=["Id", "Email", "Name"], lifetime=StagingLifetime.SESSION_SCOPED
    )


def _request(**options):
    return BulkOperationRequest("Customer", [], OperationKind.MERGE, **options)


class TestRegistry:
    def test_builtin_dialects(self):
        assert provider_registry.dialects() == ["duckdb", "mssql", "postgresql", "sqlite"]
        assert isinstance(provider_registry.get("sqlite"), SQLiteProvider)

    def test_instances_are_reused(self):
        assert provider_registry.get("duckdb") is provider_registry.get("duckdb")

    def test_unknown_dialect(self):
        with pytest.raises(UnsupportedOptionError, match="oracle"):
            ProviderRegistry().get("oracle")

    def test_for_session_uses_dialect(self):
        session = MagicMock(dialect="postgresql")
        assert isinstance(provider_registry.for_session(session), PostgresProvider)


class TestValidateOptions:
    def test_hints_rejected_without_support(self):
        with pytest.raises(UnsupportedOptionError, match="hints"):
            SQLiteProvider().validate_options(_request(hints="TABLOCK"))

    def test_hints_text_is_checked(self):
        with pytest.raises(UnsupportedOptionError, match="invalid hint text"):
            SqlServerProvider().validate_options(_request(hints="TABLOCK; DROP TABLE x"))
        SqlServerProvider().validate_options(_request(hints="TABLOCK, HOLDLOCK"))

    def test_on_conflict_only_where_supported(self):
        request = _request(merge_command_type=MergeCommandType.ON_CONFLICT_DO_UPDATE)
        PostgresProvider().validate_options(request)
        with pytest.raises(UnsupportedOptionError, match="merge_command_type"):
            DuckDBProvider().validate_options(request)


class TestStagingNames:
    def test_name_is_unique_and_bounded(self):
        provider = PostgresProvider()
        first = provider.staging_table_name(
            "C" * 100, OperationKind.MERGE, StagingLifetime.SESSION_SCOPED
        )
        second = provider.staging_table_name(
            "C" * 100, OperationKind.MERGE, StagingLifetime.SESSION_SCOPED
        )
        assert first != second
        assert first.startswith("_bulkflow_merge_")
        assert len(first) <= provider.capabilities.max_identifier_length

    def test_sqlserver_session_staging_is_local_temp(self):
        provider = SqlServerProvider()
        temp = provider.staging_table_name(
            "Customer", OperationKind.UPDATE, StagingLifetime.SESSION_SCOPED
        )
        physical = provider.staging_table_name(
            "Customer", OperationKind.UPDATE, StagingLifetime.PHYSICAL_PSEUDO
        )
        assert temp.startswith("#_bulkflow_update_Customer_")
        assert physical.startswith("_bulkflow_update_Customer_")

    def test_resolve_lifetime(self):
        provider = SQLiteProvider()
        assert provider.resolve_lifetime(None) == StagingLifetime.SESSION_SCOPED
        assert (
            provider.resolve_lifetime(StagingLifetime.PHYSICAL_PSEUDO)
            == StagingLifetime.PHYSICAL_PSEUDO
        )


class TestSQLiteProvider:
    def test_join_update_by_version(self, target, staging):
        modern = SQLiteProvider(library_version=(3, 45, 0))
        legacy = SQLiteProvider(library_version=(3, 31, 1))
        assert modern.capabilities.supports_join_update
        assert not legacy.capabilities.supports_join_update

        joined = modern.build_update(target, staging, ["Id"], ["Name"])
        assert joined == (
            'UPDATE "Customer" SET "Name" = S."Name" FROM "stg" AS S '
            'WHERE S."Id" = "Customer"."Id"'
        )
        correlated = legacy.build_update(target, staging, ["Id"], ["Name"])
        assert correlated.startswith('UPDATE "Customer" SET "Name" = (SELECT S."Name"')
        assert 'WHERE EXISTS (SELECT 1 FROM "stg" AS S' in correlated

    def test_delete_uses_exists(self, target, staging):
        sql = SQLiteProvider().build_delete(target, staging, ["Email"])
        assert sql == (
            'DELETE FROM "Customer" WHERE EXISTS (SELECT 1 FROM "stg" AS S '
            'WHERE S."Email" = "Customer"."Email")'
        )

    def test_merge_updates_then_inserts_missing(self, target, staging):
        statements = SQLiteProvider(library_version=(3, 45, 0)).build_join_back_statements(
            OperationKind.MERGE, target, staging, ["Email"], ["Name"], ["Email", "Name"]
        )
        assert len(statements) == 2
        assert statements[0].startswith('UPDATE "Customer"')
        assert statements[1] == (
            'INSERT INTO "Customer" ("Email", "Name") SELECT S."Email", S."Name" '
            'FROM "stg" S WHERE NOT EXISTS (SELECT 1 FROM "Customer" '
            'WHERE S."Email" = "Customer"."Email")'
        )

    def test_insert_does_not_reconcile(self, target, staging):
        with pytest.raises(ValueError):
            SQLiteProvider().build_join_back_statements(
                OperationKind.INSERT, target, staging, [], [], []
            )

    def test_convert_value(self):
        provider = SQLiteProvider()
        assert provider.convert_value(datetime.datetime(2024, 1, 2, 3, 4, 5)) == (
            "2024-01-02 03:04:05"
        )
        assert provider.convert_value(datetime.date(2024, 1, 2)) == "2024-01-02"
        assert provider.convert_value(decimal.Decimal("1.50")) == "1.50"
        assert provider.convert_value(7) == 7

    def test_multi_row_insert_respects_parameter_limit(self):
        session = MagicMock()
        session.connection.dialect.paramstyle = "qmark"
        batch = [(i, f"n{i}") for i in range(1000)]
        written = SQLiteProvider()._load_batch(session, '"t"', ["a", "b"], batch)

        assert written == 1000
        # 999 parameters / 2 columns -> 499 rows per statement
        assert session.execute.call_count == 3
        sql, params = session.execute.call_args_list[0][0]
        assert sql.startswith('INSERT INTO "t" ("a", "b") VALUES (?, ?), (?, ?)')
        assert len(params) == 998

    def test_bulk_load_checkpoints_each_batch(self):
        session = MagicMock()
        session.connection.dialect.paramstyle = "qmark"
        checkpoint = MagicMock()
        result = SQLiteProvider().bulk_load(
            session, '"t"', ["a"], iter([(1,), (2,), (3,)]), batch_size=2,
            checkpoint=checkpoint,
        )
        assert (result.rows, result.batches) == (3, 2)
        assert checkpoint.call_count == 2


class TestPostgresProvider:
    def test_copy_load(self):
        session = MagicMock()
        cursor = session.dbapi_cursor.return_value
        written = PostgresProvider()._load_batch(
            session, '"stg"', ["a", "b"], [(1, None), (2, "x")]
        )

        assert written == 2
        sql, buffer = cursor.copy_expert.call_args[0]
        assert sql.startswith('COPY "stg" ("a", "b") FROM STDIN')
        assert buffer.getvalue() == "1\t\\N\n2\tx\n"
        cursor.close.assert_called_once()

    def test_joined_delete_and_update(self, target, staging):
        provider = PostgresProvider()
        assert provider.build_delete(target, staging, ["Id"]) == (
            'DELETE FROM "Customer" USING "stg" AS S WHERE S."Id" = "Customer"."Id"'
        )
        assert provider.build_update(target, staging, ["Id"], ["Name"]).startswith(
            'UPDATE "Customer" SET "Name" = S."Name" FROM "stg" AS S'
        )

    def test_on_conflict_merge(self, target, staging):
        statements = PostgresProvider().build_merge(
            target,
            staging,
            ["Email"],
            ["Name"],
            ["Email", "Name"],
            merge_command_type=MergeCommandType.ON_CONFLICT_DO_UPDATE,
        )
        assert statements == [
            'INSERT INTO "Customer" ("Email", "Name") SELECT S."Email", S."Name" '
            'FROM "stg" S ON CONFLICT ("Email") DO UPDATE SET "Name" = EXCLUDED."Name"'
        ]

    def test_on_conflict_without_updates_does_nothing(self, target, staging):
        statements = PostgresProvider().build_merge(
            target,
            staging,
            ["Email"],
            [],
            ["Email"],
            merge_command_type=MergeCommandType.ON_CONFLICT_DO_UPDATE,
        )
        assert statements[0].endswith("ON CONFLICT (\"Email\") DO NOTHING")


class TestSqlServerProvider:
    def test_hinted_delete(self, target):
        staging = StagingTable("#stg", ["Id"], StagingLifetime.SESSION_SCOPED)
        sql = SqlServerProvider().build_delete(target, staging, ["Id"], hints="TABLOCK")
        assert sql == (
            "DELETE T FROM [Customer] AS T WITH (TABLOCK) "
            "INNER JOIN [#stg] AS S ON S.[Id] = T.[Id]"
        )

    def test_update_join(self, target):
        staging = StagingTable("#stg", ["Id", "Name"], StagingLifetime.SESSION_SCOPED)
        sql = SqlServerProvider().build_update(target, staging, ["Id"], ["Name"])
        assert sql == (
            "UPDATE T SET T.[Name] = S.[Name] FROM [Customer] AS T "
            "INNER JOIN [#stg] AS S ON S.[Id] = T.[Id]"
        )

    def test_merge_statement_with_identity_insert(self, target):
        staging = StagingTable("#stg", ["Id", "Name"], StagingLifetime.SESSION_SCOPED)
        statements = SqlServerProvider().build_merge(
            target, staging, ["Id"], ["Name"], ["Id", "Name"], keep_identity=True
        )
        assert statements[0] == "SET IDENTITY_INSERT [Customer] ON"
        assert statements[2] == "SET IDENTITY_INSERT [Customer] OFF"
        merge = statements[1]
        assert merge.startswith("MERGE [Customer] AS T USING (SELECT [Id], [Name] FROM [#stg]) AS S")
        assert "WHEN NOT MATCHED THEN INSERT ([Id], [Name]) VALUES (S.[Id], S.[Name])" in merge
        assert merge.endswith("WHEN MATCHED THEN UPDATE SET T.[Name] = S.[Name];")

    def test_create_staging_drops_identity_property(self, target):
        session = MagicMock()
        staging = SqlServerProvider().create_staging_table(
            session, target, ["Id", "Name"], StagingLifetime.SESSION_SCOPED, "#stg"
        )
        assert staging.schema is None
        sql = session.execute.call_args[0][0]
        assert sql == (
            "SELECT TOP 0 [Id], [Name] INTO [#stg] FROM [Customer] "
            "UNION ALL SELECT TOP 0 [Id], [Name] FROM [Customer]"
        )

    def test_executemany_load_with_identity_insert(self):
        session = MagicMock()
        provider = SqlServerProvider()
        provider.bulk_load(
            session, "[Customer]", ["Id", "Name"], [(1, "a"), (2, "b")], keep_identity=True
        )
        session.execute_many.assert_called_once_with(
            "INSERT INTO [Customer] ([Id], [Name]) VALUES (?, ?)", [(1, "a"), (2, "b")]
        )
        executed = [c[0][0] for c in session.execute.call_args_list]
        assert executed == [
            "SET IDENTITY_INSERT [Customer] ON",
            "SET IDENTITY_INSERT [Customer] OFF",
        ]

    def test_index_on_qualifiers(self):
        session = MagicMock()
        staging = StagingTable("#stg", ["Id"], StagingLifetime.SESSION_SCOPED)
        SqlServerProvider().index_staging_table(session, staging, ["Id"])
        session.execute.assert_called_once_with(
            "CREATE CLUSTERED INDEX [IX_stg] ON [#stg] ([Id])"
        )


class TestDuckDBProvider:
    def test_arrow_registration_load(self):
        session = MagicMock()
        written = DuckDBProvider()._load_batch(
            session, '"items"', ["id", "name"], [(1, "a"), (2, None)]
        )
        assert written == 2
        view_name, arrow_table = session.register.call_args[0]
        assert arrow_table.column("c1").to_pylist() == ["a", None]
        sql = session.execute.call_args[0][0]
        assert sql == f'INSERT INTO "items" ("id", "name") SELECT c0, c1 FROM {view_name}'
        session.unregister.assert_called_once_with(view_name)

    def test_describe(self):
        info = DuckDBProvider().describe()
        assert info["name"] == "duckdb"
        assert info["supports_native_bulk_load"] is True
        assert info["supports_hints"] is False
