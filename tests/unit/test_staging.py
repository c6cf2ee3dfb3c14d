"""Tests for staging table acquisition and release."""

from unittest.mock import patch

import pytest

from bulkflow.connectors import SqlAlchemySession
from bulkflow.core.models import ColumnInfo, OperationKind, StagingLifetime, TableSchema
from bulkflow.core.staging import StagingTableManager
from bulkflow.exceptions import CleanupError, TransferError
from bulkflow.providers import SQLiteProvider


@pytest.fixture
def events_table():
    return TableSchema(
        name="Events", columns=[ColumnInfo("Code", "TEXT"), ColumnInfo("Payload", "TEXT")]
    )


@pytest.fixture
def manager(sqlite_conn):
    return StagingTableManager(SqlAlchemySession(sqlite_conn), SQLiteProvider())


class TestStagingTableManager:
    def test_temp_table_is_created_and_dropped(
        self, manager, events_table, sqlite_conn, staging_tables
    ):
        with manager.acquire(events_table, ["Code"], OperationKind.DELETE) as staging:
            assert staging.lifetime == StagingLifetime.SESSION_SCOPED
            assert staging.name.startswith("_bulkflow_delete_Events_")
            assert staging_tables(sqlite_conn) == [staging.name]
        assert staging.dropped
        assert staging_tables(sqlite_conn) == []

    def test_release_callback_runs_before_the_drop(
        self, sqlite_conn, events_table, staging_tables
    ):
        seen = []
        manager = StagingTableManager(
            SqlAlchemySession(sqlite_conn),
            SQLiteProvider(),
            on_release=lambda staging: seen.append(staging_tables(sqlite_conn)),
        )
        with manager.acquire(events_table, ["Code"], OperationKind.DELETE) as staging:
            pass
        assert seen == [[staging.name]]
        manager.release(staging, failed=False)
        assert len(seen) == 1

    def test_dropped_when_body_fails(self, manager, events_table, sqlite_conn, staging_tables):
        with pytest.raises(TransferError):
            with manager.acquire(events_table, ["Code"], OperationKind.UPDATE):
                raise TransferError("load failed")
        assert staging_tables(sqlite_conn) == []

    def test_physical_staging_kept_on_failure_when_asked(
        self, sqlite_conn, events_table, staging_tables
    ):
        manager = StagingTableManager(
            SqlAlchemySession(sqlite_conn), SQLiteProvider(), keep_on_failure=True
        )
        with pytest.raises(RuntimeError):
            with manager.acquire(
                events_table, ["Code"], OperationKind.MERGE, StagingLifetime.PHYSICAL_PSEUDO
            ) as staging:
                raise RuntimeError("boom")
        assert staging.kept
        assert not staging.dropped
        assert staging_tables(sqlite_conn) == [staging.name]

    def test_drop_failure_is_recorded_and_attached(self, manager, events_table):
        with patch.object(
            SQLiteProvider, "drop_staging_table", side_effect=RuntimeError("locked")
        ):
            with pytest.raises(TransferError) as excinfo:
                with manager.acquire(events_table, ["Code"], OperationKind.DELETE):
                    raise TransferError("reconcile failed", phase="reconcile")

        assert len(manager.cleanup_errors) == 1
        assert isinstance(manager.cleanup_errors[0], CleanupError)
        assert excinfo.value.cleanup_errors == manager.cleanup_errors

    def test_drop_failure_after_success_does_not_raise(self, manager, events_table):
        with patch.object(
            SQLiteProvider, "drop_staging_table", side_effect=RuntimeError("locked")
        ):
            with manager.acquire(events_table, ["Code"], OperationKind.DELETE) as staging:
                pass
        assert not staging.dropped
        assert "locked" in str(manager.cleanup_errors[0])

    def test_creation_failure_is_a_transfer_error(self, manager):
        missing = TableSchema(name="Missing", columns=[ColumnInfo("Code", "TEXT")])
        with pytest.raises(TransferError) as excinfo:
            with manager.acquire(missing, ["Code"], OperationKind.DELETE):
                pass
        assert excinfo.value.phase == "staging"
        assert manager.created == []
