"""
Tests for the sync cursor store and sync logs.
"""

from datetime import datetime, timedelta, timezone

from gorgias_warehouse.state import SyncCursorStore


class TestSyncCursorStore:
    """Tests for per-entity cursor rows."""

    def test_record_and_read(self, engine):
        store = SyncCursorStore(engine)
        before = datetime.now(timezone.utc) - timedelta(seconds=1)

        store.record_progress("tickets", total_synced=120, last_synced_id=9001, cursor="abc")

        status = store.get_cursor("tickets")
        assert status.entity_type == "tickets"
        assert status.total_synced == 120
        assert status.last_synced_id == 9001
        assert status.cursor == "abc"
        assert status.last_synced_at >= before
        assert status.last_synced_at.tzinfo is not None

    def test_one_row_per_entity_last_write_wins(self, engine):
        store = SyncCursorStore(engine)

        store.record_progress("users", total_synced=5)
        store.record_progress("users", total_synced=7)

        rows = store.get_status()
        assert len(rows) == 1
        assert rows[0].total_synced == 7

    def test_status_ordered_by_entity(self, engine):
        store = SyncCursorStore(engine)
        for entity in ("tickets", "customers", "users"):
            store.record_progress(entity, total_synced=1)

        assert [s.entity_type for s in store.get_status()] == ["customers", "tickets", "users"]

    def test_explicit_synced_at(self, engine):
        store = SyncCursorStore(engine)
        started = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        store.record_progress("tags", total_synced=3, synced_at=started)

        assert store.get_cursor("tags").last_synced_at == started

    def test_missing_cursor(self, engine):
        assert SyncCursorStore(engine).get_cursor("messages") is None

    def test_clear(self, engine):
        store = SyncCursorStore(engine)
        store.record_progress("users", total_synced=1)
        store.record_progress("tags", total_synced=1)

        store.clear("users")
        assert [s.entity_type for s in store.get_status()] == ["tags"]

        store.clear()
        assert store.get_status() == []

    def test_to_dict(self, engine):
        store = SyncCursorStore(engine)
        store.record_progress("users", total_synced=2, synced_at=datetime(2024, 5, 1, tzinfo=timezone.utc))

        data = store.get_cursor("users").to_dict()
        assert data["last_synced_at"] == "2024-05-01T00:00:00+00:00"
        assert data["total_synced"] == 2


class TestSyncLogs:
    """Tests for the per-phase run log."""

    def test_log_lifecycle(self, engine):
        store = SyncCursorStore(engine)

        log_id = store.start_log("full", "tickets")
        assert store.recent_logs()[0]["status"] == "running"

        store.finish_log(log_id, True, processed=40, failed=1, last_cursor="xyz")

        log = store.recent_logs()[0]
        assert log["status"] == "completed"
        assert log["processed_records"] == 40
        assert log["failed_records"] == 1
        assert log["last_cursor"] == "xyz"
        assert log["completed_at"] is not None

    def test_failed_log_keeps_error(self, engine):
        store = SyncCursorStore(engine)
        log_id = store.start_log("incremental", "customers")

        store.finish_log(log_id, False, error="Rate limited (HTTP 429)")

        log = store.recent_logs()[0]
        assert log["status"] == "failed"
        assert log["error_message"] == "Rate limited (HTTP 429)"

    def test_recent_logs_limit(self, engine):
        store = SyncCursorStore(engine)
        for entity in ("users", "tags", "customers"):
            store.finish_log(store.start_log("full", entity), True)

        assert len(store.recent_logs(limit=2)) == 2


class TestStoreUnavailable:
    """Without a warehouse every call is a no-op."""

    def test_noop_without_engine(self):
        store = SyncCursorStore(None)

        assert store.is_available is False
        store.record_progress("users", total_synced=1)
        store.clear()
        assert store.get_status() == []
        assert store.get_cursor("users") is None
        assert store.start_log("full", "users") is None
        store.finish_log(None, True)
        assert store.recent_logs() == []
