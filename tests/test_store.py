"""
Tests for EventStore
"""
import json

import pytest

from chat_activity_monitor.errors import SerializationError
from chat_activity_monitor.store import EventStore

from conftest import FakeTimer


class TestUpsert:
    """Tests for record upserts"""

    def test_upsert_is_idempotent_by_id(self, store, make_record):
        store.upsert(make_record(1, content="first"))
        store.upsert(make_record(1, content="second"))

        assert len(store) == 1
        assert store.get("1").content == "second"

    def test_upsert_requests_throttled_write(self, store, make_record):
        store.upsert(make_record(1))

        assert len(FakeTimer.created) == 1
        assert not store.path.exists()

    def test_upsert_batch_counts_inserted_and_updated(self, store, make_record):
        store.upsert(make_record(1))

        result = store.upsert_batch([make_record(1), make_record(2), make_record(3)])

        assert result.inserted == 2
        assert result.updated == 1
        assert len(store) == 3

    def test_upsert_batch_issues_single_request(self, store, make_record):
        store.upsert_batch([make_record(i) for i in range(100)])

        assert len(FakeTimer.created) == 1

    def test_forced_batch_writes_immediately(self, store, make_record):
        store.upsert_batch([make_record(1)], force=True)

        data = json.loads(store.path.read_text())
        assert [r["id"] for r in data["records"]] == ["1"]

    def test_reupsert_keeps_deletion_flags(self, store, make_record):
        store.upsert(make_record(1))
        store.mark_deleted("1")
        store.mark_channel_deleted("10")

        store.upsert(make_record(1, content="edited"))

        record = store.get("1")
        assert record.content == "edited"
        assert record.deleted
        assert record.channel_deleted


class TestDeletion:
    """Tests for soft deletion"""

    def test_mark_deleted_keeps_record(self, store, make_record):
        store.upsert(make_record(1))

        assert store.mark_deleted("1") is True
        assert store.get("1").deleted
        assert len(store) == 1

    def test_mark_deleted_unknown_id_is_noop(self, store):
        assert store.mark_deleted("404") is False
        assert len(store) == 0

    def test_mark_channel_deleted_flags_all_channel_records(self, store, make_record):
        store.upsert_batch(
            [
                make_record(1, channel_id="10"),
                make_record(2, channel_id="10"),
                make_record(3, channel_id="11"),
            ]
        )

        assert store.mark_channel_deleted("10") == 2
        assert store.get("1").channel_deleted
        assert store.get("2").channel_deleted
        assert not store.get("3").channel_deleted


class TestAllowedUsers:
    """Tests for the allow-list"""

    def test_add_and_check(self, store):
        store.add_allowed("U1", "alice")

        assert store.is_allowed("U1")
        assert not store.is_allowed("U2")

    def test_add_is_upsert(self, store):
        store.add_allowed("U1", "alice")
        store.add_allowed("U1", "alice2")

        users = store.list_allowed()
        assert len(users) == 1
        assert users[0].display_name == "alice2"

    def test_remove_missing_is_noop(self, store):
        assert store.remove_allowed("U1") is False

    def test_remove_existing(self, store):
        store.add_allowed("U1", "alice")

        assert store.remove_allowed("U1") is True
        assert not store.is_allowed("U1")

    def test_list_sorted_case_insensitive(self, store):
        store.add_allowed("1", "bob")
        store.add_allowed("2", "Alice")
        store.add_allowed("3", "carol")

        assert [u.display_name for u in store.list_allowed()] == ["Alice", "bob", "carol"]


class TestLifecycle:
    """Tests for loading, flushing and stats"""

    def test_load_missing_file_creates_it(self, store):
        store.load()

        data = json.loads(store.path.read_text())
        assert data == {"records": [], "allowedUsers": []}

    def test_snapshot_build_failure_is_serialization_error(self, store, monkeypatch):
        def broken():
            raise RuntimeError("boom")

        monkeypatch.setattr(store, "snapshot", broken)

        with pytest.raises(SerializationError, match="Could not build store snapshot"):
            store.flush()
        assert store.scheduler.dirty

    def test_serialize_failure_is_not_rewrapped(self, store, monkeypatch):
        monkeypatch.setattr(store, "snapshot", lambda: {"records": [object()], "allowedUsers": []})

        with pytest.raises(SerializationError, match="Could not serialize store snapshot"):
            store.flush()

    def test_round_trip_through_disk(self, tmp_path, make_record):
        path = tmp_path / "store.json"
        first = EventStore(path, timer_factory=FakeTimer)
        first.upsert(make_record(1))
        first.mark_deleted("1")
        first.add_allowed("U1", "alice")
        first.flush()

        second = EventStore(path, timer_factory=FakeTimer)
        second.load()

        record = second.get("1")
        assert record.deleted
        assert record.timestamp == make_record(1).timestamp
        assert second.is_allowed("U1")

    def test_stats(self, store, make_record):
        assert store.stats().last_save_time is None

        store.upsert(make_record(1))
        store.add_allowed("U1", "alice")
        store.flush()
        stats = store.stats()

        assert stats.total_records == 1
        assert stats.allowed_users == 1
        assert stats.size_bytes == len(store.path.read_bytes())
        assert stats.last_save_time is not None

    def test_write_failure_keeps_memory_state(self, tmp_path, make_record):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = EventStore(blocker / "store.json", timer_factory=FakeTimer)

        store.upsert(make_record(1))
        FakeTimer.created[0].fire()

        assert store.get("1") is not None
        with pytest.raises(SerializationError):
            store.flush()
