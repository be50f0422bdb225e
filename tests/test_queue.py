"""Tests for the pending action store."""

import pytest
import tempfile
from pathlib import Path

from constructionpro_sync.sync.models import (
    ActionType,
    ConflictData,
    PendingAction,
    PendingPhoto,
    Priority,
    SyncStatus,
)
from constructionpro_sync.sync.queue import PendingActionStore


def make_action(created_at, priority=Priority.NORMAL, **kwargs):
    return PendingAction(
        type=kwargs.pop("type", ActionType.DAILY_LOG_UPDATE),
        payload=kwargs.pop("payload", {"log_id": "log-1", "request": {}}),
        created_at=created_at,
        priority=priority,
        **kwargs,
    )


class TestPendingActionStore:
    """Tests for PendingActionStore."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test_actions.db"
        self.store = PendingActionStore(db_path=self.db_path)

    def teardown_method(self):
        """Clean up."""
        self.store.close()

    def test_upsert_and_get_by_id(self):
        """Test storing an action and reading it back by id."""
        action = make_action(1000, resource_id="log-1", base_version=42)

        self.store.upsert(action)
        loaded = self.store.get_by_id(action.id)

        assert loaded == action
        assert loaded.type == "DAILY_LOG_UPDATE"
        assert loaded.payload == {"log_id": "log-1", "request": {}}

    def test_get_by_id_missing(self):
        """Test looking up an unknown id."""
        assert self.store.get_by_id("nope") is None

    def test_upsert_replaces_existing_row(self):
        """Test upserting an existing id replaces the row."""
        action = make_action(1000)
        self.store.upsert(action)

        action.last_error = "boom"
        self.store.upsert(action)

        assert self.store.count_by_status(SyncStatus.PENDING) == 1
        assert self.store.get_by_id(action.id).last_error == "boom"

    def test_upsert_rejects_invalid_status(self):
        """Test an unknown status is rejected on insert."""
        action = make_action(1000)
        action.status = "DONE"

        with pytest.raises(ValueError):
            self.store.upsert(action)

    def test_pending_ordered_by_priority_then_fifo(self):
        """Test drain order is priority first, then creation time."""
        low = make_action(1000, Priority.LOW)
        normal_late = make_action(3000, Priority.NORMAL)
        normal_early = make_action(2000, Priority.NORMAL)
        high = make_action(4000, Priority.HIGH)
        for action in (low, normal_late, normal_early, high):
            self.store.upsert(action)

        ordered = self.store.get_pending_ordered_by_priority()

        assert [a.id for a in ordered] == [high.id, normal_early.id, normal_late.id, low.id]

    def test_same_timestamp_keeps_insertion_order(self):
        """Test actions created in the same millisecond keep insertion order."""
        first = make_action(1000)
        second = make_action(1000)
        self.store.upsert(first)
        self.store.upsert(second)

        ordered = self.store.get_pending_ordered_by_priority()

        assert [a.id for a in ordered] == [first.id, second.id]

    def test_pending_ordered_excludes_other_statuses(self):
        """Test the drain query only returns the requested status."""
        pending = make_action(1000)
        failed = make_action(500, status=SyncStatus.FAILED)
        self.store.upsert(pending)
        self.store.upsert(failed)

        ordered = self.store.get_pending_ordered_by_priority()

        assert [a.id for a in ordered] == [pending.id]
        assert [a.id for a in self.store.get_by_status(SyncStatus.FAILED)] == [failed.id]

    def test_get_by_type_and_resource(self):
        """Test filtering actions by type, resource and status."""
        match = make_action(1000, resource_id="log-1")
        other_log = make_action(1000, resource_id="log-2")
        other_type = make_action(
            1000, type=ActionType.ANNOTATION_CREATE, resource_id="log-1", payload={}
        )
        for action in (match, other_log, other_type):
            self.store.upsert(action)

        found = self.store.get_by_type_and_resource(
            "DAILY_LOG_UPDATE", "log-1", SyncStatus.PENDING
        )

        assert [a.id for a in found] == [match.id]
        assert self.store.count_by_type("DAILY_LOG_UPDATE", SyncStatus.PENDING) == 2

    def test_update_status(self):
        """Test updating status, retry count, attempt time and error."""
        action = make_action(1000)
        self.store.upsert(action)

        self.store.update_status(action.id, SyncStatus.FAILED, 3, 5000, "bad request")

        loaded = self.store.get_by_id(action.id)
        assert loaded.status == SyncStatus.FAILED
        assert loaded.retry_count == 3
        assert loaded.last_attempt_at == 5000
        assert loaded.last_error == "bad request"

    def test_update_status_rejects_invalid_status(self):
        """Test an unknown status is rejected on update."""
        action = make_action(1000)
        self.store.upsert(action)

        with pytest.raises(ValueError):
            self.store.update_status(action.id, "DONE", 0, None, None)

    def test_update_status_with_backoff(self):
        """Test a backoff update sets the next attempt time."""
        action = make_action(1000)
        self.store.upsert(action)

        self.store.update_status_with_backoff(
            action.id, SyncStatus.PENDING, 1, 5000, "timeout", 35000
        )

        loaded = self.store.get_by_id(action.id)
        assert loaded.retry_count == 1
        assert loaded.next_attempt_at == 35000
        assert not loaded.is_ready(34999)
        assert loaded.is_ready(35000)

    def test_update_conflict(self):
        """Test storing conflict details with the conflict status."""
        action = make_action(1000, base_version=100)
        self.store.upsert(action)

        self.store.update_conflict(
            action.id,
            SyncStatus.CONFLICT,
            ConflictData(100, 150, {"id": "log-1", "notes": "server"}),
        )

        loaded = self.store.get_by_id(action.id)
        assert loaded.status == SyncStatus.CONFLICT
        assert loaded.conflict_data.local_version == 100
        assert loaded.conflict_data.server_version == 150
        assert loaded.conflict_data.server_data["notes"] == "server"

    def test_update_resource_id(self):
        """Test re-keying queued edits from a local id to a server id."""
        edit = make_action(
            1000,
            resource_id="local_abc",
            payload={"log_id": "local_abc", "request": {"notes": "x"}},
        )
        parked = make_action(
            2000,
            resource_id="local_abc",
            status=SyncStatus.FAILED,
            payload={"log_id": "local_abc", "request": {}},
        )
        create = make_action(
            500,
            type=ActionType.DAILY_LOG_CREATE,
            resource_id="local_abc",
            payload={"local_id": "local_abc"},
        )
        for action in (edit, parked, create):
            self.store.upsert(action)

        moved = self.store.update_resource_id(
            ActionType.DAILY_LOG_UPDATE.value, "local_abc", "srv-42", "log_id"
        )

        assert moved == 2
        loaded = self.store.get_by_id(edit.id)
        assert loaded.resource_id == "srv-42"
        assert loaded.payload == {"log_id": "srv-42", "request": {"notes": "x"}}
        assert loaded.status == SyncStatus.PENDING
        assert self.store.get_by_id(parked.id).payload["log_id"] == "srv-42"
        assert self.store.get_by_id(create.id).resource_id == "local_abc"

    def test_update_resource_id_without_matches(self):
        """Test re-keying when nothing targets the old id."""
        assert self.store.update_resource_id("DAILY_LOG_UPDATE", "local_x", "srv", "log_id") == 0

    def test_reset_for_retry(self):
        """Test resetting an action clears its retry state."""
        action = make_action(1000)
        self.store.upsert(action)
        self.store.update_status_with_backoff(action.id, SyncStatus.FAILED, 6, 5000, "x", 9000)

        self.store.reset_for_retry(action.id)

        loaded = self.store.get_by_id(action.id)
        assert loaded.status == SyncStatus.PENDING
        assert loaded.retry_count == 0
        assert loaded.last_error is None
        assert loaded.next_attempt_at is None
        assert loaded.last_attempt_at is None

    def test_recover_interrupted(self):
        """Test actions left syncing are returned to pending."""
        stuck = make_action(1000, status=SyncStatus.SYNCING)
        failed = make_action(1000, status=SyncStatus.FAILED)
        self.store.upsert(stuck)
        self.store.upsert(failed)

        recovered = self.store.recover_interrupted()

        assert recovered == 1
        assert self.store.get_by_id(stuck.id).status == SyncStatus.PENDING
        assert self.store.get_by_id(failed.id).status == SyncStatus.FAILED

    def test_delete_by_id_and_status(self):
        """Test deleting single actions and whole statuses."""
        keep = make_action(1000)
        drop_a = make_action(1000, status=SyncStatus.FAILED)
        drop_b = make_action(2000, status=SyncStatus.FAILED)
        for action in (keep, drop_a, drop_b):
            self.store.upsert(action)

        assert self.store.delete_by_status(SyncStatus.FAILED) == 2
        self.store.delete_by_id(keep.id)

        assert self.store.get_by_id(keep.id) is None
        assert self.store.count_by_status(SyncStatus.FAILED) == 0

    def test_data_survives_reopen(self):
        """Test queued actions persist across store instances."""
        action = make_action(1000)
        self.store.upsert(action)
        self.store.close()

        reopened = PendingActionStore(db_path=self.db_path)
        try:
            assert reopened.get_by_id(action.id) == action
        finally:
            reopened.close()


class TestPendingPhotos:
    """Tests for photo records stored alongside actions."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = PendingActionStore(db_path=Path(self.temp_dir) / "photos.db")

    def teardown_method(self):
        """Clean up."""
        self.store.close()

    def test_add_and_get_photos(self):
        """Test storing a photo and reading it by log and status."""
        photo = PendingPhoto(
            project_id="p1",
            daily_log_id="local_abc",
            local_path="/tmp/a.jpg",
            gps_latitude=52.1,
            gps_longitude=4.3,
        )
        self.store.add_photo(photo)

        assert self.store.get_photos_for_daily_log("local_abc") == [photo]
        assert self.store.get_photos_by_status(SyncStatus.PENDING) == [photo]

    def test_update_photo_daily_log_id(self):
        """Test re-keying photos to a server daily log id."""
        for path in ("/tmp/a.jpg", "/tmp/b.jpg"):
            self.store.add_photo(
                PendingPhoto(project_id="p1", daily_log_id="local_abc", local_path=path)
            )
        self.store.add_photo(
            PendingPhoto(project_id="p1", daily_log_id="other", local_path="/tmp/c.jpg")
        )

        moved = self.store.update_photo_daily_log_id("local_abc", "srv-42")

        assert moved == 2
        assert self.store.get_photos_for_daily_log("local_abc") == []
        assert len(self.store.get_photos_for_daily_log("srv-42")) == 2

    def test_update_photo_status(self):
        """Test updating a photo's status, retry count and error."""
        photo = PendingPhoto(project_id="p1", daily_log_id="srv-1", local_path="/tmp/a.jpg")
        self.store.add_photo(photo)

        self.store.update_photo_status(photo.id, SyncStatus.FAILED, 2, "Missing file")

        [loaded] = self.store.get_photos_by_status(SyncStatus.FAILED)
        assert loaded.retry_count == 2
        assert loaded.last_error == "Missing file"

    def test_update_photo_status_rejects_invalid_status(self):
        """Test an unknown photo status is rejected."""
        with pytest.raises(ValueError):
            self.store.update_photo_status("x", "UPLOADED", 0, None)

    def test_reset_failed_photos(self):
        """Test failed photos return to pending with a fresh retry budget."""
        failed = PendingPhoto(
            project_id="p1",
            daily_log_id="srv-1",
            local_path="/tmp/a.jpg",
            status=SyncStatus.FAILED,
            retry_count=5,
            last_error="offline",
        )
        self.store.add_photo(failed)
        self.store.add_photo(
            PendingPhoto(project_id="p1", daily_log_id="srv-1", local_path="/tmp/b.jpg")
        )

        assert self.store.reset_failed_photos() == 1

        pending = {p.id: p for p in self.store.get_photos_by_status(SyncStatus.PENDING)}
        assert pending[failed.id].retry_count == 0
        assert pending[failed.id].last_error is None

    def test_delete_photo(self):
        """Test deleting an uploaded photo row."""
        photo = PendingPhoto(project_id="p1", daily_log_id="srv-1", local_path="/tmp/a.jpg")
        self.store.add_photo(photo)

        self.store.delete_photo(photo.id)

        assert self.store.get_photos_for_daily_log("srv-1") == []
