"""Tests for the local read cache."""

import tempfile
from pathlib import Path

from constructionpro_sync.sync.cache import (
    DailyLogRecord,
    LocalCache,
    daily_log_from_api,
    daily_log_from_summary,
    drawing_from_api,
    project_from_api,
)


def log_detail(log_id="srv-1", project_id="p1", **extra):
    detail = {
        "id": log_id,
        "date": "2026-03-02",
        "status": "SUBMITTED",
        "crewCount": 4,
        "totalHours": 32.5,
        "notes": "Poured footings",
        "weatherDelay": False,
        "submitter": {"id": "u1", "name": "Sam Field"},
        "entries": [{"id": "e1"}, {"id": "e2"}],
        "materials": [],
        "issues": [{"id": "i1"}],
        "updatedAt": "2026-03-02T17:00:00Z",
    }
    if project_id:
        detail["project"] = {"id": project_id, "name": "Harbor Tower"}
    detail.update(extra)
    return detail


class TestMappers:
    def test_daily_log_from_api(self):
        """Test mapping a server daily log to a cache record."""
        record = daily_log_from_api(log_detail())

        assert record.id == "srv-1"
        assert record.project_id == "p1"
        assert record.project_name == "Harbor Tower"
        assert record.crew_count == 4
        assert record.submitter_name == "Sam Field"
        assert record.entries_count == 2
        assert record.materials_count == 0
        assert record.issues_count == 1
        assert record.pending_sync is False

    def test_daily_log_without_project_is_rejected(self):
        """Test a daily log without project data is not cached."""
        assert daily_log_from_api(log_detail(project_id=None)) is None

    def test_daily_log_from_summary(self):
        """Test mapping a list summary to a cache record."""
        record = daily_log_from_summary(
            {
                "id": "srv-2",
                "project_id": "p1",
                "project_name": "Harbor Tower",
                "date": "2026-03-01",
                "crew_count": 3,
                "submitter_name": "Sam Field",
                "_count": {"entries": 5, "materials": 1, "issues": 0},
            }
        )

        assert record.id == "srv-2"
        assert record.project_id == "p1"
        assert record.entries_count == 5
        assert record.materials_count == 1
        assert record.issues_count == 0

    def test_summary_without_project_is_rejected(self):
        """Test a summary without a project is not cached."""
        assert daily_log_from_summary({"id": "x", "date": "2026-03-01"}) is None

    def test_project_and_drawing_mappers(self):
        """Test mapping projects and drawings."""
        project = project_from_api(
            {"id": "p1", "name": "Harbor Tower", "client": {"companyName": "Acme"}}
        )
        drawing = drawing_from_api(
            {"id": "d1", "title": "Level 1", "project": {"id": "p1", "name": "Harbor Tower"}}
        )

        assert project.client_name == "Acme"
        assert drawing.project_id == "p1"
        assert drawing.title == "Level 1"


class TestLocalCache:
    """Tests for LocalCache."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.cache = LocalCache(db_path=Path(self.temp_dir) / "cache.db")

    def teardown_method(self):
        self.cache.close()

    def _record(self, log_id, project_id="p1", date="2026-03-01", **kwargs):
        return DailyLogRecord(
            id=log_id, project_id=project_id, date=date, updated_at=1, **kwargs
        )

    def test_insert_and_get(self):
        """Test caching a daily log and reading it back."""
        record = self._record("a", notes="hello", weather_delay=True)

        assert self.cache.insert_daily_logs([record]) == 1
        assert self.cache.get_daily_log("a") == record

    def test_insert_empty(self):
        """Test inserting no records."""
        assert self.cache.insert_daily_logs([]) == 0

    def test_insert_replaces_row(self):
        """Test re-inserting a log replaces the cached row."""
        self.cache.insert_daily_logs([self._record("a", notes="old")])
        self.cache.insert_daily_logs([self._record("a", notes="new")])

        logs = self.cache.get_daily_logs()
        assert len(logs) == 1
        assert logs[0].notes == "new"

    def test_get_daily_logs_by_project_newest_first(self):
        """Test listing a project's logs newest first."""
        self.cache.insert_daily_logs(
            [
                self._record("a", date="2026-03-01"),
                self._record("b", date="2026-03-03"),
                self._record("c", project_id="p2"),
            ]
        )

        assert [r.id for r in self.cache.get_daily_logs("p1")] == ["b", "a"]
        assert len(self.cache.get_daily_logs()) == 3

    def test_pending_flag(self):
        """Test marking a cached log as pending sync."""
        self.cache.insert_daily_logs([self._record("a"), self._record("b")])

        self.cache.mark_daily_log_pending("a")

        assert [r.id for r in self.cache.get_pending_daily_logs()] == ["a"]
        self.cache.mark_daily_log_pending("a", pending=False)
        assert self.cache.get_pending_daily_logs() == []

    def test_search_and_delete(self):
        """Test searching and deleting cached logs."""
        self.cache.insert_daily_logs(
            [self._record("a", notes="rebar delivery"), self._record("b", notes="rain")]
        )

        assert [r.id for r in self.cache.search_daily_logs("rebar")] == ["a"]
        self.cache.delete_daily_log("a")
        assert self.cache.get_daily_log("a") is None

    def test_projects_and_drawings(self):
        """Test caching projects and drawings."""
        self.cache.insert_projects(
            [
                project_from_api({"id": "p2", "name": "Zeta Yard"}),
                project_from_api({"id": "p1", "name": "Alpha Pier", "address": "1 Dock Rd"}),
            ]
        )
        self.cache.insert_drawings(
            [drawing_from_api({"id": "d1", "projectId": "p1", "title": "Site plan"})]
        )

        assert [p.id for p in self.cache.get_projects()] == ["p1", "p2"]
        assert [p.id for p in self.cache.search_projects("Dock")] == ["p1"]
        assert self.cache.get_drawing("d1").title == "Site plan"
        assert [d.id for d in self.cache.get_drawings("p1")] == ["d1"]
        assert self.cache.get_drawings("p2") == []
