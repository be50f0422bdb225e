"""Tests for background prefetch."""

from unittest.mock import Mock

from constructionpro_sync.sync.http_client import ApiNetworkError
from constructionpro_sync.sync.prefetch import Prefetcher


class TestPrefetcher:
    def setup_method(self):
        self.api = Mock()
        self.cache = Mock()
        self.cache.insert_projects.side_effect = len
        self.cache.insert_daily_logs.side_effect = len
        self.cache.insert_drawings.side_effect = len
        self.api.get_projects.return_value = [{"id": "p1", "name": "Harbor Tower"}]
        self.api.get_daily_logs.return_value = [
            {"id": "log-1", "project_id": "p1", "date": "2026-03-02"},
            {"id": "log-2", "date": "2026-03-02"},
        ]
        self.api.get_drawings.return_value = [{"id": "d1", "projectId": "p1"}]
        self.prefetcher = Prefetcher(self.api, self.cache, page_size=25)

    def test_run_fills_cache(self):
        """Test prefetching fills the cache."""
        stats = self.prefetcher.run("p1")

        assert stats.success
        assert (stats.projects, stats.daily_logs, stats.drawings) == (1, 1, 1)
        self.api.get_daily_logs.assert_called_once_with(project_id="p1", page=1, page_size=25)
        self.api.get_drawings.assert_called_once_with("p1")

    def test_partial_failure_continues(self):
        """Test one failing resource does not stop the prefetch."""
        self.api.get_projects.side_effect = ApiNetworkError("offline")

        stats = self.prefetcher.run()

        assert not stats.success
        assert len(stats.errors) == 1
        assert "projects" in stats.errors[0]
        assert stats.daily_logs == 1
        assert stats.drawings == 1
        self.cache.insert_projects.assert_not_called()
