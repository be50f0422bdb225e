"""Background prefetch - warms the local cache for offline display."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .cache import daily_log_from_summary, drawing_from_api, project_from_api
from .http_client import ApiClientError
from .protocols import ApiClientProtocol, LocalCacheProtocol

__all__ = ["Prefetcher", "PrefetchStats"]

logger = logging.getLogger(__name__)


@dataclass
class PrefetchStats:
    """Statistics from a prefetch run."""

    projects: int = 0
    daily_logs: int = 0
    drawings: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class Prefetcher:
    """Copies projects, recent daily logs and drawings into the cache.

    Runs outside the drain. A failure fetching one resource is recorded and
    the remaining resources are still fetched.
    """

    def __init__(
        self,
        api: ApiClientProtocol,
        cache: LocalCacheProtocol,
        page_size: int = 50,
    ):
        self.api = api
        self.cache = cache
        self.page_size = page_size

    def run(self, project_id: Optional[str] = None) -> PrefetchStats:
        stats = PrefetchStats()

        try:
            projects = [project_from_api(p) for p in self.api.get_projects()]
            stats.projects = self.cache.insert_projects(projects)
        except (ApiClientError, KeyError) as e:
            stats.errors.append(f"Failed to prefetch projects: {e}")

        try:
            summaries = self.api.get_daily_logs(
                project_id=project_id, page=1, page_size=self.page_size
            )
            records = [r for r in map(daily_log_from_summary, summaries) if r is not None]
            stats.daily_logs = self.cache.insert_daily_logs(records)
        except (ApiClientError, KeyError) as e:
            stats.errors.append(f"Failed to prefetch daily logs: {e}")

        try:
            drawings = [drawing_from_api(d) for d in self.api.get_drawings(project_id)]
            stats.drawings = self.cache.insert_drawings(drawings)
        except (ApiClientError, KeyError) as e:
            stats.errors.append(f"Failed to prefetch drawings: {e}")

        for error in stats.errors:
            logger.warning(error)
        logger.info(
            f"Prefetch complete: {stats.projects} projects, "
            f"{stats.daily_logs} daily logs, {stats.drawings} drawings"
        )
        return stats
