"""Online-first writes with an offline fallback to the outbox."""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Union

from .cache import DailyLogRecord, daily_log_from_api, daily_log_from_summary
from .handlers import HandlerRegistry
from .http_client import ApiClientError, ApiHttpError, ApiNetworkError
from .models import (
    LOCAL_ID_PREFIX,
    ActionType,
    PendingAction,
    PendingPhoto,
    SyncStatus,
    is_local_id,
    now_ms,
)
from .protocols import ApiClientProtocol, LocalCacheProtocol, PendingActionStoreProtocol

__all__ = ["OfflineRepository", "WriteResult", "PhotoCapture", "LOCAL_ID_PREFIX"]

logger = logging.getLogger(__name__)

PENDING_SYNC_STATUS = "PENDING_SYNC"

_REPLACEABLE_UPDATE_STATUSES = (SyncStatus.PENDING, SyncStatus.FAILED, SyncStatus.CONFLICT)


@dataclass
class PhotoCapture:
    """A photo taken while creating a daily log."""

    local_path: str
    gps_latitude: Optional[float] = None
    gps_longitude: Optional[float] = None


@dataclass
class WriteResult:
    """Outcome of a repository write.

    Exactly one of ``data`` (server confirmed) or ``queued`` (saved offline)
    is set.
    """

    data: Optional[Union[dict, DailyLogRecord]] = None
    queued: Optional[PendingAction] = None

    @property
    def is_offline(self) -> bool:
        return self.queued is not None


class OfflineRepository:
    """Writes go to the server first; connectivity failures land in the outbox.

    Validation and auth errors are raised to the caller rather than queued,
    since retrying them later cannot succeed.
    """

    def __init__(
        self,
        api: ApiClientProtocol,
        store: PendingActionStoreProtocol,
        cache: LocalCacheProtocol,
        registry: HandlerRegistry,
    ):
        self.api = api
        self.store = store
        self.cache = cache
        self.registry = registry

    @staticmethod
    def should_queue_offline(error: Exception) -> bool:
        """Whether a failed write should be saved for later instead of reported."""
        if isinstance(error, ApiNetworkError):
            return True
        if isinstance(error, ApiHttpError):
            return error.status_code >= 500
        return False

    def _queue(
        self,
        action_type: ActionType,
        payload: dict,
        resource_id: Optional[str],
        base_version: int = 0,
    ) -> PendingAction:
        action = PendingAction(
            type=action_type.value,
            payload=payload,
            resource_id=resource_id,
            priority=self.registry.priority_for(action_type.value),
            base_version=base_version,
        )
        self.store.upsert(action)
        logger.info(f"Queued {action.type} {action.id} for {resource_id}")
        return action

    # Daily logs

    def create_daily_log(
        self,
        project: dict,
        request: dict,
        photos: Iterable[PhotoCapture] = (),
    ) -> WriteResult:
        """Create a daily log, or save it offline under a temporary local id.

        Args:
            project: Project dict with at least ``id`` (and ``name`` for display)
            request: Upsert body sent to the server
            photos: Photos to attach once the log exists on the server

        Raises:
            ApiClientError: For errors that should not be queued
        """
        request = {"projectId": project["id"], "date": date.today().isoformat(), **request}
        try:
            detail = self.api.create_daily_log(request)
        except ApiClientError as e:
            if not self.should_queue_offline(e):
                raise
            logger.info(f"Daily log create deferred: {e}")
            return self._queue_daily_log_create(project, request, photos)

        record = daily_log_from_api(detail)
        if record is not None:
            self.cache.insert_daily_logs([record])
        for photo in photos:
            self.store.add_photo(
                PendingPhoto(
                    project_id=project["id"],
                    daily_log_id=detail["id"],
                    local_path=photo.local_path,
                    gps_latitude=photo.gps_latitude,
                    gps_longitude=photo.gps_longitude,
                )
            )
        return WriteResult(data=detail)

    def _queue_daily_log_create(
        self, project: dict, request: dict, photos: Iterable[PhotoCapture]
    ) -> WriteResult:
        local_id = f"{LOCAL_ID_PREFIX}{uuid.uuid4()}"
        action = self._queue(
            ActionType.DAILY_LOG_CREATE,
            {"local_id": local_id, "request": request},
            resource_id=project["id"],
        )

        self.cache.insert_daily_logs(
            [
                DailyLogRecord(
                    id=local_id,
                    project_id=project["id"],
                    project_name=project.get("name"),
                    date=request["date"],
                    status=PENDING_SYNC_STATUS,
                    crew_count=request.get("crewCount"),
                    total_hours=request.get("totalHours"),
                    entries_count=len(request.get("entries") or []),
                    materials_count=len(request.get("materials") or []),
                    issues_count=len(request.get("issues") or []),
                    notes=request.get("notes"),
                    weather_delay=request.get("weatherDelay"),
                    weather_delay_notes=request.get("weatherDelayNotes"),
                    pending_sync=True,
                    updated_at=now_ms(),
                )
            ]
        )
        for photo in photos:
            self.store.add_photo(
                PendingPhoto(
                    project_id=project["id"],
                    daily_log_id=local_id,
                    local_path=photo.local_path,
                    gps_latitude=photo.gps_latitude,
                    gps_longitude=photo.gps_longitude,
                )
            )
        return WriteResult(queued=action)

    def update_daily_log(self, log_id: str, request: dict, base_version: int) -> WriteResult:
        """Update a daily log, or save the edit offline.

        A log that only exists under a local id is unknown to the server, so
        the edit is queued straight away. The create handler re-keys it once
        the log has a server id.

        Args:
            log_id: Server id of the log, or the local id of one created offline
            request: Upsert body
            base_version: Version (epoch ms of ``updatedAt``) the edit was made against
        """
        if is_local_id(log_id):
            return WriteResult(queued=self._queue_daily_log_update(log_id, request, base_version))

        try:
            detail = self.api.update_daily_log(log_id, request)
        except ApiClientError as e:
            if not self.should_queue_offline(e):
                raise
            logger.info(f"Daily log update deferred: {e}")
            return WriteResult(queued=self._queue_daily_log_update(log_id, request, base_version))

        record = daily_log_from_api(detail)
        if record is not None:
            self.cache.insert_daily_logs([record])
        return WriteResult(data=detail)

    def _queue_daily_log_update(
        self, log_id: str, request: dict, base_version: int
    ) -> PendingAction:
        # One queued edit per log. The newest request replaces older ones,
        # including edits parked in CONFLICT or FAILED, but keeps the oldest
        # base version, which is what the server copy must still match.
        existing = sorted(
            (
                older
                for status in _REPLACEABLE_UPDATE_STATUSES
                for older in self.store.get_by_type_and_resource(
                    ActionType.DAILY_LOG_UPDATE.value, log_id, status
                )
            ),
            key=lambda a: a.created_at,
        )
        for older in existing:
            self.store.delete_by_id(older.id)
        if existing:
            base_version = existing[0].payload.get("base_version", base_version)
            logger.debug(f"Replaced {len(existing)} queued edits of daily log {log_id}")

        action = self._queue(
            ActionType.DAILY_LOG_UPDATE,
            {"log_id": log_id, "base_version": base_version, "request": request},
            resource_id=log_id,
            base_version=base_version,
        )
        self.cache.mark_daily_log_pending(log_id)
        return action

    def get_daily_logs(self, project_id: Optional[str] = None) -> list[DailyLogRecord]:
        """Refresh daily logs from the server, falling back to the cache offline."""
        try:
            summaries = self.api.get_daily_logs(project_id=project_id)
        except ApiClientError as e:
            if not self.should_queue_offline(e):
                raise
            logger.info(f"Serving cached daily logs: {e}")
            return self.cache.get_daily_logs(project_id)

        records = [r for r in map(daily_log_from_summary, summaries) if r is not None]
        self.cache.insert_daily_logs(records)
        return self.cache.get_daily_logs(project_id)

    # Annotations

    def create_annotation(self, document_id: str, request: dict) -> WriteResult:
        """Create an annotation, or save it offline."""
        try:
            annotation = self.api.create_annotation(document_id, request)
        except ApiClientError as e:
            if not self.should_queue_offline(e):
                raise
            logger.info(f"Annotation create deferred: {e}")
            action = self._queue(
                ActionType.ANNOTATION_CREATE,
                {"document_id": document_id, "request": request},
                resource_id=document_id,
            )
            return WriteResult(queued=action)
        return WriteResult(data=annotation)
