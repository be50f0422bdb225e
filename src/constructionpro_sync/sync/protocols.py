"""Protocol types for SyncManager dependencies.

Defines the interfaces that the sync manager, handlers and repository
require from their collaborators, enabling easier testing and looser
coupling.
"""

from typing import Optional, Protocol, runtime_checkable

from .cache import DailyLogRecord, DrawingRecord, ProjectRecord
from .models import ConflictData, PendingAction, PendingPhoto


@runtime_checkable
class ApiClientProtocol(Protocol):
    """Interface for the ConstructionPro REST API."""

    def get_daily_log(self, log_id: str) -> dict: ...

    def create_daily_log(self, request: dict) -> dict: ...

    def update_daily_log(self, log_id: str, request: dict) -> dict: ...

    def create_annotation(self, document_id: str, request: dict) -> Optional[dict]: ...

    def get_daily_logs(
        self,
        project_id: Optional[str] = None,
        search: Optional[str] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> list[dict]: ...

    def get_projects(self) -> list[dict]: ...

    def get_drawings(self, project_id: Optional[str] = None) -> list[dict]: ...

    def upload_daily_log_photo(self, photo: PendingPhoto) -> dict: ...


@runtime_checkable
class PendingActionStoreProtocol(Protocol):
    """Interface for the durable outbox."""

    def upsert(self, action: PendingAction) -> None: ...

    def get_by_id(self, action_id: str) -> Optional[PendingAction]: ...

    def get_by_status(self, status: str) -> list[PendingAction]: ...

    def get_pending_ordered_by_priority(self, status: str = ...) -> list[PendingAction]: ...

    def get_by_type_and_resource(
        self, action_type: str, resource_id: str, status: str
    ) -> list[PendingAction]: ...

    def count_by_status(self, status: str) -> int: ...

    def update_status(
        self,
        action_id: str,
        status: str,
        retry_count: int,
        last_attempt_at: Optional[int],
        last_error: Optional[str],
    ) -> None: ...

    def update_status_with_backoff(
        self,
        action_id: str,
        status: str,
        retry_count: int,
        last_attempt_at: Optional[int],
        last_error: Optional[str],
        next_attempt_at: Optional[int],
    ) -> None: ...

    def update_conflict(
        self, action_id: str, status: str, conflict_data: Optional[ConflictData]
    ) -> None: ...

    def update_resource_id(
        self, action_type: str, old_id: str, new_id: str, payload_key: str
    ) -> int: ...

    def reset_for_retry(self, action_id: str) -> None: ...

    def recover_interrupted(self) -> int: ...

    def delete_by_id(self, action_id: str) -> None: ...

    def delete_by_status(self, status: str) -> int: ...

    def add_photo(self, photo: PendingPhoto) -> None: ...

    def get_photos_by_status(self, status: str) -> list[PendingPhoto]: ...

    def update_photo_daily_log_id(self, old_id: str, new_id: str) -> int: ...

    def update_photo_status(
        self,
        photo_id: str,
        status: str,
        retry_count: int,
        last_error: Optional[str],
    ) -> None: ...

    def reset_failed_photos(self) -> int: ...

    def delete_photo(self, photo_id: str) -> None: ...


@runtime_checkable
class LocalCacheProtocol(Protocol):
    """Interface for the offline read cache."""

    def insert_daily_logs(self, records: list[DailyLogRecord]) -> int: ...

    def get_daily_log(self, log_id: str) -> Optional[DailyLogRecord]: ...

    def get_daily_logs(self, project_id: Optional[str] = None) -> list[DailyLogRecord]: ...

    def mark_daily_log_pending(self, log_id: str, pending: bool = True) -> None: ...

    def delete_daily_log(self, log_id: str) -> None: ...

    def insert_projects(self, records: list[ProjectRecord]) -> int: ...

    def insert_drawings(self, records: list[DrawingRecord]) -> int: ...
