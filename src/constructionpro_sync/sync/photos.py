"""Upload of photos captured offline, run after the action drain."""

import logging
import os
from dataclasses import dataclass

from .http_client import is_retryable_error
from .models import PendingPhoto, SyncStatus
from .protocols import ApiClientProtocol, PendingActionStoreProtocol

__all__ = ["PhotoUploader", "PhotoUploadStats", "MISSING_FILE_ERROR"]

logger = logging.getLogger(__name__)

MISSING_FILE_ERROR = "Missing file"


@dataclass
class PhotoUploadStats:
    uploaded: int = 0
    retrying: int = 0
    failed: int = 0
    waiting: int = 0

    @property
    def success(self) -> bool:
        return self.retrying == 0 and self.failed == 0


class PhotoUploader:
    """Sends PENDING photo rows to the upload endpoint.

    Photos still keyed to a ``local_`` daily log id wait until the create
    that owns the log has synced and re-keyed them. An uploaded photo's row
    and local file are both removed.
    """

    def __init__(
        self,
        api: ApiClientProtocol,
        store: PendingActionStoreProtocol,
        max_retry_count: int = 5,
    ):
        self.api = api
        self.store = store
        self.max_retry_count = max_retry_count

    def upload_pending(self) -> PhotoUploadStats:
        stats = PhotoUploadStats()
        for photo in self.store.get_photos_by_status(SyncStatus.PENDING):
            if photo.awaits_server_id:
                stats.waiting += 1
                continue

            if not os.path.exists(photo.local_path):
                logger.warning(f"Photo {photo.id} file is gone: {photo.local_path}")
                self.store.update_photo_status(
                    photo.id, SyncStatus.FAILED, photo.retry_count + 1, MISSING_FILE_ERROR
                )
                stats.failed += 1
                continue

            try:
                self.api.upload_daily_log_photo(photo)
            except Exception as e:
                self._record_failure(photo, e, stats)
                continue

            self.store.delete_photo(photo.id)
            _remove_file(photo.local_path)
            stats.uploaded += 1
            logger.debug(f"Uploaded photo {photo.id} for daily log {photo.daily_log_id}")

        if stats.uploaded or stats.failed:
            logger.info(
                f"Photo upload finished: {stats.uploaded} uploaded, "
                f"{stats.retrying} retrying, {stats.failed} failed"
            )
        return stats

    def _record_failure(
        self, photo: PendingPhoto, error: Exception, stats: PhotoUploadStats
    ) -> None:
        retry_count = photo.retry_count + 1
        message = str(error) or type(error).__name__
        if is_retryable_error(error) and retry_count < self.max_retry_count:
            status = SyncStatus.PENDING
            stats.retrying += 1
        else:
            status = SyncStatus.FAILED
            stats.failed += 1
        self.store.update_photo_status(photo.id, status, retry_count, message)
        logger.warning(f"Photo {photo.id} upload failed ({status}): {message}")


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"Could not remove uploaded photo {path}: {e}")
