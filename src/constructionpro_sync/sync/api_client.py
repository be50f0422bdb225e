"""ConstructionPro REST client - the remote calls the sync layer makes."""

import logging
from pathlib import Path
from typing import Optional

from ..config import DEFAULT_API_URL
from .http_client import BaseApiClient, ApiClientError
from .models import PendingPhoto

__all__ = ["ConstructionProClient"]

logger = logging.getLogger(__name__)

PHOTO_CATEGORY = "PHOTOS"


class ConstructionProClient(BaseApiClient):
    """Client for the daily log, annotation, upload, project and drawing endpoints.

    Writes are sent once (``retry=False``); the outbox owns retry policy for
    them. Reads use the short in-request retry from BaseApiClient.
    """

    def __init__(self, api_url: str = DEFAULT_API_URL, **kwargs):
        super().__init__(api_url, **kwargs)

    # Daily logs

    def get_daily_log(self, log_id: str) -> dict:
        """Fetch a single daily log.

        Returns:
            The server's ``dailyLog`` object
        """
        response = self._request("GET", f"daily-logs/{log_id}")
        return _unwrap(response, "dailyLog")

    def create_daily_log(self, request: dict) -> dict:
        """Create a daily log.

        Args:
            request: Upsert body (projectId, date, notes, crewCount, ...)

        Returns:
            The server-confirmed ``dailyLog`` object, including its id
        """
        response = self._request("POST", "daily-logs", data=request, retry=False)
        return _unwrap(response, "dailyLog")

    def update_daily_log(self, log_id: str, request: dict) -> dict:
        response = self._request("PUT", f"daily-logs/{log_id}", data=request, retry=False)
        return _unwrap(response, "dailyLog")

    def get_daily_logs(
        self,
        project_id: Optional[str] = None,
        search: Optional[str] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> list[dict]:
        response = self._request(
            "GET",
            "daily-logs",
            params={
                "projectId": project_id,
                "search": search,
                "page": page,
                "pageSize": page_size,
            },
        )
        return response.get("daily_logs", [])

    # Annotations

    def create_annotation(self, document_id: str, request: dict) -> Optional[dict]:
        """Create an annotation on a document file.

        Returns:
            The created annotation, or None if the server omitted it
        """
        response = self._request(
            "POST", f"files/{document_id}/annotations", data=request, retry=False
        )
        return response.get("annotation")

    # Attachments

    def upload_daily_log_photo(self, photo: PendingPhoto) -> dict:
        """Upload a photo captured for a daily log.

        Sent once as multipart form data (``file`` plus the project, log,
        category and optional GPS fields).

        Args:
            photo: Pending photo whose ``daily_log_id`` is a server id

        Returns:
            The server's upload response

        Raises:
            OSError: If the local file cannot be read
        """
        form = {
            "projectId": photo.project_id,
            "dailyLogId": photo.daily_log_id,
            "category": PHOTO_CATEGORY,
        }
        if photo.gps_latitude is not None:
            form["gpsLatitude"] = str(photo.gps_latitude)
        if photo.gps_longitude is not None:
            form["gpsLongitude"] = str(photo.gps_longitude)

        path = Path(photo.local_path)
        with path.open("rb") as fh:
            return self._request(
                "POST",
                "upload",
                form=form,
                files={"file": (path.name, fh, "image/*")},
                retry=False,
            )

    # Reference data for offline display

    def get_projects(self) -> list[dict]:
        response = self._request("GET", "projects")
        return response.get("projects", [])

    def get_drawings(self, project_id: Optional[str] = None) -> list[dict]:
        response = self._request("GET", "drawings", params={"projectId": project_id})
        return response.get("drawings", [])


def _unwrap(response: dict, key: str) -> dict:
    """Return ``response[key]`` or fail with a client error."""
    value = response.get(key)
    if not isinstance(value, dict):
        raise ApiClientError(f"API response missing '{key}'")
    return value
