"""Per-action-type sync handlers and the registry that dispatches to them.

Adding an action type means writing a handler with ``action_type``,
``priority`` and ``handle()`` and registering it; the sync manager never
switches on type names.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from .cache import daily_log_from_api
from .http_client import ApiHttpError
from .models import (
    ActionType,
    Conflict,
    Failed,
    PendingAction,
    Priority,
    Success,
    SyncResult,
)
from .protocols import ApiClientProtocol, LocalCacheProtocol, PendingActionStoreProtocol

__all__ = [
    "ActionHandler",
    "HandlerRegistry",
    "DailyLogCreateHandler",
    "DailyLogUpdateHandler",
    "AnnotationCreateHandler",
    "default_registry",
    "derive_version",
    "MISSING_PROJECT_ERROR",
]

logger = logging.getLogger(__name__)

MISSING_PROJECT_ERROR = "API response missing required project data"
DELETED_ON_SERVER_ERROR = "Daily log no longer exists on server"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def derive_version(updated_at: Optional[str]) -> int:
    """Turn a server ``updatedAt`` ISO-8601 timestamp into epoch milliseconds.

    Missing or unparsable values give 0. A base version of 0 disables conflict
    detection, so a malformed server timestamp can hide a real conflict.
    """
    if not updated_at:
        return 0
    try:
        parsed = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        logger.debug(f"Unparsable updatedAt {updated_at!r}, using version 0")
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return (parsed - _EPOCH) // timedelta(milliseconds=1)


class ActionHandler(Protocol):
    action_type: str
    priority: int

    def handle(self, action: PendingAction) -> SyncResult: ...


class HandlerRegistry:
    """Maps action types to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        """Register a handler under its ``action_type``, replacing any previous one."""
        action_type = _type_name(handler.action_type)
        if action_type in self._handlers:
            logger.debug(f"Replacing handler for {action_type}")
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(_type_name(action_type))

    def priority_for(self, action_type: str) -> int:
        handler = self.get(action_type)
        return handler.priority if handler else Priority.NORMAL

    def __contains__(self, action_type: str) -> bool:
        return _type_name(action_type) in self._handlers

    @property
    def action_types(self) -> list[str]:
        return sorted(self._handlers)


class DailyLogCreateHandler:
    """Submits a daily log created offline and swaps its local id for the server id."""

    action_type = ActionType.DAILY_LOG_CREATE.value
    # Creates go first so later actions can reference the server id
    priority = Priority.HIGH

    def __init__(
        self,
        api: ApiClientProtocol,
        cache: LocalCacheProtocol,
        store: PendingActionStoreProtocol,
    ):
        self.api = api
        self.cache = cache
        self.store = store

    def handle(self, action: PendingAction) -> SyncResult:
        local_id = action.payload["local_id"]
        detail = self.api.create_daily_log(action.payload["request"])

        record = daily_log_from_api(detail)
        if record is None:
            return Failed(MISSING_PROJECT_ERROR)

        self.cache.delete_daily_log(local_id)
        self.cache.insert_daily_logs([record])
        moved = self.store.update_photo_daily_log_id(local_id, record.id)
        # Edits made offline against the local id now target the server copy
        edits = self.store.update_resource_id(
            ActionType.DAILY_LOG_UPDATE.value, local_id, record.id, "log_id"
        )
        if edits:
            self.cache.mark_daily_log_pending(record.id)
        logger.info(
            f"Daily log {local_id} created on server as {record.id}"
            + (f", re-keyed {moved} photos" if moved else "")
            + (f", re-keyed {edits} edits" if edits else "")
        )
        return Success(record.id)


class DailyLogUpdateHandler:
    """Submits an offline edit unless the server copy changed since it was made."""

    action_type = ActionType.DAILY_LOG_UPDATE.value
    priority = Priority.NORMAL

    def __init__(self, api: ApiClientProtocol, cache: LocalCacheProtocol):
        self.api = api
        self.cache = cache

    def handle(self, action: PendingAction) -> SyncResult:
        log_id = action.payload["log_id"]
        base_version = int(action.payload.get("base_version", action.base_version) or 0)

        try:
            server_log = self.api.get_daily_log(log_id)
        except ApiHttpError as e:
            if e.is_not_found:
                return Failed(DELETED_ON_SERVER_ERROR)
            raise

        server_version = derive_version(server_log.get("updatedAt"))
        if server_version > base_version and base_version > 0:
            logger.info(
                f"Conflict on daily log {log_id}: "
                f"local version {base_version}, server version {server_version}"
            )
            return Conflict(base_version, server_version, server_log)

        detail = self.api.update_daily_log(log_id, action.payload["request"])
        record = daily_log_from_api(detail, pending_sync=False)
        if record is None:
            return Failed(MISSING_PROJECT_ERROR)

        self.cache.insert_daily_logs([record])
        return Success(record.id)


class AnnotationCreateHandler:
    """Submits an annotation drawn offline. Annotations are not cached."""

    action_type = ActionType.ANNOTATION_CREATE.value
    priority = Priority.LOW

    def __init__(self, api: ApiClientProtocol):
        self.api = api

    def handle(self, action: PendingAction) -> SyncResult:
        annotation = self.api.create_annotation(
            action.payload["document_id"], action.payload["request"]
        )
        return Success(annotation.get("id") if annotation else None)


def default_registry(
    api: ApiClientProtocol,
    cache: LocalCacheProtocol,
    store: PendingActionStoreProtocol,
) -> HandlerRegistry:
    """Build a registry with the standard daily log and annotation handlers."""
    registry = HandlerRegistry()
    registry.register(DailyLogCreateHandler(api, cache, store))
    registry.register(DailyLogUpdateHandler(api, cache))
    registry.register(AnnotationCreateHandler(api))
    return registry


def _type_name(action_type) -> str:
    return action_type.value if isinstance(action_type, ActionType) else str(action_type)
