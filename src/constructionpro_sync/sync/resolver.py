"""Conflict resolution for actions parked in CONFLICT state."""

import logging

from .cache import daily_log_from_api
from .models import (
    ActionType,
    ConflictResolution,
    PendingAction,
    ResolutionOutcome,
    SyncStatus,
)
from .protocols import LocalCacheProtocol, PendingActionStoreProtocol

__all__ = [
    "ConflictResolver",
    "MANUAL_RESOLUTION_MESSAGE",
    "MERGE_NOT_IMPLEMENTED",
    "CLIENT_WINS_NOT_FORCED",
]

logger = logging.getLogger(__name__)

MANUAL_RESOLUTION_MESSAGE = "Conflict requires manual resolution"
MERGE_NOT_IMPLEMENTED = "Field-level merge is not implemented; server version kept"
CLIENT_WINS_NOT_FORCED = (
    "Client edit will be resubmitted without a forced override "
    "and may conflict again"
)

# Action types whose server snapshot can replace the cached record
_UPDATE_TYPES = frozenset({ActionType.DAILY_LOG_UPDATE.value})


class ConflictResolver:
    """Applies a user's resolution choice to one conflicting action."""

    def __init__(self, store: PendingActionStoreProtocol, cache: LocalCacheProtocol):
        self.store = store
        self.cache = cache

    def resolve(self, action_id: str, resolution: ConflictResolution) -> ResolutionOutcome:
        """Resolve a conflict.

        Args:
            action_id: Id of an action in CONFLICT state
            resolution: Policy chosen by the user

        Returns:
            ResolutionOutcome; ``resolved`` is False when the action is
            missing, not in conflict, or has no conflict data
        """
        action = self.store.get_by_id(action_id)
        if action is None:
            logger.warning(f"Cannot resolve {action_id}: no such action")
            return ResolutionOutcome(False)
        if action.status != SyncStatus.CONFLICT:
            logger.warning(f"Action {action_id} is not in conflict state ({action.status})")
            return ResolutionOutcome(False)
        if action.conflict_data is None:
            logger.warning(f"Action {action_id} has no conflict data")
            return ResolutionOutcome(False)

        resolution = ConflictResolution(resolution)
        logger.info(f"Resolving {action.type} {action_id} with {resolution.value}")

        if resolution is ConflictResolution.SERVER_WINS:
            self._keep_server(action)
            return ResolutionOutcome(True)

        if resolution is ConflictResolution.CLIENT_WINS:
            self.store.reset_for_retry(action_id)
            return ResolutionOutcome(True, CLIENT_WINS_NOT_FORCED)

        if resolution is ConflictResolution.MERGE:
            logger.warning(f"MERGE not implemented for {action_id}, keeping server version")
            self._keep_server(action)
            return ResolutionOutcome(True, MERGE_NOT_IMPLEMENTED)

        # KEEP_BOTH: park as FAILED for a human to reconcile
        self.store.update_status(
            action_id,
            SyncStatus.FAILED,
            action.retry_count,
            action.last_attempt_at,
            MANUAL_RESOLUTION_MESSAGE,
        )
        return ResolutionOutcome(True)

    def _keep_server(self, action: PendingAction) -> None:
        """Drop the local edit and refresh the cache from the server snapshot."""
        self.store.delete_by_id(action.id)

        snapshot = action.conflict_data.server_data if action.conflict_data else None
        if snapshot and action.type in _UPDATE_TYPES:
            record = daily_log_from_api(snapshot)
            if record is not None:
                self.cache.insert_daily_logs([record])
            else:
                logger.warning(f"Server snapshot for {action.id} has no project, cache not updated")
