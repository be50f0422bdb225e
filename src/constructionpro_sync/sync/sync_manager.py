"""Sync manager - drains the outbox of pending actions to the server."""

import logging
import threading
from dataclasses import replace
from typing import Callable, Optional

from ..config import MAX_RETRY_COUNT, SyncSettings
from .handlers import HandlerRegistry
from .http_client import is_retryable_error
from .photos import PhotoUploader
from .models import (
    Conflict,
    ConflictData,
    ConflictResolution,
    Failed,
    PendingAction,
    ResolutionOutcome,
    Retry,
    Success,
    SyncResult,
    SyncState,
    SyncStatus,
    now_ms,
)
from .protocols import LocalCacheProtocol, PendingActionStoreProtocol
from .resolver import ConflictResolver
from .retry import calculate_backoff_ms

__all__ = ["SyncManager", "MAX_RETRY_COUNT"]

logger = logging.getLogger(__name__)

StateListener = Callable[[SyncState], None]


class SyncManager:
    """Drains pending actions one at a time, in priority then FIFO order.

    At most one drain runs per instance: ``sync_all`` takes a non-blocking
    lock and returns immediately if another drain holds it. Actions are
    dispatched strictly sequentially so an earlier action's round trip
    (e.g. a create that yields a server id) completes before the next one
    starts.
    """

    def __init__(
        self,
        store: PendingActionStoreProtocol,
        registry: HandlerRegistry,
        cache: LocalCacheProtocol,
        settings: Optional[SyncSettings] = None,
        clock: Callable[[], int] = now_ms,
        resolver: Optional[ConflictResolver] = None,
        photos: Optional[PhotoUploader] = None,
    ):
        self.store = store
        self.registry = registry
        self.cache = cache
        self.settings = settings or SyncSettings()
        self.resolver = resolver or ConflictResolver(store, cache)
        self.photos = photos
        self._clock = clock
        self._sync_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState()
        self._listeners: list[StateListener] = []

    # -- state ------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def max_retry_count(self) -> int:
        return self.settings.max_retry_count

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for state changes.

        The listener is called immediately with the current state.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)
        self._notify(listener, self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes) -> SyncState:
        with self._state_lock:
            self._state = replace(self._state, **changes)
            state = self._state
        for listener in list(self._listeners):
            self._notify(listener, state)
        return state

    @staticmethod
    def _notify(listener: StateListener, state: SyncState) -> None:
        try:
            listener(state)
        except Exception:
            logger.exception("Sync state listener failed")

    def refresh_sync_state(self) -> SyncState:
        """Recompute queue counts from the store and publish them."""
        return self._publish(
            pending_count=self.store.count_by_status(SyncStatus.PENDING),
            failed_count=self.store.count_by_status(SyncStatus.FAILED),
            conflict_count=self.store.count_by_status(SyncStatus.CONFLICT),
        )

    # -- draining ---------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    def sync_all(self) -> bool:
        """Process every eligible pending action, then upload pending photos.

        Returns:
            True if every dispatched action and photo upload succeeded. False
            if any of them failed, was rescheduled or conflicted, or if
            another drain was already running (in which case nothing was
            touched). Actions still in backoff or still targeting a local id
            are skipped and do not affect the result.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress")
            return False

        try:
            self._publish(is_syncing=True, last_error=None)
            now = self._clock()
            queued = self.store.get_pending_ordered_by_priority(SyncStatus.PENDING)

            all_successful = True
            last_error: Optional[str] = None
            synced = 0
            for entry in queued:
                # Earlier handlers in this pass may have re-keyed or removed it
                action = self.store.get_by_id(entry.id)
                if action is None or action.status != SyncStatus.PENDING:
                    continue
                if not action.is_ready(now):
                    logger.debug(f"Skipping {action.id}: backing off until {action.next_attempt_at}")
                    continue
                if action.awaits_server_id:
                    logger.debug(f"Skipping {action.id}: {action.resource_id} not created yet")
                    continue

                self.store.update_status(
                    action.id, SyncStatus.SYNCING, action.retry_count, now, None
                )
                result = self._process_single_action(action)
                self._apply_result(action, result, now)

                if isinstance(result, Success):
                    synced += 1
                else:
                    all_successful = False
                    last_error = _result_error(result) or last_error

            if queued:
                logger.info(f"Sync pass finished: {synced}/{len(queued)} actions synced")

            if self.photos is not None:
                photo_stats = self.photos.upload_pending()
                if not photo_stats.success:
                    all_successful = False
                    last_error = last_error or "Photo upload failed"

            self._publish(is_syncing=False, last_sync_at=self._clock(), last_error=last_error)
            self.refresh_sync_state()
            return all_successful

        except Exception as e:
            # Store failures end the pass; the lock must still be released
            logger.exception(f"Sync pass aborted: {e}")
            self._publish(is_syncing=False, last_error=str(e))
            return False
        finally:
            self._sync_lock.release()

    def _process_single_action(self, action: PendingAction) -> SyncResult:
        handler = self.registry.get(action.type)
        if handler is None:
            logger.error(
                f"No handler registered for action type {action.type!r} "
                f"(action {action.id}, payload keys {sorted(action.payload)})"
            )
            return Failed(f"Unknown action type: {action.type}")

        try:
            return handler.handle(action)
        except Exception as e:
            return self.handle_sync_error(e, action.retry_count)

    def _apply_result(self, action: PendingAction, result: SyncResult, now: int) -> None:
        if isinstance(result, Success):
            self.store.delete_by_id(action.id)
            logger.debug(f"Synced action {action.id} ({action.type}) successfully")
        elif isinstance(result, Retry):
            self.store.update_status_with_backoff(
                action.id,
                SyncStatus.PENDING,
                action.retry_count + 1,
                now,
                result.error,
                now + result.backoff_ms,
            )
            logger.info(
                f"Action {action.id} will retry in {result.backoff_ms // 1000}s: {result.error}"
            )
        elif isinstance(result, Failed):
            self.store.update_status(
                action.id, SyncStatus.FAILED, action.retry_count + 1, now, result.error
            )
            logger.warning(f"Action {action.id} ({action.type}) failed: {result.error}")
        elif isinstance(result, Conflict):
            self.store.update_conflict(
                action.id,
                SyncStatus.CONFLICT,
                ConflictData(
                    local_version=result.local_version,
                    server_version=result.server_version,
                    server_data=result.server_data,
                ),
            )
            logger.info(f"Action {action.id} ({action.type}) is in conflict")
        else:
            raise TypeError(f"Unexpected sync result: {result!r}")

    def handle_sync_error(self, error: Exception, retry_count: int) -> SyncResult:
        """Classify a handler exception into Retry or Failed.

        Network errors and 5xx responses are retryable while
        ``retry_count`` is below the retry limit; everything else is terminal.
        """
        logger.error(f"Sync error: {error}", exc_info=error)
        message = str(error) or type(error).__name__

        if self.is_retryable(error) and retry_count < self.max_retry_count:
            backoff = calculate_backoff_ms(
                retry_count,
                self.settings.backoff_base_seconds,
                self.settings.backoff_max_seconds,
            )
            return Retry(message, backoff)
        return Failed(message)

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        return is_retryable_error(error)

    # -- commands ---------------------------------------------------------

    def resolve_conflict(
        self, action_id: str, resolution: ConflictResolution
    ) -> ResolutionOutcome:
        """Resolve a conflicting action and refresh the published state."""
        outcome = self.resolver.resolve(action_id, resolution)
        self.refresh_sync_state()
        return outcome

    def retry_failed(self) -> int:
        """Move every FAILED action and photo back to PENDING with a fresh retry budget.

        Returns:
            Number of actions reset
        """
        failed = self.store.get_by_status(SyncStatus.FAILED)
        for action in failed:
            self.store.reset_for_retry(action.id)
        if failed:
            logger.info(f"Reset {len(failed)} failed actions for retry")
        photos = self.store.reset_failed_photos()
        if photos:
            logger.info(f"Reset {photos} failed photo uploads for retry")
        self.refresh_sync_state()
        return len(failed)

    def clear_failed(self) -> int:
        """Delete every FAILED action.

        Returns:
            Number of actions removed
        """
        removed = self.store.delete_by_status(SyncStatus.FAILED)
        if removed:
            logger.info(f"Cleared {removed} failed actions")
        self.refresh_sync_state()
        return removed

    def recover_interrupted(self) -> int:
        """Reset actions left SYNCING by a crash. Call once at startup."""
        recovered = self.store.recover_interrupted()
        self.refresh_sync_state()
        return recovered

    def get_status(self) -> dict:
        """Get current sync status."""
        return self.refresh_sync_state().to_dict()


def _result_error(result: SyncResult) -> Optional[str]:
    if isinstance(result, (Retry, Failed)):
        return result.error
    if isinstance(result, Conflict):
        return "Conflict detected"
    return None
