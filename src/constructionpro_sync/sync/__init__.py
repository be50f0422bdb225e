"""Sync module - offline outbox, local cache and the manager that drains them."""

from .api_client import ConstructionProClient
from .cache import LocalCache
from .handlers import HandlerRegistry, default_registry
from .http_client import ApiClientError, ApiNetworkError, ApiHttpError, ApiAuthError
from .models import (
    ActionType,
    ConflictResolution,
    PendingAction,
    SyncState,
    SyncStatus,
)
from .photos import PhotoUploader
from .prefetch import Prefetcher
from .protocols import ApiClientProtocol, LocalCacheProtocol, PendingActionStoreProtocol
from .queue import PendingActionStore
from .repository import OfflineRepository
from .resolver import ConflictResolver
from .retry import RetryConfig, retry_with_backoff
from .sync_manager import SyncManager

__all__ = [
    "ConstructionProClient",
    "LocalCache",
    "HandlerRegistry",
    "default_registry",
    "ApiClientError",
    "ApiNetworkError",
    "ApiHttpError",
    "ApiAuthError",
    "ActionType",
    "ConflictResolution",
    "PendingAction",
    "SyncState",
    "SyncStatus",
    "Prefetcher",
    "ApiClientProtocol",
    "LocalCacheProtocol",
    "PendingActionStoreProtocol",
    "PhotoUploader",
    "PendingActionStore",
    "OfflineRepository",
    "ConflictResolver",
    "RetryConfig",
    "retry_with_backoff",
    "SyncManager",
]
