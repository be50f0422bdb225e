"""Data types shared by the outbox, handlers and sync manager."""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

__all__ = [
    "SyncStatus",
    "ActionType",
    "Priority",
    "ConflictData",
    "PendingAction",
    "PendingPhoto",
    "Success",
    "Retry",
    "Failed",
    "Conflict",
    "SyncResult",
    "SyncState",
    "ConflictResolution",
    "ResolutionOutcome",
    "now_ms",
    "is_local_id",
    "LOCAL_ID_PREFIX",
]


LOCAL_ID_PREFIX = "local_"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_local_id(resource_id: Optional[str]) -> bool:
    """Whether an id was minted offline and has no server counterpart yet."""
    return bool(resource_id) and resource_id.startswith(LOCAL_ID_PREFIX)


class SyncStatus:
    """Allowed values for ``PendingAction.status``."""

    PENDING = "PENDING"
    SYNCING = "SYNCING"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"

    ALL = frozenset({PENDING, SYNCING, FAILED, CONFLICT})

    @classmethod
    def validate(cls, status: str) -> str:
        if status not in cls.ALL:
            raise ValueError(f"Invalid sync status: {status!r}")
        return status


class ActionType(str, Enum):
    """Kinds of queued mutation. Each needs a registered handler."""

    DAILY_LOG_CREATE = "DAILY_LOG_CREATE"
    DAILY_LOG_UPDATE = "DAILY_LOG_UPDATE"
    ANNOTATION_CREATE = "ANNOTATION_CREATE"


class Priority:
    HIGH = 0
    NORMAL = 1
    LOW = 2


@dataclass
class ConflictData:
    """Version mismatch details stored alongside a CONFLICT action."""

    local_version: int
    server_version: int
    server_data: Optional[dict] = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "local_version": self.local_version,
                "server_version": self.server_version,
                "server_data": self.server_data,
            }
        )

    @classmethod
    def from_json(cls, data: str) -> "ConflictData":
        parsed = json.loads(data)
        return cls(
            local_version=parsed["local_version"],
            server_version=parsed["server_version"],
            server_data=parsed.get("server_data"),
        )


@dataclass
class PendingAction:
    """A queued mutation waiting to be sent to the server."""

    type: str
    payload: dict
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    resource_id: Optional[str] = None
    status: str = SyncStatus.PENDING
    retry_count: int = 0
    created_at: int = field(default_factory=now_ms)
    last_attempt_at: Optional[int] = None
    next_attempt_at: Optional[int] = None
    last_error: Optional[str] = None
    priority: int = Priority.NORMAL
    base_version: int = 0
    conflict_data: Optional[ConflictData] = None

    def __post_init__(self) -> None:
        if isinstance(self.type, ActionType):
            self.type = self.type.value
        SyncStatus.validate(self.status)

    def is_ready(self, now: int) -> bool:
        """Whether backoff allows an attempt at ``now``."""
        return self.next_attempt_at is None or self.next_attempt_at <= now

    @property
    def awaits_server_id(self) -> bool:
        """Whether the target record still only exists under a local id.

        Such actions wait until the create that owns the id has synced and
        re-keyed them.
        """
        return is_local_id(self.resource_id)

    @classmethod
    def from_row(cls, row) -> "PendingAction":
        """Create from a ``pending_actions`` database row."""
        conflict_json = row["conflict_data_json"]
        return cls(
            id=row["id"],
            type=row["type"],
            resource_id=row["resource_id"],
            payload=json.loads(row["payload_json"]),
            status=row["status"],
            retry_count=row["retry_count"],
            created_at=row["created_at"],
            last_attempt_at=row["last_attempt_at"],
            next_attempt_at=row["next_attempt_at"],
            last_error=row["last_error"],
            priority=row["priority"],
            base_version=row["base_version"],
            conflict_data=ConflictData.from_json(conflict_json) if conflict_json else None,
        )


@dataclass
class PendingPhoto:
    """A photo attachment captured offline, keyed to a daily log id."""

    project_id: str
    daily_log_id: str
    local_path: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    gps_latitude: Optional[float] = None
    gps_longitude: Optional[float] = None
    status: str = SyncStatus.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None
    created_at: int = field(default_factory=now_ms)

    @property
    def awaits_server_id(self) -> bool:
        return is_local_id(self.daily_log_id)

    @classmethod
    def from_row(cls, row) -> "PendingPhoto":
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            daily_log_id=row["daily_log_id"],
            local_path=row["local_path"],
            gps_latitude=row["gps_latitude"],
            gps_longitude=row["gps_longitude"],
            status=row["status"],
            retry_count=row["retry_count"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )


# Handler outcomes


@dataclass(frozen=True)
class Success:
    server_id: Optional[str] = None


@dataclass(frozen=True)
class Retry:
    error: str
    backoff_ms: int


@dataclass(frozen=True)
class Failed:
    error: str


@dataclass(frozen=True)
class Conflict:
    local_version: int
    server_version: int
    server_data: Optional[dict] = None


SyncResult = Union[Success, Retry, Failed, Conflict]


@dataclass(frozen=True)
class SyncState:
    """Snapshot of outbox health for status indicators."""

    is_syncing: bool = False
    pending_count: int = 0
    failed_count: int = 0
    conflict_count: int = 0
    last_sync_at: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_syncing": self.is_syncing,
            "pending_count": self.pending_count,
            "failed_count": self.failed_count,
            "conflict_count": self.conflict_count,
            "last_sync_at": self.last_sync_at,
            "last_error": self.last_error,
        }


class ConflictResolution(str, Enum):
    SERVER_WINS = "SERVER_WINS"
    CLIENT_WINS = "CLIENT_WINS"
    MERGE = "MERGE"
    KEEP_BOTH = "KEEP_BOTH"


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of resolving a conflict.

    ``limitation`` is set when the chosen policy ran with weaker semantics
    than its name suggests (MERGE, CLIENT_WINS).
    """

    resolved: bool
    limitation: Optional[str] = None

    def __bool__(self) -> bool:
        return self.resolved
