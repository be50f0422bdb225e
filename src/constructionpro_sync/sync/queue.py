"""Durable outbox of pending mutations, backed by SQLite."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from .models import ConflictData, PendingAction, PendingPhoto, SyncStatus

__all__ = ["PendingActionStore"]

logger = logging.getLogger(__name__)

_ACTION_COLUMNS = (
    "id, type, resource_id, payload_json, status, retry_count, created_at, "
    "last_attempt_at, next_attempt_at, last_error, priority, base_version, "
    "conflict_data_json"
)


class PendingActionStore:
    """SQLite-based store for pending actions and offline photo records.

    Each mutator updates one explicit set of columns so every status
    transition is visible at its call site.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "pending_actions.db"

        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_actions (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    resource_id TEXT,
                    payload_json TEXT NOT NULL,
                    status TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL,
                    last_attempt_at INTEGER,
                    next_attempt_at INTEGER,
                    last_error TEXT,
                    priority INTEGER NOT NULL DEFAULT 1,
                    base_version INTEGER NOT NULL DEFAULT 0,
                    conflict_data_json TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_pending_status_priority
                ON pending_actions(status, priority, created_at)
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_photos (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    daily_log_id TEXT NOT NULL,
                    local_path TEXT NOT NULL,
                    gps_latitude REAL,
                    gps_longitude REAL,
                    status TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at INTEGER NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_photos_daily_log
                ON pending_photos(daily_log_id)
                """
            )

    # Pending actions

    def upsert(self, action: PendingAction) -> None:
        """Insert an action, replacing any row with the same id."""
        SyncStatus.validate(action.status)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT OR REPLACE INTO pending_actions ({_ACTION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    action.id,
                    action.type,
                    action.resource_id,
                    json.dumps(action.payload),
                    action.status,
                    action.retry_count,
                    action.created_at,
                    action.last_attempt_at,
                    action.next_attempt_at,
                    action.last_error,
                    action.priority,
                    action.base_version,
                    action.conflict_data.to_json() if action.conflict_data else None,
                ),
            )

    def get_by_id(self, action_id: str) -> Optional[PendingAction]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_ACTION_COLUMNS} FROM pending_actions WHERE id = ? LIMIT 1",
                (action_id,),
            )
            row = cursor.fetchone()
            return PendingAction.from_row(row) if row else None

    def get_by_status(self, status: str) -> list[PendingAction]:
        """Get actions with a status, oldest first."""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_ACTION_COLUMNS} FROM pending_actions
                WHERE status = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (status,),
            )
            return [PendingAction.from_row(row) for row in cursor.fetchall()]

    def get_pending_ordered_by_priority(
        self, status: str = SyncStatus.PENDING
    ) -> list[PendingAction]:
        """Get actions in drain order: priority, then creation time (FIFO).

        Args:
            status: Status to select

        Returns:
            List of PendingAction objects
        """
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_ACTION_COLUMNS} FROM pending_actions
                WHERE status = ?
                ORDER BY priority ASC, created_at ASC, rowid ASC
                """,
                (status,),
            )
            return [PendingAction.from_row(row) for row in cursor.fetchall()]

    def get_by_type_and_resource(
        self, action_type: str, resource_id: str, status: str
    ) -> list[PendingAction]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_ACTION_COLUMNS} FROM pending_actions
                WHERE type = ? AND resource_id = ? AND status = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (action_type, resource_id, status),
            )
            return [PendingAction.from_row(row) for row in cursor.fetchall()]

    def count_by_type(self, action_type: str, status: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM pending_actions WHERE type = ? AND status = ?",
                (action_type, status),
            )
            return cursor.fetchone()[0]

    def count_by_status(self, status: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM pending_actions WHERE status = ?",
                (status,),
            )
            return cursor.fetchone()[0]

    def update_status(
        self,
        action_id: str,
        status: str,
        retry_count: int,
        last_attempt_at: Optional[int],
        last_error: Optional[str],
    ) -> None:
        """Set status, retry count, attempt time and error message."""
        SyncStatus.validate(status)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_actions
                SET status = ?, retry_count = ?, last_attempt_at = ?, last_error = ?
                WHERE id = ?
                """,
                (status, retry_count, last_attempt_at, last_error, action_id),
            )

    def update_status_with_backoff(
        self,
        action_id: str,
        status: str,
        retry_count: int,
        last_attempt_at: Optional[int],
        last_error: Optional[str],
        next_attempt_at: Optional[int],
    ) -> None:
        """Same as update_status, plus the next eligible attempt time."""
        SyncStatus.validate(status)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_actions
                SET status = ?, retry_count = ?, last_attempt_at = ?,
                    last_error = ?, next_attempt_at = ?
                WHERE id = ?
                """,
                (status, retry_count, last_attempt_at, last_error, next_attempt_at, action_id),
            )

    def update_conflict(
        self, action_id: str, status: str, conflict_data: Optional[ConflictData]
    ) -> None:
        """Set status and the stored conflict details."""
        SyncStatus.validate(status)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_actions
                SET status = ?, conflict_data_json = ?
                WHERE id = ?
                """,
                (status, conflict_data.to_json() if conflict_data else None, action_id),
            )

    def update_resource_id(
        self, action_type: str, old_id: str, new_id: str, payload_key: str
    ) -> int:
        """Point actions that target ``old_id`` at ``new_id`` instead.

        Rewrites ``resource_id`` and ``payload[payload_key]`` in one
        transaction, whatever the action's status.

        Returns:
            Number of actions updated
        """
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, payload_json FROM pending_actions
                WHERE type = ? AND resource_id = ?
                """,
                (action_type, old_id),
            )
            rows = cursor.fetchall()
            for row in rows:
                payload = json.loads(row["payload_json"])
                payload[payload_key] = new_id
                cursor.execute(
                    """
                    UPDATE pending_actions
                    SET resource_id = ?, payload_json = ?
                    WHERE id = ?
                    """,
                    (new_id, json.dumps(payload), row["id"]),
                )
            return len(rows)

    def reset_for_retry(self, action_id: str) -> None:
        """Put an action back to PENDING with a fresh retry budget."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_actions
                SET status = ?, retry_count = 0, last_attempt_at = NULL,
                    last_error = NULL, next_attempt_at = NULL,
                    conflict_data_json = NULL
                WHERE id = ?
                """,
                (SyncStatus.PENDING, action_id),
            )

    def recover_interrupted(self) -> int:
        """Reset actions left SYNCING by an interrupted drain.

        Returns:
            Number of actions reset to PENDING
        """
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE pending_actions SET status = ? WHERE status = ?",
                (SyncStatus.PENDING, SyncStatus.SYNCING),
            )
            count = cursor.rowcount
            if count > 0:
                logger.warning(f"Recovered {count} actions interrupted mid-sync")
            return count

    def delete_by_id(self, action_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM pending_actions WHERE id = ?", (action_id,))

    def delete_by_status(self, status: str) -> int:
        """Delete every action with a status.

        Returns:
            Number of actions removed
        """
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM pending_actions WHERE status = ?", (status,))
            return cursor.rowcount

    # Pending photos

    def add_photo(self, photo: PendingPhoto) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO pending_photos (
                    id, project_id, daily_log_id, local_path, gps_latitude,
                    gps_longitude, status, retry_count, last_error, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    photo.id,
                    photo.project_id,
                    photo.daily_log_id,
                    photo.local_path,
                    photo.gps_latitude,
                    photo.gps_longitude,
                    photo.status,
                    photo.retry_count,
                    photo.last_error,
                    photo.created_at,
                ),
            )

    def get_photos_by_status(self, status: str) -> list[PendingPhoto]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM pending_photos WHERE status = ? ORDER BY created_at ASC",
                (status,),
            )
            return [PendingPhoto.from_row(row) for row in cursor.fetchall()]

    def get_photos_for_daily_log(self, daily_log_id: str) -> list[PendingPhoto]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM pending_photos WHERE daily_log_id = ? ORDER BY created_at ASC",
                (daily_log_id,),
            )
            return [PendingPhoto.from_row(row) for row in cursor.fetchall()]

    def update_photo_daily_log_id(self, old_id: str, new_id: str) -> int:
        """Re-key photos captured against a local-only daily log id.

        Returns:
            Number of photos updated
        """
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE pending_photos SET daily_log_id = ? WHERE daily_log_id = ?",
                (new_id, old_id),
            )
            return cursor.rowcount

    def update_photo_status(
        self,
        photo_id: str,
        status: str,
        retry_count: int,
        last_error: Optional[str],
    ) -> None:
        SyncStatus.validate(status)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_photos
                SET status = ?, retry_count = ?, last_error = ?
                WHERE id = ?
                """,
                (status, retry_count, last_error, photo_id),
            )

    def reset_failed_photos(self) -> int:
        """Put FAILED photos back to PENDING with a fresh retry budget.

        Returns:
            Number of photos reset
        """
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_photos
                SET status = ?, retry_count = 0, last_error = NULL
                WHERE status = ?
                """,
                (SyncStatus.PENDING, SyncStatus.FAILED),
            )
            return cursor.rowcount

    def delete_photo(self, photo_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM pending_photos WHERE id = ?", (photo_id,))

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
