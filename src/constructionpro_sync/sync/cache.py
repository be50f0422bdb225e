"""Local read cache of server entities for offline display."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from .models import now_ms

__all__ = [
    "LocalCache",
    "DailyLogRecord",
    "ProjectRecord",
    "DrawingRecord",
    "daily_log_from_api",
    "daily_log_from_summary",
    "project_from_api",
    "drawing_from_api",
]

logger = logging.getLogger(__name__)


@dataclass
class DailyLogRecord:
    """Cached daily log summary."""

    id: str
    project_id: str
    date: str
    updated_at: int
    project_name: Optional[str] = None
    status: Optional[str] = None
    crew_count: Optional[int] = None
    total_hours: Optional[float] = None
    submitter_name: Optional[str] = None
    entries_count: Optional[int] = None
    materials_count: Optional[int] = None
    issues_count: Optional[int] = None
    notes: Optional[str] = None
    weather_delay: Optional[bool] = None
    weather_delay_notes: Optional[str] = None
    pending_sync: bool = False


@dataclass
class ProjectRecord:
    id: str
    name: str
    updated_at: int
    status: Optional[str] = None
    address: Optional[str] = None
    client_name: Optional[str] = None


@dataclass
class DrawingRecord:
    id: str
    updated_at: int
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    title: Optional[str] = None
    drawing_number: Optional[str] = None
    scale: Optional[str] = None
    file_url: Optional[str] = None
    annotation_count: Optional[int] = None
    created_at: Optional[str] = None


def daily_log_from_api(detail: dict, pending_sync: bool = False) -> Optional[DailyLogRecord]:
    """Map a server ``dailyLog`` object to a cache record.

    Returns None when the log carries no project reference, since every
    cached log must belong to a project.
    """
    project = detail.get("project") or {}
    project_id = project.get("id")
    if not project_id:
        return None

    submitter = detail.get("submitter") or {}
    return DailyLogRecord(
        id=detail["id"],
        project_id=project_id,
        project_name=project.get("name"),
        date=detail.get("date", ""),
        status=detail.get("status"),
        crew_count=detail.get("crewCount"),
        total_hours=detail.get("totalHours"),
        submitter_name=submitter.get("name"),
        entries_count=len(detail.get("entries") or []),
        materials_count=len(detail.get("materials") or []),
        issues_count=len(detail.get("issues") or []),
        notes=detail.get("notes"),
        weather_delay=detail.get("weatherDelay"),
        weather_delay_notes=detail.get("weatherDelayNotes"),
        pending_sync=pending_sync,
        updated_at=now_ms(),
    )


def daily_log_from_summary(summary: dict) -> Optional[DailyLogRecord]:
    """Map an item of the paged daily log list (flat snake_case fields)."""
    project = summary.get("project") or {}
    project_id = summary.get("project_id") or project.get("id")
    if not project_id:
        return None

    counts = summary.get("_count") or {}
    submitter = summary.get("submitter") or {}
    return DailyLogRecord(
        id=summary["id"],
        project_id=project_id,
        project_name=summary.get("project_name") or project.get("name"),
        date=summary.get("date", ""),
        status=summary.get("status"),
        crew_count=summary.get("crew_count"),
        total_hours=summary.get("total_hours"),
        submitter_name=summary.get("submitter_name") or submitter.get("name"),
        entries_count=summary.get("entries_count", counts.get("entries")),
        materials_count=summary.get("materials_count", counts.get("materials")),
        issues_count=summary.get("issues_count", counts.get("issues")),
        notes=summary.get("notes"),
        weather_delay=summary.get("weather_delay"),
        weather_delay_notes=summary.get("weather_delay_notes"),
        updated_at=now_ms(),
    )


def project_from_api(data: dict) -> ProjectRecord:
    client = data.get("client") or {}
    return ProjectRecord(
        id=data["id"],
        name=data.get("name", ""),
        status=data.get("status"),
        address=data.get("address"),
        client_name=client.get("companyName") or data.get("clientName"),
        updated_at=now_ms(),
    )


def drawing_from_api(data: dict) -> DrawingRecord:
    project = data.get("project") or {}
    return DrawingRecord(
        id=data["id"],
        project_id=project.get("id") or data.get("projectId"),
        project_name=project.get("name"),
        title=data.get("title") or data.get("name"),
        drawing_number=data.get("drawingNumber"),
        scale=data.get("scale"),
        file_url=data.get("fileUrl") or data.get("storagePath"),
        annotation_count=data.get("annotationCount"),
        created_at=data.get("createdAt"),
        updated_at=now_ms(),
    )


_DAILY_LOG_FIELDS = tuple(DailyLogRecord.__dataclass_fields__)
_PROJECT_FIELDS = tuple(ProjectRecord.__dataclass_fields__)
_DRAWING_FIELDS = tuple(DrawingRecord.__dataclass_fields__)


class LocalCache:
    """SQLite mirror of daily logs, projects and drawings.

    Writes replace whole rows; the most recent write wins.
    """

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            db_path = Config.get_data_dir() / "local_cache.db"

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
                CREATE TABLE IF NOT EXISTS daily_logs (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    updated_at INTEGER NOT NULL,
                    project_name TEXT,
                    status TEXT,
                    crew_count INTEGER,
                    total_hours REAL,
                    submitter_name TEXT,
                    entries_count INTEGER,
                    materials_count INTEGER,
                    issues_count INTEGER,
                    notes TEXT,
                    weather_delay INTEGER,
                    weather_delay_notes TEXT,
                    pending_sync INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_daily_logs_project ON daily_logs(project_id, date)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    updated_at INTEGER NOT NULL,
                    status TEXT,
                    address TEXT,
                    client_name TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS drawings (
                    id TEXT PRIMARY KEY,
                    updated_at INTEGER NOT NULL,
                    project_id TEXT,
                    project_name TEXT,
                    title TEXT,
                    drawing_number TEXT,
                    scale TEXT,
                    file_url TEXT,
                    annotation_count INTEGER,
                    created_at TEXT
                )
                """
            )

    def _insert(self, table: str, fields: tuple, records: list) -> int:
        if not records:
            return 0
        columns = ", ".join(fields)
        placeholders = ", ".join("?" * len(fields))
        rows = [tuple(getattr(r, f) for f in fields) for r in records]
        with self._cursor() as cursor:
            cursor.executemany(
                f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
                rows,
            )
            return len(rows)

    # Daily logs

    def insert_daily_logs(self, records: list[DailyLogRecord]) -> int:
        return self._insert("daily_logs", _DAILY_LOG_FIELDS, records)

    def get_daily_log(self, log_id: str) -> Optional[DailyLogRecord]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM daily_logs WHERE id = ? LIMIT 1", (log_id,))
            row = cursor.fetchone()
            return _daily_log_from_row(row) if row else None

    def get_daily_logs(self, project_id: Optional[str] = None) -> list[DailyLogRecord]:
        """Get cached daily logs, newest date first."""
        with self._cursor() as cursor:
            if project_id:
                cursor.execute(
                    "SELECT * FROM daily_logs WHERE project_id = ? ORDER BY date DESC",
                    (project_id,),
                )
            else:
                cursor.execute("SELECT * FROM daily_logs ORDER BY date DESC")
            return [_daily_log_from_row(row) for row in cursor.fetchall()]

    def get_pending_daily_logs(self, project_id: Optional[str] = None) -> list[DailyLogRecord]:
        """Get logs written locally that the server has not confirmed yet."""
        with self._cursor() as cursor:
            if project_id:
                cursor.execute(
                    """
                    SELECT * FROM daily_logs
                    WHERE project_id = ? AND pending_sync = 1
                    ORDER BY date DESC
                    """,
                    (project_id,),
                )
            else:
                cursor.execute(
                    "SELECT * FROM daily_logs WHERE pending_sync = 1 ORDER BY date DESC"
                )
            return [_daily_log_from_row(row) for row in cursor.fetchall()]

    def search_daily_logs(
        self, query: str, project_id: Optional[str] = None
    ) -> list[DailyLogRecord]:
        pattern = f"%{query}%"
        with self._cursor() as cursor:
            if project_id:
                cursor.execute(
                    """
                    SELECT * FROM daily_logs
                    WHERE project_id = ? AND (notes LIKE ? OR submitter_name LIKE ?)
                    ORDER BY date DESC
                    """,
                    (project_id, pattern, pattern),
                )
            else:
                cursor.execute(
                    """
                    SELECT * FROM daily_logs
                    WHERE notes LIKE ? OR submitter_name LIKE ? OR project_name LIKE ?
                    ORDER BY date DESC
                    """,
                    (pattern, pattern, pattern),
                )
            return [_daily_log_from_row(row) for row in cursor.fetchall()]

    def mark_daily_log_pending(self, log_id: str, pending: bool = True) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE daily_logs SET pending_sync = ?, updated_at = ? WHERE id = ?",
                (int(pending), now_ms(), log_id),
            )

    def delete_daily_log(self, log_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM daily_logs WHERE id = ?", (log_id,))

    # Projects

    def insert_projects(self, records: list[ProjectRecord]) -> int:
        return self._insert("projects", _PROJECT_FIELDS, records)

    def get_projects(self) -> list[ProjectRecord]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM projects ORDER BY name ASC")
            return [ProjectRecord(**dict(row)) for row in cursor.fetchall()]

    def search_projects(self, query: str) -> list[ProjectRecord]:
        pattern = f"%{query}%"
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM projects WHERE name LIKE ? OR address LIKE ? ORDER BY name ASC",
                (pattern, pattern),
            )
            return [ProjectRecord(**dict(row)) for row in cursor.fetchall()]

    # Drawings

    def insert_drawings(self, records: list[DrawingRecord]) -> int:
        return self._insert("drawings", _DRAWING_FIELDS, records)

    def get_drawing(self, drawing_id: str) -> Optional[DrawingRecord]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM drawings WHERE id = ? LIMIT 1", (drawing_id,))
            row = cursor.fetchone()
            return DrawingRecord(**dict(row)) if row else None

    def get_drawings(self, project_id: Optional[str] = None) -> list[DrawingRecord]:
        with self._cursor() as cursor:
            if project_id:
                cursor.execute(
                    "SELECT * FROM drawings WHERE project_id = ? ORDER BY created_at DESC",
                    (project_id,),
                )
            else:
                cursor.execute("SELECT * FROM drawings ORDER BY created_at DESC")
            return [DrawingRecord(**dict(row)) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection


def _daily_log_from_row(row: sqlite3.Row) -> DailyLogRecord:
    data = dict(row)
    data["pending_sync"] = bool(data["pending_sync"])
    if data["weather_delay"] is not None:
        data["weather_delay"] = bool(data["weather_delay"])
    return DailyLogRecord(**data)
