"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from seat_allocator.domain.changes import deserialize_changes, serialize_changes
from seat_allocator.domain.errors import PersistenceError
from seat_allocator.domain.models import (
    Assignment,
    AssignmentStatus,
    EntityType,
    HistoryAction,
    HistoryEntry,
    HistoryMetadata,
    Resource,
    ResourceStatus,
    Setting,
)
from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)


def to_timestamp(value: datetime) -> str:
    """Serialize a timestamp so that text order equals chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Calls made inside ``transaction()`` on the same thread share one
    connection and commit together; calls made outside it open and commit
    their own short-lived connection.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            connection = sqlite3.connect(
                self._db_path,
                timeout=self._settings.database_timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database unavailable: {exc}") from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def _active_connection(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "connection", None)

    @property
    def in_transaction(self) -> bool:
        return self._active_connection() is not None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialize a check-then-act sequence behind SQLite's write lock.

        ``BEGIN IMMEDIATE`` takes the reserved lock up front, so a concurrent
        writer waits (up to ``database_timeout_seconds``) until this block
        commits and then reads the committed state.
        """
        active = self._active_connection()
        if active is not None:
            yield active
            return

        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
        except sqlite3.Error as exc:
            connection.close()
            raise PersistenceError(f"Could not acquire write lock: {exc}") from exc

        self._local.connection = connection
        try:
            yield connection
            connection.execute("COMMIT;")
        except sqlite3.Error as exc:
            connection.execute("ROLLBACK;")
            raise PersistenceError(f"Transaction failed: {exc}") from exc
        except BaseException:
            connection.execute("ROLLBACK;")
            raise
        finally:
            self._local.connection = None
            connection.close()

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Cursor]:
        active = self._active_connection()
        if active is not None:
            try:
                yield active.cursor()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Database operation failed: {exc}") from exc
            return

        connection = self._connect()
        try:
            connection.execute("BEGIN;")
            yield connection.cursor()
            connection.execute("COMMIT;")
        except sqlite3.Error as exc:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise PersistenceError(f"Database operation failed: {exc}") from exc
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._session() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Resources (
                    id TEXT PRIMARY KEY,
                    account TEXT NOT NULL,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL,
                    host_key TEXT NOT NULL,
                    platform_password TEXT NOT NULL,
                    email_password TEXT NOT NULL,
                    username_password TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'free'
                        CHECK (status IN ('free', 'occupied', 'maintenance')),
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_resources_email
                ON Resources(lower(email));
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_resources_status ON Resources(status);"
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Assignments (
                    id TEXT PRIMARY KEY,
                    resource_id TEXT,
                    requester_name TEXT NOT NULL,
                    requester_email TEXT NOT NULL,
                    area TEXT NOT NULL DEFAULT '',
                    region TEXT NOT NULL DEFAULT '',
                    usage_type TEXT NOT NULL DEFAULT '',
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    status TEXT NOT NULL
                        CHECK (status IN ('pending', 'active', 'expired', 'cancelled')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (start_date <= end_date),
                    FOREIGN KEY (resource_id) REFERENCES Resources(id) ON DELETE SET NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_assignments_resource_status_dates
                ON Assignments(resource_id, status, start_date, end_date);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_assignments_status_end
                ON Assignments(status, end_date);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_assignments_requester
                ON Assignments(requester_email);
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS History (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    entity_type TEXT NOT NULL
                        CHECK (entity_type IN ('resource', 'assignment', 'setting')),
                    entity_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    actor TEXT NOT NULL DEFAULT 'system',
                    changes_json TEXT NOT NULL,
                    metadata_json TEXT,
                    timestamp TEXT NOT NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_history_entity
                ON History(entity_type, entity_id, timestamp);
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_timestamp ON History(timestamp);"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_actor ON History(actor, timestamp);"
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Settings (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    updated_at TEXT NOT NULL,
                    updated_by TEXT NOT NULL DEFAULT 'system'
                );
                """
            )
        logger.info("Database initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_resource(row: sqlite3.Row) -> Resource:
        return Resource(
            resource_id=str(row["id"]),
            account=str(row["account"]),
            username=str(row["username"]),
            email=str(row["email"]),
            host_key=str(row["host_key"]),
            platform_password=str(row["platform_password"]),
            email_password=str(row["email_password"]),
            username_password=str(row["username_password"]),
            status=ResourceStatus(row["status"]),
            notes=row["notes"],
            created_at=from_timestamp(row["created_at"]),
            updated_at=from_timestamp(row["updated_at"]),
        )

    def insert_resource(self, resource: Resource) -> None:
        with self._session() as cursor:
            cursor.execute(
                """
                INSERT INTO Resources (
                    id, account, username, email, host_key, platform_password,
                    email_password, username_password, status, notes,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    resource.resource_id,
                    resource.account,
                    resource.username,
                    resource.email,
                    resource.host_key,
                    resource.platform_password,
                    resource.email_password,
                    resource.username_password,
                    resource.status.value,
                    resource.notes,
                    to_timestamp(resource.created_at),
                    to_timestamp(resource.updated_at),
                ),
            )

    def save_resource(self, resource: Resource) -> None:
        with self._session() as cursor:
            cursor.execute(
                """
                UPDATE Resources
                SET account = ?, username = ?, email = ?, host_key = ?,
                    platform_password = ?, email_password = ?,
                    username_password = ?, status = ?, notes = ?, updated_at = ?
                WHERE id = ?;
                """,
                (
                    resource.account,
                    resource.username,
                    resource.email,
                    resource.host_key,
                    resource.platform_password,
                    resource.email_password,
                    resource.username_password,
                    resource.status.value,
                    resource.notes,
                    to_timestamp(resource.updated_at),
                    resource.resource_id,
                ),
            )

    def set_resource_status(
        self,
        resource_id: str,
        status: ResourceStatus,
        updated_at: datetime,
    ) -> None:
        with self._session() as cursor:
            cursor.execute(
                "UPDATE Resources SET status = ?, updated_at = ? WHERE id = ?;",
                (status.value, to_timestamp(updated_at), resource_id),
            )

    def delete_resource(self, resource_id: str) -> bool:
        with self._session() as cursor:
            cursor.execute("DELETE FROM Resources WHERE id = ?;", (resource_id,))
            return cursor.rowcount > 0

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        with self._session() as cursor:
            cursor.execute("SELECT * FROM Resources WHERE id = ?;", (resource_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_resource(row)

    def get_resource_by_email(
        self,
        email: str,
        exclude_resource_id: Optional[str] = None,
    ) -> Optional[Resource]:
        """Case-insensitive identity lookup used for duplicate detection."""
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT * FROM Resources
                WHERE lower(email) = lower(?)
                  AND (? IS NULL OR id != ?);
                """,
                (email, exclude_resource_id, exclude_resource_id),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_resource(row)

    def list_resources(self, status: Optional[ResourceStatus] = None) -> List[Resource]:
        with self._session() as cursor:
            if status is None:
                cursor.execute("SELECT * FROM Resources ORDER BY created_at ASC, id ASC;")
            else:
                cursor.execute(
                    "SELECT * FROM Resources WHERE status = ? ORDER BY created_at ASC, id ASC;",
                    (status.value,),
                )
            return [self._row_to_resource(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row) -> Assignment:
        return Assignment(
            assignment_id=str(row["id"]),
            resource_id=row["resource_id"],
            requester_name=str(row["requester_name"]),
            requester_email=str(row["requester_email"]),
            area=str(row["area"]),
            region=str(row["region"]),
            usage_type=str(row["usage_type"]),
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            status=AssignmentStatus(row["status"]),
            created_at=from_timestamp(row["created_at"]),
            updated_at=from_timestamp(row["updated_at"]),
        )

    def insert_assignment(self, assignment: Assignment) -> None:
        with self._session() as cursor:
            cursor.execute(
                """
                INSERT INTO Assignments (
                    id, resource_id, requester_name, requester_email, area,
                    region, usage_type, start_date, end_date, status,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    assignment.assignment_id,
                    assignment.resource_id,
                    assignment.requester_name,
                    assignment.requester_email,
                    assignment.area,
                    assignment.region,
                    assignment.usage_type,
                    assignment.start_date.isoformat(),
                    assignment.end_date.isoformat(),
                    assignment.status.value,
                    to_timestamp(assignment.created_at),
                    to_timestamp(assignment.updated_at),
                ),
            )

    def save_assignment(self, assignment: Assignment) -> None:
        with self._session() as cursor:
            cursor.execute(
                """
                UPDATE Assignments
                SET resource_id = ?, requester_name = ?, requester_email = ?,
                    area = ?, region = ?, usage_type = ?, start_date = ?,
                    end_date = ?, status = ?, updated_at = ?
                WHERE id = ?;
                """,
                (
                    assignment.resource_id,
                    assignment.requester_name,
                    assignment.requester_email,
                    assignment.area,
                    assignment.region,
                    assignment.usage_type,
                    assignment.start_date.isoformat(),
                    assignment.end_date.isoformat(),
                    assignment.status.value,
                    to_timestamp(assignment.updated_at),
                    assignment.assignment_id,
                ),
            )

    def mark_assignments_status(
        self,
        assignment_ids: Sequence[str],
        status: AssignmentStatus,
        updated_at: datetime,
    ) -> int:
        if not assignment_ids:
            return 0
        placeholders = ",".join("?" for _ in assignment_ids)
        with self._session() as cursor:
            cursor.execute(
                f"""
                UPDATE Assignments
                SET status = ?, updated_at = ?
                WHERE id IN ({placeholders});
                """,
                (status.value, to_timestamp(updated_at), *assignment_ids),
            )
            return cursor.rowcount

    def delete_assignment(self, assignment_id: str) -> bool:
        with self._session() as cursor:
            cursor.execute("DELETE FROM Assignments WHERE id = ?;", (assignment_id,))
            return cursor.rowcount > 0

    def get_assignment(self, assignment_id: str) -> Optional[Assignment]:
        with self._session() as cursor:
            cursor.execute("SELECT * FROM Assignments WHERE id = ?;", (assignment_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_assignment(row)

    def list_assignments(
        self,
        status: Optional[AssignmentStatus] = None,
        resource_id: Optional[str] = None,
        requester_email: Optional[str] = None,
    ) -> List[Assignment]:
        """Return assignments newest first, optionally filtered."""
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if resource_id is not None:
            clauses.append("resource_id = ?")
            params.append(resource_id)
        if requester_email is not None:
            clauses.append("requester_email = lower(?)")
            params.append(requester_email)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session() as cursor:
            cursor.execute(
                f"SELECT * FROM Assignments {where} ORDER BY created_at DESC, id DESC;",
                tuple(params),
            )
            return [self._row_to_assignment(row) for row in cursor.fetchall()]

    def list_active_for_resource(
        self,
        resource_id: str,
        exclude_assignment_id: Optional[str] = None,
    ) -> List[Assignment]:
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT * FROM Assignments
                WHERE resource_id = ?
                  AND status = 'active'
                  AND (? IS NULL OR id != ?)
                ORDER BY start_date ASC, id ASC;
                """,
                (resource_id, exclude_assignment_id, exclude_assignment_id),
            )
            return [self._row_to_assignment(row) for row in cursor.fetchall()]

    def count_active_for_resource(
        self,
        resource_id: str,
        exclude_assignment_id: Optional[str] = None,
    ) -> int:
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT COUNT(*) AS count FROM Assignments
                WHERE resource_id = ?
                  AND status = 'active'
                  AND (? IS NULL OR id != ?);
                """,
                (resource_id, exclude_assignment_id, exclude_assignment_id),
            )
            return int(cursor.fetchone()["count"])

    def list_active_ending_before(self, day: date) -> List[Assignment]:
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT * FROM Assignments
                WHERE status = 'active' AND end_date < ?
                ORDER BY end_date ASC, id ASC;
                """,
                (day.isoformat(),),
            )
            return [self._row_to_assignment(row) for row in cursor.fetchall()]

    def list_active_ending_between(self, start: date, end: date) -> List[Assignment]:
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT * FROM Assignments
                WHERE status = 'active' AND end_date >= ? AND end_date <= ?
                ORDER BY end_date ASC, id ASC;
                """,
                (start.isoformat(), end.isoformat()),
            )
            return [self._row_to_assignment(row) for row in cursor.fetchall()]

    def list_active_covering(
        self,
        day: date,
        resource_id: Optional[str] = None,
    ) -> List[Assignment]:
        """Active bookings whose inclusive range contains ``day``."""
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT * FROM Assignments
                WHERE status = 'active'
                  AND resource_id IS NOT NULL
                  AND start_date <= ? AND end_date >= ?
                  AND (? IS NULL OR resource_id = ?)
                ORDER BY resource_id ASC, start_date ASC, id ASC;
                """,
                (day.isoformat(), day.isoformat(), resource_id, resource_id),
            )
            return [self._row_to_assignment(row) for row in cursor.fetchall()]

    def list_active_bound(self) -> List[Assignment]:
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT * FROM Assignments
                WHERE status = 'active' AND resource_id IS NOT NULL
                ORDER BY resource_id ASC, start_date ASC, id ASC;
                """
            )
            return [self._row_to_assignment(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> HistoryEntry:
        metadata = None
        if row["metadata_json"]:
            metadata = HistoryMetadata(**json.loads(row["metadata_json"]))
        return HistoryEntry(
            entry_id=str(row["id"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            action=HistoryAction(row["action"]),
            actor=str(row["actor"]),
            changes=deserialize_changes(row["changes_json"]),
            metadata=metadata,
            timestamp=from_timestamp(row["timestamp"]),
        )

    def insert_history(self, entry: HistoryEntry) -> None:
        metadata_json = None
        if entry.metadata is not None and entry.metadata.to_dict():
            metadata_json = json.dumps(entry.metadata.to_dict(), sort_keys=True)
        with self._session() as cursor:
            cursor.execute(
                """
                INSERT INTO History (
                    id, entity_type, entity_id, action, actor,
                    changes_json, metadata_json, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    entry.entry_id,
                    entry.entity_type.value,
                    entry.entity_id,
                    entry.action.value,
                    entry.actor,
                    serialize_changes(entry.changes),
                    metadata_json,
                    to_timestamp(entry.timestamp),
                ),
            )

    def list_history(
        self,
        *,
        limit: int,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
        action: Optional[HistoryAction] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[HistoryEntry]:
        """Return history newest first; insertion order breaks timestamp ties."""
        clauses: list[str] = []
        params: list[Any] = []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(entity_type.value)
        if entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if action is not None:
            clauses.append("action = ?")
            params.append(action.value)
        if actor is not None:
            clauses.append("actor = ?")
            params.append(actor)
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(to_timestamp(start))
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(to_timestamp(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session() as cursor:
            cursor.execute(
                f"""
                SELECT * FROM History
                {where}
                ORDER BY timestamp DESC, seq DESC
                LIMIT ?;
                """,
                (*params, limit),
            )
            return [self._row_to_history(row) for row in cursor.fetchall()]

    def list_assignment_history_for_resource(
        self,
        resource_id: str,
        limit: int,
    ) -> List[HistoryEntry]:
        """Assignment entries whose ``resource_id`` change references the resource."""
        with self._session() as cursor:
            cursor.execute(
                """
                SELECT h.* FROM History AS h
                WHERE h.entity_type = 'assignment'
                  AND EXISTS (
                      SELECT 1 FROM json_each(h.changes_json) AS change
                      WHERE json_extract(change.value, '$.field') = 'resource_id'
                        AND (
                            json_extract(change.value, '$.old_value.v') = ?
                            OR json_extract(change.value, '$.new_value.v') = ?
                        )
                  )
                ORDER BY h.timestamp DESC, h.seq DESC
                LIMIT ?;
                """,
                (resource_id, resource_id, limit),
            )
            return [self._row_to_history(row) for row in cursor.fetchall()]

    def delete_history_before(self, cutoff: datetime) -> int:
        with self._session() as cursor:
            cursor.execute(
                "DELETE FROM History WHERE timestamp < ?;",
                (to_timestamp(cutoff),),
            )
            return int(cursor.rowcount)

    def count_history(self) -> int:
        with self._session() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM History;")
            return int(cursor.fetchone()["count"])

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_setting(row: sqlite3.Row) -> Setting:
        return Setting(
            key=str(row["key"]),
            value=json.loads(row["value_json"]),
            description=str(row["description"]),
            updated_at=from_timestamp(row["updated_at"]),
            updated_by=str(row["updated_by"]),
        )

    def get_setting(self, key: str) -> Optional[Setting]:
        with self._session() as cursor:
            cursor.execute("SELECT * FROM Settings WHERE key = ?;", (key,))
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_setting(row)

    def upsert_setting(self, setting: Setting) -> None:
        with self._session() as cursor:
            cursor.execute(
                """
                INSERT INTO Settings (key, value_json, description, updated_at, updated_by)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json = excluded.value_json,
                    description = excluded.description,
                    updated_at = excluded.updated_at,
                    updated_by = excluded.updated_by;
                """,
                (
                    setting.key,
                    json.dumps(setting.value),
                    setting.description,
                    to_timestamp(setting.updated_at),
                    setting.updated_by,
                ),
            )

    def delete_setting(self, key: str) -> bool:
        with self._session() as cursor:
            cursor.execute("DELETE FROM Settings WHERE key = ?;", (key,))
            return cursor.rowcount > 0

    def list_settings(self) -> List[Setting]:
        with self._session() as cursor:
            cursor.execute("SELECT * FROM Settings ORDER BY key ASC;")
            return [self._row_to_setting(row) for row in cursor.fetchall()]
