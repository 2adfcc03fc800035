"""
Task Database Layer for the Taskboard API

Provides SQLite-based per-user document storage with WAL mode for concurrent
access: users and their bearer sessions, kanban tasks, the ordered group
registry, and one workflow document per user.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import DEFAULT_EMOJI, utc_now_str

logger = logging.getLogger(__name__)

TASK_COLUMNS = "id, text, emoji, status, group_name, created_at"


class TaskDatabase:
    """
    SQLite store scoping every task, group and workflow row to its owning user.

    Features:
    - WAL mode for concurrent read/write access
    - Thread-safe operations behind a single re-entrant connection lock
    - Explicit transactions for multi-statement writes (group cascade, board replace)
    - Foreign keys with CASCADE so deleting a user removes their data
    """

    def __init__(self, db_path: str):
        """
        Initialize TaskDatabase with SQLite WAL mode configuration.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        # Ensure database directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

    def _initialize_database(self) -> None:
        """Open the connection, configure pragmas and create the schema."""
        try:
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,  # Autocommit mode
                check_same_thread=False  # Allow cross-thread access
            )

            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")

            self._create_schema()

        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize database at {self.db_path}: {e}")

    def _create_schema(self) -> None:
        """Create database schema with the indexes the per-user queries need."""
        cursor = self._connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                text TEXT NOT NULL,
                emoji TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'not-started',
                group_name TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
                CONSTRAINT status_vocabulary CHECK (status IN ('not-started', 'in-progress', 'done'))
            )
        """)

        # Group registry; position keeps creation order stable
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS task_groups (
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                position INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, name),
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS workflows (
                user_id INTEGER PRIMARY KEY,
                document TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
                CONSTRAINT json_document CHECK (json_valid(document) AND json_type(document) = 'object')
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_user_created
            ON tasks (user_id, id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_expires
            ON sessions (expires_at)
        """)

    @contextmanager
    def _transaction(self):
        """Context manager for explicit transaction control."""
        cursor = self._connection.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise

    def _get_current_time_str(self) -> str:
        return utc_now_str()

    @staticmethod
    def _row_to_task(row) -> Dict[str, Any]:
        return {
            "id": str(row[0]),
            "text": row[1],
            "emoji": row[2],
            "status": row[3],
            "group": row[4],
            "createdAt": row[5],
        }

    # Users and sessions

    def create_user(self, username: str, email: str, password_hash: str) -> int:
        """Create a user and return its id.
        Raises sqlite3.IntegrityError if username or email is taken."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("""
                INSERT INTO users (username, email, password_hash, created_at)
                VALUES (?, ?, ?, ?)
            """, (username, email, password_hash, self._get_current_time_str()))
            return cursor.lastrowid

    def find_user_conflict(self, username: str, email: str) -> bool:
        """True if either the username or the email is already registered."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "SELECT 1 FROM users WHERE username = ? OR email = ? LIMIT 1",
                (username, email),
            )
            return cursor.fetchone() is not None

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("""
                SELECT id, username, email, password_hash, created_at
                FROM users WHERE username = ?
            """, (username,))
            row = cursor.fetchone()
        if not row:
            return None
        return {
            "id": row[0],
            "username": row[1],
            "email": row[2],
            "password_hash": row[3],
            "created_at": row[4],
        }

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "SELECT id, username, email, created_at FROM users WHERE id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return {"id": row[0], "username": row[1], "email": row[2], "created_at": row[3]}

    def create_session(self, token: str, user_id: int, ttl_seconds: int) -> str:
        """Store a bearer token for ``user_id`` and return its expiry timestamp."""
        now = datetime.now(timezone.utc)
        expires_at = (now + timedelta(seconds=ttl_seconds)).isoformat(timespec="microseconds").replace("+00:00", "Z")
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("""
                INSERT INTO sessions (token, user_id, created_at, expires_at)
                VALUES (?, ?, ?, ?)
            """, (token, user_id, now.isoformat(timespec="microseconds").replace("+00:00", "Z"), expires_at))
        return expires_at

    def get_session_user_id(self, token: str) -> Optional[int]:
        """Resolve a bearer token to its user id; expired tokens resolve to None."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("""
                SELECT user_id FROM sessions
                WHERE token = ? AND expires_at > ?
            """, (token, self._get_current_time_str()))
            row = cursor.fetchone()
        return row[0] if row else None

    def delete_session(self, token: str) -> bool:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("DELETE FROM sessions WHERE token = ?", (token,))
            return cursor.rowcount > 0

    def cleanup_expired_sessions(self) -> int:
        """Remove expired sessions and return how many were deleted."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "DELETE FROM sessions WHERE expires_at <= ?",
                (self._get_current_time_str(),),
            )
            removed = cursor.rowcount
        if removed:
            logger.info(f"Cleaned up {removed} expired sessions")
        return removed

    # Tasks

    def list_tasks(self, user_id: int) -> List[Dict[str, Any]]:
        """All tasks for a user, oldest first."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(f"""
                SELECT {TASK_COLUMNS} FROM tasks
                WHERE user_id = ?
                ORDER BY id
            """, (user_id,))
            rows = cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    def get_task(self, user_id: int, task_id: int) -> Optional[Dict[str, Any]]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(f"""
                SELECT {TASK_COLUMNS} FROM tasks
                WHERE user_id = ? AND id = ?
            """, (user_id, task_id))
            row = cursor.fetchone()
        return self._row_to_task(row) if row else None

    def create_task(self, user_id: int, text: str, emoji: Optional[str] = None,
                    status: str = "not-started", group: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a task, registering ``group`` first if the user has not seen it yet.

        Args:
            user_id: Owning user
            text: Card text (already validated non-empty)
            emoji: Display glyph; blank falls back to the placeholder
            status: Column status
            group: Optional group name

        Returns:
            The created task in wire format
        """
        current_time_str = self._get_current_time_str()
        with self._connection_lock:
            with self._transaction() as cursor:
                if group:
                    self._ensure_group(cursor, user_id, group, current_time_str)
                cursor.execute("""
                    INSERT INTO tasks (user_id, text, emoji, status, group_name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (user_id, text, (emoji or "").strip() or DEFAULT_EMOJI, status, group,
                      current_time_str, current_time_str))
                task_id = cursor.lastrowid
            return self.get_task(user_id, task_id)

    def update_task(self, user_id: int, task_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Apply a partial update to a task.

        Args:
            user_id: Owning user
            task_id: Task to update
            fields: Any of text, emoji, status, group (group may be None)

        Returns:
            Updated task, or None if the user has no such task
        """
        column_map = {"text": "text", "emoji": "emoji", "status": "status", "group": "group_name"}
        assignments = []
        params: List[Any] = []
        for key, column in column_map.items():
            if key in fields:
                assignments.append(f"{column} = ?")
                params.append(fields[key])

        current_time_str = self._get_current_time_str()
        with self._connection_lock:
            with self._transaction() as cursor:
                if fields.get("group"):
                    self._ensure_group(cursor, user_id, fields["group"], current_time_str)
                assignments.append("updated_at = ?")
                params.append(current_time_str)
                cursor.execute(
                    f"UPDATE tasks SET {', '.join(assignments)} WHERE user_id = ? AND id = ?",
                    (*params, user_id, task_id),
                )
                if cursor.rowcount == 0:
                    return None
            return self.get_task(user_id, task_id)

    def delete_task(self, user_id: int, task_id: int) -> bool:
        """Delete a task; False if the user has no such task."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("DELETE FROM tasks WHERE user_id = ? AND id = ?", (user_id, task_id))
            return cursor.rowcount > 0

    # Groups

    def _ensure_group(self, cursor: sqlite3.Cursor, user_id: int, name: str, current_time_str: str) -> bool:
        """Register ``name`` at the end of the registry if missing. Returns True if created."""
        cursor.execute("SELECT 1 FROM task_groups WHERE user_id = ? AND name = ?", (user_id, name))
        if cursor.fetchone():
            return False
        cursor.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM task_groups WHERE user_id = ?", (user_id,))
        position = cursor.fetchone()[0]
        cursor.execute("""
            INSERT INTO task_groups (user_id, name, position, created_at)
            VALUES (?, ?, ?, ?)
        """, (user_id, name, position, current_time_str))
        return True

    def list_groups(self, user_id: int) -> List[str]:
        """Group names for a user in registry order."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "SELECT name FROM task_groups WHERE user_id = ? ORDER BY position",
                (user_id,),
            )
            return [row[0] for row in cursor.fetchall()]

    def create_group(self, user_id: int, name: str) -> bool:
        """Register a group; False if it already exists (case-sensitive)."""
        with self._connection_lock:
            with self._transaction() as cursor:
                return self._ensure_group(cursor, user_id, name, self._get_current_time_str())

    def delete_group(self, user_id: int, name: str) -> Optional[int]:
        """
        Remove a group and ungroup its member tasks in one transaction.

        Returns:
            Number of tasks ungrouped, or None if the group does not exist
        """
        with self._connection_lock:
            with self._transaction() as cursor:
                cursor.execute("DELETE FROM task_groups WHERE user_id = ? AND name = ?", (user_id, name))
                if cursor.rowcount == 0:
                    return None
                cursor.execute("""
                    UPDATE tasks SET group_name = NULL, updated_at = ?
                    WHERE user_id = ? AND group_name = ?
                """, (self._get_current_time_str(), user_id, name))
                return cursor.rowcount

    # Workflow document

    def get_workflow(self, user_id: int) -> Dict[str, Any]:
        """Return the user's workflow document, creating an empty one if absent."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("SELECT document FROM workflows WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row[0])
            empty = {"tasks": [], "connections": []}
            self.save_workflow(user_id, empty)
            return empty

    def save_workflow(self, user_id: int, document: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the user's workflow document wholesale."""
        current_time_str = self._get_current_time_str()
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("""
                INSERT INTO workflows (user_id, document, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    document = excluded.document,
                    updated_at = excluded.updated_at
            """, (user_id, json.dumps(document), current_time_str, current_time_str))
        return document

    # Whole board

    def replace_board(self, user_id: int, tasks: List[Dict[str, Any]], groups: List[str],
                      workflow: Dict[str, Any]) -> Dict[str, int]:
        """
        Replace every task, group and the workflow document for a user atomically.

        Incoming task ids are not preserved; the database assigns new ones.

        Returns:
            Counts of tasks and groups written
        """
        current_time_str = self._get_current_time_str()
        with self._connection_lock:
            with self._transaction() as cursor:
                cursor.execute("DELETE FROM tasks WHERE user_id = ?", (user_id,))
                cursor.execute("DELETE FROM task_groups WHERE user_id = ?", (user_id,))
                for name in groups:
                    self._ensure_group(cursor, user_id, name, current_time_str)
                for task in tasks:
                    group = task.get("group")
                    if group:
                        self._ensure_group(cursor, user_id, group, current_time_str)
                    cursor.execute("""
                        INSERT INTO tasks (user_id, text, emoji, status, group_name, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                    """, (user_id, task["text"], task.get("emoji") or DEFAULT_EMOJI,
                          task.get("status", "not-started"), group,
                          task.get("createdAt") or current_time_str, current_time_str))
                cursor.execute("""
                    INSERT INTO workflows (user_id, document, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        document = excluded.document,
                        updated_at = excluded.updated_at
                """, (user_id, json.dumps(workflow), current_time_str, current_time_str))
        return {"tasks": len(tasks), "groups": len(self.list_groups(user_id))}

    def ping(self) -> bool:
        with self._connection_lock:
            self._connection.execute("SELECT 1").fetchone()
        return True

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
