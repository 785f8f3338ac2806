"""Database storage for gitt repository records.

Uses SQLite for persistent storage of tracked repositories and their
lifecycle state.

Performance optimizations:
- Thread-local connections (the dispatcher worker and the caller each get one)
- WAL mode for better concurrency
- Parameterized queries
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from .core import CONFIG_DIR, DuplicateRepoError
from .logger import get_logger
from .models import RepoRecord, RepoState

DATABASE_FILE = CONFIG_DIR / "data.sqlite3"

logger = get_logger(__name__)


class RepoStore:
    """Persisted list of known repositories.

    No locking beyond what SQLite provides: callers serialize their
    writes (the dispatcher has a single worker).
    """

    def __init__(self, path: Path = DATABASE_FILE):
        self.path = Path(path)
        self._local = threading.local()
        self._initialized = False
        self._init_lock = threading.Lock()

    def _init_database(self) -> None:
        """Create the schema once per store."""
        if self._initialized:
            return

        with self._init_lock:
            if self._initialized:
                return

            self.path.parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(self.path)
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                _ensure_table(conn)
            finally:
                conn.close()

            self._initialized = True

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        self._init_database()

        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.connection = conn

        return conn

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database transactions with automatic commit/rollback."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def exists(self, folder: str) -> bool:
        """Check whether a repository with this folder is tracked."""
        conn = self._get_connection()
        cursor = conn.execute("SELECT 1 FROM repos WHERE folder = ?", (folder,))
        return cursor.fetchone() is not None

    def add(self, record: RepoRecord) -> RepoRecord:
        """Insert a new record and return it with its id assigned."""
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO repos (folder, name, address, size, username, state, error)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.folder,
                        record.name,
                        record.address,
                        record.size,
                        record.user_name,
                        record.state.value,
                        record.error,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRepoError(
                f"Repository folder '{record.folder}' is already tracked"
            ) from e

        record.id = cursor.lastrowid
        logger.debug("Added repo %s (%s) as %s", record.name, record.folder, record.state.value)
        return record

    def update(self, record: RepoRecord) -> None:
        """Partial update: only size, state and error are written."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE repos
                SET size = ?, state = ?, error = ?, updated_at = CURRENT_TIMESTAMP
                WHERE folder = ?
                """,
                (record.size, record.state.value, record.error, record.folder),
            )

    def delete(self, folder: str) -> None:
        """Remove a record from the database."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM repos WHERE folder = ?", (folder,))

    def get(self, folder: str) -> RepoRecord | None:
        """Get the record for a folder."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM repos WHERE folder = ?", (folder,)).fetchone()
        return _row_to_record(row) if row is not None else None

    def find_by_name(self, name: str) -> RepoRecord | None:
        """Get the record with this display name."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM repos WHERE name = ?", (name,)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_all(self) -> list[RepoRecord]:
        """All records ordered by name."""
        conn = self._get_connection()
        cursor = conn.execute("SELECT * FROM repos ORDER BY name")
        return [_row_to_record(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


def _ensure_table(conn: sqlite3.Connection) -> None:
    """Ensure the repos table exists."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS repos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            folder TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            address TEXT NOT NULL,
            size INTEGER DEFAULT 0,
            username TEXT,
            state TEXT NOT NULL,
            error TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """
    )
    # Listing is always by name
    conn.execute("CREATE INDEX IF NOT EXISTS idx_repos_name ON repos(name)")
    conn.commit()


def _row_to_record(row: sqlite3.Row) -> RepoRecord:
    return RepoRecord(
        id=row["id"],
        folder=row["folder"],
        name=row["name"],
        address=row["address"],
        size=row["size"] or 0,
        user_name=row["username"],
        state=RepoState(row["state"]),
        error=row["error"] or "",
    )
