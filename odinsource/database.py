"""
SQLite database shared by the tag registry and the document store.

Holds the schema and the transaction discipline: every mutation runs inside
transaction(), which takes the write lock up front (BEGIN IMMEDIATE) so
concurrent processes serialize, and rolls back on any exception so a
rejected operation never leaves a partial write behind.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from .errors import StoreIOError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Seconds a writer waits for another process to release the lock
BUSY_TIMEOUT = 5.0


class Database:
    """
    SQLite connection with schema setup and nestable transactions.

    Tables:
        tags           id -> normalized name
        documents      id -> title, source path, fingerprint, metadata
        document_tags  (document_id, tag_id) association pairs
    """

    def __init__(self, db_path: Path | str):
        """
        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        # (on_commit, callback) pairs for the open outermost transaction
        self._pending: list[tuple[bool, Callable[[], None]]] = []
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None: transactions are managed explicitly below
            self._conn = sqlite3.connect(
                str(self._db_path), timeout=BUSY_TIMEOUT, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self._db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")

            with self.transaction():
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS tags (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        created_at TEXT NOT NULL
                    )
                """)

                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        source_path TEXT NOT NULL,
                        fingerprint TEXT NOT NULL UNIQUE,
                        stored_name TEXT NOT NULL DEFAULT '',
                        metadata_json TEXT NOT NULL DEFAULT '{}',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)

                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS document_tags (
                        document_id INTEGER NOT NULL
                            REFERENCES documents(id) ON DELETE CASCADE,
                        tag_id INTEGER NOT NULL
                            REFERENCES tags(id) ON DELETE RESTRICT,
                        PRIMARY KEY (document_id, tag_id)
                    )
                """)

                # Index for tag -> documents lookups (queries, in-use checks)
                self._conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_document_tags_tag
                    ON document_tags(tag_id)
                """)

                self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        except sqlite3.Error as e:
            raise StoreIOError(f"Cannot open database {self._db_path}: {e}") from e

    @property
    def path(self) -> Path | str:
        return self._db_path

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block atomically.

        The outermost level is a BEGIN IMMEDIATE transaction; nested levels
        are savepoints, so an inner failure can be caught and isolated while
        the outer transaction continues. Any exception rolls back the level
        it escapes from. sqlite3 errors are re-raised as StoreIOError.
        """
        if self._conn is None:
            raise StoreIOError("Database is closed")
        savepoint = f"sp_{self._depth}"
        try:
            if self._depth == 0:
                self._conn.execute("BEGIN IMMEDIATE")
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
        except sqlite3.Error as e:
            raise StoreIOError(f"Cannot start transaction: {e}") from e

        self._depth += 1
        mark = len(self._pending)
        try:
            yield self._conn
        except BaseException as e:
            self._depth -= 1
            if self._depth == 0:
                self._conn.execute("ROLLBACK")
            else:
                self._conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                self._conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            self._unwind(mark, committed=False)
            if isinstance(e, sqlite3.Error):
                raise StoreIOError(f"Database error: {e}") from e
            raise
        else:
            self._depth -= 1
            try:
                if self._depth == 0:
                    self._conn.execute("COMMIT")
                else:
                    self._conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            except sqlite3.Error as e:
                if self._depth == 0:
                    self._conn.execute("ROLLBACK")
                self._unwind(mark, committed=False)
                raise StoreIOError(f"Cannot commit: {e}") from e
            if self._depth == 0:
                self._unwind(mark, committed=True)

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run `callback` once the outermost transaction commits.

        Dropped if the enclosing transaction or savepoint rolls back. Outside
        a transaction the callback runs immediately.
        """
        if self._depth == 0:
            callback()
        else:
            self._pending.append((True, callback))

    def after_rollback(self, callback: Callable[[], None]) -> None:
        """Run `callback` if the enclosing transaction or savepoint rolls back."""
        if self._depth > 0:
            self._pending.append((False, callback))

    def _unwind(self, mark: int, committed: bool) -> None:
        """Fire and drop the callbacks registered since `mark`."""
        callbacks = self._pending[mark:]
        del self._pending[mark:]
        for on_commit, callback in callbacks:
            if on_commit == committed:
                try:
                    callback()
                except Exception:
                    logger.exception("Transaction callback failed")

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a statement outside any explicit transaction (reads)."""
        if self._conn is None:
            raise StoreIOError("Database is closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreIOError(f"Database error: {e}") from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
