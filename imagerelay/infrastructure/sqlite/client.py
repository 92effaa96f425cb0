"""
SQLite database connection management.

Provides the connection factory, schema setup and the bounded retry used
for writes. The metadata store is a single SQLite file in WAL mode:
- readers never block on the writer
- commits are serialized (one effective writer)
- a reader sees the last committed state

Using the repository pattern means most code never touches this module
directly - it goes through ImageRepository which handles the translation
between domain models and database rows.

Each operation opens its own short-lived connection. SQLite connections
are cheap and this keeps them thread-confined, so the repository can be
called from worker threads without sharing a handle.
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, TypeVar

from ...core.errors import StorageIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SQLiteConfig:
    """Configuration for the SQLite metadata database."""
    path: str
    busy_timeout_ms: int = 5000
    write_retries: int = 3
    retry_backoff_seconds: float = 0.05
    cache_size_kib: int = 20000


SCHEMA = """
CREATE TABLE IF NOT EXISTS images (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    internal_filename TEXT NOT NULL UNIQUE,
    original_name TEXT NOT NULL,
    public_token TEXT NOT NULL UNIQUE,
    size_bytes INTEGER NOT NULL,
    mime_type TEXT NOT NULL,
    remote_path TEXT NOT NULL,
    public_url TEXT NOT NULL,
    created_at REAL NOT NULL,
    last_accessed_at REAL,
    access_count INTEGER NOT NULL DEFAULT 0 CHECK (access_count >= 0),
    deleted INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_images_internal_filename ON images(internal_filename);
CREATE INDEX IF NOT EXISTS idx_images_public_token ON images(public_token);
CREATE INDEX IF NOT EXISTS idx_images_created_at ON images(created_at);
CREATE INDEX IF NOT EXISTS idx_images_deleted ON images(deleted);

CREATE TABLE IF NOT EXISTS access_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    image_id INTEGER NOT NULL REFERENCES images(id),
    client_ip TEXT,
    user_agent TEXT,
    referer TEXT,
    accessed_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_access_logs_image_id ON access_logs(image_id);
CREATE INDEX IF NOT EXISTS idx_access_logs_accessed_at ON access_logs(accessed_at);
"""


def _is_lock_contention(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


@contextmanager
def get_sqlite_connection(config: SQLiteConfig) -> Generator[sqlite3.Connection, None, None]:
    """
    Provide a SQLite connection with automatic cleanup.

    The connection runs in autocommit mode (isolation_level=None);
    callers that need an atomic unit open it explicitly with BEGIN.

    Usage:
        with get_sqlite_connection(config) as conn:
            conn.execute("BEGIN IMMEDIATE")
            # do work
            conn.execute("COMMIT")
    """
    conn = None
    try:
        conn = sqlite3.connect(
            config.path,
            timeout=config.busy_timeout_ms / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(config.busy_timeout_ms)}")
        conn.execute(f"PRAGMA cache_size = -{int(config.cache_size_kib)}")
    except sqlite3.Error as e:
        if conn:
            conn.close()
        logger.error(
            "SQLite connection failed",
            extra={"path": config.path, "error": str(e)}
        )
        raise StorageIOError(f"Database connection failed: {e}") from e

    try:
        yield conn
    finally:
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning(
                "Error closing SQLite connection",
                extra={"error": str(e)}
            )


def initialize_database(config: SQLiteConfig) -> None:
    """
    Create the database file, switch it to WAL and create the schema.

    journal_mode=WAL is persistent, so setting it once here covers every
    later connection. Idempotent.
    """
    Path(config.path).parent.mkdir(parents=True, exist_ok=True)

    with get_sqlite_connection(config) as conn:
        try:
            mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
            conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            logger.error(
                "Database initialization failed",
                extra={"path": config.path, "error": str(e)}
            )
            raise StorageIOError(f"Database initialization failed: {e}") from e

    logger.info(
        "Initialized SQLite metadata database",
        extra={"path": config.path, "journal_mode": mode}
    )


def run_with_retry(config: SQLiteConfig, operation: Callable[[], T], description: str) -> T:
    """
    Run a write, retrying transient lock contention a bounded number of times.

    Lock errors that survive every retry, and all other database errors,
    surface as StorageIOError.
    """
    attempts = max(1, config.write_retries)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except sqlite3.OperationalError as e:
            if _is_lock_contention(e) and attempt < attempts:
                logger.warning(
                    "Database busy, retrying write",
                    extra={"operation": description, "attempt": attempt, "error": str(e)}
                )
                time.sleep(config.retry_backoff_seconds * attempt)
                continue
            logger.error(
                "Database write failed",
                extra={"operation": description, "attempt": attempt, "error": str(e)}
            )
            raise StorageIOError(f"{description} failed: {e}") from e
        except sqlite3.Error as e:
            logger.error(
                "Database write failed",
                extra={"operation": description, "error": str(e)}
            )
            raise StorageIOError(f"{description} failed: {e}") from e

    # unreachable: the loop either returns or raises
    raise StorageIOError(f"{description} failed")
