"""
SQLite repository for image metadata and access history.

This module implements the repository pattern for image data access.
The repository:
1. Translates between domain models and database rows
2. Encapsulates all SQL queries
3. Owns every write to the images and access_logs tables

The orchestrator never writes SQL directly - it asks the repository for
what it needs in domain terms. Keeping a single writer also keeps the
atomic units (access counter + log entry, log purge + record delete) in
one place.
"""

import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from ....core.errors import ConflictError, StorageIOError
from ....core.images.models import AccessLogEntry, ImageRecord, RequestInfo
from ..client import SQLiteConfig, get_sqlite_connection, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_SORT_COLUMN = "created_at"

# Accepted sort keys -> column. Anything else falls back to the default,
# so caller input never reaches the ORDER BY clause verbatim.
SORT_COLUMNS = {
    "id": "id",
    "internal_filename": "internal_filename",
    "filename": "internal_filename",
    "size_bytes": "size_bytes",
    "size": "size_bytes",
    "file_size": "size_bytes",
    "created_at": "created_at",
    "last_accessed_at": "last_accessed_at",
    "access_count": "access_count",
}

SORT_ORDERS = ("ASC", "DESC")


def _to_datetime(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def resolve_sort(sort_by: Optional[str], sort_order: Optional[str]) -> tuple[str, str]:
    """Map caller-supplied sort options onto the allow-list."""
    column = SORT_COLUMNS.get((sort_by or "").strip().lower(), DEFAULT_SORT_COLUMN)
    order = (sort_order or "").strip().upper()
    if order not in SORT_ORDERS:
        order = "DESC"
    return column, order


class ImageRepository:
    """
    Repository for image metadata persistence.

    Each method corresponds to a use case the application needs. Writes
    are serialized through one lock per process and BEGIN IMMEDIATE per
    transaction, so concurrent access recording never loses an update.
    Reads take no lock; WAL keeps them from blocking on the writer.

    The clock is injectable so tests can place records and log entries
    at known points in time. Timestamps are stored as REAL epoch seconds,
    so retention cutoffs compare at sub-second resolution.
    """

    def __init__(
        self,
        config: SQLiteConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock
        self._write_lock = threading.Lock()

    def _now(self) -> float:
        return float(self._clock())

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _write(self, description: str, work: Callable[[sqlite3.Connection], object]):
        """
        Run `work` inside one IMMEDIATE transaction under the writer lock.

        Rolls back on any exception. Lock contention is retried by
        run_with_retry; everything else surfaces as StorageIOError
        (or the domain error `work` raised).
        """
        def attempt():
            with self._write_lock:
                with get_sqlite_connection(self._config) as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        result = work(conn)
                    except BaseException:
                        conn.execute("ROLLBACK")
                        raise
                    conn.execute("COMMIT")
                    return result

        return run_with_retry(self._config, attempt, description)

    def _read(self, description: str, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with get_sqlite_connection(self._config) as conn:
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error(
                    "Database read failed",
                    extra={"operation": description, "error": str(e)}
                )
                raise StorageIOError(f"{description} failed: {e}") from e

    def _read_one(self, description: str, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        rows = self._read(description, sql, params)
        return rows[0] if rows else None

    def _build_record(self, row: sqlite3.Row) -> ImageRecord:
        return ImageRecord(
            id=row["id"],
            internal_filename=row["internal_filename"],
            original_name=row["original_name"],
            public_token=row["public_token"],
            size_bytes=row["size_bytes"],
            mime_type=row["mime_type"],
            remote_path=row["remote_path"],
            public_url=row["public_url"],
            created_at=_to_datetime(row["created_at"]),
            last_accessed_at=_to_datetime(row["last_accessed_at"]),
            access_count=row["access_count"],
            deleted=bool(row["deleted"]),
        )

    # -----------------------------------------------------------------------
    # Records
    # -----------------------------------------------------------------------

    def create(self, record: ImageRecord) -> ImageRecord:
        """
        Insert a new image record and return it with its assigned id.

        Raises ConflictError if the internal filename or public token is
        already taken (by any row, deleted or not). The caller regenerates
        the name and retries.
        """
        now = self._now()

        def work(conn: sqlite3.Connection) -> int:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO images (
                        internal_filename, original_name, public_token,
                        size_bytes, mime_type, remote_path, public_url,
                        created_at, last_accessed_at, access_count, deleted
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0)
                    """,
                    (
                        record.internal_filename,
                        record.original_name,
                        record.public_token,
                        record.size_bytes,
                        record.mime_type,
                        record.remote_path,
                        record.public_url,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(
                    "Image name or token already exists",
                    details={"internal_filename": record.internal_filename},
                ) from e
            return cursor.lastrowid

        image_id = self._write("create image", work)

        logger.info(
            "Created image record",
            extra={"image_id": image_id, "internal_filename": record.internal_filename}
        )

        created = self.get_by_id(image_id)
        if created is None:
            raise StorageIOError(f"Image {image_id} vanished after insert")
        return created

    def get_by_id(self, image_id: int) -> Optional[ImageRecord]:
        row = self._read_one(
            "get image by id",
            "SELECT * FROM images WHERE id = ? AND deleted = 0",
            (image_id,),
        )
        return self._build_record(row) if row else None

    def get_by_internal_name(self, internal_filename: str) -> Optional[ImageRecord]:
        row = self._read_one(
            "get image by internal name",
            "SELECT * FROM images WHERE internal_filename = ? AND deleted = 0",
            (internal_filename,),
        )
        return self._build_record(row) if row else None

    def get_by_public_token(self, public_token: str) -> Optional[ImageRecord]:
        row = self._read_one(
            "get image by public token",
            "SELECT * FROM images WHERE public_token = ? AND deleted = 0",
            (public_token,),
        )
        return self._build_record(row) if row else None

    def is_name_taken(self, internal_filename: str, public_token: str) -> bool:
        """True if any row, including soft-deleted ones, uses either value."""
        row = self._read_one(
            "check name collision",
            """
            SELECT 1 FROM images
            WHERE internal_filename = ? OR public_token = ?
            LIMIT 1
            """,
            (internal_filename, public_token),
        )
        return row is not None

    # -----------------------------------------------------------------------
    # Access tracking
    # -----------------------------------------------------------------------

    def record_access(self, image_id: int, request_info: Optional[RequestInfo] = None) -> bool:
        """
        Bump the access counter and append a log entry as one atomic unit.

        Returns False (and writes nothing) if there is no matching
        non-deleted record.
        """
        info = request_info or RequestInfo()
        now = self._now()

        def work(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                """
                UPDATE images
                SET last_accessed_at = ?, access_count = access_count + 1
                WHERE id = ? AND deleted = 0
                """,
                (now, image_id),
            )
            if cursor.rowcount == 0:
                return False

            conn.execute(
                """
                INSERT INTO access_logs (
                    image_id, client_ip, user_agent, referer, accessed_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (image_id, info.client_ip, info.user_agent, info.referer, now),
            )
            return True

        recorded = self._write("record access", work)

        logger.debug(
            "Recorded image access",
            extra={"image_id": image_id, "recorded": recorded}
        )
        return recorded

    def get_access_logs(self, image_id: int, limit: int = 100) -> list[AccessLogEntry]:
        """Most recent access log entries for an image, newest first."""
        rows = self._read(
            "get access logs",
            """
            SELECT * FROM access_logs
            WHERE image_id = ?
            ORDER BY accessed_at DESC, id DESC
            LIMIT ?
            """,
            (image_id, max(1, int(limit))),
        )
        return [
            AccessLogEntry(
                id=row["id"],
                image_id=row["image_id"],
                client_ip=row["client_ip"],
                user_agent=row["user_agent"],
                referer=row["referer"],
                accessed_at=_to_datetime(row["accessed_at"]),
            )
            for row in rows
        ]

    def purge_access_logs_older_than(self, cutoff: datetime) -> int:
        """Delete log entries with accessed_at strictly before cutoff."""
        cutoff_epoch = _to_epoch(cutoff)

        def work(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                "DELETE FROM access_logs WHERE accessed_at < ?",
                (cutoff_epoch,),
            )
            return cursor.rowcount

        removed = self._write("purge access logs", work)

        logger.info(
            "Purged expired access logs",
            extra={"cutoff": cutoff.isoformat(), "removed": removed}
        )
        return removed

    # -----------------------------------------------------------------------
    # Deletion
    # -----------------------------------------------------------------------

    def soft_delete(self, image_id: int) -> bool:
        """Flag a record as deleted. Idempotent; True only if a row changed."""
        def work(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                "UPDATE images SET deleted = 1 WHERE id = ? AND deleted = 0",
                (image_id,),
            )
            return cursor.rowcount > 0

        changed = self._write("soft delete image", work)

        logger.info(
            "Soft-deleted image record",
            extra={"image_id": image_id, "changed": changed}
        )
        return changed

    def hard_delete(self, image_id: int) -> bool:
        """
        Remove a record and all of its access log entries together.

        Works on soft-deleted records too. False if the record never
        existed.
        """
        def work(conn: sqlite3.Connection) -> bool:
            conn.execute("DELETE FROM access_logs WHERE image_id = ?", (image_id,))
            cursor = conn.execute("DELETE FROM images WHERE id = ?", (image_id,))
            return cursor.rowcount > 0

        removed = self._write("hard delete image", work)

        logger.info(
            "Hard-deleted image record",
            extra={"image_id": image_id, "removed": removed}
        )
        return removed

    # -----------------------------------------------------------------------
    # Listing
    # -----------------------------------------------------------------------

    def list(
        self,
        page: int = 1,
        limit: int = 20,
        sort_by: Optional[str] = DEFAULT_SORT_COLUMN,
        sort_order: Optional[str] = "DESC",
        include_deleted: bool = False,
    ) -> list[ImageRecord]:
        """
        One page of records in the requested order.

        Unknown sort columns fall back to created_at and unknown orders
        to DESC rather than failing. id breaks ties so pages are stable.
        """
        page = max(1, int(page))
        limit = max(1, int(limit))
        offset = (page - 1) * limit
        column, order = resolve_sort(sort_by, sort_order)

        where = "" if include_deleted else "WHERE deleted = 0"
        # column and order come from the allow-lists above
        rows = self._read(
            "list images",
            f"""
            SELECT * FROM images
            {where}
            ORDER BY {column} {order}, id {order}
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [self._build_record(row) for row in rows]

    def count(self, include_deleted: bool = False) -> int:
        where = "" if include_deleted else "WHERE deleted = 0"
        row = self._read_one("count images", f"SELECT COUNT(*) FROM images {where}")
        return int(row[0]) if row else 0

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def compact(self) -> None:
        """
        Reclaim free pages and refresh query planner statistics.

        Checkpoints the WAL first so VACUUM sees every committed page.
        VACUUM cannot run inside a transaction, so this bypasses _write
        but still holds the writer lock.
        """
        def attempt() -> None:
            with self._write_lock:
                with get_sqlite_connection(self._config) as conn:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                    conn.execute("VACUUM")
                    conn.execute("ANALYZE")

        run_with_retry(self._config, attempt, "compact database")
        logger.info("Compacted metadata database", extra={"path": self._config.path})

    def ping(self) -> bool:
        """Cheap connectivity check for readiness checks."""
        row = self._read_one("ping", "SELECT 1")
        return row is not None
