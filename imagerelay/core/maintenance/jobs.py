"""
Maintenance job bodies.

Each job is a plain synchronous function so it can be run from the
scheduler (in a worker thread), from the CLI, or directly in tests.
All of them are idempotent and only act on data that is verifiably
expired or orphaned, which is what lets them run while requests are
in flight without any coordination.
"""

import logging
import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from ..images.service import MetadataStore

logger = logging.getLogger(__name__)


def purge_expired_access_logs(
    store: MetadataStore,
    retention_days: int,
    now: Optional[datetime] = None,
) -> int:
    """
    Delete access log entries older than the retention window.

    Entries at or after `now - retention_days` are kept.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    return store.purge_access_logs_older_than(cutoff)


def sweep_orphan_files(
    store: MetadataStore,
    cache_dir: str,
    min_age_seconds: float = 0,
    clock: Callable[[], float] = time.time,
) -> int:
    """
    Remove cached files that no live record refers to.

    A file is kept if:
    - a non-deleted record has its name (even if the remote copy is
      currently unreachable)
    - it is younger than min_age_seconds (an upload may still be
      between its cache copy and its record insert)
    - it is a directory or a dotfile

    A metadata lookup failure aborts the sweep instead of guessing.
    Returns the number of files removed.
    """
    directory = Path(cache_dir)
    if not directory.is_dir():
        logger.info("Cache directory missing, nothing to sweep", extra={"cache_dir": cache_dir})
        return 0

    now = clock()
    removed = 0

    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.name.startswith(".") or not entry.is_file(follow_symlinks=False):
                continue

            try:
                age = now - entry.stat(follow_symlinks=False).st_mtime
            except FileNotFoundError:
                continue
            if age < min_age_seconds:
                continue

            if store.get_by_internal_name(entry.name) is not None:
                continue

            try:
                os.unlink(entry.path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(
                    "Failed to remove orphan file",
                    extra={"path": entry.path, "error": str(e)}
                )
                continue

            removed += 1
            logger.info("Removed orphan file", extra={"path": entry.path})

    return removed


def compact_storage(store: MetadataStore) -> None:
    """Reclaim database space and refresh planner statistics."""
    store.compact()
