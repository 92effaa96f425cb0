"""
Background maintenance: log retention, orphan sweep, storage compaction.
"""

from .jobs import compact_storage, purge_expired_access_logs, sweep_orphan_files
from .scheduler import (
    LOG_RETENTION,
    ORPHAN_SWEEP,
    STORAGE_COMPACTION,
    MaintenanceScheduler,
    ScheduledTask,
    TaskRunResult,
    build_maintenance_tasks,
)

__all__ = [
    "compact_storage",
    "purge_expired_access_logs",
    "sweep_orphan_files",
    "LOG_RETENTION",
    "ORPHAN_SWEEP",
    "STORAGE_COMPACTION",
    "MaintenanceScheduler",
    "ScheduledTask",
    "TaskRunResult",
    "build_maintenance_tasks",
]
