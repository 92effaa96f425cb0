"""
Periodic maintenance scheduler.

Runs each maintenance task on its own fixed-interval ticker inside the
event loop. Tasks are independent:
- a failing task is logged and recorded, never raised to the loop
- one slow task doesn't delay the others
- any task can be triggered on demand outside its schedule

The scheduler owns its task descriptors; nothing here is module-level
state, so tests and the CLI can build as many schedulers as they like.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..errors import NotFoundError
from ..images.service import MetadataStore
from .jobs import compact_storage, purge_expired_access_logs, sweep_orphan_files

logger = logging.getLogger(__name__)

LOG_RETENTION = "log_retention"
ORPHAN_SWEEP = "orphan_sweep"
STORAGE_COMPACTION = "storage_compaction"


@dataclass
class ScheduledTask:
    """A named periodic job and what we know about its last run."""
    name: str
    interval_seconds: float
    handler: Callable[[], Awaitable[Any]]
    enabled: bool = True
    last_run: Optional[datetime] = None
    last_result: Any = None
    last_error: Optional[str] = None
    run_count: int = 0
    failure_count: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False, compare=False)

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
        }


@dataclass(frozen=True)
class TaskRunResult:
    """Outcome of one run, scheduled or manual."""
    name: str
    success: bool
    started_at: datetime
    finished_at: datetime
    result: Any = None
    error: Optional[str] = None


class MaintenanceScheduler:
    """
    Owns a set of ScheduledTasks and their tickers.

    start() spawns one asyncio task per enabled job; stop() cancels them
    and waits for them to finish. A per-task lock keeps a manual trigger
    from overlapping a scheduled run of the same job.
    """

    def __init__(
        self,
        tasks: Iterable[ScheduledTask] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._tickers: dict[str, asyncio.Task] = {}
        self._clock = clock

        for task in tasks:
            self.add_task(task)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def add_task(self, task: ScheduledTask) -> None:
        if task.name in self._tasks:
            raise ValueError(f"Task {task.name} is already registered")
        if task.interval_seconds <= 0:
            raise ValueError(f"Task {task.name} needs a positive interval")
        self._tasks[task.name] = task

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tickers.values())

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> None:
        """Start a ticker for every enabled task. Calling twice is a no-op."""
        if self.running:
            return

        for task in self._tasks.values():
            if not task.enabled:
                continue
            self._tickers[task.name] = asyncio.create_task(
                self._tick_loop(task), name=f"maintenance:{task.name}"
            )
            logger.info(
                "Scheduled maintenance task",
                extra={"task": task.name, "interval_seconds": task.interval_seconds}
            )

    async def stop(self) -> None:
        """Cancel every ticker and wait for in-flight runs to unwind."""
        tickers = list(self._tickers.values())
        for ticker in tickers:
            ticker.cancel()

        if tickers:
            await asyncio.gather(*tickers, return_exceptions=True)

        self._tickers.clear()
        logger.info("Maintenance scheduler stopped")

    async def _tick_loop(self, task: ScheduledTask) -> None:
        try:
            while True:
                await asyncio.sleep(task.interval_seconds)
                await self._execute(task, trigger="scheduled")
        except asyncio.CancelledError:
            logger.debug("Maintenance ticker cancelled", extra={"task": task.name})
            raise

    # -----------------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------------

    async def run_task(self, name: str) -> TaskRunResult:
        """
        Run a task now, outside its schedule.

        Raises NotFoundError for an unknown name. Failures of the task
        itself come back in the result, not as an exception.
        """
        task = self._tasks.get(name)
        if task is None:
            raise NotFoundError(
                f"Task {name} does not exist",
                details={"task": name, "available": self.task_names},
            )
        return await self._execute(task, trigger="manual")

    async def _execute(self, task: ScheduledTask, trigger: str) -> TaskRunResult:
        async with task._lock:
            started_at = self._now()
            task.last_run = started_at
            task.run_count += 1

            logger.info(
                "Maintenance task started",
                extra={"task": task.name, "trigger": trigger}
            )

            try:
                result = await task.handler()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                task.last_error = str(e)
                task.failure_count += 1
                logger.error(
                    "Maintenance task failed",
                    extra={"task": task.name, "trigger": trigger, "error": str(e)},
                    exc_info=e,
                )
                return TaskRunResult(
                    name=task.name,
                    success=False,
                    started_at=started_at,
                    finished_at=self._now(),
                    error=str(e),
                )

            task.last_result = result
            task.last_error = None
            logger.info(
                "Maintenance task finished",
                extra={"task": task.name, "trigger": trigger, "result": result}
            )
            return TaskRunResult(
                name=task.name,
                success=True,
                started_at=started_at,
                finished_at=self._now(),
                result=result,
            )

    def status(self) -> dict[str, dict[str, Any]]:
        return {name: task.status() for name, task in self._tasks.items()}


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def build_maintenance_tasks(
    store: MetadataStore,
    cache_dir: str,
    retention_days: int = 30,
    log_retention_interval_seconds: float = 24 * 60 * 60,
    orphan_sweep_interval_seconds: float = 6 * 60 * 60,
    compaction_interval_seconds: float = 7 * 24 * 60 * 60,
    orphan_min_age_seconds: float = 60 * 60,
    clock: Callable[[], float] = time.time,
) -> list[ScheduledTask]:
    """
    The three standard jobs: log retention, orphan sweep, compaction.

    Job bodies are synchronous and run in worker threads.
    """

    async def log_retention() -> int:
        now = datetime.fromtimestamp(clock(), tz=timezone.utc)
        return await asyncio.to_thread(purge_expired_access_logs, store, retention_days, now)

    async def orphan_sweep() -> int:
        return await asyncio.to_thread(
            sweep_orphan_files, store, cache_dir, orphan_min_age_seconds, clock
        )

    async def storage_compaction() -> None:
        await asyncio.to_thread(compact_storage, store)

    return [
        ScheduledTask(LOG_RETENTION, log_retention_interval_seconds, log_retention),
        ScheduledTask(ORPHAN_SWEEP, orphan_sweep_interval_seconds, orphan_sweep),
        ScheduledTask(STORAGE_COMPACTION, compaction_interval_seconds, storage_compaction),
    ]
