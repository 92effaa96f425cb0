"""
Maintenance endpoints.

Expose the scheduler's task status and a manual trigger so operators can
run a job (say, an orphan sweep after an outage) without waiting for its
next tick.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from ..dependencies import AuthenticatedUser, SchedulerDep

logger = logging.getLogger(__name__)

router = APIRouter()


class TaskStatus(BaseModel):
    enabled: bool
    interval_seconds: float
    last_run: Optional[str] = None
    last_result: Any = None
    last_error: Optional[str] = None
    run_count: int
    failure_count: int


class TaskRunResponse(BaseModel):
    name: str
    success: bool
    started_at: datetime
    finished_at: datetime
    result: Any = None
    error: Optional[str] = None


@router.get(
    "/tasks",
    response_model=dict[str, TaskStatus],
    summary="Maintenance task status",
)
async def task_status(scheduler: SchedulerDep) -> dict[str, TaskStatus]:
    return {name: TaskStatus(**status) for name, status in scheduler.status().items()}


@router.post(
    "/tasks/{name}/run",
    response_model=TaskRunResponse,
    summary="Run a maintenance task now",
)
async def run_task(
    name: str,
    api_key: AuthenticatedUser,
    scheduler: SchedulerDep,
) -> TaskRunResponse:
    logger.info("Manual maintenance trigger", extra={"task": name})
    run = await scheduler.run_task(name)

    return TaskRunResponse(
        name=run.name,
        success=run.success,
        started_at=run.started_at,
        finished_at=run.finished_at,
        result=run.result,
        error=run.error,
    )
