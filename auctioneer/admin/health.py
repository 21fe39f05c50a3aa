"""Admin health: uptime, storage backend, scheduler mode and job backlog."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..models import JobStatus
from .auth import require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

BACKLOG_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.FAILED)


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    state = request.app.state
    started = getattr(state, "start_time", None)
    uptime = int((datetime.now(timezone.utc) - started).total_seconds()) if started else 0
    scheduler = state.server_config.scheduler
    jobs = {status.value: len(await state.jobs.list(status)) for status in BACKLOG_STATUSES}
    return {
        "status": "healthy",
        "uptime_seconds": uptime,
        "version": request.app.version,
        "storage_backend": state.server_config.storage.backend,
        "scheduler": "embedded" if scheduler.embedded else "cron",
        "tick_interval_seconds": scheduler.interval_seconds,
        "jobs": jobs,
    }
