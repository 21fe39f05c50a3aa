"""Background job listing."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ..errors import ValidationFailed
from ..jobs.queue import JobQueue
from ..models import JobStatus
from .auth import require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _get_jobs(request: Request) -> JobQueue:
    return request.app.state.jobs


@router.get("/jobs")
async def list_jobs(
    status: str | None = Query(default=None),
    jobs: JobQueue = Depends(_get_jobs),
) -> dict[str, Any]:
    try:
        wanted = JobStatus(status) if status else None
    except ValueError as exc:
        raise ValidationFailed("status", f"unknown job status {status}") from exc
    items = await jobs.list(wanted)
    return {"jobs": [job.to_dict() for job in items], "count": len(items)}
