"""Persisted background jobs with heartbeats and stale-job recovery."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from ..models import Job, JobStatus
from ..transport.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)

POINTS_APPLICATION = "points-application"


class JobQueue:
    def __init__(
        self,
        storage,
        *,
        stale_after_seconds: int = 600,
        max_attempts: int = 3,
        ttl_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._max_attempts = max_attempts
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock

    async def create(self, job_type: str, data: dict[str, Any]) -> Job:
        now = self._clock()
        job = Job(
            job_id=f"job_{uuid.uuid4().hex}",
            type=job_type,
            data=dict(data),
            created_at=now,
            expires_at=now + self._ttl,
        )
        await self._storage.create_job(job.to_dict())
        logger.info("Created %s job %s", job_type, job.job_id)
        return job

    async def get(self, job_id: str) -> Job:
        return Job.from_dict(await self._storage.get_job(job_id))

    async def list(self, status: JobStatus | None = None) -> list[Job]:
        docs = await self._storage.list_jobs(status.value if status else None)
        return [Job.from_dict(doc) for doc in docs]

    async def start(self, job_id: str) -> Job:
        now = format_timestamp(self._clock())
        doc = await self._storage.update_job(
            job_id,
            {"status": JobStatus.RUNNING.value, "started_at": now, "heartbeat_at": now},
        )
        return Job.from_dict(doc)

    async def heartbeat(
        self, job_id: str, *, data: dict[str, Any] | None = None, progress: dict[str, Any] | None = None
    ) -> Job:
        updates: dict[str, Any] = {"heartbeat_at": format_timestamp(self._clock())}
        if data is not None:
            updates["data"] = data
        if progress is not None:
            updates["progress"] = progress
        return Job.from_dict(await self._storage.update_job(job_id, updates))

    async def release(self, job_id: str, *, data: dict[str, Any], progress: dict[str, Any]) -> Job:
        """Hand an unfinished job back to the queue with its cursor saved."""
        doc = await self._storage.update_job(
            job_id,
            {
                "status": JobStatus.PENDING.value,
                "data": data,
                "progress": progress,
                "heartbeat_at": format_timestamp(self._clock()),
            },
        )
        return Job.from_dict(doc)

    async def complete(self, job_id: str, result: dict[str, Any]) -> Job:
        now = format_timestamp(self._clock())
        doc = await self._storage.update_job(
            job_id,
            {"status": JobStatus.COMPLETED.value, "completed_at": now, "heartbeat_at": now, "result": result},
        )
        logger.info("Completed job %s", job_id)
        return Job.from_dict(doc)

    async def fail(self, job_id: str, error: str) -> Job:
        now = format_timestamp(self._clock())
        doc = await self._storage.update_job(
            job_id,
            {"status": JobStatus.FAILED.value, "completed_at": now, "error": error},
        )
        logger.error("Job %s failed: %s", job_id, error)
        return Job.from_dict(doc)

    async def recover_stale(self, now: datetime | None = None) -> dict[str, list[str]]:
        """Requeue running jobs whose heartbeat stopped, fail them past max attempts, drop expired jobs."""
        now = now or self._clock()
        summary: dict[str, list[str]] = {"recovered": [], "failed": [], "expired": []}
        for job in await self.list():
            if job.status is not JobStatus.RUNNING and job.expires_at and job.expires_at <= now:
                await self._storage.delete_job(job.job_id)
                summary["expired"].append(job.job_id)
                continue
            if job.status is not JobStatus.RUNNING:
                continue
            beat = job.heartbeat_at or job.started_at or job.created_at
            if beat is not None and now - beat < self._stale_after:
                continue
            attempts = job.attempts + 1
            if attempts >= self._max_attempts:
                await self._storage.update_job(
                    job.job_id,
                    {
                        "status": JobStatus.FAILED.value,
                        "attempts": attempts,
                        "completed_at": format_timestamp(now),
                        "error": "job stalled too many times",
                    },
                )
                summary["failed"].append(job.job_id)
                logger.error("Job %s stalled %s times, marking failed", job.job_id, attempts)
            else:
                await self._storage.update_job(
                    job.job_id, {"status": JobStatus.PENDING.value, "attempts": attempts}
                )
                summary["recovered"].append(job.job_id)
                logger.warning("Recovered stale job %s (attempt %s)", job.job_id, attempts)
        return summary
