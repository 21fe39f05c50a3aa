"""Tests for the persisted job queue."""

from __future__ import annotations

from datetime import timedelta

import pytest

from auctioneer.jobs.queue import POINTS_APPLICATION, JobQueue
from auctioneer.models import JobStatus
from conftest import T0


class FakeClock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self):
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def queue(storage, fake_clock):
    return JobQueue(storage, stale_after_seconds=600, max_attempts=3, ttl_hours=24, clock=fake_clock)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_start_complete(self, queue):
        job = await queue.create(POINTS_APPLICATION, {"event_key": "tdf_2026_stage-1", "cursor": None})

        assert job.job_id.startswith("job_")
        assert job.status is JobStatus.PENDING
        assert job.expires_at == T0 + timedelta(hours=24)

        running = await queue.start(job.job_id)
        assert running.status is JobStatus.RUNNING
        assert running.heartbeat_at == T0

        done = await queue.complete(job.job_id, {"processed_slots": 3})
        assert done.status is JobStatus.COMPLETED
        assert done.result == {"processed_slots": 3}
        assert [j.job_id for j in await queue.list(JobStatus.COMPLETED)] == [job.job_id]

    @pytest.mark.asyncio
    async def test_release_saves_cursor(self, queue):
        job = await queue.create(POINTS_APPLICATION, {"event_key": "k", "cursor": None})
        await queue.start(job.job_id)

        released = await queue.release(job.job_id, data={"event_key": "k", "cursor": "g1_a_x"}, progress={"processed_slots": 2})

        assert released.status is JobStatus.PENDING
        assert released.data["cursor"] == "g1_a_x"
        assert released.attempts == 0

    @pytest.mark.asyncio
    async def test_fail_records_error(self, queue):
        job = await queue.create(POINTS_APPLICATION, {})
        failed = await queue.fail(job.job_id, "boom")
        assert (failed.status, failed.error) == (JobStatus.FAILED, "boom")


class TestRecovery:
    """Stalled jobs are requeued a bounded number of times."""

    @pytest.mark.asyncio
    async def test_fresh_heartbeat_is_left_alone(self, queue, fake_clock):
        job = await queue.create(POINTS_APPLICATION, {})
        await queue.start(job.job_id)
        fake_clock.advance(seconds=599)

        summary = await queue.recover_stale()

        assert summary == {"recovered": [], "failed": [], "expired": []}
        assert (await queue.get(job.job_id)).status is JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_stale_job_is_requeued_then_failed(self, queue, fake_clock):
        job = await queue.create(POINTS_APPLICATION, {})

        for attempt in (1, 2):
            await queue.start(job.job_id)
            fake_clock.advance(minutes=11)
            summary = await queue.recover_stale()
            assert summary["recovered"] == [job.job_id]
            recovered = await queue.get(job.job_id)
            assert (recovered.status, recovered.attempts) == (JobStatus.PENDING, attempt)

        await queue.start(job.job_id)
        fake_clock.advance(minutes=11)
        summary = await queue.recover_stale()

        assert summary["failed"] == [job.job_id]
        failed = await queue.get(job.job_id)
        assert (failed.status, failed.attempts) == (JobStatus.FAILED, 3)

    @pytest.mark.asyncio
    async def test_expired_jobs_are_deleted_unless_running(self, queue, fake_clock, storage):
        finished = await queue.create(POINTS_APPLICATION, {})
        await queue.complete(finished.job_id, {})
        running = await queue.create(POINTS_APPLICATION, {})
        await queue.start(running.job_id)
        fake_clock.advance(hours=25)
        await queue.heartbeat(running.job_id)

        summary = await queue.recover_stale()

        assert summary["expired"] == [finished.job_id]
        assert [job["job_id"] for job in await storage.list_jobs()] == [running.job_id]
