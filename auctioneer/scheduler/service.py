"""Periodic trigger: advances period clocks, finalizes due periods and drains background jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..auction.finalize import FinalizationOrchestrator
from ..auction.fsm import advance, is_due
from ..config import SchedulerConfig
from ..jobs.queue import POINTS_APPLICATION, JobQueue
from ..ledger.apply import PointsApplicationService
from ..ledger.results import FailureRecord
from ..models import AuctionPeriod, Game, GameStatus, Job, JobStatus, PeriodStatus, RaceResultEvent
from ..transport.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    started_at: datetime
    games_checked: int = 0
    status_updates: list[dict[str, Any]] = field(default_factory=list)
    finalizations: list[dict[str, Any]] = field(default_factory=list)
    jobs_recovered: dict[str, list[str]] = field(default_factory=dict)
    jobs_processed: list[dict[str, Any]] = field(default_factory=list)
    errors: list[FailureRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": format_timestamp(self.started_at),
            "games_checked": self.games_checked,
            "status_updates": list(self.status_updates),
            "finalizations_triggered": len(self.finalizations),
            "finalizations": list(self.finalizations),
            "jobs_recovered": dict(self.jobs_recovered),
            "jobs_processed": list(self.jobs_processed),
            "errors": [failure.to_dict() for failure in self.errors],
        }


class SchedulerService:
    def __init__(
        self,
        storage,
        finalizer: FinalizationOrchestrator,
        points: PointsApplicationService,
        jobs: JobQueue,
        config: SchedulerConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._storage = storage
        self._finalizer = finalizer
        self._points = points
        self._jobs = jobs
        self._config = config
        self._clock = clock
        self._monotonic = monotonic

    async def tick(self, now: datetime | None = None) -> TickSummary:
        now = now or self._clock()
        deadline = self._monotonic() + self._config.time_budget_seconds
        summary = TickSummary(started_at=now)

        games = [Game.from_dict(doc) for doc in await self._storage.list_games()]
        for game in games:
            if not game.auction_periods:
                continue
            summary.games_checked += 1
            try:
                game = await self._advance(game, now, summary)
            except Exception as exc:
                logger.error("Advancing periods failed for game %s: %s", game.game_id, exc)
                summary.errors.append(FailureRecord("game", game.game_id, str(exc)))
                continue
            for period in game.auction_periods:
                if is_due(period, now) and self._monotonic() < deadline:
                    await self._finalize_due(game, period, deadline, summary)

        summary.jobs_recovered = await self._jobs.recover_stale(now)
        await self._run_jobs(deadline, summary)
        if summary.status_updates or summary.finalizations or summary.jobs_processed:
            logger.info(
                "Tick: %s status updates, %s finalizations, %s jobs",
                len(summary.status_updates),
                len(summary.finalizations),
                len(summary.jobs_processed),
            )
        return summary

    async def run_forever(self, interval_seconds: float | None = None, stop: asyncio.Event | None = None) -> None:
        interval = interval_seconds or self._config.interval_seconds
        while stop is None or not stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(interval)

    async def _advance(self, game: Game, now: datetime, summary: TickSummary) -> Game:
        changes = [
            (period.name, period.status, advance(period, now))
            for period in game.auction_periods
            if advance(period, now) is not period.status
        ]
        if not changes:
            return game

        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            current = Game.from_dict(doc)
            for period in current.auction_periods:
                period.status = advance(period, now)
            updates: dict[str, Any] = {"auction_periods": [period.to_dict() for period in current.auction_periods]}
            opened = any(period.status is not PeriodStatus.PENDING for period in current.auction_periods)
            if current.status is GameStatus.REGISTRATION and any(
                period.status is PeriodStatus.ACTIVE for period in current.auction_periods
            ):
                updates["status"] = GameStatus.BIDDING.value
            if current.auction_status is PeriodStatus.PENDING and opened:
                updates["auction_status"] = PeriodStatus.ACTIVE.value
            return updates

        doc = await self._storage.update_auction_periods(game.game_id, mutate)
        for name, before, after in changes:
            logger.info("Game %s period %s: %s -> %s", game.game_id, name, before.value, after.value)
            summary.status_updates.append(
                {"game_id": game.game_id, "period_name": name, "from": before.value, "to": after.value}
            )
        return Game.from_dict(doc)

    async def _finalize_due(
        self, game: Game, period: AuctionPeriod, deadline: float, summary: TickSummary
    ) -> None:
        cursor = (period.progress or {}).get("last_processed_participant")
        batch = self._config.finalize_batch_participants or None
        while True:
            try:
                result = await self._finalizer.finalize(
                    game.game_id,
                    period.name,
                    resume_from_participant=cursor,
                    max_participants=batch,
                    allow_empty=True,
                )
            except Exception as exc:
                logger.error("Finalizing game %s period %s failed: %s", game.game_id, period.name, exc)
                summary.errors.append(FailureRecord("period", f"{game.game_id}/{period.name}", str(exc)))
                return
            summary.finalizations.append(result.to_dict())
            if result.complete or not result.success or result.errors:
                return
            if self._monotonic() >= deadline:
                return
            cursor = result.last_processed_participant

    async def _run_jobs(self, deadline: float, summary: TickSummary) -> None:
        for job in await self._jobs.list(JobStatus.PENDING):
            if self._monotonic() >= deadline:
                return
            if job.type != POINTS_APPLICATION:
                await self._jobs.fail(job.job_id, f"unknown job type {job.type}")
                continue
            summary.jobs_processed.append(await self._run_points_job(job, deadline))

    async def _run_points_job(self, job: Job, deadline: float) -> dict[str, Any]:
        job = await self._jobs.start(job.job_id)
        data = dict(job.data)
        progress = dict(job.progress)
        try:
            snapshot = await self._storage.get_race_result(data["event_key"])
            if snapshot is None:
                await self._jobs.fail(job.job_id, f"race result {data['event_key']} not stored")
                return {"job_id": job.job_id, "status": JobStatus.FAILED.value}
            event = RaceResultEvent.from_payload(
                snapshot["race_slug"], snapshot["stage"], snapshot["year"], snapshot["result"]
            )
            while True:
                result = await self._points.apply(
                    event,
                    cursor=data.get("cursor"),
                    batch_size=self._config.batch_size,
                    deadline=deadline,
                )
                data["cursor"] = result.cursor
                progress = {
                    "processed_slots": progress.get("processed_slots", 0) + result.processed_slots,
                    "total_slots": result.total_slots,
                    "failures": progress.get("failures", 0) + len(result.failures),
                }
                if result.complete:
                    await self._jobs.complete(job.job_id, progress)
                    return {"job_id": job.job_id, "status": JobStatus.COMPLETED.value, **progress}
                if self._monotonic() >= deadline:
                    await self._jobs.release(job.job_id, data=data, progress=progress)
                    return {"job_id": job.job_id, "status": JobStatus.PENDING.value, **progress}
                await self._jobs.heartbeat(job.job_id, data=data, progress=progress)
        except Exception as exc:
            await self._jobs.fail(job.job_id, str(exc))
            return {"job_id": job.job_id, "status": JobStatus.FAILED.value, "error": str(exc)}
