from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from . import __version__
from .admin import health as admin_health
from .admin import jobs as admin_jobs
from .admin import participants as admin_participants
from .admin import stats as admin_stats
from .admin.auth import require_admin, require_cron
from .auction.bids import BidService
from .auction.finalize import FinalizationOrchestrator
from .config import ServerConfig, configure_logging, get_server_config
from .errors import AuthorizationError, BidRejected, InvariantViolation, NotFound, ValidationFailed
from .jobs.queue import POINTS_APPLICATION, JobQueue
from .ledger.apply import PointsApplicationService
from .models import RaceResultEvent
from .notifications.dispatcher import WebhookNotifier
from .scheduler.service import SchedulerService
from .storage import FantasyStorage, build_storage
from .transport.timestamps import TimestampError
from .validation.validator import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    configure_logging(server_config.logging)
    schema_registry = get_schema_registry()
    storage = build_storage(server_config)
    notifier = WebhookNotifier(
        server_config.notifications.webhook_url,
        timeout_ms=server_config.notifications.timeout_ms,
    )
    jobs = JobQueue(
        storage,
        stale_after_seconds=server_config.scheduler.job_stale_after_seconds,
        max_attempts=server_config.scheduler.job_max_attempts,
        ttl_hours=server_config.scheduler.job_ttl_hours,
    )
    finalizer = FinalizationOrchestrator(storage, notifier)
    points = PointsApplicationService(storage, notifier)
    scheduler = SchedulerService(storage, finalizer, points, jobs, server_config.scheduler)

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.storage = storage
    app.state.notifier = notifier
    app.state.jobs = jobs
    app.state.finalizer = finalizer
    app.state.points = points
    app.state.bids = BidService(storage)
    app.state.scheduler = scheduler
    app.state.start_time = datetime.now(timezone.utc)

    stop = asyncio.Event()
    loop_task = None
    if server_config.scheduler.embedded:
        loop_task = asyncio.create_task(scheduler.run_forever(stop=stop))
        logger.info("Embedded scheduler started (every %ss)", server_config.scheduler.interval_seconds)

    yield

    stop.set()
    if loop_task is not None:
        loop_task.cancel()
        with suppress(asyncio.CancelledError):
            await loop_task
    await notifier.close()


app = FastAPI(
    title="Auctioneer Scoring Server",
    version=__version__,
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_jobs.router)
app.include_router(admin_participants.router)


# Error mapping --------------------------------------------------------------


@app.exception_handler(ValidationFailed)
async def validation_failed(request: Request, exc: ValidationFailed) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": {"field": exc.field, "reason": exc.reason}})


@app.exception_handler(NotFound)
async def not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def unauthorized(request: Request, exc: AuthorizationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(BidRejected)
async def bid_rejected(request: Request, exc: BidRejected) -> JSONResponse:
    # End users get the stored status only, never the internal reason.
    return JSONResponse(
        status_code=409,
        content={"detail": "bid rejected", "status": exc.status, "bid_id": exc.bid_id},
    )


@app.exception_handler(InvariantViolation)
async def invariant_violation(request: Request, exc: InvariantViolation) -> JSONResponse:
    logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_storage_backend(request: Request) -> FantasyStorage:
    return request.app.state.storage


def get_finalizer(request: Request) -> FinalizationOrchestrator:
    return request.app.state.finalizer


def get_points_service(request: Request) -> PointsApplicationService:
    return request.app.state.points


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.jobs


def get_bid_service(request: Request) -> BidService:
    return request.app.state.bids


def get_scheduler(request: Request) -> SchedulerService:
    return request.app.state.scheduler


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "auctioneer",
        "version": app.version,
        "storage": settings.storage.backend,
        "scheduler": {
            "embedded": settings.scheduler.embedded,
            "interval_seconds": settings.scheduler.interval_seconds,
            "time_budget_seconds": settings.scheduler.time_budget_seconds,
        },
    }


@app.get("/ping", tags=["meta"])
async def ping() -> dict[str, Any]:
    return {"status": "ok", "version": app.version}


@app.post("/games/{game_id}/finalize", tags=["auction"], dependencies=[Depends(require_admin)])
async def finalize_game(
    game_id: str,
    payload: dict[str, Any] | None = Body(default=None),
    schemas: SchemaRegistry = Depends(get_schema_service),
    finalizer: FinalizationOrchestrator = Depends(get_finalizer),
) -> dict[str, Any]:
    payload = payload or {}
    schemas.validate("finalize_request", payload)
    result = await finalizer.finalize(
        game_id,
        payload.get("period_name"),
        resume_from_participant=payload.get("resume_cursor"),
        max_participants=payload.get("max_participants"),
    )
    return result.to_dict()


@app.get("/games/{game_id}/auction-preview", tags=["auction"], dependencies=[Depends(require_admin)])
async def preview_auction(
    game_id: str,
    period_name: str | None = Query(default=None),
    finalizer: FinalizationOrchestrator = Depends(get_finalizer),
) -> dict[str, Any]:
    return await finalizer.preview(game_id, period_name)


@app.post(
    "/games/{game_id}/bids",
    tags=["auction"],
    status_code=status.HTTP_201_CREATED,
)
async def place_bid(
    game_id: str,
    payload: dict[str, Any] = Body(...),
    schemas: SchemaRegistry = Depends(get_schema_service),
    bids: BidService = Depends(get_bid_service),
) -> dict[str, Any]:
    schemas.validate("bid_request", payload)
    bid = await bids.place(game_id, payload["user_id"], payload["athlete"], payload["amount"])
    return {"status": "accepted", "bid": bid.to_dict()}


@app.post("/races/results", tags=["scoring"], dependencies=[Depends(require_admin)])
async def apply_race_result(
    payload: dict[str, Any] = Body(...),
    schemas: SchemaRegistry = Depends(get_schema_service),
    settings: ServerConfig = Depends(get_server_settings),
    points: PointsApplicationService = Depends(get_points_service),
    jobs: JobQueue = Depends(get_job_queue),
) -> dict[str, Any]:
    schemas.validate("race_result_request", payload)
    try:
        event = RaceResultEvent.from_payload(
            payload["race_slug"], payload["stage"], payload["year"], payload["result"]
        )
    except TimestampError as exc:
        raise ValidationFailed("$.result.date", str(exc)) from exc
    dry_run = bool(payload.get("dry_run", False))
    deadline = time.monotonic() + settings.scheduler.time_budget_seconds
    result = await points.apply(event, dry_run=dry_run, deadline=deadline)
    response = result.to_dict()
    if not result.complete and not dry_run:
        job = await jobs.create(POINTS_APPLICATION, {"event_key": event.key, "cursor": result.cursor})
        response["job_id"] = job.job_id
    return response


@app.post("/cron/tick", tags=["cron"], dependencies=[Depends(require_cron)])
async def cron_tick(scheduler: SchedulerService = Depends(get_scheduler)) -> dict[str, Any]:
    summary = await scheduler.tick()
    return summary.to_dict()


@app.post("/cron/recover-jobs", tags=["cron"], dependencies=[Depends(require_cron)])
async def cron_recover_jobs(jobs: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    return await jobs.recover_stale()
