"""Configuration helpers for the auctioneer service."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"


@dataclass(frozen=True)
class StorageConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class SchedulerConfig:
    interval_seconds: int
    time_budget_seconds: float
    batch_size: int
    finalize_batch_participants: int
    job_stale_after_seconds: int
    job_max_attempts: int
    job_ttl_hours: int
    embedded: bool = False


@dataclass(frozen=True)
class AuthConfig:
    admin_tokens: tuple[str, ...]
    cron_secret: str


@dataclass(frozen=True)
class NotificationConfig:
    webhook_url: str | None
    timeout_ms: int


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    format: str


@dataclass(frozen=True)
class ServerConfig:
    storage: StorageConfig
    scheduler: SchedulerConfig
    auth: AuthConfig
    notifications: NotificationConfig
    logging: LoggingConfig


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def _admin_tokens(auth: Mapping[str, Any]) -> tuple[str, ...]:
    raw = os.getenv("AUCTIONEER_ADMIN_TOKENS")
    if raw is not None:
        return tuple(token.strip() for token in raw.split(",") if token.strip())
    return tuple(str(token) for token in auth.get("admin_tokens") or ())


def build_server_config(data: Mapping[str, Any]) -> ServerConfig:
    storage = data.get("storage", {})
    scheduler = data.get("scheduler", {})
    auth = data.get("auth", {})
    notifications = data.get("notifications", {})
    log = data.get("logging", {})
    return ServerConfig(
        storage=StorageConfig(
            backend=str(storage.get("backend", "in_memory")),
            options=dict(storage.get("options") or {}),
        ),
        scheduler=SchedulerConfig(
            interval_seconds=int(scheduler.get("interval_seconds", 60)),
            time_budget_seconds=float(scheduler.get("time_budget_seconds", 240)),
            batch_size=int(scheduler.get("batch_size", 200)),
            finalize_batch_participants=int(scheduler.get("finalize_batch_participants", 0)),
            job_stale_after_seconds=int(scheduler.get("job_stale_after_seconds", 600)),
            job_max_attempts=int(scheduler.get("job_max_attempts", 3)),
            job_ttl_hours=int(scheduler.get("job_ttl_hours", 24)),
            embedded=bool(scheduler.get("embedded", False)),
        ),
        auth=AuthConfig(
            admin_tokens=_admin_tokens(auth),
            cron_secret=os.getenv("AUCTIONEER_CRON_SECRET", str(auth.get("cron_secret", ""))),
        ),
        notifications=NotificationConfig(
            webhook_url=notifications.get("webhook_url") or None,
            timeout_ms=int(notifications.get("timeout_ms", 2000)),
        ),
        logging=LoggingConfig(
            level=str(log.get("level", "INFO")).upper(),
            format=str(log.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")),
        ),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("AUCTIONEER_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return build_server_config(_load_yaml(path))


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Attach a single console handler to the ``auctioneer`` logger tree."""
    logger = logging.getLogger("auctioneer")
    logger.setLevel(getattr(logging, config.level, logging.INFO))
    logger.handlers = []
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(config.format, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger
