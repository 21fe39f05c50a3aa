"""Auction period finite state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from ..errors import PeriodIntegrityError
from ..models import AuctionPeriod, PeriodStatus


class PeriodEvent(str, Enum):
    OPENED = "opened"
    CLOSED = "closed"
    FINALIZED = "finalized"


_TRANSITIONS = {
    (PeriodStatus.PENDING, PeriodEvent.OPENED): PeriodStatus.ACTIVE,
    (PeriodStatus.PENDING, PeriodEvent.CLOSED): PeriodStatus.CLOSED,
    (PeriodStatus.ACTIVE, PeriodEvent.CLOSED): PeriodStatus.CLOSED,
    (PeriodStatus.ACTIVE, PeriodEvent.FINALIZED): PeriodStatus.FINALIZED,
    (PeriodStatus.CLOSED, PeriodEvent.FINALIZED): PeriodStatus.FINALIZED,
}

_ORDER = {
    PeriodStatus.PENDING: 0,
    PeriodStatus.ACTIVE: 1,
    PeriodStatus.CLOSED: 2,
    PeriodStatus.FINALIZED: 3,
}


def transition(current: PeriodStatus, event: PeriodEvent) -> PeriodStatus:
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid transition from {current} via {event}") from exc


def is_forward(current: PeriodStatus, target: PeriodStatus) -> bool:
    return _ORDER[target] > _ORDER[current]


def clock_status(period: AuctionPeriod, now: datetime) -> PeriodStatus:
    """Status the wall clock implies; never ``finalized``, which only finalization sets."""
    if now >= period.end:
        return PeriodStatus.CLOSED
    if now >= period.start:
        return PeriodStatus.ACTIVE
    return PeriodStatus.PENDING


def advance(period: AuctionPeriod, now: datetime) -> PeriodStatus:
    """Return the period's status after applying the clock, moving only forward."""
    if period.status is PeriodStatus.FINALIZED:
        return period.status
    target = clock_status(period, now)
    if not is_forward(period.status, target):
        return period.status
    event = PeriodEvent.OPENED if target is PeriodStatus.ACTIVE else PeriodEvent.CLOSED
    return transition(period.status, event)


def is_due(period: AuctionPeriod, now: datetime) -> bool:
    if period.finalize_at is None or now < period.finalize_at:
        return False
    return period.status in {PeriodStatus.ACTIVE, PeriodStatus.CLOSED}


def check_period_integrity(before: list[dict], after: list[dict]) -> None:
    """Reject a period-list write that drops periods or moves a status backwards."""
    if len(after) < len(before):
        raise PeriodIntegrityError(
            f"auction period count would shrink from {len(before)} to {len(after)}"
        )
    after_by_name = {period["name"]: period for period in after}
    missing = [period["name"] for period in before if period["name"] not in after_by_name]
    if missing:
        raise PeriodIntegrityError(f"auction periods would be dropped: {', '.join(missing)}")
    for period in before:
        old = PeriodStatus(period.get("status", PeriodStatus.PENDING.value))
        new = PeriodStatus(after_by_name[period["name"]].get("status", old.value))
        if new is not old and not is_forward(old, new):
            raise PeriodIntegrityError(
                f"auction period {period['name']} cannot move from {old.value} to {new.value}"
            )
