"""Structured result types returned by the fan-out operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FailureRecord:
    unit: str
    key: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"unit": self.unit, "key": self.key, "message": self.message}


@dataclass
class SlotDelta:
    slot_id: str
    game_id: str
    user_id: str
    athlete_id: str
    total: int | float
    breakdown: dict[str, Any]
    outcome: str
    previous_total: int | float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "total": self.total,
            "breakdown": dict(self.breakdown),
            "outcome": self.outcome,
            "previous_total": self.previous_total,
        }


@dataclass
class PointsApplicationResult:
    event_key: str
    dry_run: bool = False
    deltas: list[SlotDelta] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    failures: list[FailureRecord] = field(default_factory=list)
    processed_slots: int = 0
    total_slots: int = 0
    cursor: str | None = None
    complete: bool = True

    @property
    def success(self) -> bool:
        return True

    @property
    def touched_participants(self) -> set[tuple[str, str]]:
        return {(delta.game_id, delta.user_id) for delta in self.deltas}

    def skip(self, game_id: str, reason: str, **extra: Any) -> None:
        if any(item["game_id"] == game_id and item["reason"] == reason for item in self.skipped):
            return
        self.skipped.append({"game_id": game_id, "reason": reason, **extra})

    def fail(self, unit: str, key: str, message: str) -> None:
        self.failures.append(FailureRecord(unit, key, message))

    def applied(self) -> dict[str, dict[str, dict[str, dict[str, Any]]]]:
        grouped: dict[str, dict[str, dict[str, dict[str, Any]]]] = {}
        for delta in self.deltas:
            grouped.setdefault(delta.game_id, {}).setdefault(delta.user_id, {})[
                delta.athlete_id
            ] = delta.to_dict()
        return grouped

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event_key,
            "success": self.success,
            "dry_run": self.dry_run,
            "applied": self.applied(),
            "skipped": list(self.skipped),
            "failures": [failure.to_dict() for failure in self.failures],
            "errors": [failure.message for failure in self.failures],
            "processed_slots": self.processed_slots,
            "total_slots": self.total_slots,
            "cursor": self.cursor,
            "complete": self.complete,
        }
