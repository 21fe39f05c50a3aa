"""Domain records stored as documents by the storage backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from .transport.timestamps import (
    format_timestamp,
    parse_date,
    parse_optional_timestamp,
    parse_timestamp,
)


class GameStatus(str, Enum):
    REGISTRATION = "registration"
    BIDDING = "bidding"
    ACTIVE = "active"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class ScoringMode(str, Enum):
    SEASON_ALL_RACES = "season-all-races"
    EXPLICIT_COUNTING_RACES = "explicit-counting-races"


class GameType(str, Enum):
    AUCTIONEER = "auctioneer"
    MARGINAL_GAINS = "marginal-gains"


class PeriodStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"
    FINALIZED = "finalized"


class BidStatus(str, Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"
    CANCELLED_OVERFLOW = "cancelled_overflow"
    CANCELLED_OVERBUDGET = "cancelled_overbudget"

    @property
    def is_terminal(self) -> bool:
        return self is not BidStatus.ACTIVE


class AcquisitionType(str, Enum):
    AUCTION = "auction"
    SELECTION = "selection"


SCORING_STATUSES = frozenset({GameStatus.ACTIVE, GameStatus.BIDDING})


@dataclass
class CountingRace:
    slug: str
    race_id: str | None = None
    name: str | None = None
    pick_deadline: datetime | None = None
    start_date: date | None = None
    end_date: date | None = None
    stages: list[int] = field(default_factory=list)
    rest_days: list[int] = field(default_factory=list)
    total_stages: int = 21
    mountain_multiplier: int = 4
    sprint_multiplier: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> "CountingRace":
        if isinstance(data, str):
            return cls(slug=data)
        return cls(
            slug=data.get("slug") or data.get("race_slug") or data.get("race_id") or "",
            race_id=data.get("race_id"),
            name=data.get("name"),
            pick_deadline=parse_optional_timestamp(data.get("pick_deadline")),
            start_date=parse_date(data.get("start_date")),
            end_date=parse_date(data.get("end_date")),
            stages=[int(stage) for stage in data.get("stages") or []],
            rest_days=[int(day) for day in data.get("rest_days") or []],
            total_stages=int(data.get("total_stages") or 21),
            mountain_multiplier=int(data.get("mountain_multiplier") or 4),
            sprint_multiplier=int(data.get("sprint_multiplier") or 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "race_id": self.race_id,
            "name": self.name,
            "pick_deadline": format_timestamp(self.pick_deadline),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "stages": list(self.stages),
            "rest_days": list(self.rest_days),
            "total_stages": self.total_stages,
            "mountain_multiplier": self.mountain_multiplier,
            "sprint_multiplier": self.sprint_multiplier,
        }


@dataclass
class AuctionPeriod:
    name: str
    start: datetime
    end: datetime
    finalize_at: datetime | None = None
    status: PeriodStatus = PeriodStatus.PENDING
    progress: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuctionPeriod":
        return cls(
            name=data["name"],
            start=parse_timestamp(data["start"]),
            end=parse_timestamp(data["end"]),
            finalize_at=parse_optional_timestamp(data.get("finalize_at")),
            status=PeriodStatus(data.get("status", PeriodStatus.PENDING.value)),
            progress=data.get("progress"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "finalize_at": format_timestamp(self.finalize_at),
            "status": self.status.value,
            "progress": self.progress,
        }


@dataclass
class Game:
    game_id: str
    name: str
    budget: float
    max_roster_size: int
    game_type: GameType = GameType.AUCTIONEER
    scoring_mode: ScoringMode = ScoringMode.EXPLICIT_COUNTING_RACES
    status: GameStatus = GameStatus.REGISTRATION
    min_roster_size: int = 0
    year: int | None = None
    counting_races: list[CountingRace] = field(default_factory=list)
    auction_periods: list[AuctionPeriod] = field(default_factory=list)
    auction_status: PeriodStatus = PeriodStatus.PENDING
    finalized_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Game":
        return cls(
            game_id=data["game_id"],
            name=data.get("name", data["game_id"]),
            budget=data.get("budget", 0),
            max_roster_size=int(data.get("max_roster_size", 0)),
            game_type=GameType(data.get("game_type", GameType.AUCTIONEER.value)),
            scoring_mode=ScoringMode(
                data.get("scoring_mode", ScoringMode.EXPLICIT_COUNTING_RACES.value)
            ),
            status=GameStatus(data.get("status", GameStatus.REGISTRATION.value)),
            min_roster_size=int(data.get("min_roster_size", 0)),
            year=data.get("year"),
            counting_races=[CountingRace.from_dict(item) for item in data.get("counting_races") or []],
            auction_periods=[AuctionPeriod.from_dict(item) for item in data.get("auction_periods") or []],
            auction_status=PeriodStatus(data.get("auction_status", PeriodStatus.PENDING.value)),
            finalized_at=parse_optional_timestamp(data.get("finalized_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "game_id": self.game_id,
            "name": self.name,
            "budget": self.budget,
            "max_roster_size": self.max_roster_size,
            "game_type": self.game_type.value,
            "scoring_mode": self.scoring_mode.value,
            "status": self.status.value,
            "min_roster_size": self.min_roster_size,
            "year": self.year,
            "counting_races": [race.to_dict() for race in self.counting_races],
            "auction_periods": [period.to_dict() for period in self.auction_periods],
            "auction_status": self.auction_status.value,
            "finalized_at": format_timestamp(self.finalized_at),
        }

    def period(self, name: str) -> AuctionPeriod | None:
        return next((period for period in self.auction_periods if period.name == name), None)


@dataclass
class Bid:
    bid_id: str
    game_id: str
    user_id: str
    athlete_id: str
    amount: float
    placed_at: datetime
    sequence: int = 0
    status: BidStatus = BidStatus.ACTIVE
    athlete_name: str = ""
    athlete_team: str = ""
    athlete_country: str = ""
    jersey_image: str = ""
    period_name: str | None = None
    resolved_period: str | None = None
    resolved_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bid":
        return cls(
            bid_id=data["bid_id"],
            game_id=data["game_id"],
            user_id=data["user_id"],
            athlete_id=data["athlete_id"],
            amount=data["amount"],
            placed_at=parse_timestamp(data["placed_at"]),
            sequence=int(data.get("sequence", 0)),
            status=BidStatus(data.get("status", BidStatus.ACTIVE.value)),
            athlete_name=data.get("athlete_name", ""),
            athlete_team=data.get("athlete_team", ""),
            athlete_country=data.get("athlete_country", ""),
            jersey_image=data.get("jersey_image", ""),
            period_name=data.get("period_name"),
            resolved_period=data.get("resolved_period"),
            resolved_at=parse_optional_timestamp(data.get("resolved_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bid_id": self.bid_id,
            "game_id": self.game_id,
            "user_id": self.user_id,
            "athlete_id": self.athlete_id,
            "amount": self.amount,
            "placed_at": format_timestamp(self.placed_at),
            "sequence": self.sequence,
            "status": self.status.value,
            "athlete_name": self.athlete_name,
            "athlete_team": self.athlete_team,
            "athlete_country": self.athlete_country,
            "jersey_image": self.jersey_image,
            "period_name": self.period_name,
            "resolved_period": self.resolved_period,
            "resolved_at": format_timestamp(self.resolved_at),
        }


def participant_id(game_id: str, user_id: str) -> str:
    return f"{game_id}_{user_id}"


def slot_id(game_id: str, user_id: str, athlete_id: str) -> str:
    return f"{game_id}_{user_id}_{athlete_id}"


@dataclass
class Participant:
    game_id: str
    user_id: str
    display_name: str = ""
    budget: float = 0
    spent_budget: float = 0
    roster_size: int = 0
    roster_complete: bool = False
    total_points: float = 0
    rank: int | None = None
    status: str = "active"

    @property
    def participant_id(self) -> str:
        return participant_id(self.game_id, self.user_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Participant":
        return cls(
            game_id=data["game_id"],
            user_id=data["user_id"],
            display_name=data.get("display_name", ""),
            budget=data.get("budget", 0),
            spent_budget=data.get("spent_budget", 0),
            roster_size=int(data.get("roster_size", 0)),
            roster_complete=bool(data.get("roster_complete", False)),
            total_points=data.get("total_points", 0),
            rank=data.get("rank"),
            status=data.get("status", "active"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "game_id": self.game_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "budget": self.budget,
            "spent_budget": self.spent_budget,
            "roster_size": self.roster_size,
            "roster_complete": self.roster_complete,
            "total_points": self.total_points,
            "rank": self.rank,
            "status": self.status,
        }


@dataclass
class LedgerEntry:
    race_id: str
    race_slug: str
    stage: str
    year: int
    total: float
    breakdown: dict[str, float] = field(default_factory=dict)
    fingerprint: str = ""
    applied_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.race_id, self.stage)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerEntry":
        return cls(
            race_id=data["race_id"],
            race_slug=data.get("race_slug", data["race_id"]),
            stage=str(data["stage"]),
            year=int(data.get("year", 0)),
            total=data.get("total", 0),
            breakdown=dict(data.get("breakdown") or {}),
            fingerprint=data.get("fingerprint", ""),
            applied_at=parse_optional_timestamp(data.get("applied_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "race_id": self.race_id,
            "race_slug": self.race_slug,
            "stage": self.stage,
            "year": self.year,
            "total": self.total,
            "breakdown": dict(self.breakdown),
            "fingerprint": self.fingerprint,
            "applied_at": format_timestamp(self.applied_at),
        }


@dataclass
class RosterSlot:
    game_id: str
    user_id: str
    athlete_id: str
    price_paid: float
    acquisition_type: AcquisitionType = AcquisitionType.AUCTION
    athlete_name: str = ""
    athlete_team: str = ""
    athlete_country: str = ""
    jersey_image: str = ""
    source_bid_id: str | None = None
    acquired_at: datetime | None = None
    active: bool = True
    benched: bool = False
    ledger: list[LedgerEntry] = field(default_factory=list)
    points_scored: float = 0

    @property
    def slot_id(self) -> str:
        return slot_id(self.game_id, self.user_id, self.athlete_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RosterSlot":
        return cls(
            game_id=data["game_id"],
            user_id=data["user_id"],
            athlete_id=data["athlete_id"],
            price_paid=data.get("price_paid", 0),
            acquisition_type=AcquisitionType(data.get("acquisition_type", AcquisitionType.AUCTION.value)),
            athlete_name=data.get("athlete_name", ""),
            athlete_team=data.get("athlete_team", ""),
            athlete_country=data.get("athlete_country", ""),
            jersey_image=data.get("jersey_image", ""),
            source_bid_id=data.get("source_bid_id"),
            acquired_at=parse_optional_timestamp(data.get("acquired_at")),
            active=bool(data.get("active", True)),
            benched=bool(data.get("benched", False)),
            ledger=[LedgerEntry.from_dict(entry) for entry in data.get("ledger") or []],
            points_scored=data.get("points_scored", 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "game_id": self.game_id,
            "user_id": self.user_id,
            "athlete_id": self.athlete_id,
            "price_paid": self.price_paid,
            "acquisition_type": self.acquisition_type.value,
            "athlete_name": self.athlete_name,
            "athlete_team": self.athlete_team,
            "athlete_country": self.athlete_country,
            "jersey_image": self.jersey_image,
            "source_bid_id": self.source_bid_id,
            "acquired_at": format_timestamp(self.acquired_at),
            "active": self.active,
            "benched": self.benched,
            "ledger": [entry.to_dict() for entry in self.ledger],
            "points_scored": self.points_scored,
        }


@dataclass
class FinisherResult:
    athlete_id: str
    position: int | None = None
    ranking_points: float | None = None
    team: str | None = None
    mountain_points: float = 0
    sprint_points: float = 0
    combative: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FinisherResult":
        return cls(
            athlete_id=str(data["athlete_id"]),
            position=data.get("position"),
            ranking_points=data.get("ranking_points"),
            team=data.get("team"),
            mountain_points=data.get("mountain_points") or 0,
            sprint_points=data.get("sprint_points") or 0,
            combative=bool(data.get("combative", False)),
        )


@dataclass
class RaceResultEvent:
    """One scraped race/stage snapshot: finishing order plus classification standings."""

    race_slug: str
    year: int
    stage: str
    finishers: list[FinisherResult] = field(default_factory=list)
    classifications: dict[str, dict[str, int]] = field(default_factory=dict)
    race_date: date | None = None

    @property
    def key(self) -> str:
        return f"{self.race_slug}_{self.year}_{self.stage}"

    @classmethod
    def from_payload(
        cls, race_slug: str, stage: Any, year: int, payload: dict[str, Any]
    ) -> "RaceResultEvent":
        classifications: dict[str, dict[str, int]] = {}
        for name in ("gc", "points", "mountains", "youth"):
            standings = payload.get(name) or []
            classifications[name] = {
                str(item["athlete_id"]): item.get("position")
                for item in standings
                if item.get("athlete_id") is not None
            }
        classifications["team"] = {
            str(item["team"]): item.get("position")
            for item in payload.get("team") or []
            if item.get("team") is not None
        }
        return cls(
            race_slug=race_slug,
            year=int(year),
            stage=str(stage),
            finishers=[FinisherResult.from_dict(item) for item in payload.get("finishers") or []],
            classifications=classifications,
            race_date=parse_date(payload.get("date")),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "finishers": [
                {
                    "athlete_id": finisher.athlete_id,
                    "position": finisher.position,
                    "ranking_points": finisher.ranking_points,
                    "team": finisher.team,
                    "mountain_points": finisher.mountain_points,
                    "sprint_points": finisher.sprint_points,
                    "combative": finisher.combative,
                }
                for finisher in self.finishers
            ],
            "date": self.race_date.isoformat() if self.race_date else None,
        }
        for name in ("gc", "points", "mountains", "youth"):
            payload[name] = [
                {"athlete_id": athlete_id, "position": position}
                for athlete_id, position in self.classifications.get(name, {}).items()
            ]
        payload["team"] = [
            {"team": team, "position": position}
            for team, position in self.classifications.get("team", {}).items()
        ]
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "race_slug": self.race_slug,
            "year": self.year,
            "stage": self.stage,
            "result": self.to_payload(),
        }


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    job_id: str
    type: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    progress: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    error: str | None = None
    result: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        return cls(
            job_id=data["job_id"],
            type=data["type"],
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            attempts=int(data.get("attempts", 0)),
            data=dict(data.get("data") or {}),
            progress=dict(data.get("progress") or {}),
            created_at=parse_optional_timestamp(data.get("created_at")),
            started_at=parse_optional_timestamp(data.get("started_at")),
            heartbeat_at=parse_optional_timestamp(data.get("heartbeat_at")),
            completed_at=parse_optional_timestamp(data.get("completed_at")),
            expires_at=parse_optional_timestamp(data.get("expires_at")),
            error=data.get("error"),
            result=data.get("result"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "type": self.type,
            "status": self.status.value,
            "attempts": self.attempts,
            "data": dict(self.data),
            "progress": dict(self.progress),
            "created_at": format_timestamp(self.created_at),
            "started_at": format_timestamp(self.started_at),
            "heartbeat_at": format_timestamp(self.heartbeat_at),
            "completed_at": format_timestamp(self.completed_at),
            "expires_at": format_timestamp(self.expires_at),
            "error": self.error,
            "result": self.result,
        }
