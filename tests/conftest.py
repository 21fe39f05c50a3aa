"""Shared fixtures: an in-memory store plus helpers that seed games, bids and rosters."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from auctioneer.models import (
    AuctionPeriod,
    Bid,
    CountingRace,
    Game,
    GameStatus,
    Participant,
    RosterSlot,
)
from auctioneer.storage.in_memory import InMemoryStorage

T0 = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


class Seeder:
    def __init__(self, storage: InMemoryStorage) -> None:
        self.storage = storage

    async def game(self, game_id: str = "g1", **overrides: Any) -> Game:
        fields: dict[str, Any] = {
            "game_id": game_id,
            "name": f"Game {game_id}",
            "budget": 100,
            "max_roster_size": 5,
            "status": GameStatus.BIDDING,
            "year": 2026,
            "counting_races": [CountingRace(slug="tour-de-france")],
        }
        fields.update(overrides)
        game = Game(**fields)
        await self.storage.create_game(game.to_dict())
        return game

    async def participant(self, user_id: str, game_id: str = "g1", **overrides: Any) -> Participant:
        fields: dict[str, Any] = {"game_id": game_id, "user_id": user_id, "display_name": user_id.title(), "budget": 100}
        fields.update(overrides)
        participant = Participant(**fields)
        await self.storage.create_participant(participant.to_dict())
        return participant

    async def bid(
        self,
        bid_id: str,
        user_id: str,
        athlete_id: str,
        amount: float,
        minute: float,
        game_id: str = "g1",
        **overrides: Any,
    ) -> Bid:
        fields: dict[str, Any] = {
            "bid_id": bid_id,
            "game_id": game_id,
            "user_id": user_id,
            "athlete_id": athlete_id,
            "amount": amount,
            "placed_at": at(minute),
            "athlete_name": f"Rider {athlete_id}",
        }
        fields.update(overrides)
        bid = Bid(**fields)
        await self.storage.create_bid(bid.to_dict())
        return bid

    async def slot(
        self, user_id: str, athlete_id: str, game_id: str = "g1", price: float = 10, **overrides: Any
    ) -> RosterSlot:
        fields: dict[str, Any] = {
            "game_id": game_id,
            "user_id": user_id,
            "athlete_id": athlete_id,
            "price_paid": price,
            "acquired_at": T0,
        }
        fields.update(overrides)
        slot = RosterSlot(**fields)
        await self.storage.create_roster_slot(slot.to_dict())
        return slot


def period(name: str, start: float, end: float, finalize: float | None = None, **overrides: Any) -> AuctionPeriod:
    return AuctionPeriod(
        name=name,
        start=at(start),
        end=at(end),
        finalize_at=at(finalize) if finalize is not None else None,
        **overrides,
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def seed(storage: InMemoryStorage) -> Seeder:
    return Seeder(storage)


@pytest.fixture
def clock():
    return lambda: T0
