"""Bid placement with budget and roster pre-checks."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from ..errors import BidRejected, ValidationFailed
from ..models import AuctionPeriod, Bid, BidStatus, Game, GameStatus, Participant, PeriodStatus, RosterSlot
from ..transport.timestamps import format_timestamp, utcnow
from .fsm import clock_status

logger = logging.getLogger(__name__)


def open_period(game: Game, now: datetime) -> AuctionPeriod | None:
    for period in game.auction_periods:
        if period.status is PeriodStatus.ACTIVE:
            return period
        if period.status is PeriodStatus.PENDING and clock_status(period, now) is PeriodStatus.ACTIVE:
            return period
    return None


class BidService:
    def __init__(self, storage, *, clock=utcnow) -> None:
        self._storage = storage
        self._clock = clock

    async def place(self, game_id: str, user_id: str, athlete: dict[str, Any], amount: float) -> Bid:
        """Store an active bid, or a cancelled one and raise ``BidRejected`` when a pre-check fails.

        A second bid by the same user on the same athlete re-places the first.
        """
        athlete_id = str(athlete.get("athlete_id") or "").strip()
        if not athlete_id:
            raise ValidationFailed("athlete.athlete_id", "required")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
            raise ValidationFailed("amount", "must be a number greater than 0")

        game = Game.from_dict(await self._storage.get_game(game_id))
        now = self._clock()
        period = open_period(game, now)
        if game.auction_periods and period is None:
            raise ValidationFailed("game_id", "no auction period is open")
        if not game.auction_periods and game.status is not GameStatus.BIDDING:
            raise ValidationFailed("game_id", f"game is {game.status.value}, not accepting bids")

        participant = Participant.from_dict(await self._storage.get_participant(game_id, user_id))
        if participant.status != "active":
            raise ValidationFailed("user_id", f"participant is {participant.status}")
        owned = {
            slot.athlete_id
            for slot in map(RosterSlot.from_dict, await self._storage.list_roster_slots(game_id, user_id))
            if slot.active
        }
        if athlete_id in owned:
            raise ValidationFailed("athlete.athlete_id", "athlete already on roster")

        active = [
            Bid.from_dict(doc)
            for doc in await self._storage.list_bids(game_id, status=BidStatus.ACTIVE.value, user_id=user_id)
        ]
        existing = next((bid for bid in active if bid.athlete_id == athlete_id), None)
        others = [bid for bid in active if bid is not existing]

        sequence = await self._storage.next_bid_sequence(game_id)
        candidate = Bid(
            bid_id=f"bid_{uuid.uuid4().hex}",
            game_id=game_id,
            user_id=user_id,
            athlete_id=athlete_id,
            amount=amount,
            placed_at=now,
            sequence=sequence,
            athlete_name=athlete.get("name", ""),
            athlete_team=athlete.get("team", ""),
            athlete_country=athlete.get("country", ""),
            jersey_image=athlete.get("jersey_image", ""),
            period_name=period.name if period else None,
        )

        rejection = self._check(game, participant, others, amount)
        if rejection is not None:
            status, reason = rejection
            # Rejected attempts are kept as their own record; a prior active bid stays untouched.
            rejected = replace(candidate, status=status, resolved_at=now)
            await self._storage.create_bid(rejected.to_dict())
            logger.info("Rejected bid %s by %s on %s: %s", rejected.bid_id, user_id, athlete_id, reason)
            raise BidRejected(status.value, reason, rejected.bid_id)

        if existing is not None:
            doc = await self._storage.update_bid(
                existing.bid_id,
                {
                    "amount": amount,
                    "placed_at": format_timestamp(now),
                    "sequence": sequence,
                    "period_name": candidate.period_name,
                },
            )
            return Bid.from_dict(doc)
        await self._storage.create_bid(candidate.to_dict())
        return candidate

    @staticmethod
    def _check(
        game: Game, participant: Participant, others: list[Bid], amount: float
    ) -> tuple[BidStatus, str] | None:
        budget = game.budget or participant.budget
        committed = sum(bid.amount for bid in others)
        if budget and amount + participant.spent_budget + committed > budget:
            return BidStatus.CANCELLED_OVERBUDGET, "bid exceeds remaining budget"
        pending_athletes = {bid.athlete_id for bid in others}
        if game.max_roster_size and participant.roster_size + len(pending_athletes) + 1 > game.max_roster_size:
            return BidStatus.CANCELLED_OVERFLOW, "roster is full"
        return None
