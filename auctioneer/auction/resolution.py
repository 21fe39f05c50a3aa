"""Pure auction resolution: winners per athlete and per-participant roster commits.

Nothing here touches storage. The finalization orchestrator feeds bids in and
applies the returned transitions.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..models import Bid, BidStatus, Game, Participant, RosterSlot

# resolved_period marker for games that run a single auction without periods.
WHOLE_GAME = "*"

COMMIT_CANCELLED = frozenset({BidStatus.CANCELLED_OVERBUDGET, BidStatus.CANCELLED_OVERFLOW})


def bid_sort_key(bid: Bid) -> tuple:
    return (-bid.amount, bid.placed_at, bid.sequence, bid.bid_id)


def select_winner(bids: Iterable[Bid]) -> Optional[Bid]:
    """Highest amount wins; earliest placement, then lowest sequence, breaks ties."""
    return min(bids, key=bid_sort_key, default=None)


def in_pool(bid: Bid, period_key: str) -> bool:
    if bid.status is BidStatus.ACTIVE:
        return True
    return bid.resolved_period == period_key


@dataclass(frozen=True)
class BidTransition:
    bid_id: str
    user_id: str
    athlete_id: str
    from_status: BidStatus
    to_status: BidStatus


@dataclass
class AthleteOutcome:
    athlete_id: str
    winner: Bid
    losers: list[Bid] = field(default_factory=list)

    @property
    def sold(self) -> bool:
        return self.winner.status not in COMMIT_CANCELLED


@dataclass
class ResolutionPlan:
    period_key: str
    outcomes: dict[str, AthleteOutcome] = field(default_factory=dict)
    transitions: list[BidTransition] = field(default_factory=list)
    wins_by_participant: dict[str, list[Bid]] = field(default_factory=dict)

    @property
    def participants(self) -> list[str]:
        return sorted(self.wins_by_participant)

    def to_dict(self) -> dict:
        return {
            "period": self.period_key,
            "athletes": [
                {
                    "athlete_id": athlete_id,
                    "athlete_name": outcome.winner.athlete_name,
                    "winner": {
                        "user_id": outcome.winner.user_id,
                        "bid_id": outcome.winner.bid_id,
                        "amount": outcome.winner.amount,
                        "status": outcome.winner.status.value,
                    },
                    "losers": [
                        {"user_id": bid.user_id, "bid_id": bid.bid_id, "amount": bid.amount}
                        for bid in outcome.losers
                    ],
                }
                for athlete_id, outcome in sorted(self.outcomes.items())
            ],
            "participants": [
                {
                    "user_id": user_id,
                    "athletes": [bid.athlete_id for bid in wins],
                    "total_amount": sum(bid.amount for bid in wins),
                }
                for user_id, wins in sorted(self.wins_by_participant.items())
            ],
        }


def plan_resolution(bids: Iterable[Bid], period_key: str) -> ResolutionPlan:
    """Group the period's pool by athlete and pick one winner per athlete.

    Bids this period already resolved stay in the pool so re-planning after an
    interruption yields the same winners; only ``active`` bids get transitions.
    """
    by_athlete: dict[str, list[Bid]] = defaultdict(list)
    for bid in bids:
        if in_pool(bid, period_key):
            by_athlete[bid.athlete_id].append(bid)

    plan = ResolutionPlan(period_key=period_key)
    for athlete_id in sorted(by_athlete):
        group = by_athlete[athlete_id]
        # A winner recorded by an earlier run is terminal and keeps the athlete.
        settled = [bid for bid in group if bid.status is BidStatus.WON or bid.status in COMMIT_CANCELLED]
        winner = select_winner(settled) or select_winner(group)
        losers = sorted((bid for bid in group if bid.bid_id != winner.bid_id), key=bid_sort_key)
        plan.outcomes[athlete_id] = AthleteOutcome(athlete_id, winner, losers)

        if winner.status is BidStatus.ACTIVE:
            plan.transitions.append(
                BidTransition(winner.bid_id, winner.user_id, athlete_id, BidStatus.ACTIVE, BidStatus.WON)
            )
        for bid in losers:
            if bid.status is BidStatus.ACTIVE:
                plan.transitions.append(
                    BidTransition(bid.bid_id, bid.user_id, athlete_id, BidStatus.ACTIVE, BidStatus.LOST)
                )
        if winner.status not in COMMIT_CANCELLED:
            plan.wins_by_participant.setdefault(winner.user_id, []).append(winner)
    return plan


@dataclass
class ParticipantCommit:
    user_id: str
    accepted: list[Bid] = field(default_factory=list)
    cancelled: list[tuple[Bid, BidStatus]] = field(default_factory=list)
    spent_budget: float = 0
    roster_size: int = 0


def plan_participant_commit(
    game: Game,
    participant: Participant,
    existing_slots: Iterable[RosterSlot],
    wins: Iterable[Bid],
) -> ParticipantCommit:
    """Accept wins in placement order while budget and roster cap allow.

    Bid placement checks budget against a read of current state, so two
    concurrent bids can both pass; the excess is cancelled here instead.
    """
    wins = sorted(wins, key=lambda bid: (bid.placed_at, bid.sequence, bid.bid_id))
    win_ids = {bid.bid_id for bid in wins}
    active_slots = [slot for slot in existing_slots if slot.active]
    committed = {slot.source_bid_id for slot in active_slots if slot.source_bid_id in win_ids}
    owned = {slot.athlete_id for slot in active_slots if slot.source_bid_id not in win_ids}
    base = [slot for slot in active_slots if slot.source_bid_id not in win_ids]

    budget = game.budget or participant.budget
    commit = ParticipantCommit(
        user_id=participant.user_id,
        spent_budget=sum(slot.price_paid for slot in base),
        roster_size=len(base),
    )
    for bid in wins:
        if bid.bid_id in committed:
            status = None
        elif bid.athlete_id in owned:
            status = BidStatus.CANCELLED_OVERFLOW
        elif game.max_roster_size and commit.roster_size + 1 > game.max_roster_size:
            status = BidStatus.CANCELLED_OVERFLOW
        elif budget and commit.spent_budget + bid.amount > budget:
            status = BidStatus.CANCELLED_OVERBUDGET
        else:
            status = None
        if status is None:
            commit.accepted.append(bid)
            commit.spent_budget += bid.amount
            commit.roster_size += 1
        else:
            commit.cancelled.append((bid, status))
    return commit
