"""Participant aggregates and standings, always derived from roster slots."""

from __future__ import annotations

from decimal import Decimal
from functools import partial
from typing import Any, Iterable

from ..models import Game, GameType, Participant, RosterSlot


def _round(value: Decimal) -> int | float:
    quantized = value.quantize(Decimal("0.01"))
    if quantized == quantized.to_integral_value():
        return int(quantized)
    return float(quantized)


def participant_total(game: Game, spent_budget: float, slots: Iterable[RosterSlot]) -> int | float:
    """Sum of active slot totals; marginal-gains games net the spend against it."""
    total = sum((Decimal(str(slot.points_scored)) for slot in slots if slot.active), Decimal(0))
    if game.game_type is GameType.MARGINAL_GAINS:
        total -= Decimal(str(spent_budget))
    return _round(total)


def aggregate_updates(
    game: Game, participant: dict[str, Any], slot_docs: list[dict[str, Any]]
) -> dict[str, Any]:
    active = [slot for slot in map(RosterSlot.from_dict, slot_docs) if slot.active]
    spent = _round(sum((Decimal(str(slot.price_paid)) for slot in active), Decimal(0)))
    target = game.max_roster_size or game.min_roster_size
    return {
        "spent_budget": spent,
        "roster_size": len(active),
        "roster_complete": bool(target) and len(active) >= target,
        "total_points": participant_total(game, spent, active),
    }


def recompute_for(game: Game):
    """Bind ``aggregate_updates`` to a game for the storage recompute callbacks."""
    return partial(aggregate_updates, game)


def competition_ranks(participants: Iterable[Participant]) -> dict[str, int]:
    """Rank active participants by points; equal totals share a rank (1, 2, 2, 4)."""
    ranked = sorted(
        (p for p in participants if p.status == "active"),
        key=lambda p: (-p.total_points, p.user_id),
    )
    ranks: dict[str, int] = {}
    previous = None
    for position, participant in enumerate(ranked, start=1):
        if previous is None or participant.total_points != previous.total_points:
            rank = position
        ranks[participant.user_id] = rank
        previous = participant
    return ranks


async def refresh_ranks(storage, game_id: str) -> dict[str, int | None]:
    participants = [Participant.from_dict(doc) for doc in await storage.list_participants(game_id)]
    ranks: dict[str, int | None] = {p.user_id: None for p in participants}
    ranks.update(competition_ranks(participants))
    await storage.update_ranks(game_id, ranks)
    return ranks
