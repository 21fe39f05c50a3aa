"""Operational stats endpoint."""

from __future__ import annotations

from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..models import RosterSlot
from .auth import require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _get_storage(request: Request):
    return request.app.state.storage


@router.get("/stats")
async def stats(storage=Depends(_get_storage)) -> dict[str, Any]:
    games = await storage.list_games()
    per_game: dict[str, Any] = {}
    bid_totals: Counter[str] = Counter()
    total_slots = 0
    total_entries = 0

    for game in games:
        game_id = game["game_id"]
        bids = Counter(bid["status"] for bid in await storage.list_bids(game_id))
        slots = [RosterSlot.from_dict(doc) for doc in await storage.list_roster_slots(game_id)]
        participants = await storage.list_participants(game_id)
        entries = sum(len(slot.ledger) for slot in slots)
        bid_totals.update(bids)
        total_slots += len(slots)
        total_entries += entries
        per_game[game_id] = {
            "status": game.get("status"),
            "auction_status": game.get("auction_status"),
            "participants": len(participants),
            "bids_by_status": dict(bids),
            "roster_slots": len(slots),
            "active_roster_slots": sum(1 for slot in slots if slot.active),
            "ledger_entries": entries,
        }

    return {
        "total_games": len(games),
        "bids_by_status": dict(bid_totals),
        "roster_slots": total_slots,
        "ledger_entries": total_entries,
        "games": per_game,
    }
