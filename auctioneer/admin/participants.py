"""Participant removal: slots are deactivated, never deleted."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..ledger.rankings import recompute_for, refresh_ranks
from ..models import Game
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _get_storage(request: Request):
    return request.app.state.storage


async def remove_participant(storage, game_id: str, user_id: str) -> dict[str, Any]:
    game = Game.from_dict(await storage.get_game(game_id))
    participant = await storage.deactivate_participant(game_id, user_id, recompute_for(game))
    await refresh_ranks(storage, game_id)
    logger.info("Removed participant %s from game %s", user_id, game_id)
    return participant


@router.delete("/games/{game_id}/participants/{user_id}")
async def delete_participant(game_id: str, user_id: str, storage=Depends(_get_storage)) -> dict[str, Any]:
    participant = await remove_participant(storage, game_id, user_id)
    return {"status": "removed", "participant": participant}
