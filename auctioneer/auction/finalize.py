"""Finalization orchestrator: commits an auction period's outcome, resumable by participant cursor."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import NotFound, ValidationFailed
from ..ledger.rankings import recompute_for
from ..ledger.results import FailureRecord
from ..models import (
    AcquisitionType,
    AuctionPeriod,
    Bid,
    BidStatus,
    Game,
    GameStatus,
    Participant,
    PeriodStatus,
    RosterSlot,
)
from ..notifications.dispatcher import AUCTION_FINALIZED
from ..transport.timestamps import format_timestamp, utcnow
from .fsm import PeriodEvent, transition
from .resolution import (
    WHOLE_GAME,
    BidTransition,
    ResolutionPlan,
    plan_participant_commit,
    plan_resolution,
)

logger = logging.getLogger(__name__)

NO_ACTIVE_BIDS = "no active bids"


@dataclass
class FinalizeResult:
    success: bool
    game_id: str
    period_name: str | None = None
    winners_assigned: int = 0
    total_participants: int = 0
    processed_participants: int = 0
    last_processed_participant: str | None = None
    cancelled_bids: list[dict[str, Any]] = field(default_factory=list)
    already_finalized: bool = False
    complete: bool = False
    errors: list[FailureRecord] = field(default_factory=list)
    error: str | None = None
    status_breakdown: dict[str, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "success": self.success,
            "game_id": self.game_id,
            "period_name": self.period_name,
            "winners_assigned": self.winners_assigned,
            "total_participants": self.total_participants,
            "processed_participants": self.processed_participants,
            "last_processed_participant": self.last_processed_participant,
            "cancelled_bids": list(self.cancelled_bids),
            "already_finalized": self.already_finalized,
            "complete": self.complete,
            "errors": [failure.to_dict() for failure in self.errors],
        }
        if self.error:
            payload["error"] = self.error
        if self.status_breakdown is not None:
            payload["status_breakdown"] = dict(self.status_breakdown)
        return payload


def _period_for(game: Game, period_name: str | None) -> AuctionPeriod | None:
    if period_name is None:
        if game.auction_periods:
            raise ValidationFailed("period_name", "required for games with auction periods")
        return None
    period = game.period(period_name)
    if period is None:
        raise ValidationFailed("period_name", f"unknown auction period {period_name}")
    return period


def in_period(bid: Bid, period: AuctionPeriod | None) -> bool:
    if period is None:
        return True
    if bid.period_name is not None:
        return bid.period_name == period.name
    return period.start <= bid.placed_at < period.end


def withdrawn(bid: Bid, participants: dict[str, Participant]) -> bool:
    """Unsettled bids of a removed participant; a recorded win stays in the pool."""
    participant = participants.get(bid.user_id)
    if participant is None or participant.status == "active":
        return False
    return bid.status in (BidStatus.ACTIVE, BidStatus.LOST)


class FinalizationOrchestrator:
    def __init__(self, storage, notifier=None, *, clock=utcnow) -> None:
        self._storage = storage
        self._notifier = notifier
        self._clock = clock

    async def _participants(self, game_id: str) -> dict[str, Participant]:
        return {
            participant.user_id: participant
            for participant in map(Participant.from_dict, await self._storage.list_participants(game_id))
        }

    async def _plan(
        self, game: Game, period: AuctionPeriod | None, participants: dict[str, Participant]
    ) -> tuple[ResolutionPlan, list[Bid]]:
        docs = await self._storage.list_bids(game.game_id)
        scoped = [bid for bid in map(Bid.from_dict, docs) if in_period(bid, period)]
        key = period.name if period else WHOLE_GAME
        plan = plan_resolution([bid for bid in scoped if not withdrawn(bid, participants)], key)
        plan.transitions.extend(
            BidTransition(bid.bid_id, bid.user_id, bid.athlete_id, BidStatus.ACTIVE, BidStatus.LOST)
            for bid in scoped
            if bid.status is BidStatus.ACTIVE and withdrawn(bid, participants)
        )
        return plan, scoped

    async def preview(self, game_id: str, period_name: str | None = None) -> dict[str, Any]:
        game = Game.from_dict(await self._storage.get_game(game_id))
        period = _period_for(game, period_name)
        plan, _ = await self._plan(game, period, await self._participants(game_id))
        preview = plan.to_dict()
        preview["game_id"] = game_id
        preview["period_status"] = (period.status if period else game.auction_status).value
        return preview

    async def finalize(
        self,
        game_id: str,
        period_name: str | None = None,
        resume_from_participant: str | None = None,
        max_participants: int | None = None,
        *,
        allow_empty: bool = False,
    ) -> FinalizeResult:
        """Resolve the period's bids and commit each winner's roster.

        Participants are committed one at a time in user_id order; pass the
        returned ``last_processed_participant`` back as
        ``resume_from_participant`` to continue an interrupted or capped run.
        ``allow_empty`` finalizes a period whose pool is empty instead of reporting an error.
        """
        game = Game.from_dict(await self._storage.get_game(game_id))
        period = _period_for(game, period_name)
        result = FinalizeResult(success=True, game_id=game_id, period_name=period_name)
        status = period.status if period else game.auction_status
        if status is PeriodStatus.FINALIZED:
            logger.info("Game %s period %s already finalized", game_id, period_name)
            result.already_finalized = True
            result.complete = True
            return result
        if status is PeriodStatus.PENDING and period is not None:
            raise ValidationFailed("period_name", f"auction period {period.name} has not started")

        participants = await self._participants(game_id)
        plan, scoped = await self._plan(game, period, participants)
        now = self._clock()
        stamp = format_timestamp(now)
        if not plan.outcomes:
            if allow_empty:
                await self._apply_transitions(game_id, plan, stamp)
                await self._complete(game, period)
                result.complete = True
                return result
            result.success = False
            result.error = NO_ACTIVE_BIDS
            result.status_breakdown = dict(Counter(bid.status.value for bid in scoped))
            return result

        await self._apply_transitions(game_id, plan, stamp)

        user_ids = plan.participants
        result.total_participants = len(user_ids)
        pending = [
            user_id
            for user_id in user_ids
            if resume_from_participant is None or user_id > resume_from_participant
        ]
        result.processed_participants = len(user_ids) - len(pending)
        result.last_processed_participant = resume_from_participant

        handled = 0
        for user_id in pending:
            if max_participants and handled >= max_participants:
                break
            handled += 1
            try:
                accepted, cancelled = await self._commit(
                    game, participants.get(user_id), user_id, plan, stamp, now
                )
            except Exception as exc:  # one participant must not stop the run
                logger.error("Finalization failed for %s in game %s: %s", user_id, game_id, exc)
                result.errors.append(FailureRecord("participant", user_id, str(exc)))
                continue
            result.winners_assigned += accepted
            result.cancelled_bids.extend(cancelled)
            result.processed_participants += 1
            # The cursor only covers an unbroken run of successes.
            if not result.errors:
                result.last_processed_participant = user_id
                if period is not None:
                    await self._record_progress(game_id, period.name, user_id, result, stamp)

        result.complete = result.processed_participants == result.total_participants
        if result.complete and not result.errors:
            await self._complete(game, period)
            if self._notifier is not None:
                await self._notifier.notify(
                    AUCTION_FINALIZED,
                    {
                        "game_id": game_id,
                        "period_name": period_name,
                        "winners_assigned": result.winners_assigned,
                    },
                )
        else:
            result.complete = False
        logger.info(
            "Finalize game %s period %s: %s/%s participants, %s errors, complete=%s",
            game_id,
            plan.period_key,
            result.processed_participants,
            result.total_participants,
            len(result.errors),
            result.complete,
        )
        return result

    async def _apply_transitions(self, game_id: str, plan: ResolutionPlan, stamp: str) -> None:
        if not plan.transitions:
            return
        await self._storage.update_bids(
            {
                change.bid_id: {
                    "status": change.to_status.value,
                    "resolved_period": plan.period_key,
                    "resolved_at": stamp,
                }
                for change in plan.transitions
            }
        )
        logger.info("Game %s period %s: %s bid transitions", game_id, plan.period_key, len(plan.transitions))

    async def _commit(
        self,
        game: Game,
        participant: Participant | None,
        user_id: str,
        plan: ResolutionPlan,
        stamp: str,
        now: datetime,
    ) -> tuple[int, list[dict[str, Any]]]:
        if participant is None:
            raise NotFound("participant", f"{game.game_id}_{user_id}")
        if participant.status != "active":
            # Removed after winning; the recorded win is left uncommitted.
            logger.warning(
                "Skipping commit for %s participant %s in game %s", participant.status, user_id, game.game_id
            )
            return 0, []
        existing = [
            RosterSlot.from_dict(doc)
            for doc in await self._storage.list_roster_slots(game.game_id, user_id)
        ]
        commit = plan_participant_commit(game, participant, existing, plan.wins_by_participant[user_id])
        slots = [
            RosterSlot(
                game_id=game.game_id,
                user_id=user_id,
                athlete_id=bid.athlete_id,
                price_paid=bid.amount,
                acquisition_type=AcquisitionType.AUCTION,
                athlete_name=bid.athlete_name,
                athlete_team=bid.athlete_team,
                athlete_country=bid.athlete_country,
                jersey_image=bid.jersey_image,
                source_bid_id=bid.bid_id,
                acquired_at=now,
            ).to_dict()
            for bid in commit.accepted
        ]
        bid_updates = {
            bid.bid_id: {"status": status.value, "resolved_period": plan.period_key, "resolved_at": stamp}
            for bid, status in commit.cancelled
        }
        await self._storage.commit_participant(
            game.game_id, user_id, slots, bid_updates, recompute_for(game)
        )
        for bid, status in commit.cancelled:
            logger.warning(
                "Cancelled winning bid %s for %s on %s: %s", bid.bid_id, user_id, bid.athlete_id, status.value
            )
        cancelled = [
            {"bid_id": bid.bid_id, "user_id": user_id, "athlete_id": bid.athlete_id, "status": status.value}
            for bid, status in commit.cancelled
        ]
        held = {slot.source_bid_id for slot in existing}
        return sum(1 for bid in commit.accepted if bid.bid_id not in held), cancelled

    async def _record_progress(
        self, game_id: str, period_name: str, user_id: str, result: FinalizeResult, stamp: str
    ) -> None:
        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            periods = doc.get("auction_periods") or []
            for period in periods:
                if period["name"] == period_name:
                    progress = dict(period.get("progress") or {})
                    progress.setdefault("started_at", stamp)
                    progress.update(
                        {
                            "last_processed_participant": user_id,
                            "processed": result.processed_participants,
                            "total": result.total_participants,
                            "updated_at": format_timestamp(self._clock()),
                        }
                    )
                    period["progress"] = progress
            return {"auction_periods": periods}

        await self._storage.update_auction_periods(game_id, mutate)

    async def _complete(self, game: Game, period: AuctionPeriod | None) -> None:
        stamp = format_timestamp(self._clock())

        def mutate(doc: dict[str, Any]) -> dict[str, Any]:
            current = Game.from_dict(doc)
            updates: dict[str, Any] = {}
            if period is not None:
                for item in current.auction_periods:
                    if item.name == period.name and item.status is not PeriodStatus.FINALIZED:
                        item.status = transition(item.status, PeriodEvent.FINALIZED)
                        item.progress = {**(item.progress or {}), "completed_at": stamp}
                updates["auction_periods"] = [item.to_dict() for item in current.auction_periods]
                all_final = all(item.status is PeriodStatus.FINALIZED for item in current.auction_periods)
                still_open = any(
                    item.status in (PeriodStatus.PENDING, PeriodStatus.ACTIVE)
                    for item in current.auction_periods
                )
            else:
                all_final, still_open = True, False
            if all_final:
                updates["auction_status"] = PeriodStatus.FINALIZED.value
                updates["finalized_at"] = stamp
            if current.status in (GameStatus.REGISTRATION, GameStatus.BIDDING):
                updates["status"] = (GameStatus.BIDDING if still_open else GameStatus.ACTIVE).value
            return updates

        await self._storage.update_auction_periods(game.game_id, mutate)
        logger.info("Game %s period %s finalized", game.game_id, period.name if period else WHOLE_GAME)
