"""Points application: fan one race result out to every roster slot that holds a scored rider."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from ..errors import NotFound
from ..models import Game, LedgerEntry, RaceResultEvent, RosterSlot
from ..notifications.dispatcher import POINTS_APPLIED
from ..scoring.counting import explain_skip
from ..scoring.stage import score_finisher
from ..transport.canonical_json import scoring_fingerprint
from ..transport.timestamps import format_timestamp, utcnow
from .entries import LedgerOutcome, find_entry, ledger_total, race_id, upsert_entry
from .rankings import recompute_for, refresh_ranks
from .results import PointsApplicationResult, SlotDelta

logger = logging.getLogger(__name__)


class PointsApplicationService:
    def __init__(
        self,
        storage,
        notifier=None,
        *,
        clock=utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._storage = storage
        self._notifier = notifier
        self._clock = clock
        self._monotonic = monotonic

    async def apply(
        self,
        event: RaceResultEvent,
        *,
        dry_run: bool = False,
        cursor: str | None = None,
        batch_size: int | None = None,
        deadline: float | None = None,
    ) -> PointsApplicationResult:
        """Score ``event`` for every affected slot after ``cursor`` in slot_id order.

        Stops early once ``batch_size`` slots are processed or the monotonic
        ``deadline`` passes, returning ``complete=False`` and the cursor to
        resume from. A dry run reports the would-be deltas and writes nothing.
        """
        result = PointsApplicationResult(event_key=event.key, dry_run=dry_run, cursor=cursor)
        finishers = {finisher.athlete_id: finisher for finisher in event.finishers}
        if not finishers:
            return result

        dropped = await self._dropped_athletes(event, finishers, cursor)
        if not dry_run and cursor is None:
            await self._storage.save_race_result(
                {
                    **event.to_dict(),
                    "dropped_athletes": dropped,
                    "stored_at": format_timestamp(self._clock()),
                }
            )

        docs = await self._storage.list_roster_slots_for_athletes(sorted({*finishers, *dropped}))
        slots = sorted(
            (slot for slot in map(RosterSlot.from_dict, docs) if slot.active),
            key=lambda slot: slot.slot_id,
        )
        result.total_slots = len(slots)
        games: dict[str, Game | None] = {}
        ledger_race_id = race_id(event.race_slug, event.year)
        applied_at = self._clock()

        batch = 0
        for slot in slots:
            if cursor is not None and slot.slot_id <= cursor:
                continue
            if batch_size and batch >= batch_size or deadline is not None and self._monotonic() >= deadline:
                result.complete = False
                break
            batch += 1
            result.processed_slots += 1
            result.cursor = slot.slot_id

            game = await self._game(slot.game_id, games)
            if game is None:
                result.fail("slot", slot.slot_id, f"game {slot.game_id} not found")
                continue
            reason = explain_skip(event.race_slug, event.stage, game, event.race_date)
            if reason:
                result.skip(game.game_id, reason, race_slug=event.race_slug, stage=event.stage)
                continue

            finisher = finishers.get(slot.athlete_id)
            # Riders missing from a re-scrape keep a zeroed entry for this stage.
            total, breakdown = score_finisher(event, finisher, game) if finisher else (0, {})
            entry = LedgerEntry(
                race_id=ledger_race_id,
                race_slug=event.race_slug,
                stage=event.stage,
                year=event.year,
                total=total,
                breakdown=breakdown,
                fingerprint=scoring_fingerprint(ledger_race_id, event.stage, total, breakdown),
                applied_at=applied_at,
            )
            previous = self._previous_total(slot, entry)
            if dry_run:
                _, outcome = upsert_entry(slot.ledger, entry)
            else:
                try:
                    outcome = await self._write_entry(slot.slot_id, entry)
                except Exception as exc:  # one slot must not stop the fan-out
                    logger.warning("Ledger update failed for slot %s: %s", slot.slot_id, exc)
                    result.fail("slot", slot.slot_id, str(exc))
                    continue
            if outcome is LedgerOutcome.SKIPPED:
                continue
            result.deltas.append(
                SlotDelta(
                    slot_id=slot.slot_id,
                    game_id=slot.game_id,
                    user_id=slot.user_id,
                    athlete_id=slot.athlete_id,
                    total=total,
                    breakdown=breakdown,
                    outcome=outcome.value,
                    previous_total=previous,
                )
            )

        if not dry_run:
            await self._recompute_participants(result, games)
            if result.complete and self._notifier is not None:
                await self._notifier.notify(
                    POINTS_APPLIED,
                    {"event": event.key, "slots": len(result.deltas), "failures": len(result.failures)},
                )
        logger.info(
            "Applied %s: %s slots processed, %s skipped games, %s failures, complete=%s",
            event.key,
            result.processed_slots,
            len(result.skipped),
            len(result.failures),
            result.complete,
        )
        return result

    async def _dropped_athletes(
        self, event: RaceResultEvent, finishers: dict[str, Any], cursor: str | None
    ) -> list[str]:
        """Athletes scored by the stored snapshot of this stage but absent from ``event``.

        A resumed run reads the list stored with the current snapshot.
        """
        stored = await self._storage.get_race_result(event.key)
        if stored is None:
            return []
        if cursor is not None:
            return list(stored.get("dropped_athletes") or [])
        previous = {
            str(item["athlete_id"])
            for item in (stored.get("result") or {}).get("finishers") or []
            if item.get("athlete_id") is not None
        }
        return sorted(previous - set(finishers))

    async def _game(self, game_id: str, cache: dict[str, Game | None]) -> Game | None:
        if game_id not in cache:
            try:
                cache[game_id] = Game.from_dict(await self._storage.get_game(game_id))
            except NotFound:
                cache[game_id] = None
        return cache[game_id]

    @staticmethod
    def _previous_total(slot: RosterSlot, entry: LedgerEntry) -> Any:
        index = find_entry(slot.ledger, entry.key)
        return None if index is None else slot.ledger[index].total

    async def _write_entry(self, slot_id: str, entry: LedgerEntry) -> LedgerOutcome:
        outcome: dict[str, LedgerOutcome] = {}

        def mutate(doc: dict[str, Any]) -> dict[str, Any] | None:
            slot = RosterSlot.from_dict(doc)
            ledger, outcome["value"] = upsert_entry(slot.ledger, entry)
            total = ledger_total(ledger)
            if outcome["value"] in (LedgerOutcome.UNCHANGED, LedgerOutcome.SKIPPED) and slot.points_scored == total:
                return None
            slot.ledger = ledger
            slot.points_scored = total
            return slot.to_dict()

        await self._storage.mutate_roster_slot(slot_id, mutate)
        return outcome["value"]

    async def _recompute_participants(
        self, result: PointsApplicationResult, games: dict[str, Game | None]
    ) -> None:
        touched_games: set[str] = set()
        for game_id, user_id in sorted(result.touched_participants):
            game = games.get(game_id)
            if game is None:
                continue
            try:
                await self._storage.recompute_participant(game_id, user_id, recompute_for(game))
                touched_games.add(game_id)
            except Exception as exc:  # isolate per participant
                logger.warning("Recompute failed for %s/%s: %s", game_id, user_id, exc)
                result.fail("participant", f"{game_id}_{user_id}", str(exc))
        for game_id in sorted(touched_games):
            try:
                await refresh_ranks(self._storage, game_id)
            except Exception as exc:
                logger.warning("Rank refresh failed for game %s: %s", game_id, exc)
                result.fail("game", game_id, str(exc))
