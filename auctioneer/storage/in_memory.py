"""In-memory storage backend for games, bids, rosters, race results and jobs."""

from __future__ import annotations

import asyncio
import logging
from copy import deepcopy
from typing import Any, Callable

from ..auction.fsm import check_period_integrity
from ..errors import NotFound, PeriodIntegrityError
from ..models import participant_id, slot_id

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """Single-process backend; one lock serializes every operation."""

    def __init__(self) -> None:
        self._games: dict[str, dict[str, Any]] = {}
        self._participants: dict[str, dict[str, Any]] = {}
        self._bids: dict[str, dict[str, Any]] = {}
        self._slots: dict[str, dict[str, Any]] = {}
        self._race_results: dict[str, dict[str, Any]] = {}
        self._jobs: dict[str, dict[str, Any]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = asyncio.Lock()

    # Games

    async def create_game(self, game: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            self._games[game["game_id"]] = deepcopy(game)
            return deepcopy(game)

    async def get_game(self, game_id: str) -> dict[str, Any]:
        async with self._lock:
            try:
                return deepcopy(self._games[game_id])
            except KeyError as exc:
                raise NotFound("game", game_id) from exc

    async def list_games(self) -> list[dict[str, Any]]:
        async with self._lock:
            return [deepcopy(game) for _, game in sorted(self._games.items())]

    async def update_game(self, game_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            if game_id not in self._games:
                raise NotFound("game", game_id)
            game = self._games[game_id]
            if "auction_periods" in updates:
                self._check_periods(game_id, game.get("auction_periods") or [], updates["auction_periods"])
            game.update(deepcopy(updates))
            return deepcopy(game)

    async def update_auction_periods(
        self, game_id: str, mutator: Callable[[dict[str, Any]], dict[str, Any]]
    ) -> dict[str, Any]:
        async with self._lock:
            if game_id not in self._games:
                raise NotFound("game", game_id)
            game = self._games[game_id]
            updates = mutator(deepcopy(game)) or {}
            if "auction_periods" in updates:
                self._check_periods(game_id, game.get("auction_periods") or [], updates["auction_periods"])
            game.update(deepcopy(updates))
            return deepcopy(game)

    @staticmethod
    def _check_periods(game_id: str, before: list[dict], after: list[dict]) -> None:
        try:
            check_period_integrity(before, after)
        except PeriodIntegrityError:
            logger.error("Rejected auction period update for game %s", game_id, exc_info=True)
            raise

    # Participants

    async def create_participant(self, participant: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            key = participant_id(participant["game_id"], participant["user_id"])
            record = {**deepcopy(participant), "participant_id": key}
            self._participants[key] = record
            return deepcopy(record)

    async def get_participant(self, game_id: str, user_id: str) -> dict[str, Any]:
        async with self._lock:
            return deepcopy(self._participant(game_id, user_id))

    def _participant(self, game_id: str, user_id: str) -> dict[str, Any]:
        key = participant_id(game_id, user_id)
        try:
            return self._participants[key]
        except KeyError as exc:
            raise NotFound("participant", key) from exc

    async def list_participants(self, game_id: str) -> list[dict[str, Any]]:
        async with self._lock:
            return [
                deepcopy(record)
                for _, record in sorted(self._participants.items())
                if record["game_id"] == game_id
            ]

    def _participant_slots(self, game_id: str, user_id: str) -> list[dict[str, Any]]:
        return [
            slot
            for _, slot in sorted(self._slots.items())
            if slot["game_id"] == game_id and slot["user_id"] == user_id
        ]

    def _recompute(self, game_id: str, user_id: str, recompute) -> dict[str, Any]:
        record = self._participant(game_id, user_id)
        slots = deepcopy(self._participant_slots(game_id, user_id))
        record.update(deepcopy(recompute(deepcopy(record), slots)))
        return record

    async def recompute_participant(self, game_id: str, user_id: str, recompute) -> dict[str, Any]:
        async with self._lock:
            return deepcopy(self._recompute(game_id, user_id, recompute))

    async def update_ranks(self, game_id: str, ranks: dict[str, int | None]) -> None:
        async with self._lock:
            for user_id, rank in ranks.items():
                record = self._participants.get(participant_id(game_id, user_id))
                if record is not None:
                    record["rank"] = rank

    async def deactivate_participant(self, game_id: str, user_id: str, recompute) -> dict[str, Any]:
        async with self._lock:
            record = self._participant(game_id, user_id)
            for slot in self._participant_slots(game_id, user_id):
                slot["active"] = False
            record["status"] = "removed"
            return deepcopy(self._recompute(game_id, user_id, recompute))

    # Bids

    async def create_bid(self, bid: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            self._bids[bid["bid_id"]] = deepcopy(bid)
            return deepcopy(bid)

    async def get_bid(self, bid_id: str) -> dict[str, Any]:
        async with self._lock:
            try:
                return deepcopy(self._bids[bid_id])
            except KeyError as exc:
                raise NotFound("bid", bid_id) from exc

    async def update_bid(self, bid_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            if bid_id not in self._bids:
                raise NotFound("bid", bid_id)
            self._bids[bid_id].update(deepcopy(updates))
            return deepcopy(self._bids[bid_id])

    async def update_bids(self, changes: dict[str, dict[str, Any]]) -> int:
        async with self._lock:
            missing = [bid_id for bid_id in changes if bid_id not in self._bids]
            if missing:
                raise NotFound("bid", missing[0])
            for bid_id, updates in changes.items():
                self._bids[bid_id].update(deepcopy(updates))
            return len(changes)

    async def list_bids(
        self,
        game_id: str,
        *,
        status: str | None = None,
        user_id: str | None = None,
        athlete_id: str | None = None,
    ) -> list[dict[str, Any]]:
        async with self._lock:
            return [
                deepcopy(bid)
                for _, bid in sorted(self._bids.items())
                if bid["game_id"] == game_id
                and (status is None or bid["status"] == status)
                and (user_id is None or bid["user_id"] == user_id)
                and (athlete_id is None or bid["athlete_id"] == athlete_id)
            ]

    async def next_bid_sequence(self, game_id: str) -> int:
        async with self._lock:
            self._sequences[game_id] = self._sequences.get(game_id, 0) + 1
            return self._sequences[game_id]

    # Roster slots

    async def create_roster_slot(self, slot: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            key = slot_id(slot["game_id"], slot["user_id"], slot["athlete_id"])
            record = {**deepcopy(slot), "slot_id": key}
            self._slots[key] = record
            return deepcopy(record)

    async def get_roster_slot(self, slot_id: str) -> dict[str, Any]:
        async with self._lock:
            try:
                return deepcopy(self._slots[slot_id])
            except KeyError as exc:
                raise NotFound("roster slot", slot_id) from exc

    async def list_roster_slots(self, game_id: str, user_id: str | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            return [
                deepcopy(slot)
                for _, slot in sorted(self._slots.items())
                if slot["game_id"] == game_id and (user_id is None or slot["user_id"] == user_id)
            ]

    async def list_roster_slots_for_athletes(self, athlete_ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(athlete_ids)
        async with self._lock:
            return [
                deepcopy(slot)
                for _, slot in sorted(self._slots.items())
                if slot["athlete_id"] in wanted
            ]

    async def mutate_roster_slot(self, slot_id: str, mutator) -> dict[str, Any]:
        async with self._lock:
            if slot_id not in self._slots:
                raise NotFound("roster slot", slot_id)
            updated = mutator(deepcopy(self._slots[slot_id]))
            if updated is not None:
                self._slots[slot_id] = deepcopy(updated)
            return deepcopy(self._slots[slot_id])

    async def commit_participant(
        self,
        game_id: str,
        user_id: str,
        slots: list[dict[str, Any]],
        bid_updates: dict[str, dict[str, Any]],
        recompute,
    ) -> dict[str, Any]:
        async with self._lock:
            self._participant(game_id, user_id)
            missing = [bid_id for bid_id in bid_updates if bid_id not in self._bids]
            if missing:
                raise NotFound("bid", missing[0])
            for slot in slots:
                key = slot_id(game_id, user_id, slot["athlete_id"])
                if key not in self._slots:
                    self._slots[key] = {**deepcopy(slot), "slot_id": key}
            for bid_id, updates in bid_updates.items():
                self._bids[bid_id].update(deepcopy(updates))
            return deepcopy(self._recompute(game_id, user_id, recompute))

    # Race results

    async def save_race_result(self, result: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            self._race_results[result["key"]] = deepcopy(result)
            return deepcopy(result)

    async def get_race_result(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            result = self._race_results.get(key)
            return deepcopy(result) if result else None

    # Jobs

    async def create_job(self, job: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            self._jobs[job["job_id"]] = deepcopy(job)
            return deepcopy(job)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        async with self._lock:
            try:
                return deepcopy(self._jobs[job_id])
            except KeyError as exc:
                raise NotFound("job", job_id) from exc

    async def update_job(self, job_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            if job_id not in self._jobs:
                raise NotFound("job", job_id)
            self._jobs[job_id].update(deepcopy(updates))
            return deepcopy(self._jobs[job_id])

    async def list_jobs(self, status: str | None = None) -> list[dict[str, Any]]:
        async with self._lock:
            return [
                deepcopy(job)
                for job in sorted(self._jobs.values(), key=lambda job: (job.get("created_at") or "", job["job_id"]))
                if status is None or job["status"] == status
            ]

    async def delete_job(self, job_id: str) -> None:
        async with self._lock:
            self._jobs.pop(job_id, None)
