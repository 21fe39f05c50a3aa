"""Firestore storage backend leveraging google-cloud-firestore."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account

from ..auction.fsm import check_period_integrity
from ..errors import NotFound, PeriodIntegrityError
from ..models import participant_id, slot_id

logger = logging.getLogger(__name__)

# Firestore caps a batched write at 500 operations and an "in" filter at 30 values.
BATCH_LIMIT = 500
IN_FILTER_LIMIT = 30


def _chunks(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FirestoreStorage:
    def __init__(
        self,
        *,
        project_id: str,
        collection_prefix: str = "",
        credentials_path: str | None = None,
    ) -> None:
        if not project_id:
            raise ValueError("project_id required for firestore backend")
        client_kwargs: dict[str, Any] = {"project": project_id}
        if credentials_path:
            client_kwargs["credentials"] = service_account.Credentials.from_service_account_file(
                credentials_path
            )
        self._client = firestore.Client(**client_kwargs)
        self._prefix = collection_prefix

    def _collection(self, name: str):
        return self._client.collection(f"{self._prefix}{name}")

    async def _run(self, func: Callable, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _get(self, collection: str, doc_id: str, kind: str) -> dict[str, Any]:
        doc = await self._run(self._collection(collection).document(doc_id).get)
        if not doc.exists:
            raise NotFound(kind, doc_id)
        return doc.to_dict()

    async def _query(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        def run() -> list[dict[str, Any]]:
            query = self._collection(collection)
            for field_name, value in filters.items():
                if value is not None:
                    query = query.where(filter=FieldFilter(field_name, "==", value))
            return [doc.to_dict() for doc in query.stream()]

        return await self._run(run)

    def _transactional(self, body: Callable) -> Callable[[], Any]:
        # Bound to a fresh transaction; the retry loop runs inside the worker thread.
        return partial(firestore.transactional(body), self._client.transaction())

    # Games

    async def create_game(self, game: dict[str, Any]) -> dict[str, Any]:
        await self._run(self._collection("games").document(game["game_id"]).set, game)
        return game

    async def get_game(self, game_id: str) -> dict[str, Any]:
        return await self._get("games", game_id, "game")

    async def list_games(self) -> list[dict[str, Any]]:
        games = await self._query("games")
        return sorted(games, key=lambda game: game["game_id"])

    async def update_game(self, game_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return await self.update_auction_periods(game_id, lambda game: updates)

    async def update_auction_periods(
        self, game_id: str, mutator: Callable[[dict[str, Any]], dict[str, Any]]
    ) -> dict[str, Any]:
        ref = self._collection("games").document(game_id)

        def body(transaction) -> dict[str, Any]:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFound("game", game_id)
            game = snapshot.to_dict()
            updates = mutator(dict(game)) or {}
            if "auction_periods" in updates:
                check_period_integrity(game.get("auction_periods") or [], updates["auction_periods"])
            game.update(updates)
            transaction.set(ref, game)
            return game

        try:
            return await self._run(self._transactional(body))
        except PeriodIntegrityError:
            logger.error("Rejected auction period update for game %s", game_id, exc_info=True)
            raise

    # Participants

    async def create_participant(self, participant: dict[str, Any]) -> dict[str, Any]:
        key = participant_id(participant["game_id"], participant["user_id"])
        record = {**participant, "participant_id": key}
        await self._run(self._collection("participants").document(key).set, record)
        return record

    async def get_participant(self, game_id: str, user_id: str) -> dict[str, Any]:
        return await self._get("participants", participant_id(game_id, user_id), "participant")

    async def list_participants(self, game_id: str) -> list[dict[str, Any]]:
        records = await self._query("participants", game_id=game_id)
        return sorted(records, key=lambda record: record["participant_id"])

    def _slots_query(self, game_id: str, user_id: str):
        return (
            self._collection("roster_slots")
            .where(filter=FieldFilter("game_id", "==", game_id))
            .where(filter=FieldFilter("user_id", "==", user_id))
        )

    async def _participant_transaction(
        self,
        game_id: str,
        user_id: str,
        recompute,
        *,
        slots: list[dict[str, Any]] | None = None,
        bid_updates: dict[str, dict[str, Any]] | None = None,
        participant_updates: dict[str, Any] | None = None,
        slot_updates: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        participant_ref = self._collection("participants").document(participant_id(game_id, user_id))
        bids = self._collection("bids")
        roster = self._collection("roster_slots")

        def body(transaction) -> dict[str, Any]:
            snapshot = participant_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFound("participant", participant_id(game_id, user_id))
            existing = {
                doc.id: doc.to_dict()
                for doc in transaction.get(self._slots_query(game_id, user_id))
            }
            for bid_id in bid_updates or {}:
                if not bids.document(bid_id).get(transaction=transaction).exists:
                    raise NotFound("bid", bid_id)

            for slot in slots or []:
                key = slot_id(game_id, user_id, slot["athlete_id"])
                if key not in existing:
                    existing[key] = {**slot, "slot_id": key}
                    transaction.set(roster.document(key), existing[key])
            if slot_updates:
                for key, slot in existing.items():
                    slot.update(slot_updates)
                    transaction.update(roster.document(key), slot_updates)
            for bid_id, updates in (bid_updates or {}).items():
                transaction.update(bids.document(bid_id), updates)

            participant = snapshot.to_dict()
            participant.update(participant_updates or {})
            participant.update(recompute(dict(participant), [existing[key] for key in sorted(existing)]))
            transaction.set(participant_ref, participant)
            return participant

        return await self._run(self._transactional(body))

    async def recompute_participant(self, game_id: str, user_id: str, recompute) -> dict[str, Any]:
        return await self._participant_transaction(game_id, user_id, recompute)

    async def update_ranks(self, game_id: str, ranks: dict[str, int | None]) -> None:
        def run() -> None:
            for chunk in _chunks(sorted(ranks.items()), BATCH_LIMIT):
                batch = self._client.batch()
                for user_id, rank in chunk:
                    ref = self._collection("participants").document(participant_id(game_id, user_id))
                    batch.update(ref, {"rank": rank})
                batch.commit()

        await self._run(run)

    async def deactivate_participant(self, game_id: str, user_id: str, recompute) -> dict[str, Any]:
        return await self._participant_transaction(
            game_id,
            user_id,
            recompute,
            participant_updates={"status": "removed"},
            slot_updates={"active": False},
        )

    # Bids

    async def create_bid(self, bid: dict[str, Any]) -> dict[str, Any]:
        await self._run(self._collection("bids").document(bid["bid_id"]).set, bid)
        return bid

    async def get_bid(self, bid_id: str) -> dict[str, Any]:
        return await self._get("bids", bid_id, "bid")

    async def update_bid(self, bid_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        bid = await self.get_bid(bid_id)
        bid.update(updates)
        await self._run(self._collection("bids").document(bid_id).set, bid)
        return bid

    async def update_bids(self, changes: dict[str, dict[str, Any]]) -> int:
        def run() -> int:
            for chunk in _chunks(sorted(changes.items()), BATCH_LIMIT):
                batch = self._client.batch()
                for bid_id, updates in chunk:
                    batch.update(self._collection("bids").document(bid_id), updates)
                batch.commit()
            return len(changes)

        return await self._run(run)

    async def list_bids(
        self,
        game_id: str,
        *,
        status: str | None = None,
        user_id: str | None = None,
        athlete_id: str | None = None,
    ) -> list[dict[str, Any]]:
        bids = await self._query(
            "bids", game_id=game_id, status=status, user_id=user_id, athlete_id=athlete_id
        )
        return sorted(bids, key=lambda bid: bid["bid_id"])

    async def next_bid_sequence(self, game_id: str) -> int:
        ref = self._collection("counters").document(f"bids_{game_id}")

        def body(transaction) -> int:
            snapshot = ref.get(transaction=transaction)
            value = (snapshot.to_dict() or {}).get("value", 0) + 1 if snapshot.exists else 1
            transaction.set(ref, {"value": value})
            return value

        return await self._run(self._transactional(body))

    # Roster slots

    async def create_roster_slot(self, slot: dict[str, Any]) -> dict[str, Any]:
        key = slot_id(slot["game_id"], slot["user_id"], slot["athlete_id"])
        record = {**slot, "slot_id": key}
        await self._run(self._collection("roster_slots").document(key).set, record)
        return record

    async def get_roster_slot(self, slot_id: str) -> dict[str, Any]:
        return await self._get("roster_slots", slot_id, "roster slot")

    async def list_roster_slots(self, game_id: str, user_id: str | None = None) -> list[dict[str, Any]]:
        slots = await self._query("roster_slots", game_id=game_id, user_id=user_id)
        return sorted(slots, key=lambda slot: slot["slot_id"])

    async def list_roster_slots_for_athletes(self, athlete_ids: list[str]) -> list[dict[str, Any]]:
        def run() -> list[dict[str, Any]]:
            found: list[dict[str, Any]] = []
            for chunk in _chunks(sorted(set(athlete_ids)), IN_FILTER_LIMIT):
                query = self._collection("roster_slots").where(
                    filter=FieldFilter("athlete_id", "in", chunk)
                )
                found.extend(doc.to_dict() for doc in query.stream())
            return found

        slots = await self._run(run)
        return sorted(slots, key=lambda slot: slot["slot_id"])

    async def mutate_roster_slot(self, slot_id: str, mutator) -> dict[str, Any]:
        ref = self._collection("roster_slots").document(slot_id)

        def body(transaction) -> dict[str, Any]:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFound("roster slot", slot_id)
            current = snapshot.to_dict()
            updated = mutator(dict(current))
            if updated is None:
                return current
            transaction.set(ref, updated)
            return updated

        return await self._run(self._transactional(body))

    async def commit_participant(
        self,
        game_id: str,
        user_id: str,
        slots: list[dict[str, Any]],
        bid_updates: dict[str, dict[str, Any]],
        recompute,
    ) -> dict[str, Any]:
        return await self._participant_transaction(
            game_id, user_id, recompute, slots=slots, bid_updates=bid_updates
        )

    # Race results

    async def save_race_result(self, result: dict[str, Any]) -> dict[str, Any]:
        await self._run(self._collection("race_results").document(result["key"]).set, result)
        return result

    async def get_race_result(self, key: str) -> dict[str, Any] | None:
        doc = await self._run(self._collection("race_results").document(key).get)
        if not doc.exists:
            return None
        return doc.to_dict()

    # Jobs

    async def create_job(self, job: dict[str, Any]) -> dict[str, Any]:
        await self._run(self._collection("jobs").document(job["job_id"]).set, job)
        return job

    async def get_job(self, job_id: str) -> dict[str, Any]:
        return await self._get("jobs", job_id, "job")

    async def update_job(self, job_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        job = await self.get_job(job_id)
        job.update(updates)
        await self._run(self._collection("jobs").document(job_id).set, job)
        return job

    async def list_jobs(self, status: str | None = None) -> list[dict[str, Any]]:
        jobs = await self._query("jobs", status=status)
        return sorted(jobs, key=lambda job: (job.get("created_at") or "", job["job_id"]))

    async def delete_job(self, job_id: str) -> None:
        await self._run(self._collection("jobs").document(job_id).delete)
