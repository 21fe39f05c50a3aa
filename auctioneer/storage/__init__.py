"""Storage backend factory."""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

from ..config import ServerConfig
from .firestore import FirestoreStorage
from .in_memory import InMemoryStorage

Document = dict[str, Any]
# Receives a copy of the current document and returns the replacement, or None to skip the write.
DocumentMutator = Callable[[Document], Optional[Document]]
# Receives the participant and its roster slots and returns participant field updates.
ParticipantRecompute = Callable[[Document, list[Document]], Document]


class FantasyStorage(Protocol):
    # Games

    async def create_game(self, game: Document) -> Document: ...

    async def get_game(self, game_id: str) -> Document: ...

    async def list_games(self) -> list[Document]: ...

    async def update_game(self, game_id: str, updates: Document) -> Document: ...

    async def update_auction_periods(
        self, game_id: str, mutator: Callable[[Document], Document]
    ) -> Document:
        """Apply ``mutator`` to the latest game document under a transaction.

        The resulting period list must keep every period and only move
        statuses forward, otherwise ``PeriodIntegrityError`` is raised and
        nothing is written.
        """
        ...

    # Participants

    async def create_participant(self, participant: Document) -> Document: ...

    async def get_participant(self, game_id: str, user_id: str) -> Document: ...

    async def list_participants(self, game_id: str) -> list[Document]: ...

    async def recompute_participant(
        self, game_id: str, user_id: str, recompute: ParticipantRecompute
    ) -> Document: ...

    async def update_ranks(self, game_id: str, ranks: dict[str, int | None]) -> None: ...

    async def deactivate_participant(
        self, game_id: str, user_id: str, recompute: ParticipantRecompute
    ) -> Document: ...

    # Bids

    async def create_bid(self, bid: Document) -> Document: ...

    async def get_bid(self, bid_id: str) -> Document: ...

    async def update_bid(self, bid_id: str, updates: Document) -> Document: ...

    async def update_bids(self, changes: dict[str, Document]) -> int: ...

    async def list_bids(
        self,
        game_id: str,
        *,
        status: str | None = None,
        user_id: str | None = None,
        athlete_id: str | None = None,
    ) -> list[Document]: ...

    async def next_bid_sequence(self, game_id: str) -> int: ...

    # Roster slots

    async def create_roster_slot(self, slot: Document) -> Document: ...

    async def get_roster_slot(self, slot_id: str) -> Document: ...

    async def list_roster_slots(self, game_id: str, user_id: str | None = None) -> list[Document]: ...

    async def list_roster_slots_for_athletes(self, athlete_ids: list[str]) -> list[Document]: ...

    async def mutate_roster_slot(self, slot_id: str, mutator: DocumentMutator) -> Document: ...

    async def commit_participant(
        self,
        game_id: str,
        user_id: str,
        slots: list[Document],
        bid_updates: dict[str, Document],
        recompute: ParticipantRecompute,
    ) -> Document:
        """Atomically insert absent slots, apply bid updates and recompute aggregates."""
        ...

    # Race results

    async def save_race_result(self, result: Document) -> Document: ...

    async def get_race_result(self, key: str) -> Document | None: ...

    # Jobs

    async def create_job(self, job: Document) -> Document: ...

    async def get_job(self, job_id: str) -> Document: ...

    async def update_job(self, job_id: str, updates: Document) -> Document: ...

    async def list_jobs(self, status: str | None = None) -> list[Document]: ...

    async def delete_job(self, job_id: str) -> None: ...


def build_storage(config: ServerConfig) -> FantasyStorage:
    backend = config.storage.backend
    options = dict(config.storage.options)
    if backend == "in_memory":
        return InMemoryStorage()
    if backend == "firestore":
        return FirestoreStorage(**options)
    raise ValueError(f"unknown storage backend {backend}")
