"""Tests for fanning race results out to roster ledgers."""

from __future__ import annotations

import itertools
from unittest.mock import AsyncMock

import pytest

from auctioneer.ledger.apply import PointsApplicationService
from auctioneer.models import GameStatus, RaceResultEvent, ScoringMode
from auctioneer.notifications.dispatcher import POINTS_APPLIED
from auctioneer.scoring.counting import SKIP_RACE, SKIP_STATUS


def _event(finishers, slug="tour-de-france", stage="stage-1", **extra) -> RaceResultEvent:
    return RaceResultEvent.from_payload(slug, stage, 2026, {"finishers": finishers, **extra})


def _placed(*athletes):
    return [{"athlete_id": athlete_id, "position": index} for index, athlete_id in enumerate(athletes, start=1)]


async def _seed_roster(seed, *pairs, game_id="g1"):
    for user_id, athlete_id in pairs:
        await seed.participant(user_id, game_id=game_id)
        await seed.slot(user_id, athlete_id, game_id=game_id)


class TestIdempotence:
    """Replaying the same result never double counts."""

    @pytest.mark.asyncio
    async def test_applying_twice_scores_once(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))
        service = PointsApplicationService(storage, clock=clock)

        first = await service.apply(_event(_placed("pog")))
        second = await service.apply(_event(_placed("pog")))

        slot = await storage.get_roster_slot("g1_alice_pog")
        assert slot["points_scored"] == 50
        assert len(slot["ledger"]) == 1
        assert first.deltas[0].outcome == "inserted"
        assert second.deltas[0].outcome == "unchanged"
        alice = await storage.get_participant("g1", "alice")
        assert (alice["total_points"], alice["rank"]) == (50, 1)

    @pytest.mark.asyncio
    async def test_correction_replaces_the_stage_entry(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))
        service = PointsApplicationService(storage, clock=clock)

        await service.apply(_event(_placed("pog")))
        corrected = await service.apply(_event(_placed("vin", "pog")))

        slot = await storage.get_roster_slot("g1_alice_pog")
        assert slot["points_scored"] == 44
        assert corrected.deltas[0].outcome == "replaced"
        assert corrected.deltas[0].previous_total == 50

    @pytest.mark.asyncio
    async def test_rider_missing_from_a_rescrape_loses_the_stage_points(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))
        service = PointsApplicationService(storage, clock=clock)

        await service.apply(_event(_placed("pog")))
        rescrape = await service.apply(_event(_placed("vin")))

        slot = await storage.get_roster_slot("g1_alice_pog")
        assert slot["points_scored"] == 0
        assert [entry["total"] for entry in slot["ledger"]] == [0]
        assert rescrape.deltas[0].outcome == "replaced"
        assert rescrape.deltas[0].previous_total == 50
        assert (await storage.get_race_result(rescrape.event_key))["dropped_athletes"] == ["pog"]
        assert (await storage.get_participant("g1", "alice"))["total_points"] == 0

    @pytest.mark.asyncio
    async def test_resumed_rescrape_still_zeroes_missing_riders(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"), ("bob", "vin"))
        service = PointsApplicationService(storage, clock=clock)
        await service.apply(_event(_placed("pog", "vin")))

        first = await service.apply(_event(_placed("x")), batch_size=1)
        second = await service.apply(_event(_placed("x")), cursor=first.cursor, batch_size=1)

        assert (first.complete, first.cursor) == (False, "g1_alice_pog")
        assert second.complete
        for slot_id in ("g1_alice_pog", "g1_bob_vin"):
            assert (await storage.get_roster_slot(slot_id))["points_scored"] == 0

    @pytest.mark.asyncio
    async def test_stages_accumulate(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))
        service = PointsApplicationService(storage, clock=clock)

        await service.apply(_event(_placed("pog"), stage="stage-1"))
        await service.apply(_event(_placed("x", "pog"), stage="stage-2"))

        assert (await storage.get_roster_slot("g1_alice_pog"))["points_scored"] == 94


class TestCounting:
    @pytest.mark.asyncio
    async def test_race_outside_the_game_is_skipped(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))

        result = await PointsApplicationService(storage, clock=clock).apply(_event(_placed("pog"), slug="paris-nice"))

        assert result.deltas == []
        assert result.to_dict()["skipped"] == [
            {"game_id": "g1", "reason": SKIP_RACE, "race_slug": "paris-nice", "stage": "stage-1"}
        ]
        assert (await storage.get_roster_slot("g1_alice_pog"))["points_scored"] == 0

    @pytest.mark.asyncio
    async def test_finished_game_is_skipped(self, storage, seed, clock):
        await seed.game(status=GameStatus.FINISHED)
        await _seed_roster(seed, ("alice", "pog"))

        result = await PointsApplicationService(storage, clock=clock).apply(_event(_placed("pog")))

        assert result.skipped[0]["reason"] == SKIP_STATUS

    @pytest.mark.asyncio
    async def test_season_game_takes_ranking_points(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE, scoring_mode=ScoringMode.SEASON_ALL_RACES, counting_races=[])
        await _seed_roster(seed, ("alice", "pog"))

        await PointsApplicationService(storage, clock=clock).apply(
            _event([{"athlete_id": "pog", "position": 1, "ranking_points": 120.5}], slug="paris-nice")
        )

        slot = await storage.get_roster_slot("g1_alice_pog")
        assert slot["points_scored"] == 120.5
        assert slot["ledger"][0]["breakdown"] == {"ranking_points": 120.5}
        assert slot["ledger"][0]["race_id"] == "paris-nice_2026"

    @pytest.mark.asyncio
    async def test_zero_scores_leave_the_ledger_empty(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))

        result = await PointsApplicationService(storage, clock=clock).apply(
            _event([{"athlete_id": "pog", "position": 40}])
        )

        assert result.deltas == []
        assert (await storage.get_roster_slot("g1_alice_pog"))["ledger"] == []


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_reports_without_writing(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"))
        notifier = AsyncMock()
        event = _event(_placed("pog"))

        result = await PointsApplicationService(storage, notifier, clock=clock).apply(event, dry_run=True)

        assert result.to_dict()["applied"] == {
            "g1": {
                "alice": {
                    "pog": {
                        "slot_id": "g1_alice_pog",
                        "total": 50,
                        "breakdown": {"stage_result": 50},
                        "outcome": "inserted",
                        "previous_total": None,
                    }
                }
            }
        }
        assert (await storage.get_roster_slot("g1_alice_pog"))["points_scored"] == 0
        assert await storage.get_race_result(event.key) is None
        notifier.notify.assert_not_awaited()


class TestIsolationAndBatching:
    @pytest.mark.asyncio
    async def test_one_failing_slot_does_not_stop_the_rest(self, storage, seed, clock, monkeypatch):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "pog"), ("bob", "vin"))
        original = storage.mutate_roster_slot

        async def flaky(slot_id, mutator):
            if slot_id == "g1_alice_pog":
                raise RuntimeError("contention")
            return await original(slot_id, mutator)

        monkeypatch.setattr(storage, "mutate_roster_slot", flaky)

        result = await PointsApplicationService(storage, clock=clock).apply(_event(_placed("pog", "vin")))

        assert result.success and result.complete
        assert [failure.key for failure in result.failures] == ["g1_alice_pog"]
        assert result.to_dict()["errors"] == ["contention"]
        assert (await storage.get_roster_slot("g1_bob_vin"))["points_scored"] == 44

    @pytest.mark.asyncio
    async def test_missing_game_is_a_failure(self, storage, seed, clock):
        await seed.slot("alice", "pog", game_id="ghost")

        result = await PointsApplicationService(storage, clock=clock).apply(_event(_placed("pog")))

        assert result.failures[0].message == "game ghost not found"

    @pytest.mark.asyncio
    async def test_batches_resume_from_cursor(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "a"), ("bob", "b"), ("carol", "c"))
        notifier = AsyncMock()
        service = PointsApplicationService(storage, notifier, clock=clock)
        event = _event(_placed("a", "b", "c"))

        first = await service.apply(event, batch_size=2)

        assert not first.complete
        assert (first.processed_slots, first.total_slots, first.cursor) == (2, 3, "g1_bob_b")
        assert await storage.get_race_result(event.key) is not None
        notifier.notify.assert_not_awaited()

        second = await service.apply(event, cursor=first.cursor, batch_size=2)

        assert second.complete
        assert second.processed_slots == 1
        assert (await storage.get_roster_slot("g1_carol_c"))["points_scored"] == 40
        notifier.notify.assert_awaited_once()
        assert notifier.notify.await_args.args[0] == POINTS_APPLIED
        ranks = {p["user_id"]: p["rank"] for p in await storage.list_participants("g1")}
        assert ranks == {"alice": 1, "bob": 2, "carol": 3}

    @pytest.mark.asyncio
    async def test_deadline_stops_the_run(self, storage, seed, clock):
        await seed.game(status=GameStatus.ACTIVE)
        await _seed_roster(seed, ("alice", "a"), ("bob", "b"), ("carol", "c"))
        ticks = itertools.count()
        service = PointsApplicationService(storage, clock=clock, monotonic=lambda: next(ticks))

        result = await service.apply(_event(_placed("a", "b", "c")), deadline=2)

        assert not result.complete
        assert result.processed_slots == 2
        assert result.cursor == "g1_bob_b"
