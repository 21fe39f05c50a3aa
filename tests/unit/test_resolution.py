"""Unit tests for winner selection and per-participant commit planning."""

from __future__ import annotations

from auctioneer.auction.resolution import (
    WHOLE_GAME,
    plan_participant_commit,
    plan_resolution,
    select_winner,
)
from auctioneer.models import Bid, BidStatus, Game, Participant, RosterSlot
from conftest import at


def _bid(bid_id, user_id, athlete_id, amount, minute=0, sequence=0, **extra) -> Bid:
    return Bid(
        bid_id=bid_id,
        game_id="g1",
        user_id=user_id,
        athlete_id=athlete_id,
        amount=amount,
        placed_at=at(minute),
        sequence=sequence,
        **extra,
    )


def _game(**overrides) -> Game:
    fields = {"game_id": "g1", "name": "Game", "budget": 100, "max_roster_size": 3}
    fields.update(overrides)
    return Game(**fields)


class TestSelectWinner:
    """Amount first, then placement time, then sequence, then bid id."""

    def test_highest_amount_wins(self):
        assert select_winner([_bid("a", "u1", "x", 10), _bid("b", "u2", "x", 12, minute=5)]).bid_id == "b"

    def test_earliest_placement_breaks_equal_amounts(self):
        assert select_winner([_bid("b", "u2", "x", 40, minute=2), _bid("a", "u1", "x", 40, minute=1)]).bid_id == "a"

    def test_sequence_breaks_identical_timestamps(self):
        bids = [_bid("z", "u1", "x", 40, sequence=2), _bid("y", "u2", "x", 40, sequence=1)]
        assert select_winner(bids).bid_id == "y"

    def test_bid_id_is_the_last_resort(self):
        assert select_winner([_bid("b", "u1", "x", 40), _bid("a", "u2", "x", 40)]).bid_id == "a"

    def test_empty(self):
        assert select_winner([]) is None


class TestPlanResolution:
    def test_one_winner_per_athlete_and_transitions(self):
        plan = plan_resolution(
            [
                _bid("b1", "alice", "pog", 40, minute=1),
                _bid("b2", "bob", "pog", 40, minute=2),
                _bid("b3", "bob", "vin", 25, minute=3),
            ],
            "p1",
        )
        assert plan.outcomes["pog"].winner.user_id == "alice"
        assert [bid.bid_id for bid in plan.outcomes["pog"].losers] == ["b2"]
        assert {(t.bid_id, t.to_status) for t in plan.transitions} == {
            ("b1", BidStatus.WON),
            ("b2", BidStatus.LOST),
            ("b3", BidStatus.WON),
        }
        assert plan.participants == ["alice", "bob"]

    def test_terminal_bids_from_other_periods_are_ignored(self):
        plan = plan_resolution(
            [_bid("old", "alice", "pog", 99, status=BidStatus.WON, resolved_period="p0"), _bid("new", "bob", "pog", 10)],
            "p1",
        )
        assert plan.outcomes["pog"].winner.bid_id == "new"

    def test_replanning_keeps_the_recorded_winner(self):
        # A later, higher active bid cannot displace a winner this period already recorded.
        plan = plan_resolution(
            [
                _bid("b1", "alice", "pog", 40, status=BidStatus.WON, resolved_period="p1"),
                _bid("b2", "bob", "pog", 40, minute=1, status=BidStatus.LOST, resolved_period="p1"),
                _bid("late", "carol", "pog", 90, minute=2),
            ],
            "p1",
        )
        assert plan.outcomes["pog"].winner.bid_id == "b1"
        assert [(t.bid_id, t.to_status) for t in plan.transitions] == [("late", BidStatus.LOST)]

    def test_commit_cancelled_winner_holds_the_athlete_but_wins_nothing(self):
        plan = plan_resolution(
            [
                _bid("b1", "alice", "pog", 40, status=BidStatus.CANCELLED_OVERBUDGET, resolved_period=WHOLE_GAME),
                _bid("b2", "bob", "pog", 30, status=BidStatus.LOST, resolved_period=WHOLE_GAME),
            ],
            WHOLE_GAME,
        )
        assert not plan.outcomes["pog"].sold
        assert plan.wins_by_participant == {}
        assert plan.transitions == []

    def test_to_dict_lists_athletes_and_participants(self):
        data = plan_resolution([_bid("b1", "alice", "pog", 40)], "p1").to_dict()
        assert data["period"] == "p1"
        assert data["athletes"][0]["winner"]["user_id"] == "alice"
        assert data["participants"] == [{"user_id": "alice", "athletes": ["pog"], "total_amount": 40}]


class TestPlanParticipantCommit:
    """Wins are accepted in placement order while budget and roster allow."""

    def test_overbudget_wins_are_cancelled_in_placement_order(self):
        wins = [_bid("late", "u1", "b", 50, minute=2), _bid("early", "u1", "a", 60, minute=1)]
        commit = plan_participant_commit(_game(), Participant("g1", "u1"), [], wins)
        assert [bid.bid_id for bid in commit.accepted] == ["early"]
        assert [(bid.bid_id, status) for bid, status in commit.cancelled] == [
            ("late", BidStatus.CANCELLED_OVERBUDGET)
        ]
        assert commit.spent_budget == 60

    def test_roster_cap_counts_existing_slots(self):
        existing = [RosterSlot("g1", "u1", f"r{i}", 5, source_bid_id=f"s{i}") for i in range(3)]
        commit = plan_participant_commit(_game(), Participant("g1", "u1"), existing, [_bid("w", "u1", "x", 5)])
        assert commit.cancelled[0][1] is BidStatus.CANCELLED_OVERFLOW

    def test_athlete_already_owned_is_overflow(self):
        existing = [RosterSlot("g1", "u1", "x", 5, source_bid_id="earlier")]
        commit = plan_participant_commit(_game(), Participant("g1", "u1"), existing, [_bid("w", "u1", "x", 5)])
        assert [status for _, status in commit.cancelled] == [BidStatus.CANCELLED_OVERFLOW]

    def test_already_committed_wins_are_kept(self):
        win = _bid("w", "u1", "x", 80)
        existing = [RosterSlot("g1", "u1", "x", 80, source_bid_id="w")]
        commit = plan_participant_commit(_game(), Participant("g1", "u1"), existing, [win])
        assert commit.accepted == [win]
        assert commit.cancelled == []
        assert (commit.spent_budget, commit.roster_size) == (80, 1)

    def test_participant_budget_applies_when_game_has_none(self):
        commit = plan_participant_commit(
            _game(budget=0), Participant("g1", "u1", budget=20), [], [_bid("w", "u1", "x", 25)]
        )
        assert commit.cancelled[0][1] is BidStatus.CANCELLED_OVERBUDGET

    def test_unlimited_roster(self):
        wins = [_bid(f"w{i}", "u1", f"a{i}", 1, minute=i) for i in range(10)]
        commit = plan_participant_commit(_game(max_roster_size=0), Participant("g1", "u1"), [], wins)
        assert len(commit.accepted) == 10
