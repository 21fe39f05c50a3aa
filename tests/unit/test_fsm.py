"""Unit tests for the auction period state machine."""

from __future__ import annotations

import pytest

from auctioneer.auction.fsm import (
    PeriodEvent,
    advance,
    check_period_integrity,
    clock_status,
    is_due,
    transition,
)
from auctioneer.errors import PeriodIntegrityError
from auctioneer.models import PeriodStatus
from conftest import at, period


class TestTransitions:
    def test_forward_transitions(self):
        assert transition(PeriodStatus.PENDING, PeriodEvent.OPENED) is PeriodStatus.ACTIVE
        assert transition(PeriodStatus.ACTIVE, PeriodEvent.CLOSED) is PeriodStatus.CLOSED
        assert transition(PeriodStatus.CLOSED, PeriodEvent.FINALIZED) is PeriodStatus.FINALIZED
        assert transition(PeriodStatus.ACTIVE, PeriodEvent.FINALIZED) is PeriodStatus.FINALIZED

    @pytest.mark.parametrize(
        "current, event",
        [
            (PeriodStatus.FINALIZED, PeriodEvent.OPENED),
            (PeriodStatus.CLOSED, PeriodEvent.OPENED),
            (PeriodStatus.PENDING, PeriodEvent.FINALIZED),
        ],
    )
    def test_invalid_transitions_raise(self, current, event):
        with pytest.raises(ValueError):
            transition(current, event)


class TestClock:
    """The wall clock only ever moves a period forward."""

    def test_clock_status_boundaries(self):
        p = period("p1", 0, 60)
        assert clock_status(p, at(-1)) is PeriodStatus.PENDING
        assert clock_status(p, at(0)) is PeriodStatus.ACTIVE
        assert clock_status(p, at(60)) is PeriodStatus.CLOSED

    def test_advance_skips_straight_to_closed(self):
        assert advance(period("p1", 0, 60), at(90)) is PeriodStatus.CLOSED

    def test_advance_never_moves_backwards(self):
        closed = period("p1", 0, 60, status=PeriodStatus.CLOSED)
        assert advance(closed, at(10)) is PeriodStatus.CLOSED
        finalized = period("p1", 0, 60, status=PeriodStatus.FINALIZED)
        assert advance(finalized, at(120)) is PeriodStatus.FINALIZED

    def test_is_due(self):
        p = period("p1", 0, 60, finalize=70, status=PeriodStatus.CLOSED)
        assert not is_due(p, at(69))
        assert is_due(p, at(70))
        assert not is_due(period("p1", 0, 60, status=PeriodStatus.CLOSED), at(500))
        assert not is_due(period("p1", 0, 60, finalize=70, status=PeriodStatus.FINALIZED), at(80))
        assert not is_due(period("p1", 0, 60, finalize=70), at(80))


class TestPeriodIntegrity:
    """Writes that would lose or rewind periods are refused."""

    def _periods(self, *statuses):
        return [period(f"p{i}", i * 60, i * 60 + 60, status=s).to_dict() for i, s in enumerate(statuses)]

    def test_forward_write_is_accepted(self):
        before = self._periods(PeriodStatus.ACTIVE, PeriodStatus.PENDING)
        after = self._periods(PeriodStatus.FINALIZED, PeriodStatus.ACTIVE)
        check_period_integrity(before, after)

    def test_adding_a_period_is_accepted(self):
        check_period_integrity(self._periods(PeriodStatus.ACTIVE), self._periods(PeriodStatus.ACTIVE, PeriodStatus.PENDING))

    def test_shrinking_list_is_rejected(self):
        with pytest.raises(PeriodIntegrityError):
            check_period_integrity(self._periods(PeriodStatus.ACTIVE, PeriodStatus.PENDING), self._periods(PeriodStatus.ACTIVE))

    def test_renamed_period_is_rejected(self):
        before = self._periods(PeriodStatus.ACTIVE)
        after = [dict(before[0], name="other")]
        with pytest.raises(PeriodIntegrityError, match="p0"):
            check_period_integrity(before, after)

    def test_backwards_status_is_rejected(self):
        with pytest.raises(PeriodIntegrityError):
            check_period_integrity(self._periods(PeriodStatus.FINALIZED), self._periods(PeriodStatus.ACTIVE))
