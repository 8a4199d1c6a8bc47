"""Booking transition table and model-level guards."""

from datetime import datetime, timedelta, timezone

import pytest

from mentorhub.core.exceptions import InvalidStateException
from mentorhub.models.booking import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    Booking,
    BookingStatus,
    DisputeResolution,
    Party,
)

START = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
TERMINAL = {BookingStatus.CANCELLED, BookingStatus.EXPIRED}


def _booking(status=BookingStatus.CONFIRMED):
    return Booking(
        id="01HBOOKING0000000000000000",
        student_id="student",
        mentor_id="mentor",
        offering_id="offering",
        start_at=START,
        end_at=START + timedelta(hours=1),
        duration_minutes=60,
        price_amount=10000,
        status=status.value,
        booked_at=START - timedelta(days=1),
    )


def _reachable_from(status):
    seen, frontier = set(), [status]
    while frontier:
        current = frontier.pop()
        for target in ALLOWED_TRANSITIONS[current]:
            if target not in seen:
                seen.add(target)
                frontier.append(target)
    return seen


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(BookingStatus)

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_every_status_is_reachable_from_pending_payment(self):
        reachable = _reachable_from(BookingStatus.PENDING_PAYMENT)
        assert reachable | {BookingStatus.PENDING_PAYMENT} == set(BookingStatus)

    def test_every_non_terminal_status_can_finish(self):
        for status in set(BookingStatus) - TERMINAL:
            assert _reachable_from(status) & (TERMINAL | {BookingStatus.COMPLETED})

    def test_only_pending_and_confirmed_are_active(self):
        assert ACTIVE_STATUSES == {BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED}


class TestGuards:
    def test_illegal_transition_keeps_status(self):
        booking = _booking(BookingStatus.EXPIRED)

        with pytest.raises(InvalidStateException) as exc_info:
            booking.confirm(START)
        assert booking.status == BookingStatus.EXPIRED.value
        assert exc_info.value.details["target_status"] == "CONFIRMED"

    def test_complete_never_before_end(self):
        booking = _booking()

        with pytest.raises(InvalidStateException) as exc_info:
            booking.complete(START + timedelta(minutes=59))
        assert exc_info.value.code == "COMPLETION_TOO_EARLY"
        booking.complete(START + timedelta(hours=1))
        assert booking.status == BookingStatus.COMPLETED.value

    def test_mark_no_show_rejects_other_outcomes(self):
        with pytest.raises(ValueError):
            _booking().mark_no_show(BookingStatus.COMPLETED, START)

    def test_party_of(self):
        booking = _booking()

        assert booking.party_of("student") is Party.STUDENT
        assert booking.party_of("mentor") is Party.MENTOR
        assert booking.party_of("someone") is None
        assert booking.party_of(None) is None

    def test_cancel_clears_pending_reschedule(self):
        booking = _booking()
        booking.propose_reschedule(
            START + timedelta(hours=4), START + timedelta(hours=5), "mentor", START
        )

        booking.cancel("student", "Busy", START)

        assert not booking.has_pending_reschedule
        assert booking.cancelled_by_id == "student"

    def test_apply_reschedule_counts_requester(self):
        booking = _booking()
        booking.propose_reschedule(
            START + timedelta(hours=4), START + timedelta(hours=5), "mentor", START
        )

        assert booking.apply_reschedule() is Party.MENTOR
        assert booking.start_at == START + timedelta(hours=4)
        assert booking.reschedule_count_for(Party.MENTOR) == 1
        assert booking.reschedule_count_for(Party.STUDENT) == 0

    def test_resolve_dispute(self):
        booking = _booking(BookingStatus.DISPUTED)

        booking.resolve_dispute(DisputeResolution.MENTOR_FAVOR, "admin", None, START)

        assert booking.status == BookingStatus.COMPLETED.value
        assert booking.dispute_resolution == "MENTOR_FAVOR"

    def test_resolved_dispute_is_final(self):
        booking = _booking(BookingStatus.DISPUTED)
        booking.resolve_dispute(DisputeResolution.MENTOR_FAVOR, "admin", None, START)

        assert not booking.can_transition_to(BookingStatus.DISPUTED)
        with pytest.raises(InvalidStateException) as exc_info:
            booking.open_dispute("Still unhappy", START + timedelta(hours=2))
        assert exc_info.value.code == "DISPUTE_ALREADY_RESOLVED"
        assert booking.status == BookingStatus.COMPLETED.value

    @pytest.mark.parametrize("buffer_minutes,expected", [(0, False), (15, True)])
    def test_overlaps_applies_buffer(self, buffer_minutes, expected):
        booking = _booking()
        after = START + timedelta(hours=1, minutes=10)
        buffer = timedelta(minutes=buffer_minutes)

        assert booking.overlaps(after, after + timedelta(hours=1), buffer) is expected
