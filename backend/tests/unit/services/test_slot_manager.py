# backend/tests/unit/services/test_slot_manager.py
"""
SlotManager claim and release behavior.

The race test uses a file-backed SQLite database so two independent
sessions see each other's committed writes.
"""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mentorhub.core.exceptions import SlotClaimConflictException
from mentorhub.database import Base
from mentorhub.models.availability import AvailabilitySlot, SlotClaim
from mentorhub.models.booking import Booking
from mentorhub.services.slot_manager import SlotManager, select_covering_chain
from tests.unit._helpers import BASE_NOW, MENTOR_ID, OTHER_STUDENT_ID, STUDENT_ID, at


def _slot(start, minutes=30, **kwargs):
    return AvailabilitySlot(
        mentor_id=MENTOR_ID,
        template_id=kwargs.pop("template_id", None),
        start_at=start,
        end_at=start + timedelta(minutes=minutes),
        is_booked=kwargs.pop("is_booked", False),
    )


def _booking(student_id, start, minutes=60):
    return Booking(
        student_id=student_id,
        mentor_id=MENTOR_ID,
        offering_id="01HOFFERING000000000000000",
        start_at=start,
        end_at=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        price_amount=10000,
        booked_at=BASE_NOW,
    )


class TestSelectCoveringChain:
    def test_contiguous_slots_cover_range(self):
        slots = [_slot(at(10)), _slot(at(10, 30)), _slot(at(11))]

        chain = select_covering_chain(slots, at(10), at(11))

        assert [s.start_at for s in chain] == [at(10), at(10, 30)]

    def test_gap_means_no_chain(self):
        slots = [_slot(at(10)), _slot(at(11))]

        assert select_covering_chain(slots, at(10), at(11)) is None

    def test_range_starting_inside_a_slot(self):
        slots = [_slot(at(10), minutes=60)]

        assert select_covering_chain(slots, at(10, 15), at(10, 45)) is not None

    def test_no_slot_at_start(self):
        assert select_covering_chain([_slot(at(11))], at(10), at(11)) is None


class TestClaimAndRelease:
    @pytest.fixture
    def manager(self, unit_db):
        return SlotManager(unit_db)

    @pytest.fixture
    def seeded(self, unit_db):
        slots = [_slot(at(10)), _slot(at(10, 30)), _slot(at(11))]
        booking = _booking(STUDENT_ID, at(10))
        unit_db.add_all(slots + [booking])
        unit_db.commit()
        return slots, booking

    def test_claim_marks_slots_and_records_claims(self, manager, unit_db, seeded):
        slots, booking = seeded

        with manager.transaction():
            claimed = manager.claim_slots(booking.id, MENTOR_ID, [None], at(10), at(11), BASE_NOW)

        assert {s.id for s in claimed} == {slots[0].id, slots[1].id}
        booked = unit_db.query(AvailabilitySlot).filter(AvailabilitySlot.is_booked.is_(True)).all()
        assert {s.id for s in booked} == {slots[0].id, slots[1].id}
        assert unit_db.query(SlotClaim).filter_by(booking_id=booking.id).count() == 2

    def test_claim_fails_when_a_slot_is_taken(self, manager, unit_db, seeded):
        slots, booking = seeded
        other = _booking(OTHER_STUDENT_ID, at(10, 30))
        unit_db.add(other)
        unit_db.commit()
        with manager.transaction():
            manager.claim_slots(other.id, MENTOR_ID, [None], at(10, 30), at(11), BASE_NOW)

        with pytest.raises(SlotClaimConflictException):
            with manager.transaction():
                manager.claim_slots(booking.id, MENTOR_ID, [None], at(10), at(11), BASE_NOW)

        # The first slot of the failed claim was rolled back
        unit_db.expire_all()
        assert unit_db.get(AvailabilitySlot, slots[0].id).is_booked is False
        assert unit_db.query(SlotClaim).filter_by(booking_id=booking.id).count() == 0

    def test_release_frees_slots_and_is_idempotent(self, manager, unit_db, seeded):
        slots, booking = seeded
        with manager.transaction():
            manager.claim_slots(booking.id, MENTOR_ID, [None], at(10), at(11), BASE_NOW)

        with manager.transaction():
            released = manager.release_slots(booking.id)
        with manager.transaction():
            again = manager.release_slots(booking.id)

        assert set(released) == {slots[0].id, slots[1].id}
        assert again == []
        booked = unit_db.query(AvailabilitySlot).filter(AvailabilitySlot.is_booked.is_(True))
        assert booked.count() == 0

    def test_own_claims_count_as_free_for_coverage(self, manager, seeded):
        slots, booking = seeded
        with manager.transaction():
            manager.claim_slots(booking.id, MENTOR_ID, [None], at(10), at(11), BASE_NOW)

        assert manager.find_covering_slots(MENTOR_ID, [None], at(10, 30), at(11, 30)) is None
        chain = manager.find_covering_slots(
            MENTOR_ID, [None], at(10, 30), at(11, 30), claimed_by_booking_id=booking.id
        )
        assert [s.start_at for s in chain] == [at(10, 30), at(11)]

    def test_template_filter_excludes_other_inventory(self, manager, seeded):
        other_template = ["01HOTHERTEMPLATE0000000000"]

        assert manager.find_covering_slots(MENTOR_ID, other_template, at(10), at(11)) is None


class TestConcurrentClaims:
    def test_two_sessions_racing_for_one_slot(self, tmp_path):
        engine = create_engine(
            f"sqlite+pysqlite:///{tmp_path / 'race.db'}",
            connect_args={"check_same_thread": False},
        )
        Base.metadata.create_all(engine)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

        setup = Session()
        slot = _slot(at(10), minutes=60)
        first, second = _booking(STUDENT_ID, at(10)), _booking(OTHER_STUDENT_ID, at(10))
        setup.add_all([slot, first, second])
        setup.commit()
        setup.close()

        session_a, session_b = Session(), Session()
        try:
            manager_a, manager_b = SlotManager(session_a), SlotManager(session_b)
            # Both sessions see the slot as free before either claims it
            assert manager_a.find_covering_slots(MENTOR_ID, [None], at(10), at(11)) is not None
            assert manager_b.find_covering_slots(MENTOR_ID, [None], at(10), at(11)) is not None

            with manager_a.transaction():
                manager_a.claim_slots(first.id, MENTOR_ID, [None], at(10), at(11), BASE_NOW)

            with pytest.raises(SlotClaimConflictException):
                with manager_b.transaction():
                    manager_b.claim_slots(second.id, MENTOR_ID, [None], at(10), at(11), BASE_NOW)

            check = Session()
            claims = check.query(SlotClaim).all()
            assert [c.booking_id for c in claims] == [first.id]
            check.close()
        finally:
            session_a.close()
            session_b.close()
            engine.dispose()
