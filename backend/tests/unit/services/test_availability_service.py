# backend/tests/unit/services/test_availability_service.py
"""
AvailabilityService against a real session.

Covers template saving and default handling, inventory reconciliation,
guarded template deletion, manual slots and bookable start times.
"""

from datetime import date, time, timedelta

import pytest

from mentorhub.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    UnauthorizedException,
    ValidationException,
)
from mentorhub.models.availability import AvailabilitySlot, AvailabilityTemplate
from mentorhub.schemas.availability import (
    AvailabilityOverrideInput,
    AvailabilityRuleInput,
    ManualSlotCreate,
)
from tests.unit._helpers import BASE_NOW, MENTOR_ID, STUDENT_ID, at, weekly_template

SLOTS_PER_WEEK = 7 * 24  # 08:00-20:00 in half hours, seven days


def _slots(db, template_id=None, booked=None):
    query = db.query(AvailabilitySlot).filter(AvailabilitySlot.mentor_id == MENTOR_ID)
    if template_id is not None:
        query = query.filter(AvailabilitySlot.template_id == template_id)
    if booked is not None:
        query = query.filter(AvailabilitySlot.is_booked.is_(booked))
    return query.order_by(AvailabilitySlot.start_at).all()


class TestSaveTemplate:
    def test_first_template_becomes_default_and_materializes_slots(self, services, unit_db):
        template = services.availability.save_template(weekly_template())

        assert template.is_default is True
        slots = _slots(unit_db, template.id)
        assert len(slots) == SLOTS_PER_WEEK
        assert slots[0].start_at == at(8)
        assert all(s.end_at - s.start_at == timedelta(minutes=30) for s in slots)

    def test_requires_a_current_user(self, services, user):
        user.user_id = None

        with pytest.raises(UnauthorizedException) as exc_info:
            services.availability.save_template(weekly_template())
        assert exc_info.value.code == "NOT_AUTHENTICATED"

    def test_rejects_unknown_timezone(self, services):
        with pytest.raises(ValidationException) as exc_info:
            services.availability.save_template(weekly_template(timezone="Mars/Olympus"))
        assert exc_info.value.code == "INVALID_TIMEZONE"

    def test_new_default_demotes_previous(self, services, unit_db):
        first = services.availability.save_template(weekly_template())
        second = services.availability.save_template(
            weekly_template(name="Evenings", is_default=True)
        )

        unit_db.refresh(first)
        assert second.is_default is True
        assert first.is_default is False

    def test_cannot_unset_the_only_default(self, services):
        template = services.availability.save_template(weekly_template())

        with pytest.raises(InvalidStateException) as exc_info:
            services.availability.save_template(
                weekly_template(is_default=False), template_id=template.id
            )
        assert exc_info.value.code == "DEFAULT_TEMPLATE_REQUIRED"

    def test_cannot_edit_another_mentors_template(self, services, user):
        template = services.availability.save_template(weekly_template())
        user.user_id = STUDENT_ID

        with pytest.raises(ForbiddenException):
            services.availability.save_template(weekly_template(), template_id=template.id)

    def test_blocking_override_removes_that_date(self, services, unit_db):
        tuesday = date(2030, 1, 8)
        template = services.availability.save_template(
            weekly_template(overrides=[AvailabilityOverrideInput(date=tuesday, is_blocked=True)])
        )

        assert len(_slots(unit_db, template.id)) == SLOTS_PER_WEEK - 24
        assert all(s.start_at.date() != tuesday for s in _slots(unit_db, template.id))

    def test_schema_rejects_duplicate_rule_keys(self):
        with pytest.raises(ValueError):
            weekly_template(
                rules=[
                    AvailabilityRuleInput(day_of_week=0, start_time=time(8), end_time=time(9)),
                    AvailabilityRuleInput(day_of_week=0, start_time=time(10), end_time=time(11)),
                ]
            )


class TestReconcile:
    def test_reconcile_without_edits_is_a_no_op(self, services):
        template = services.availability.save_template(weekly_template())

        result = services.availability.reconcile_inventory(template.id)

        assert (result.created, result.deleted) == (0, 0)

    def test_rule_edit_keeps_booked_slots(self, services, unit_db, offering, book):
        template = unit_db.query(AvailabilityTemplate).filter_by(mentor_id=MENTOR_ID).one()
        booking = book(at(10))

        afternoon = [
            AvailabilityRuleInput(day_of_week=d, start_time=time(14), end_time=time(16))
            for d in range(7)
        ]
        services.availability.save_template(
            weekly_template(rules=afternoon, is_default=True), template_id=template.id
        )

        booked = _slots(unit_db, template.id, booked=True)
        assert [s.start_at for s in booked] == [at(10), at(10, 30)]
        free = _slots(unit_db, template.id, booked=False)
        assert len(free) == 7 * 4
        assert all(time(14) <= s.start_at.time() < time(16) for s in free)
        unit_db.refresh(booking)
        assert booking.status == "CONFIRMED"

    def test_rolling_window_adds_the_next_day(self, services, clock):
        template = services.availability.save_template(weekly_template())
        clock.advance(days=1)

        result = services.availability.reconcile_inventory(template.id)

        assert result.created == 24
        assert result.deleted == 0

    def test_reconcile_all_templates(self, services):
        services.availability.save_template(weekly_template())
        services.availability.save_template(weekly_template(name="Second"))

        results = services.availability.reconcile_all_templates()

        assert len(results) == 2


class TestDeleteTemplate:
    def test_default_template_cannot_be_deleted(self, services):
        template = services.availability.save_template(weekly_template())

        with pytest.raises(InvalidStateException):
            services.availability.delete_template(template.id)

    def test_delete_removes_free_slots_and_detaches_offerings(self, services, unit_db, offering):
        extra = services.availability.save_template(weekly_template(name="Weekend"))
        offering.template_id = extra.id
        unit_db.commit()

        services.availability.delete_template(extra.id)

        assert unit_db.get(AvailabilityTemplate, extra.id) is None
        assert _slots(unit_db, extra.id) == []
        unit_db.refresh(offering)
        assert offering.template_id is None


class TestManualSlots:
    def test_create_manual_slot(self, services):
        slot = services.availability.create_manual_slot(
            ManualSlotCreate(start_at=at(21), end_at=at(22))
        )

        assert slot.template_id is None
        assert slot.mentor_id == MENTOR_ID

    def test_manual_slot_in_the_past(self, services):
        with pytest.raises(ValidationException) as exc_info:
            services.availability.create_manual_slot(
                ManualSlotCreate(start_at=BASE_NOW - timedelta(hours=1), end_at=BASE_NOW)
            )
        assert exc_info.value.code == "SLOT_IN_PAST"

    def test_overlapping_manual_slot(self, services):
        services.availability.create_manual_slot(ManualSlotCreate(start_at=at(21), end_at=at(22)))

        with pytest.raises(ConflictException) as exc_info:
            services.availability.create_manual_slot(
                ManualSlotCreate(start_at=at(21, 30), end_at=at(22, 30))
            )
        assert exc_info.value.code == "SLOT_OVERLAP"


class TestAvailableStartTimes:
    def test_start_times_respect_bookings_and_buffer(self, services, offering, book):
        book(at(10))

        starts = services.availability.get_available_start_times(offering.id, BASE_NOW.date())

        assert at(8) in starts
        assert at(8, 30) in starts
        for blocked in (at(9), at(9, 30), at(10), at(10, 30), at(11)):
            assert blocked not in starts
        assert at(11, 30) in starts
        assert at(19) in starts
        # A 60-minute session starting at 19:30 would run past the last slot
        assert at(19, 30) not in starts

    def test_notice_window_applies(self, services, offering, clock):
        clock.set(at(12))

        starts = services.availability.get_available_start_times(offering.id, BASE_NOW.date())

        assert min(starts) == at(14)
