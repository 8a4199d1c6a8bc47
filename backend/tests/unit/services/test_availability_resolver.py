# backend/tests/unit/services/test_availability_resolver.py
"""Unit tests for the pure availability resolver."""

from datetime import date, datetime, time, timedelta, timezone

from mentorhub.services.availability_resolver import (
    OverrideSpec,
    ResolutionPolicy,
    RuleSpec,
    SlotWindow,
    resolve_slots,
)

NOW = datetime(2030, 1, 7, 6, 0, tzinfo=timezone.utc)  # Monday
MONDAY = date(2030, 1, 7)


def _utc(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _policy(**kwargs) -> ResolutionPolicy:
    fields = {
        "timezone": "UTC",
        "min_notice_hours": 0,
        "max_booking_days_ahead": 14,
        "slot_granularity_minutes": 60,
        "max_bookings_per_day": 10,
    }
    fields.update(kwargs)
    return ResolutionPolicy(**fields)


def _monday_rule(start: int = 9, end: int = 12, slot_index: int = 0) -> RuleSpec:
    return RuleSpec(
        day_of_week=0, start_time=time(start), end_time=time(end), slot_index=slot_index
    )


class TestResolveSlots:
    def test_weekly_rule_produces_granular_windows(self):
        windows = resolve_slots(
            _policy(), [_monday_rule()], [], NOW, NOW + timedelta(days=1), NOW
        )

        assert windows == [
            SlotWindow(_utc(MONDAY, 9), _utc(MONDAY, 10)),
            SlotWindow(_utc(MONDAY, 10), _utc(MONDAY, 11)),
            SlotWindow(_utc(MONDAY, 11), _utc(MONDAY, 12)),
        ]

    def test_resolution_is_deterministic(self):
        rules = [_monday_rule(), _monday_rule(14, 16, slot_index=1)]
        overrides = [OverrideSpec(date=MONDAY + timedelta(days=7), is_blocked=True)]

        first = resolve_slots(_policy(), rules, overrides, NOW, NOW + timedelta(days=14), NOW)
        second = resolve_slots(
            _policy(), list(reversed(rules)), overrides, NOW, NOW + timedelta(days=14), NOW
        )

        assert set(first) == set(second)
        assert first == second

    def test_multiple_ranges_per_day(self):
        rules = [_monday_rule(9, 10), _monday_rule(15, 16, slot_index=1)]

        windows = resolve_slots(_policy(), rules, [], NOW, NOW + timedelta(days=1), NOW)

        assert [w.start_at.hour for w in windows] == [9, 15]

    def test_blocking_override_removes_the_date(self):
        override = OverrideSpec(date=MONDAY, is_blocked=True)

        windows = resolve_slots(
            _policy(), [_monday_rule()], [override], NOW, NOW + timedelta(days=1), NOW
        )

        assert windows == []

    def test_replacing_override_dominates_rules(self):
        override = OverrideSpec(
            date=MONDAY, is_blocked=False, start_time=time(18), end_time=time(19)
        )

        windows = resolve_slots(
            _policy(), [_monday_rule()], [override], NOW, NOW + timedelta(days=1), NOW
        )

        assert windows == [SlotWindow(_utc(MONDAY, 18), _utc(MONDAY, 19))]

    def test_override_opens_a_day_without_rules(self):
        tuesday = MONDAY + timedelta(days=1)
        override = OverrideSpec(
            date=tuesday, is_blocked=False, start_time=time(10), end_time=time(11)
        )

        windows = resolve_slots(
            _policy(), [_monday_rule()], [override], NOW, NOW + timedelta(days=2), NOW
        )

        assert SlotWindow(_utc(tuesday, 10), _utc(tuesday, 11)) in windows

    def test_min_notice_drops_early_windows(self):
        windows = resolve_slots(
            _policy(min_notice_hours=4), [_monday_rule()], [], NOW, NOW + timedelta(days=1), NOW
        )

        # now + 4h = 10:00
        assert [w.start_at.hour for w in windows] == [10, 11]

    def test_max_days_ahead_limits_the_window(self):
        windows = resolve_slots(
            _policy(max_booking_days_ahead=7),
            [_monday_rule()],
            [],
            NOW,
            NOW + timedelta(days=30),
            NOW,
        )

        assert all(w.end_at <= NOW + timedelta(days=7) for w in windows)
        assert {w.start_at.date() for w in windows} == {MONDAY}

    def test_per_day_cap(self):
        windows = resolve_slots(
            _policy(max_bookings_per_day=2),
            [_monday_rule(9, 17)],
            [],
            NOW,
            NOW + timedelta(days=1),
            NOW,
        )

        assert [w.start_at.hour for w in windows] == [9, 10]

    def test_booked_windows_are_skipped_and_count_toward_cap(self):
        booked = [SlotWindow(_utc(MONDAY, 9), _utc(MONDAY, 10))]

        windows = resolve_slots(
            _policy(max_bookings_per_day=2),
            [_monday_rule(9, 17)],
            [],
            NOW,
            NOW + timedelta(days=1),
            NOW,
            booked,
        )

        assert windows == [SlotWindow(_utc(MONDAY, 10), _utc(MONDAY, 11))]

    def test_inactive_rules_are_ignored(self):
        rule = RuleSpec(day_of_week=0, start_time=time(9), end_time=time(12), is_active=False)

        assert resolve_slots(_policy(), [rule], [], NOW, NOW + timedelta(days=1), NOW) == []

    def test_local_rules_are_converted_to_utc(self):
        # Istanbul is UTC+3 all year
        windows = resolve_slots(
            _policy(timezone="Europe/Istanbul"),
            [_monday_rule(12, 13)],
            [],
            NOW,
            NOW + timedelta(days=1),
            NOW,
        )

        assert windows == [SlotWindow(_utc(MONDAY, 9), _utc(MONDAY, 10))]

    def test_empty_when_window_closed(self):
        assert (
            resolve_slots(_policy(), [_monday_rule()], [], NOW, NOW - timedelta(hours=1), NOW)
            == []
        )
