# backend/mentorhub/services/availability_resolver.py
"""
Availability resolution for MentorHub.

Turns a template's weekly rules and date overrides into concrete bookable
windows. This module is pure: no session, no clock, no logging side effects
beyond debug output. Given the same inputs it returns the same windows,
which is what lets inventory reconciliation diff a fresh resolution against
the materialized slots.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, DefaultDict, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from ..core.timezone_utils import ensure_utc, local_to_utc, utc_to_local_date

logger = logging.getLogger(__name__)


class SlotWindow(NamedTuple):
    """A half-open ``[start_at, end_at)`` UTC window."""

    start_at: datetime
    end_at: datetime

    def overlaps(self, start_at: datetime, end_at: datetime) -> bool:
        return self.start_at < end_at and self.end_at > start_at


@dataclass(frozen=True)
class ResolutionPolicy:
    """The scheduling knobs of an availability template."""

    timezone: str
    min_notice_hours: int = 2
    max_booking_days_ahead: int = 60
    slot_granularity_minutes: int = 30
    max_bookings_per_day: int = 5

    @classmethod
    def from_template(cls, template: Any) -> "ResolutionPolicy":
        return cls(
            timezone=template.timezone,
            min_notice_hours=template.min_notice_hours,
            max_booking_days_ahead=template.max_booking_days_ahead,
            slot_granularity_minutes=template.slot_granularity_minutes,
            max_bookings_per_day=template.max_bookings_per_day,
        )


@dataclass(frozen=True)
class RuleSpec:
    day_of_week: int  # date.weekday(): 0 = Monday
    start_time: time
    end_time: time
    slot_index: int = 0
    is_active: bool = True

    @classmethod
    def from_model(cls, rule: Any) -> "RuleSpec":
        return cls(
            day_of_week=rule.day_of_week,
            start_time=rule.start_time,
            end_time=rule.end_time,
            slot_index=rule.slot_index,
            is_active=bool(rule.is_active),
        )


@dataclass(frozen=True)
class OverrideSpec:
    date: date
    is_blocked: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @classmethod
    def from_model(cls, override: Any) -> "OverrideSpec":
        return cls(
            date=override.date,
            is_blocked=bool(override.is_blocked),
            start_time=override.start_time,
            end_time=override.end_time,
        )


def _local_ranges_for_date(
    day: date,
    rules_by_day: Dict[int, List[RuleSpec]],
    overrides: Dict[date, OverrideSpec],
) -> List[Tuple[time, time]]:
    """Local time ranges open on ``day``; an override fully replaces the rules."""
    override = overrides.get(day)
    if override is not None:
        if override.is_blocked or override.start_time is None or override.end_time is None:
            return []
        return [(override.start_time, override.end_time)]
    return [(r.start_time, r.end_time) for r in rules_by_day.get(day.weekday(), [])]


def resolve_slots(
    policy: ResolutionPolicy,
    rules: Iterable[RuleSpec],
    overrides: Iterable[OverrideSpec],
    window_from: datetime,
    window_to: datetime,
    now: datetime,
    booked: Sequence[SlotWindow] = (),
) -> List[SlotWindow]:
    """
    Resolve bookable windows inside ``[window_from, window_to)``.

    Args:
        policy: Template scheduling policy
        rules: Weekly rules; inactive rules are ignored
        overrides: Date overrides; at most one per date is expected
        window_from: Start of the resolution window (UTC)
        window_to: End of the resolution window (UTC)
        now: Current instant, for the notice and look-ahead limits
        booked: Windows already booked for this mentor; resolved windows never
            overlap them and they count toward the per-day cap

    Returns:
        Windows of exactly ``slot_granularity_minutes``, sorted by start
    """
    window_from, window_to, now = ensure_utc(window_from), ensure_utc(window_to), ensure_utc(now)
    granularity = timedelta(minutes=policy.slot_granularity_minutes)
    earliest = max(window_from, now + timedelta(hours=policy.min_notice_hours))
    latest = min(window_to, now + timedelta(days=policy.max_booking_days_ahead))
    if earliest >= latest:
        return []

    rules_by_day: DefaultDict[int, List[RuleSpec]] = defaultdict(list)
    for rule in sorted(rules, key=lambda r: (r.day_of_week, r.slot_index)):
        if rule.is_active and rule.start_time < rule.end_time:
            rules_by_day[rule.day_of_week].append(rule)
    override_map = {o.date: o for o in overrides}

    booked_windows = [SlotWindow(ensure_utc(b.start_at), ensure_utc(b.end_at)) for b in booked]
    booked_per_day: DefaultDict[date, int] = defaultdict(int)
    for window in booked_windows:
        booked_per_day[utc_to_local_date(window.start_at, policy.timezone)] += 1

    resolved: List[SlotWindow] = []
    day = utc_to_local_date(earliest, policy.timezone)
    last_day = utc_to_local_date(latest, policy.timezone)
    while day <= last_day:
        day_windows = set()
        for start_time, end_time in _local_ranges_for_date(day, rules_by_day, override_map):
            range_start = local_to_utc(day, start_time, policy.timezone)
            range_end = local_to_utc(day, end_time, policy.timezone)
            cursor = range_start
            while cursor + granularity <= range_end:
                candidate = SlotWindow(cursor, cursor + granularity)
                cursor += granularity
                if candidate.start_at < earliest or candidate.end_at > latest:
                    continue
                if any(candidate.overlaps(b.start_at, b.end_at) for b in booked_windows):
                    continue
                day_windows.add(candidate)

        capacity = max(0, policy.max_bookings_per_day - booked_per_day[day])
        resolved.extend(sorted(day_windows)[:capacity])
        day += timedelta(days=1)

    logger.debug(
        "Resolved %d windows between %s and %s", len(resolved), earliest.isoformat(), latest
    )
    return resolved
