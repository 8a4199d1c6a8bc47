# backend/mentorhub/models/availability.py
"""
Availability models for MentorHub.

This module defines the database models for mentor availability: the
scheduling templates, their weekly rules and date overrides, and the
materialized slot inventory the booking flow claims from.

Classes:
    AvailabilityTemplate: Scheduling policy owned by a mentor or an offering
    AvailabilityRule: Weekly recurring time range on a template
    AvailabilityOverride: Date-specific block or replacement range
    AvailabilitySlot: Concrete bookable window
    SlotClaim: Exclusive hold of one slot by one booking
"""

import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Istanbul"


class AvailabilityTemplate(Base):
    """
    Scheduling policy for a mentor.

    Exactly one template per mentor is the default; offerings may point at a
    dedicated template to get a different rule set or policy.
    """

    __tablename__ = "availability_templates"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    name = Column(String(100), nullable=False, default="Default")
    timezone = Column(String(64), nullable=False, default=DEFAULT_TIMEZONE)
    is_default = Column(Boolean, nullable=False, default=False)

    min_notice_hours = Column(Integer, nullable=False, default=2)
    max_booking_days_ahead = Column(Integer, nullable=False, default=60)
    buffer_after_minutes = Column(Integer, nullable=False, default=15)
    slot_granularity_minutes = Column(Integer, nullable=False, default=30)
    max_bookings_per_day = Column(Integer, nullable=False, default=5)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("min_notice_hours >= 0", name="check_min_notice_non_negative"),
        CheckConstraint("max_booking_days_ahead > 0", name="check_max_days_ahead_positive"),
        CheckConstraint("buffer_after_minutes >= 0", name="check_buffer_non_negative"),
        CheckConstraint("slot_granularity_minutes > 0", name="check_granularity_positive"),
        CheckConstraint("max_bookings_per_day > 0", name="check_max_per_day_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityTemplate {self.name} mentor={self.mentor_id} "
            f"default={self.is_default}>"
        )


# One default per mentor
Index(
    "uq_availability_templates_mentor_default",
    AvailabilityTemplate.mentor_id,
    unique=True,
    sqlite_where=AvailabilityTemplate.is_default.is_(True),
    postgresql_where=AvailabilityTemplate.is_default.is_(True),
)


class AvailabilityRule(Base):
    """
    Weekly recurring availability.

    ``day_of_week`` follows Python's ``date.weekday()`` (0 = Monday).
    ``slot_index`` orders multiple disjoint ranges on the same day.
    """

    __tablename__ = "availability_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    template_id = Column(
        String(26),
        ForeignKey("availability_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_index = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint(
            "template_id", "day_of_week", "slot_index", name="unique_rule_day_slot_index"
        ),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="check_day_of_week_range"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityRule day={self.day_of_week} #{self.slot_index} "
            f"{self.start_time}-{self.end_time}>"
        )


class AvailabilityOverride(Base):
    """Date-specific availability that replaces the weekly rules for that date."""

    __tablename__ = "availability_overrides"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    template_id = Column(
        String(26),
        ForeignKey("availability_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date = Column(Date, nullable=False)
    is_blocked = Column(Boolean, nullable=False, default=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("template_id", "date", name="unique_template_override_date"),
        CheckConstraint(
            "is_blocked OR (start_time IS NOT NULL AND end_time IS NOT NULL)",
            name="check_override_has_range",
        ),
    )

    def __repr__(self) -> str:
        state = "blocked" if self.is_blocked else f"{self.start_time}-{self.end_time}"
        return f"<AvailabilityOverride {self.date} {state}>"


class AvailabilitySlot(Base):
    """
    A materialized bookable window.

    ``is_booked`` only flips through SlotManager.claim_slots, which pairs a
    conditional update with a SlotClaim row.
    """

    __tablename__ = "availability_slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False)
    template_id = Column(
        String(26),
        ForeignKey("availability_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("mentor_id", "template_id", "start_at", name="unique_mentor_slot_start"),
        Index("idx_availability_slots_mentor_start", "mentor_id", "start_at"),
        CheckConstraint("start_at < end_at", name="check_slot_time_order"),
    )

    def overlaps(self, start_at, end_at) -> bool:
        return self.start_at < end_at and self.end_at > start_at

    def __repr__(self) -> str:
        return f"<AvailabilitySlot {self.start_at}-{self.end_at} booked={self.is_booked}>"


class SlotClaim(Base):
    """
    Exclusive hold of one slot by one booking.

    The unique constraint on ``slot_id`` is what makes two concurrent claims
    on the same slot resolve to exactly one winner.
    """

    __tablename__ = "slot_claims"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    slot_id = Column(
        String(26),
        ForeignKey("availability_slots.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    claimed_at = Column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<SlotClaim slot={self.slot_id} booking={self.booking_id}>"
