# backend/mentorhub/schemas/availability.py
"""
Availability schemas for MentorHub.

Templates are saved whole: policy fields, weekly rules and date overrides
travel together so that a save can be followed by a single reconciliation
of the slot inventory.
"""

import datetime
from typing import Any, List, Optional

from pydantic import Field, field_validator, model_validator

from ..models.availability import DEFAULT_TIMEZONE
from ._strict_base import StrictModel, StrictRequestModel

DateType = datetime.date
TimeType = datetime.time
DateTimeType = datetime.datetime


class AvailabilityRuleInput(StrictRequestModel):
    """One weekly range. ``day_of_week`` is 0 (Monday) to 6 (Sunday)."""

    day_of_week: int = Field(..., ge=0, le=6)
    start_time: TimeType
    end_time: TimeType
    slot_index: int = Field(default=0, ge=0)
    is_active: bool = True

    @field_validator("end_time")
    @classmethod
    def validate_time_order(cls, v: TimeType, info: Any) -> TimeType:
        """Ensure end time is after start time."""
        if (
            isinstance(getattr(info, "data", None), dict)
            and info.data.get("start_time")
            and v <= info.data["start_time"]
        ):
            raise ValueError("End time must be after start time")
        return v


class AvailabilityOverrideInput(StrictRequestModel):
    """Either blocks a date or replaces its rules with one explicit range."""

    date: DateType
    is_blocked: bool = False
    start_time: Optional[TimeType] = None
    end_time: Optional[TimeType] = None
    reason: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_range(self) -> "AvailabilityOverrideInput":
        if self.is_blocked:
            return self
        if self.start_time is None or self.end_time is None:
            raise ValueError("An override must block the date or give a start and end time")
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class AvailabilityTemplateSave(StrictRequestModel):
    """Create or replace a template with its rules and overrides."""

    name: str = Field(default="Default", min_length=1, max_length=100)
    timezone: str = DEFAULT_TIMEZONE
    is_default: bool = False
    min_notice_hours: int = Field(default=2, ge=0)
    max_booking_days_ahead: int = Field(default=60, gt=0)
    buffer_after_minutes: int = Field(default=15, ge=0)
    slot_granularity_minutes: int = Field(default=30, gt=0, le=240)
    max_bookings_per_day: int = Field(default=5, gt=0)
    rules: List[AvailabilityRuleInput] = Field(default_factory=list)
    overrides: List[AvailabilityOverrideInput] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_keys(self) -> "AvailabilityTemplateSave":
        rule_keys = [(r.day_of_week, r.slot_index) for r in self.rules]
        if len(rule_keys) != len(set(rule_keys)):
            raise ValueError("Each (day_of_week, slot_index) pair may appear only once")
        override_dates = [o.date for o in self.overrides]
        if len(override_dates) != len(set(override_dates)):
            raise ValueError("Only one override per date is allowed")
        return self


class ManualSlotCreate(StrictRequestModel):
    start_at: DateTimeType
    end_at: DateTimeType

    @model_validator(mode="after")
    def validate_range(self) -> "ManualSlotCreate":
        if self.end_at <= self.start_at:
            raise ValueError("Slot end must be after its start")
        return self


class ReconcileResult(StrictModel):
    """Outcome of bringing a template's inventory in line with its rules."""

    template_id: str
    created: int = 0
    deleted: int = 0
    kept_booked: int = 0
