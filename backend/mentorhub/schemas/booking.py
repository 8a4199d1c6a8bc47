# backend/mentorhub/schemas/booking.py
"""
Booking request schemas for MentorHub.

Shape checks only. Rules that depend on configuration or on stored state
(lead time, duration bounds, reason length, inventory) are enforced in the
booking service so they raise the domain taxonomy.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from ..models.booking import DisputeResolution
from ._strict_base import StrictRequestModel


class BookingCreate(StrictRequestModel):
    """Book an offering starting at a UTC instant."""

    offering_id: str = Field(..., description="Offering being booked")
    start_at: datetime = Field(..., description="Session start")
    duration_minutes: Optional[int] = Field(
        default=None, description="Defaults to the offering's duration"
    )


class RescheduleProposal(StrictRequestModel):
    start_at: datetime
    end_at: datetime

    @model_validator(mode="after")
    def validate_range(self) -> "RescheduleProposal":
        if self.end_at <= self.start_at:
            raise ValueError("Proposed end must be after proposed start")
        return self


class DisputeResolutionRequest(StrictRequestModel):
    resolution: DisputeResolution
    note: Optional[str] = Field(default=None, max_length=1000)
