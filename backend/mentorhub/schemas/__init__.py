"""
Pydantic schemas for MentorHub.

Request DTOs validated at the edge before they reach a service.
"""

from .availability import (
    AvailabilityOverrideInput,
    AvailabilityRuleInput,
    AvailabilityTemplateSave,
    ManualSlotCreate,
    ReconcileResult,
)
from .booking import BookingCreate, DisputeResolutionRequest, RescheduleProposal
from .payout import PayoutRequestCreate

__all__ = [
    "AvailabilityOverrideInput",
    "AvailabilityRuleInput",
    "AvailabilityTemplateSave",
    "BookingCreate",
    "DisputeResolutionRequest",
    "ManualSlotCreate",
    "PayoutRequestCreate",
    "ReconcileResult",
    "RescheduleProposal",
]
