"""
Database models for MentorHub.

The models are organized by functionality:
- Availability: templates, weekly rules, date overrides, slots and claims
- Offerings and bookings
- Ledger entries and payout requests
- Group classes and enrollments (settlement signals only)

Cross-entity references are plain id columns; no model holds a
relationship() back-pointer.
"""

from .availability import (
    AvailabilityOverride,
    AvailabilityRule,
    AvailabilitySlot,
    AvailabilityTemplate,
    SlotClaim,
)
from .booking import Booking, BookingStatus, DisputeResolution, Party
from .group_class import ClassEnrollment, EnrollmentStatus, GroupClass, GroupClassStatus
from .ledger import LedgerAccountType, LedgerDirection, LedgerEntry, LedgerReferenceType
from .offering import Offering
from .payout import PayoutRequest, PayoutStatus

__all__ = [
    "AvailabilityOverride",
    "AvailabilityRule",
    "AvailabilitySlot",
    "AvailabilityTemplate",
    "Booking",
    "BookingStatus",
    "ClassEnrollment",
    "DisputeResolution",
    "EnrollmentStatus",
    "GroupClass",
    "GroupClassStatus",
    "LedgerAccountType",
    "LedgerDirection",
    "LedgerEntry",
    "LedgerReferenceType",
    "Offering",
    "Party",
    "PayoutRequest",
    "PayoutStatus",
    "SlotClaim",
]
