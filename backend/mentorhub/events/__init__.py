"""Domain events and the in-process publisher."""

from .booking_events import (
    BookingCancelled,
    BookingCompleted,
    BookingConfirmed,
    BookingCreated,
    BookingDisputed,
    BookingDisputeResolved,
    BookingExpired,
    BookingNoShowRecorded,
    BookingReminder,
    BookingRescheduled,
    BookingRescheduleProposed,
    BookingRescheduleRejected,
)
from .payout_events import PayoutCompleted, PayoutRejected
from .publisher import Event, EventPublisher, Phase
from .settlement_events import GroupClassCancelled, RefundIssued

__all__ = [
    "BookingCancelled",
    "BookingCompleted",
    "BookingConfirmed",
    "BookingCreated",
    "BookingDisputeResolved",
    "BookingDisputed",
    "BookingExpired",
    "BookingNoShowRecorded",
    "BookingReminder",
    "BookingRescheduleProposed",
    "BookingRescheduleRejected",
    "BookingRescheduled",
    "Event",
    "EventPublisher",
    "GroupClassCancelled",
    "PayoutCompleted",
    "PayoutRejected",
    "Phase",
    "RefundIssued",
]
