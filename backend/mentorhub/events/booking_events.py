"""Booking and settlement domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class BookingCreated:
    """Fired after a booking is created in PendingPayment."""

    booking_id: str
    student_id: str
    mentor_id: str
    start_at: datetime
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingConfirmed:
    """Fired after payment capture confirms a booking."""

    booking_id: str
    student_id: str
    mentor_id: str
    start_at: datetime
    amount: int
    confirmed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled by a participant."""

    booking_id: str
    cancelled_by: Optional[str]  # 'student', 'mentor' or None for system
    start_at: datetime
    cancelled_at: datetime
    was_confirmed: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingExpired:
    """Fired when an unpaid booking times out."""

    booking_id: str
    expired_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCompleted:
    """Fired after a booking is marked complete."""

    booking_id: str
    completed_at: datetime
    automatic: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingNoShowRecorded:
    """Fired after a no-show outcome is recorded."""

    booking_id: str
    outcome: str  # BookingStatus value
    recorded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduleProposed:
    booking_id: str
    requested_by: str
    proposed_start_at: datetime
    proposed_end_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduled:
    """Fired after the counter-party approves a reschedule."""

    booking_id: str
    previous_start_at: datetime
    start_at: datetime
    end_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduleRejected:
    booking_id: str
    rejected_by: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingDisputed:
    booking_id: str
    disputed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingDisputeResolved:
    """Fired after an admin resolves a dispute."""

    booking_id: str
    resolution: str  # DisputeResolution value
    resolved_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingReminder:
    """Payload for a delayed reminder job."""

    booking_id: str
    reminder_type: str  # '24h', '1h' or '10m'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
