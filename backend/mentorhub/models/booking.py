# backend/mentorhub/models/booking.py
"""
Booking model for MentorHub.

A booking is a time-boxed session between a student and a mentor for one
offering. Its lifecycle is a closed state machine: fields that move with the
lifecycle are only ever changed through the transition methods on this
class, each of which takes ``now`` from the caller's clock and raises
InvalidStateException when the current status forbids the move.

Authorization (who may call which transition) is the service layer's job;
the model only knows which moves are legal.
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..core.exceptions import InvalidStateException
from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"
    NO_SHOW = "NO_SHOW"  # Neither party joined
    STUDENT_NO_SHOW = "STUDENT_NO_SHOW"
    MENTOR_NO_SHOW = "MENTOR_NO_SHOW"
    EXPIRED = "EXPIRED"  # Payment never captured


class DisputeResolution(str, Enum):
    """Admin outcome of a disputed booking."""

    STUDENT_FAVOR = "STUDENT_FAVOR"
    MENTOR_FAVOR = "MENTOR_FAVOR"


class Party(str, Enum):
    """Which side of a booking an actor is on."""

    STUDENT = "student"
    MENTOR = "mentor"


ACTIVE_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED}
)

NO_SHOW_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.NO_SHOW, BookingStatus.STUDENT_NO_SHOW, BookingStatus.MENTOR_NO_SHOW}
)

# Outcomes a student may dispute once the session window is over
DISPUTABLE_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.COMPLETED} | NO_SHOW_STATUSES
)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING_PAYMENT: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.EXPIRED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
            BookingStatus.DISPUTED,
            BookingStatus.NO_SHOW,
            BookingStatus.STUDENT_NO_SHOW,
            BookingStatus.MENTOR_NO_SHOW,
        }
    ),
    BookingStatus.COMPLETED: frozenset({BookingStatus.DISPUTED}),
    BookingStatus.NO_SHOW: frozenset({BookingStatus.DISPUTED}),
    BookingStatus.STUDENT_NO_SHOW: frozenset({BookingStatus.DISPUTED}),
    BookingStatus.MENTOR_NO_SHOW: frozenset({BookingStatus.DISPUTED}),
    BookingStatus.DISPUTED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
}


class Booking(Base):
    """
    Booking between a student and a mentor.

    Relations to the offering and the mentor's templates are plain ids; the
    service layer resolves them through repositories.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    student_id = Column(String(26), nullable=False, index=True)
    mentor_id = Column(String(26), nullable=False)
    offering_id = Column(String(26), ForeignKey("offerings.id"), nullable=False)

    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Price snapshot in minor units
    price_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="TRY")

    status = Column(
        String(20), nullable=False, default=BookingStatus.PENDING_PAYMENT.value, index=True
    )

    # Timestamps
    booked_at = Column(UTCDateTime, nullable=False)  # From the service clock
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # No-show bookkeeping
    no_show_reported_by_id = Column(String(26), nullable=True)
    no_show_reported_at = Column(UTCDateTime, nullable=True)

    # Dispute bookkeeping
    dispute_reason = Column(Text, nullable=True)
    disputed_at = Column(UTCDateTime, nullable=True)
    dispute_resolution = Column(String(20), nullable=True)
    dispute_resolution_note = Column(Text, nullable=True)
    dispute_resolved_by_id = Column(String(26), nullable=True)
    dispute_resolved_at = Column(UTCDateTime, nullable=True)

    # Pending reschedule proposal
    pending_reschedule_start_at = Column(UTCDateTime, nullable=True)
    pending_reschedule_end_at = Column(UTCDateTime, nullable=True)
    reschedule_requested_by_id = Column(String(26), nullable=True)
    reschedule_requested_at = Column(UTCDateTime, nullable=True)
    student_reschedule_count = Column(Integer, nullable=False, default=0)
    mentor_reschedule_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_bookings_mentor_status_start", "mentor_id", "status", "start_at"),
        CheckConstraint(
            "status IN ('PENDING_PAYMENT', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'DISPUTED', "
            "'NO_SHOW', 'STUDENT_NO_SHOW', 'MENTOR_NO_SHOW', 'EXPIRED')",
            name="ck_bookings_status",
        ),
        CheckConstraint("start_at < end_at", name="check_booking_time_order"),
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        CheckConstraint("price_amount >= 0", name="check_price_non_negative"),
        CheckConstraint(
            "(pending_reschedule_start_at IS NULL) = (pending_reschedule_end_at IS NULL)",
            name="check_pending_reschedule_pair",
        ),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.PENDING_PAYMENT.value
        if self.student_reschedule_count is None:
            self.student_reschedule_count = 0
        if self.mentor_reschedule_count is None:
            self.mentor_reschedule_count = 0

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: student={self.student_id}, mentor={self.mentor_id}, "
            f"{self.start_at}-{self.end_at}, status={self.status}>"
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_active(self) -> bool:
        """Active bookings hold mentor time and take part in conflict detection."""
        return self.status_enum in ACTIVE_STATUSES

    @property
    def has_pending_reschedule(self) -> bool:
        return self.pending_reschedule_start_at is not None

    def party_of(self, user_id: Optional[str]) -> Optional[Party]:
        if user_id is None:
            return None
        if user_id == self.student_id:
            return Party.STUDENT
        if user_id == self.mentor_id:
            return Party.MENTOR
        return None

    def reschedule_count_for(self, party: Party) -> int:
        if party is Party.STUDENT:
            return int(self.student_reschedule_count or 0)
        return int(self.mentor_reschedule_count or 0)

    def can_transition_to(self, target: BookingStatus) -> bool:
        # A resolved dispute is final
        if target is BookingStatus.DISPUTED and self.dispute_resolution is not None:
            return False
        return target in ALLOWED_TRANSITIONS[self.status_enum]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, target: BookingStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidStateException(
                f"Cannot move booking from {self.status} to {target.value}",
                current_status=self.status,
                details={"booking_id": self.id, "target_status": target.value},
            )
        previous = self.status
        self.status = target.value
        logger.info(f"Booking {self.id} moved {previous} -> {target.value}")

    def confirm(self, now: datetime) -> None:
        """Mark payment as captured."""
        self._transition(BookingStatus.CONFIRMED)
        self.confirmed_at = now

    def expire(self, now: datetime) -> None:
        """Payment timeout; only legal while the booking still awaits payment."""
        if self.status_enum is not BookingStatus.PENDING_PAYMENT:
            raise InvalidStateException(
                "Only bookings awaiting payment can expire", current_status=self.status
            )
        self._transition(BookingStatus.EXPIRED)
        self.expired_at = now

    def cancel(self, cancelled_by_id: Optional[str], reason: str, now: datetime) -> None:
        """Cancel this booking."""
        if not self.is_active:
            raise InvalidStateException(
                f"Cannot cancel a booking in status {self.status}", current_status=self.status
            )
        self._transition(BookingStatus.CANCELLED)
        self.cancelled_at = now
        self.cancelled_by_id = cancelled_by_id
        self.cancellation_reason = reason
        self.clear_reschedule()

    def complete(self, now: datetime) -> None:
        """Mark booking as completed; never before the listed end time."""
        if self.status_enum is not BookingStatus.CONFIRMED:
            raise InvalidStateException(
                f"Cannot complete a booking in status {self.status}", current_status=self.status
            )
        if now < self.end_at:
            raise InvalidStateException(
                "Booking cannot be completed before its scheduled end",
                current_status=self.status,
                code="COMPLETION_TOO_EARLY",
                details={"end_at": self.end_at.isoformat()},
            )
        self._transition(BookingStatus.COMPLETED)
        self.completed_at = now
        self.clear_reschedule()

    def mark_no_show(
        self, outcome: BookingStatus, now: datetime, reported_by_id: Optional[str] = None
    ) -> None:
        if outcome not in NO_SHOW_STATUSES:
            raise ValueError(f"{outcome} is not a no-show outcome")
        self._transition(outcome)
        self.no_show_reported_by_id = reported_by_id
        self.no_show_reported_at = now
        self.clear_reschedule()

    def open_dispute(self, reason: str, now: datetime) -> None:
        """Dispute a session outcome; only once the session window is over."""
        if now < self.end_at:
            raise InvalidStateException(
                "A booking can only be disputed after its scheduled end",
                current_status=self.status,
            )
        if self.status_enum not in DISPUTABLE_STATUSES | {BookingStatus.CONFIRMED}:
            raise InvalidStateException(
                f"Bookings in status {self.status} cannot be disputed",
                current_status=self.status,
            )
        if self.dispute_resolution is not None:
            raise InvalidStateException(
                "This booking's dispute has already been resolved",
                current_status=self.status,
                code="DISPUTE_ALREADY_RESOLVED",
            )
        self._transition(BookingStatus.DISPUTED)
        self.dispute_reason = reason
        self.disputed_at = now
        self.clear_reschedule()

    def resolve_dispute(
        self,
        resolution: DisputeResolution,
        resolved_by_id: str,
        note: Optional[str],
        now: datetime,
    ) -> None:
        if self.status_enum is not BookingStatus.DISPUTED:
            raise InvalidStateException(
                "Only disputed bookings can be resolved", current_status=self.status
            )
        if resolution is DisputeResolution.STUDENT_FAVOR:
            self._transition(BookingStatus.CANCELLED)
            self.cancelled_at = now
            self.cancelled_by_id = resolved_by_id
            self.cancellation_reason = note or "Dispute resolved in student's favor"
        elif resolution is DisputeResolution.MENTOR_FAVOR:
            self._transition(BookingStatus.COMPLETED)
            self.completed_at = now
        else:  # pragma: no cover - closed enum
            raise ValueError(f"Unknown dispute resolution: {resolution}")
        self.dispute_resolution = resolution.value
        self.dispute_resolution_note = note
        self.dispute_resolved_by_id = resolved_by_id
        self.dispute_resolved_at = now

    # ------------------------------------------------------------------
    # Reschedule negotiation
    # ------------------------------------------------------------------

    def propose_reschedule(
        self, start_at: datetime, end_at: datetime, requested_by_id: str, now: datetime
    ) -> None:
        if self.status_enum is not BookingStatus.CONFIRMED:
            raise InvalidStateException(
                "Only confirmed bookings can be rescheduled", current_status=self.status
            )
        if self.has_pending_reschedule:
            raise InvalidStateException(
                "A reschedule proposal is already pending",
                current_status=self.status,
                code="RESCHEDULE_PENDING",
            )
        self.pending_reschedule_start_at = start_at
        self.pending_reschedule_end_at = end_at
        self.reschedule_requested_by_id = requested_by_id
        self.reschedule_requested_at = now
        logger.info(f"Booking {self.id} reschedule proposed by {requested_by_id}")

    def apply_reschedule(self) -> Party:
        """Commit the pending proposal and bump the requesting party's counter."""
        if self.status_enum is not BookingStatus.CONFIRMED or not self.has_pending_reschedule:
            raise InvalidStateException(
                "No pending reschedule to approve", current_status=self.status
            )
        requester = self.party_of(self.reschedule_requested_by_id)
        if requester is None:
            raise InvalidStateException("Reschedule requester is no longer a party")
        self.start_at = self.pending_reschedule_start_at
        self.end_at = self.pending_reschedule_end_at
        if requester is Party.STUDENT:
            self.student_reschedule_count = self.reschedule_count_for(Party.STUDENT) + 1
        else:
            self.mentor_reschedule_count = self.reschedule_count_for(Party.MENTOR) + 1
        self.clear_reschedule()
        logger.info(f"Booking {self.id} rescheduled to {self.start_at}-{self.end_at}")
        return requester

    def clear_reschedule(self) -> None:
        self.pending_reschedule_start_at = None
        self.pending_reschedule_end_at = None
        self.reschedule_requested_by_id = None
        self.reschedule_requested_at = None

    def overlaps(self, start_at: datetime, end_at: datetime, buffer: timedelta) -> bool:
        """Conflict test with the mentor's after-session buffer applied on both sides."""
        return start_at < self.end_at + buffer and end_at + buffer > self.start_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "student_id": self.student_id,
            "mentor_id": self.mentor_id,
            "offering_id": self.offering_id,
            "start_at": _iso(self.start_at),
            "end_at": _iso(self.end_at),
            "duration_minutes": self.duration_minutes,
            "price_amount": self.price_amount,
            "currency": self.currency,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
            "pending_reschedule": (
                {
                    "start_at": _iso(self.pending_reschedule_start_at),
                    "end_at": _iso(self.pending_reschedule_end_at),
                    "requested_by_id": self.reschedule_requested_by_id,
                }
                if self.has_pending_reschedule
                else None
            ),
            "student_reschedule_count": self.student_reschedule_count,
            "mentor_reschedule_count": self.mentor_reschedule_count,
            "dispute_resolution": self.dispute_resolution,
            "confirmed_at": _iso(self.confirmed_at),
            "completed_at": _iso(self.completed_at),
            "cancelled_at": _iso(self.cancelled_at),
        }
