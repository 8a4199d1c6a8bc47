# backend/mentorhub/repositories/booking_repository.py
"""
Booking Repository for MentorHub

Booking queries, including the conflict query shared by booking creation,
payment capture and reschedule approval.
"""

from datetime import datetime, timedelta
import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_conflicting_bookings(
        self,
        mentor_id: str,
        start_at: datetime,
        end_at: datetime,
        buffer: timedelta,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Active bookings that collide with ``[start_at, end_at)`` once the buffer is applied.

        ``start < existing.end + buffer`` and ``end + buffer > existing.start``,
        rearranged so the arithmetic happens on the bound parameters.
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.mentor_id == mentor_id,
                Booking.status.in_([s.value for s in ACTIVE_STATUSES]),
                Booking.end_at > start_at - buffer,
                Booking.start_at < end_at + buffer,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(List[Booking], query.order_by(Booking.start_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting bookings for conflict check: {str(e)}")
            raise RepositoryException(f"Failed to get conflict bookings: {str(e)}")

    def get_stale_pending_bookings(self, student_id: str, mentor_id: str) -> List[Booking]:
        """The student's unpaid bookings with this mentor."""
        query = self._build_query().filter(
            Booking.student_id == student_id,
            Booking.mentor_id == mentor_id,
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
        )
        return self._execute_query(query)

    def get_pending_payment_created_before(self, cutoff: datetime) -> List[Booking]:
        """Unpaid bookings past the payment window, oldest first."""
        query = self._build_query().filter(
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
            Booking.booked_at <= cutoff,
        )
        return self._execute_query(query.order_by(Booking.start_at))

    def get_confirmed_ended_before(self, cutoff: datetime) -> List[Booking]:
        """Confirmed bookings whose session ended at or before ``cutoff``."""
        query = self._build_query().filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.end_at <= cutoff,
        )
        return self._execute_query(query.order_by(Booking.end_at))
