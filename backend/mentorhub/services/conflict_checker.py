# backend/mentorhub/services/conflict_checker.py
"""
Conflict Checker Service for MentorHub

Handles booking conflict detection:
- Resolving the buffer that applies to an offering
- Checking a time range against the mentor's active bookings

A range conflicts with an existing booking when
``start < existing.end + buffer`` and ``end + buffer > existing.start``.
Only PendingPayment and Confirmed bookings take part.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import BookingConflictException
from ..models.availability import AvailabilityTemplate
from ..models.offering import Offering
from ..repositories import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class ConflictChecker(BaseService):
    """
    Service for checking booking conflicts.

    Reads always go to the database; nothing is cached so that checks made
    inside a unit of work see that unit's own writes.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)

    def resolve_template(self, offering: Offering) -> Optional[AvailabilityTemplate]:
        """
        The template governing an offering.

        The offering's dedicated template when it still exists, otherwise
        the mentor's default template.
        """
        if offering.template_id:
            template = self.availability_repository.get_by_id(offering.template_id)
            if template is not None:
                return template
        return self.availability_repository.get_default_template(offering.mentor_id)

    def resolve_buffer(self, offering: Offering) -> timedelta:
        template = self.resolve_template(offering)
        if template is not None:
            return timedelta(minutes=template.buffer_after_minutes)
        return timedelta(minutes=settings.default_buffer_minutes)

    @BaseService.measure_operation("check_booking_conflicts")
    def check_booking_conflicts(
        self,
        mentor_id: str,
        start_at: datetime,
        end_at: datetime,
        buffer: timedelta,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Check if a time range conflicts with existing bookings.

        Args:
            mentor_id: The mentor to check
            start_at: Start of the range (UTC)
            end_at: End of the range (UTC)
            buffer: Gap required around every session
            exclude_booking_id: Optional booking to leave out (reschedules)

        Returns:
            List of conflicts with booking details
        """
        bookings = self.repository.get_conflicting_bookings(
            mentor_id, start_at, end_at, buffer, exclude_booking_id
        )
        conflicts = [
            {
                "booking_id": booking.id,
                "start_at": booking.start_at.isoformat(),
                "end_at": booking.end_at.isoformat(),
                "status": booking.status,
            }
            for booking in bookings
        ]

        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} booking conflicts for {mentor_id} "
                f"between {start_at.isoformat()}-{end_at.isoformat()}"
            )

        return conflicts

    def ensure_no_conflict(
        self,
        mentor_id: str,
        start_at: datetime,
        end_at: datetime,
        buffer: timedelta,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        """Raise BookingConflictException when the range collides with an active booking."""
        conflicts = self.check_booking_conflicts(
            mentor_id, start_at, end_at, buffer, exclude_booking_id
        )
        if conflicts:
            raise BookingConflictException(details={"conflicts": conflicts})
