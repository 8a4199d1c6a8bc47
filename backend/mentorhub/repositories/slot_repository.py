# backend/mentorhub/repositories/slot_repository.py
"""
Slot Repository for MentorHub

Data access for the materialized slot inventory and the claims that bind
slots to bookings. The claim path is a conditional UPDATE on the slot row
plus an INSERT into ``slot_claims``, whose unique ``slot_id`` makes the
database the final arbiter between concurrent claimers.
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional, Sequence, cast

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilitySlot, SlotClaim
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SlotRepository(BaseRepository[AvailabilitySlot]):
    """Repository for slot inventory and slot claims."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilitySlot)

    def get_slots_in_range(
        self,
        mentor_id: str,
        start_at: datetime,
        end_at: datetime,
        *,
        template_ids: Optional[Sequence[Optional[str]]] = None,
        is_booked: Optional[bool] = None,
    ) -> List[AvailabilitySlot]:
        """
        Slots for a mentor that intersect ``[start_at, end_at)``, ordered by start.

        ``template_ids`` may contain None to include manually created slots.
        """
        query = self._build_query().filter(
            AvailabilitySlot.mentor_id == mentor_id,
            AvailabilitySlot.start_at < end_at,
            AvailabilitySlot.end_at > start_at,
        )
        if template_ids is not None:
            concrete = [t for t in template_ids if t is not None]
            condition = AvailabilitySlot.template_id.in_(concrete)
            if None in template_ids:
                condition = condition | AvailabilitySlot.template_id.is_(None)
            query = query.filter(condition)
        if is_booked is not None:
            query = query.filter(AvailabilitySlot.is_booked.is_(is_booked))
        return self._execute_query(query.order_by(AvailabilitySlot.start_at))

    def get_template_slots_from(
        self, template_id: str, start_at: datetime
    ) -> List[AvailabilitySlot]:
        query = self._build_query().filter(
            AvailabilitySlot.template_id == template_id,
            AvailabilitySlot.start_at >= start_at,
        )
        return self._execute_query(query.order_by(AvailabilitySlot.start_at))

    def delete_unbooked(self, slot_ids: Iterable[str]) -> int:
        """Delete the given slots, skipping any that got booked in the meantime."""
        ids = list(slot_ids)
        if not ids:
            return 0
        try:
            return cast(
                int,
                self.db.query(AvailabilitySlot)
                .filter(AvailabilitySlot.id.in_(ids), AvailabilitySlot.is_booked.is_(False))
                .delete(synchronize_session=False),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting unbooked slots: {str(e)}")
            raise RepositoryException(f"Failed to delete slots: {str(e)}")

    # Claims

    def mark_booked_if_free(self, slot_id: str) -> bool:
        """
        Flip ``is_booked`` only if the slot is still free.

        Returns True when this call won the slot.
        """
        try:
            result = self.db.execute(
                update(AvailabilitySlot)
                .where(AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(False))
                .values(is_booked=True)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error claiming slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to claim slot: {str(e)}")

    def mark_free(self, slot_ids: Iterable[str]) -> int:
        ids = list(slot_ids)
        if not ids:
            return 0
        try:
            result = self.db.execute(
                update(AvailabilitySlot)
                .where(AvailabilitySlot.id.in_(ids))
                .values(is_booked=False)
            )
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error releasing slots: {str(e)}")
            raise RepositoryException(f"Failed to release slots: {str(e)}")

    def add_claim(self, slot_id: str, booking_id: str, claimed_at: datetime) -> SlotClaim:
        """Insert the claim row; IntegrityError means another booking holds the slot."""
        claim = SlotClaim(slot_id=slot_id, booking_id=booking_id, claimed_at=claimed_at)
        try:
            self.db.add(claim)
            self.db.flush()
            return claim
        except IntegrityError:
            self.logger.warning(f"Slot {slot_id} already claimed")
            raise

    def get_claims_for_booking(self, booking_id: str) -> List[SlotClaim]:
        try:
            return cast(
                List[SlotClaim],
                self.db.query(SlotClaim).filter(SlotClaim.booking_id == booking_id).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading claims for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load slot claims: {str(e)}")

    def delete_claims_for_booking(self, booking_id: str) -> List[str]:
        """Drop a booking's claims and return the released slot ids."""
        claims = self.get_claims_for_booking(booking_id)
        slot_ids = [c.slot_id for c in claims]
        try:
            for claim in claims:
                self.db.delete(claim)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting claims for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to delete slot claims: {str(e)}")
        return slot_ids
