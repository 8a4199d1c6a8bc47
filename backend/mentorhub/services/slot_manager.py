# backend/mentorhub/services/slot_manager.py
"""
Slot Manager Service for MentorHub

Owns the booked/unbooked flag of slot inventory. A booking covers one or
more contiguous slots; claiming them is all-or-nothing inside the caller's
unit of work:

1. ``UPDATE ... SET is_booked = true WHERE id = ? AND is_booked = false``
   must touch exactly one row, and
2. a ``slot_claims`` row is inserted, whose unique ``slot_id`` rejects a
   second claimer even if both passed step 1 under weak isolation.

Either failure raises SlotClaimConflictException and the caller's
transaction rolls back every slot claimed so far.
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import SlotClaimConflictException
from ..models.availability import AvailabilitySlot
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def select_covering_chain(
    slots: Iterable[AvailabilitySlot], start_at: datetime, end_at: datetime
) -> Optional[List[AvailabilitySlot]]:
    """
    Pick contiguous slots whose union covers ``[start_at, end_at)``.

    Returns None when there is a gap. Slots are matched by exact adjacency:
    the first one must contain ``start_at`` and every next one must start
    where the previous ended.
    """
    by_start = {}
    for slot in sorted(slots, key=lambda s: (s.start_at, s.end_at)):
        by_start.setdefault(slot.start_at, slot)

    chain: List[AvailabilitySlot] = []
    first = next(
        (s for s in by_start.values() if s.start_at <= start_at < s.end_at),
        None,
    )
    if first is None:
        return None
    chain.append(first)
    cursor = first.end_at
    while cursor < end_at:
        nxt = by_start.get(cursor)
        if nxt is None:
            return None
        chain.append(nxt)
        cursor = nxt.end_at
    return chain


class SlotManager(BaseService):
    """Service for claiming and releasing slot inventory."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_slot_repository(db)

    def find_covering_slots(
        self,
        mentor_id: str,
        template_ids: Sequence[Optional[str]],
        start_at: datetime,
        end_at: datetime,
        *,
        claimed_by_booking_id: Optional[str] = None,
    ) -> Optional[List[AvailabilitySlot]]:
        """
        Unbooked slots covering a range, or None.

        Slots already claimed by ``claimed_by_booking_id`` count as free, so a
        booking being rescheduled can move within its own inventory.
        """
        candidates = self.repository.get_slots_in_range(
            mentor_id, start_at, end_at, template_ids=template_ids
        )
        own_slot_ids = set()
        if claimed_by_booking_id:
            own_slot_ids = {
                c.slot_id for c in self.repository.get_claims_for_booking(claimed_by_booking_id)
            }
        usable = [s for s in candidates if not s.is_booked or s.id in own_slot_ids]
        return select_covering_chain(usable, start_at, end_at)

    @BaseService.measure_operation("claim_slots")
    def claim_slots(
        self,
        booking_id: str,
        mentor_id: str,
        template_ids: Sequence[Optional[str]],
        start_at: datetime,
        end_at: datetime,
        now: datetime,
    ) -> List[AvailabilitySlot]:
        """
        Claim every slot covering the booking range.

        Must run inside the caller's transaction.

        Raises:
            SlotClaimConflictException: If any covering slot is gone or taken
        """
        chain = self.find_covering_slots(mentor_id, template_ids, start_at, end_at)
        if chain is None:
            prometheus_metrics.inc_slot_claim_conflict()
            raise SlotClaimConflictException(
                details={"start_at": start_at.isoformat(), "end_at": end_at.isoformat()},
            )

        for slot in chain:
            if not self.repository.mark_booked_if_free(slot.id):
                prometheus_metrics.inc_slot_claim_conflict()
                self.logger.warning(f"Slot {slot.id} was claimed concurrently")
                raise SlotClaimConflictException(slot.id)
            try:
                self.repository.add_claim(slot.id, booking_id, now)
            except IntegrityError as e:
                prometheus_metrics.inc_slot_claim_conflict()
                raise SlotClaimConflictException(slot.id) from e

        self.logger.info(f"Booking {booking_id} claimed {len(chain)} slot(s)")
        return chain

    @BaseService.measure_operation("release_slots")
    def release_slots(self, booking_id: str) -> List[str]:
        """Free every slot held by a booking. Idempotent."""
        slot_ids = self.repository.delete_claims_for_booking(booking_id)
        if slot_ids:
            self.repository.mark_free(slot_ids)
            self.logger.info(f"Booking {booking_id} released {len(slot_ids)} slot(s)")
        return slot_ids
