"""Payout Repository for MentorHub."""

from datetime import datetime
from typing import List, Optional, cast

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payout import PayoutRequest, PayoutStatus
from .base_repository import BaseRepository


class PayoutRepository(BaseRepository[PayoutRequest]):
    def __init__(self, db: Session):
        super().__init__(db, PayoutRequest)

    def get_pending_for_mentor(self, mentor_id: str) -> Optional[PayoutRequest]:
        return cast(
            Optional[PayoutRequest],
            self.find_one_by(mentor_id=mentor_id, status=PayoutStatus.PENDING.value),
        )

    def get_for_mentor(self, mentor_id: str) -> List[PayoutRequest]:
        query = self._build_query().filter(PayoutRequest.mentor_id == mentor_id)
        return self._execute_query(query.order_by(PayoutRequest.requested_at.desc()))

    def transition_if_pending(
        self,
        payout_id: str,
        new_status: PayoutStatus,
        *,
        processed_by_id: str,
        processed_at: datetime,
        admin_note: Optional[str],
    ) -> bool:
        """
        Compare-and-swap the status out of Pending.

        Returns False when another processor got there first.
        """
        try:
            result = self.db.execute(
                update(PayoutRequest)
                .where(
                    PayoutRequest.id == payout_id,
                    PayoutRequest.status == PayoutStatus.PENDING.value,
                )
                .values(
                    status=new_status.value,
                    processed_by_id=processed_by_id,
                    processed_at=processed_at,
                    admin_note=admin_note,
                )
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning payout {payout_id}: {str(e)}")
            raise RepositoryException(f"Failed to update payout request: {str(e)}")
