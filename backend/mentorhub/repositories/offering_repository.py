"""Offering Repository for MentorHub."""

from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..models.offering import Offering
from .base_repository import BaseRepository


class OfferingRepository(BaseRepository[Offering]):
    def __init__(self, db: Session):
        super().__init__(db, Offering)

    def get_active(self, offering_id: str) -> Optional[Offering]:
        return cast(Optional[Offering], self.find_one_by(id=offering_id, is_active=True))

    def get_for_mentor(self, mentor_id: str, active_only: bool = True) -> List[Offering]:
        query = self._build_query().filter(Offering.mentor_id == mentor_id)
        if active_only:
            query = query.filter(Offering.is_active.is_(True))
        return self._execute_query(query.order_by(Offering.title))
