"""Group class Repository for MentorHub."""

from typing import List

from sqlalchemy.orm import Session

from ..models.group_class import ClassEnrollment, GroupClass
from .base_repository import BaseRepository


class GroupClassRepository(BaseRepository[GroupClass]):
    def __init__(self, db: Session):
        super().__init__(db, GroupClass)

    def get_enrollment(self, enrollment_id: str) -> ClassEnrollment | None:
        return self.db.query(ClassEnrollment).filter(ClassEnrollment.id == enrollment_id).first()

    def get_enrollments(self, class_id: str) -> List[ClassEnrollment]:
        query = self.db.query(ClassEnrollment).filter(ClassEnrollment.class_id == class_id)
        return self._execute_query(query.order_by(ClassEnrollment.created_at))
