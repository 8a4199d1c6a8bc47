# backend/mentorhub/repositories/availability_repository.py
"""
Availability Repository for MentorHub

Data access for availability templates and the rules and overrides they
own. Slot inventory lives in SlotRepository.
"""

from datetime import date
import logging
from typing import Iterable, List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityOverride, AvailabilityRule, AvailabilityTemplate
from ..models.offering import Offering
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilityTemplate]):
    """Repository for availability templates, rules and overrides."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilityTemplate)

    # Templates

    def get_default_template(self, mentor_id: str) -> Optional[AvailabilityTemplate]:
        return cast(
            Optional[AvailabilityTemplate],
            self.find_one_by(mentor_id=mentor_id, is_default=True),
        )

    def get_templates_for_mentor(self, mentor_id: str) -> List[AvailabilityTemplate]:
        query = (
            self._build_query()
            .filter(AvailabilityTemplate.mentor_id == mentor_id)
            .order_by(AvailabilityTemplate.is_default.desc(), AvailabilityTemplate.name)
        )
        return self._execute_query(query)

    def is_template_referenced(self, template_id: str) -> bool:
        """Whether any offering still points at the template."""
        try:
            return (
                self.db.query(Offering.id).filter(Offering.template_id == template_id).first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking template references: {str(e)}")
            raise RepositoryException(f"Failed to check template references: {str(e)}")

    # Rules

    def get_rules(self, template_id: str, active_only: bool = False) -> List[AvailabilityRule]:
        try:
            query = self.db.query(AvailabilityRule).filter(
                AvailabilityRule.template_id == template_id
            )
            if active_only:
                query = query.filter(AvailabilityRule.is_active.is_(True))
            return cast(
                List[AvailabilityRule],
                query.order_by(AvailabilityRule.day_of_week, AvailabilityRule.slot_index).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting rules for template {template_id}: {str(e)}")
            raise RepositoryException(f"Failed to get availability rules: {str(e)}")

    def replace_rules(self, template_id: str, rules: Iterable[dict]) -> List[AvailabilityRule]:
        """Swap the template's rule set for a new one."""
        try:
            self.db.query(AvailabilityRule).filter(
                AvailabilityRule.template_id == template_id
            ).delete(synchronize_session=False)
            created = [AvailabilityRule(template_id=template_id, **data) for data in rules]
            self.db.add_all(created)
            self.db.flush()
            return created
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing rules for template {template_id}: {str(e)}")
            raise RepositoryException(f"Failed to replace availability rules: {str(e)}")

    # Overrides

    def get_overrides(
        self,
        template_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[AvailabilityOverride]:
        try:
            query = self.db.query(AvailabilityOverride).filter(
                AvailabilityOverride.template_id == template_id
            )
            if start_date is not None:
                query = query.filter(AvailabilityOverride.date >= start_date)
            if end_date is not None:
                query = query.filter(AvailabilityOverride.date <= end_date)
            return cast(List[AvailabilityOverride], query.order_by(AvailabilityOverride.date).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting overrides for template {template_id}: {str(e)}")
            raise RepositoryException(f"Failed to get availability overrides: {str(e)}")

    def replace_overrides(
        self, template_id: str, overrides: Iterable[dict]
    ) -> List[AvailabilityOverride]:
        try:
            self.db.query(AvailabilityOverride).filter(
                AvailabilityOverride.template_id == template_id
            ).delete(synchronize_session=False)
            created = [AvailabilityOverride(template_id=template_id, **data) for data in overrides]
            self.db.add_all(created)
            self.db.flush()
            return created
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing overrides for template {template_id}: {str(e)}")
            raise RepositoryException(f"Failed to replace availability overrides: {str(e)}")
