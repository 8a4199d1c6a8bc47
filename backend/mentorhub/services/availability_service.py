# backend/mentorhub/services/availability_service.py
"""
Availability Service for MentorHub

This service handles availability-related business logic:
- Saving templates with their weekly rules and date overrides
- Guarded template deletion
- Reconciling materialized slot inventory with the resolver
- Manual slot creation
- Listing bookable start times for an offering on a local date
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
from typing import TYPE_CHECKING, List, Optional

import pytz
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConflictException,
    DomainException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import day_bounds_utc, ensure_utc
from ..integrations.interfaces import Clock, SystemClock
from ..models.availability import AvailabilitySlot, AvailabilityTemplate
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import AvailabilityTemplateSave, ManualSlotCreate, ReconcileResult
from .availability_resolver import (
    OverrideSpec,
    ResolutionPolicy,
    RuleSpec,
    SlotWindow,
    resolve_slots,
)
from .base import BaseService, require_user_id
from .conflict_checker import ConflictChecker
from .slot_manager import select_covering_chain

# TYPE_CHECKING import to avoid circular dependencies
if TYPE_CHECKING:
    from ..integrations.interfaces import CurrentUserProvider

logger = logging.getLogger(__name__)

_POLICY_FIELDS = (
    "name",
    "timezone",
    "min_notice_hours",
    "max_booking_days_ahead",
    "buffer_after_minutes",
    "slot_granularity_minutes",
    "max_bookings_per_day",
)


class AvailabilityService(BaseService):
    """
    Service layer for availability operations.

    Mutations act on the current user's own templates; the current user is
    therefore always the mentor.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        user_provider: Optional["CurrentUserProvider"] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        super().__init__(db)
        self.clock = clock or SystemClock()
        self.user_provider = user_provider
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.offering_repository = RepositoryFactory.create_offering_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _get_owned_template(self, template_id: str, mentor_id: str) -> AvailabilityTemplate:
        template = self.repository.get_by_id(template_id)
        if template is None:
            raise NotFoundException("Availability template not found")
        if template.mentor_id != mentor_id:
            raise ForbiddenException("You can only manage your own availability")
        return template

    @BaseService.measure_operation("save_template")
    def save_template(
        self, data: AvailabilityTemplateSave, template_id: Optional[str] = None
    ) -> AvailabilityTemplate:
        """
        Create or replace a template, then reconcile its inventory.

        The first template a mentor saves becomes the default. Marking a
        template as default demotes the previous default in the same unit
        of work, so a mentor never has two.
        """
        mentor_id = require_user_id(self.user_provider)
        try:
            pytz.timezone(data.timezone)
        except pytz.UnknownTimeZoneError as e:
            raise ValidationException(
                f"Unknown timezone: {data.timezone}", code="INVALID_TIMEZONE"
            ) from e

        with self.transaction():
            current_default = self.repository.get_default_template(mentor_id)
            if template_id:
                template = self._get_owned_template(template_id, mentor_id)
            else:
                template = AvailabilityTemplate(mentor_id=mentor_id, is_default=False)
                self.db.add(template)

            make_default = data.is_default or current_default is None
            if template.is_default and not data.is_default:
                raise InvalidStateException(
                    "Mark another template as default instead of unsetting this one",
                    code="DEFAULT_TEMPLATE_REQUIRED",
                )
            if make_default and current_default is not None and current_default.id != template.id:
                current_default.is_default = False
                self.db.flush()
            template.is_default = make_default

            for field in _POLICY_FIELDS:
                setattr(template, field, getattr(data, field))
            self.db.flush()

            self.repository.replace_rules(template.id, [r.model_dump() for r in data.rules])
            self.repository.replace_overrides(
                template.id, [o.model_dump() for o in data.overrides]
            )
            self.log_operation(
                "save_template", template_id=template.id, mentor_id=mentor_id
            )
            self._reconcile(template)

        return template

    @BaseService.measure_operation("delete_template")
    def delete_template(self, template_id: str) -> None:
        """
        Delete a non-default template and its unbooked slots.

        Booked slots survive with their template reference cleared; offerings
        pointing at the template fall back to the default.
        """
        mentor_id = require_user_id(self.user_provider)
        with self.transaction():
            template = self._get_owned_template(template_id, mentor_id)
            if template.is_default:
                raise InvalidStateException(
                    "The default template cannot be deleted",
                    code="DEFAULT_TEMPLATE_REQUIRED",
                    details={"referenced": self.repository.is_template_referenced(template_id)},
                )

            slots = self.slot_repository.find_by(template_id=template_id)
            self.slot_repository.delete_unbooked([s.id for s in slots if not s.is_booked])
            for slot in slots:
                if slot.is_booked:
                    slot.template_id = None
            for offering in self.offering_repository.find_by(template_id=template_id):
                offering.template_id = None
            self.repository.replace_rules(template_id, [])
            self.repository.replace_overrides(template_id, [])
            self.db.delete(template)
            self.log_operation("delete_template", template_id=template_id, mentor_id=mentor_id)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    @BaseService.measure_operation("reconcile_inventory")
    def reconcile_inventory(self, template_id: str) -> ReconcileResult:
        """Bring the template's future slots in line with its current rules."""
        with self.transaction():
            template = self.repository.get_by_id(template_id)
            if template is None:
                raise NotFoundException("Availability template not found")
            return self._reconcile(template)

    @BaseService.measure_operation("reconcile_all_templates")
    def reconcile_all_templates(self) -> List[ReconcileResult]:
        """Roll every template's inventory window forward; run nightly."""
        results: List[ReconcileResult] = []
        for template in self.repository.find_by():
            try:
                results.append(self.reconcile_inventory(template.id))
            except DomainException as e:
                self.logger.error(
                    f"Inventory reconcile failed for template {template.id}: {e.message}"
                )
        return results

    def _reconcile(self, template: AvailabilityTemplate) -> ReconcileResult:
        """
        Diff a fresh resolution against the stored slots.

        Unbooked slots outside the resolution are deleted and missing
        windows are added. Booked slots are never touched.
        """
        now = self.clock.now()
        window_from = now
        window_to = now + timedelta(days=template.max_booking_days_ahead)

        booked = [
            SlotWindow(s.start_at, s.end_at)
            for s in self.slot_repository.get_slots_in_range(
                template.mentor_id, window_from, window_to, is_booked=True
            )
        ]
        resolved = resolve_slots(
            ResolutionPolicy.from_template(template),
            [RuleSpec.from_model(r) for r in self.repository.get_rules(template.id)],
            [OverrideSpec.from_model(o) for o in self.repository.get_overrides(template.id)],
            window_from,
            window_to,
            now,
            booked,
        )
        wanted = set(resolved)

        existing = self.slot_repository.get_template_slots_from(template.id, window_from)
        existing_windows = set()
        stale_ids: List[str] = []
        kept_booked = 0
        for slot in existing:
            window = SlotWindow(slot.start_at, slot.end_at)
            if slot.is_booked:
                kept_booked += 1
            elif window in wanted:
                existing_windows.add(window)
            else:
                stale_ids.append(slot.id)

        deleted = self.slot_repository.delete_unbooked(stale_ids)
        self.db.flush()
        missing = sorted(wanted - existing_windows)
        self.slot_repository.bulk_create(
            [
                {
                    "mentor_id": template.mentor_id,
                    "template_id": template.id,
                    "start_at": w.start_at,
                    "end_at": w.end_at,
                    "is_booked": False,
                }
                for w in missing
            ]
        )

        self.logger.info(
            f"Reconciled template {template.id}: +{len(missing)} -{deleted} "
            f"(booked kept: {kept_booked})"
        )
        return ReconcileResult(
            template_id=template.id,
            created=len(missing),
            deleted=deleted,
            kept_booked=kept_booked,
        )

    @BaseService.measure_operation("create_manual_slot")
    def create_manual_slot(self, data: ManualSlotCreate) -> AvailabilitySlot:
        """Add a one-off slot outside any template."""
        mentor_id = require_user_id(self.user_provider)
        start_at, end_at = ensure_utc(data.start_at), ensure_utc(data.end_at)
        if start_at <= self.clock.now():
            raise ValidationException("Slots must start in the future", code="SLOT_IN_PAST")

        with self.transaction():
            overlapping = self.slot_repository.get_slots_in_range(
                mentor_id, start_at, end_at, template_ids=[None]
            )
            if overlapping:
                raise ConflictException(
                    "This slot overlaps an existing manual slot",
                    code="SLOT_OVERLAP",
                    details={"slot_ids": [s.id for s in overlapping]},
                )
            slot = self.slot_repository.create(
                mentor_id=mentor_id,
                template_id=None,
                start_at=start_at,
                end_at=end_at,
                is_booked=False,
            )
            self.log_operation("create_manual_slot", slot_id=slot.id, mentor_id=mentor_id)
        return slot

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @BaseService.measure_operation("get_available_start_times")
    def get_available_start_times(self, offering_id: str, local_date: date) -> List[datetime]:
        """
        Start instants on a local date at which the offering can be booked.

        Candidates step by the template granularity through unbooked
        inventory; each must be covered for the whole duration, respect the
        notice window and clear the buffer around existing bookings.
        """
        offering = self.offering_repository.get_active(offering_id)
        if offering is None:
            raise NotFoundException("Offering not found")

        template = self.conflict_checker.resolve_template(offering)
        tz_name = template.timezone if template is not None else "UTC"
        granularity = timedelta(
            minutes=template.slot_granularity_minutes if template is not None else 30
        )
        notice_hours = max(
            settings.min_booking_lead_hours, template.min_notice_hours if template else 0
        )
        template_ids: List[Optional[str]] = [template.id] if template is not None else []
        template_ids.append(None)

        day_start, day_end = day_bounds_utc(local_date, tz_name)
        duration = timedelta(minutes=offering.duration_minutes)
        slots = self.slot_repository.get_slots_in_range(
            offering.mentor_id,
            day_start,
            day_end + duration,
            template_ids=template_ids,
            is_booked=False,
        )
        buffer = self.conflict_checker.resolve_buffer(offering)
        earliest = self.clock.now() + timedelta(hours=notice_hours)

        starts: List[datetime] = []
        for slot in slots:
            candidate = slot.start_at
            while candidate < slot.end_at and candidate < day_end:
                end = candidate + duration
                if (
                    candidate >= max(earliest, day_start)
                    and candidate not in starts
                    and select_covering_chain(slots, candidate, end) is not None
                    and not self.conflict_checker.check_booking_conflicts(
                        offering.mentor_id, candidate, end, buffer
                    )
                ):
                    starts.append(candidate)
                candidate += granularity
        return sorted(starts)
