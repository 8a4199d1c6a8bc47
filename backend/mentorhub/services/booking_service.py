# backend/mentorhub/services/booking_service.py
"""
Booking Service for MentorHub

Handles all booking-related business logic:
- Creating bookings against slot inventory
- Payment capture, which claims the covering slots
- Cancellation, completion and no-show reporting
- Reschedule negotiation between the two parties
- Disputes and their admin resolution
- Expiry of unpaid bookings and the post-session attendance sweep

Every operation re-reads the booking inside its own unit of work and
validates against that fresh state before writing. Ledger flows triggered
by a transition run inside the same unit of work (see SettlementService);
notifications and delayed jobs run only after it commits.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConflictException,
    DomainException,
    ForbiddenException,
    InsufficientNoticeException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc
from ..events.booking_events import (
    BookingCancelled,
    BookingCompleted,
    BookingConfirmed,
    BookingCreated,
    BookingDisputed,
    BookingDisputeResolved,
    BookingExpired,
    BookingNoShowRecorded,
    BookingRescheduled,
    BookingRescheduleProposed,
    BookingRescheduleRejected,
)
from ..integrations.interfaces import Clock, SystemClock
from ..models.booking import Booking, BookingStatus, Party
from ..models.offering import Offering
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate, DisputeResolutionRequest, RescheduleProposal
from .base import BaseService, require_user_id
from .conflict_checker import ConflictChecker
from .slot_manager import SlotManager

if TYPE_CHECKING:
    from ..events.publisher import EventPublisher
    from ..integrations.interfaces import CurrentUserProvider, RoleChecker, VideoSessionLookup

logger = logging.getLogger(__name__)

BOOKING_RESOURCE_TYPE = "booking"


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Centralizes booking business logic and coordinates with slot
    inventory, conflict detection and the event publisher.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        user_provider: Optional["CurrentUserProvider"] = None,
        role_checker: Optional["RoleChecker"] = None,
        event_publisher: Optional["EventPublisher"] = None,
        video_lookup: Optional["VideoSessionLookup"] = None,
        slot_manager: Optional[SlotManager] = None,
        conflict_checker: Optional[ConflictChecker] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            clock: Source of the current instant
            user_provider: Identifies the caller
            role_checker: Grants admin-only operations
            event_publisher: Receives booking lifecycle events
            video_lookup: Reports who joined a session, for no-show rules
            slot_manager: Optional SlotManager instance
            conflict_checker: Optional ConflictChecker instance
        """
        super().__init__(db, event_publisher)
        self.clock = clock or SystemClock()
        self.user_provider = user_provider
        self.role_checker = role_checker
        self.video_lookup = video_lookup
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.offering_repository = RepositoryFactory.create_offering_repository(db)
        self.slot_manager = slot_manager or SlotManager(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _publish(self, event: Any) -> None:
        if self.event_publisher is not None:
            self.event_publisher.publish(event)

    def _load_for_update(self, booking_id: str) -> Booking:
        booking = self.repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    def _require_party(self, booking: Booking, user_id: str) -> Party:
        party = booking.party_of(user_id)
        if party is None:
            raise ForbiddenException("You are not a participant in this booking")
        return party

    def _require_admin(self) -> str:
        user_id = require_user_id(self.user_provider)
        if self.role_checker is None or not self.role_checker.is_admin(user_id):
            raise ForbiddenException("Admin access required", code="ADMIN_REQUIRED")
        return user_id

    def _inventory_template_ids(self, offering: Offering) -> List[Optional[str]]:
        """Templates whose slots a student booking this offering may use; None is manual slots."""
        template = self.conflict_checker.resolve_template(offering)
        return [template.id, None] if template is not None else [None]

    def _get_offering(self, offering_id: str) -> Offering:
        offering = self.offering_repository.get_by_id(offering_id)
        if offering is None:
            raise NotFoundException("Offering not found")
        return offering

    @staticmethod
    def _validate_reason(reason: Optional[str], max_length: int, field: str) -> str:
        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationException(f"A {field} is required", code="REASON_REQUIRED")
        if len(cleaned) > max_length:
            raise ValidationException(
                f"The {field} must be at most {max_length} characters",
                code="REASON_TOO_LONG",
                details={"max_length": max_length},
            )
        return cleaned

    def _record_transition(self, booking: Booking) -> None:
        prometheus_metrics.inc_booking_transition(booking.status)

    # ------------------------------------------------------------------
    # Creation and payment
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_booking")
    def create_booking(self, data: BookingCreate) -> Booking:
        """
        Create a booking in PendingPayment.

        No slot is claimed yet; inventory must merely cover the range and
        the mentor must be free under the buffer rule.

        Raises:
            NotFoundException: Offering missing or inactive
            ValidationException: Self-booking, duration or window violations
            InsufficientNoticeException: Start too soon
            ConflictException: Inventory gap or clash with another booking
        """
        student_id = require_user_id(self.user_provider)
        offering = self.offering_repository.get_active(data.offering_id)
        if offering is None:
            raise NotFoundException("Offering not found")
        if offering.mentor_id == student_id:
            raise ValidationException("You cannot book your own offering", code="SELF_BOOKING")

        duration = data.duration_minutes or offering.duration_minutes
        if not settings.min_duration_minutes <= duration <= settings.max_duration_minutes:
            raise ValidationException(
                f"Duration must be between {settings.min_duration_minutes} and "
                f"{settings.max_duration_minutes} minutes",
                code="INVALID_DURATION",
                details={"duration_minutes": duration},
            )

        now = self.clock.now()
        start_at = ensure_utc(data.start_at)
        end_at = start_at + timedelta(minutes=duration)
        template = self.conflict_checker.resolve_template(offering)
        required_hours = max(
            settings.min_booking_lead_hours, template.min_notice_hours if template else 0
        )
        if start_at < now + timedelta(hours=required_hours):
            raise InsufficientNoticeException(
                required_hours, (start_at - now).total_seconds() / 3600
            )
        if template is not None and end_at > now + timedelta(days=template.max_booking_days_ahead):
            raise ValidationException(
                "Bookings cannot be made that far in advance",
                code="BEYOND_BOOKING_WINDOW",
                details={"max_booking_days_ahead": template.max_booking_days_ahead},
            )

        with self.unit_of_work():
            self._expire_stale_pending(student_id, offering.mentor_id, now)

            covering = self.slot_manager.find_covering_slots(
                offering.mentor_id, self._inventory_template_ids(offering), start_at, end_at
            )
            if covering is None:
                raise ConflictException(
                    "The requested time is not available", code="SLOT_UNAVAILABLE"
                )
            self.conflict_checker.ensure_no_conflict(
                offering.mentor_id, start_at, end_at, self.conflict_checker.resolve_buffer(offering)
            )

            booking = self.repository.create(
                student_id=student_id,
                mentor_id=offering.mentor_id,
                offering_id=offering.id,
                start_at=start_at,
                end_at=end_at,
                duration_minutes=duration,
                price_amount=offering.price_amount,
                currency=offering.currency,
                status=BookingStatus.PENDING_PAYMENT.value,
                booked_at=now,
            )
            self._publish(
                BookingCreated(
                    booking_id=booking.id,
                    student_id=student_id,
                    mentor_id=offering.mentor_id,
                    start_at=start_at,
                    created_at=now,
                )
            )

        self._record_transition(booking)
        self.log_operation("create_booking", booking_id=booking.id, student_id=student_id)
        return booking

    def _expire_stale_pending(self, student_id: str, mentor_id: str, now: datetime) -> None:
        """A student starting a new booking abandons their unpaid ones with the same mentor."""
        for stale in self.repository.get_stale_pending_bookings(student_id, mentor_id):
            stale.expire(now)
            self._publish(BookingExpired(booking_id=stale.id, expired_at=now))
            self.logger.info(f"Expired stale pending booking {stale.id}")
        self.db.flush()

    @BaseService.measure_operation("confirm_booking_payment")
    def confirm_payment(self, booking_id: str) -> Booking:
        """
        Payment captured: claim the covering slots and confirm.

        Called by the payment integration, not by a user.

        Raises:
            InvalidStateException: Booking is no longer PendingPayment
            SlotClaimConflictException: A covering slot was taken
            BookingConflictException: Another booking now clashes
        """
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            if booking.status_enum is not BookingStatus.PENDING_PAYMENT:
                raise InvalidStateException(
                    "Only bookings awaiting payment can be confirmed",
                    current_status=booking.status,
                )
            offering = self._get_offering(booking.offering_id)
            now = self.clock.now()

            self.conflict_checker.ensure_no_conflict(
                booking.mentor_id,
                booking.start_at,
                booking.end_at,
                self.conflict_checker.resolve_buffer(offering),
                exclude_booking_id=booking.id,
            )
            self.slot_manager.claim_slots(
                booking.id,
                booking.mentor_id,
                self._inventory_template_ids(offering),
                booking.start_at,
                booking.end_at,
                now,
            )
            booking.confirm(now)
            self.db.flush()
            self._publish(
                BookingConfirmed(
                    booking_id=booking.id,
                    student_id=booking.student_id,
                    mentor_id=booking.mentor_id,
                    start_at=booking.start_at,
                    amount=booking.price_amount,
                    confirmed_at=now,
                )
            )

        self._record_transition(booking)
        self.log_operation("confirm_booking_payment", booking_id=booking.id)
        return booking

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, reason: Optional[str]) -> Booking:
        """
        Cancel a booking as either participant and release its slots.

        Raises:
            ForbiddenException: Caller is not a participant
            ValidationException: Missing or overlong reason
            InvalidStateException: Booking is not active
        """
        user_id = require_user_id(self.user_provider)
        cleaned = self._validate_reason(
            reason, settings.max_cancellation_reason_length, "cancellation reason"
        )
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            party = self._require_party(booking, user_id)
            was_confirmed = booking.status_enum is BookingStatus.CONFIRMED
            now = self.clock.now()

            booking.cancel(user_id, cleaned, now)
            self.slot_manager.release_slots(booking.id)
            self.db.flush()
            self._publish(
                BookingCancelled(
                    booking_id=booking.id,
                    cancelled_by=party.value,
                    start_at=booking.start_at,
                    cancelled_at=now,
                    was_confirmed=was_confirmed,
                )
            )

        self._record_transition(booking)
        self.log_operation("cancel_booking", booking_id=booking.id, cancelled_by=party.value)
        return booking

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str) -> Booking:
        """Mark a session completed; assigned mentor only, never before its end."""
        user_id = require_user_id(self.user_provider)
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            if booking.party_of(user_id) is not Party.MENTOR:
                raise ForbiddenException("Only the assigned mentor can complete this booking")
            now = self.clock.now()
            try:
                booking.complete(now)
            except InvalidStateException as e:
                self.logger.warning(
                    f"Rejected completion of booking {booking.id} by {user_id}: {e.message}"
                )
                raise
            self.db.flush()
            self._publish(BookingCompleted(booking_id=booking.id, completed_at=now))

        self._record_transition(booking)
        self.log_operation("complete_booking", booking_id=booking.id)
        return booking

    @BaseService.measure_operation("report_no_show")
    def report_no_show(self, booking_id: str) -> Booking:
        """
        Mentor reports that the student did not attend.

        Allowed once ``no_show_wait_minutes`` have passed since the start
        (skipped under the dev session bypass) and only when the video
        session does not show the student as a participant.
        """
        user_id = require_user_id(self.user_provider)
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            if booking.party_of(user_id) is not Party.MENTOR:
                raise ForbiddenException("Only the assigned mentor can report a no-show")
            if booking.status_enum is not BookingStatus.CONFIRMED:
                raise InvalidStateException(
                    "Only confirmed bookings can be reported as no-show",
                    current_status=booking.status,
                )
            now = self.clock.now()
            earliest = booking.start_at + timedelta(minutes=settings.no_show_wait_minutes)
            if now < earliest and not settings.dev_mode_session_bypass:
                raise InvalidStateException(
                    "A no-show can only be reported after the waiting period",
                    current_status=booking.status,
                    code="NO_SHOW_TOO_EARLY",
                    details={"available_at": earliest.isoformat()},
                )
            if booking.student_id in self._participants(booking):
                self.logger.warning(
                    f"No-show rejected for booking {booking.id}: student joined the session"
                )
                raise InvalidStateException(
                    "The student joined this session",
                    current_status=booking.status,
                    code="STUDENT_ATTENDED",
                )

            booking.mark_no_show(BookingStatus.STUDENT_NO_SHOW, now, reported_by_id=user_id)
            self.db.flush()
            self._publish(
                BookingNoShowRecorded(
                    booking_id=booking.id,
                    outcome=BookingStatus.STUDENT_NO_SHOW.value,
                    recorded_at=now,
                )
            )

        self._record_transition(booking)
        self.log_operation("report_no_show", booking_id=booking.id)
        return booking

    def _participants(self, booking: Booking) -> Set[str]:
        if self.video_lookup is None:
            return set()
        return set(self.video_lookup.participants(BOOKING_RESOURCE_TYPE, booking.id))

    @BaseService.measure_operation("expire_booking")
    def expire_booking(self, booking_id: str) -> Booking:
        """Payment window elapsed; a no-op guard rejects anything not PendingPayment."""
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            now = self.clock.now()
            booking.expire(now)
            self.db.flush()
            self._publish(BookingExpired(booking_id=booking.id, expired_at=now))

        self._record_transition(booking)
        return booking

    # ------------------------------------------------------------------
    # Reschedule negotiation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("propose_reschedule")
    def propose_reschedule(self, booking_id: str, data: RescheduleProposal) -> Booking:
        """
        Record a proposed new range for a confirmed booking.

        Raises:
            InvalidStateException: Not confirmed, proposal pending, too late or limit reached
            ValidationException: Duration mismatch or new start too soon
            ConflictException: Proposed range not covered by free inventory
        """
        user_id = require_user_id(self.user_provider)
        start_at, end_at = ensure_utc(data.start_at), ensure_utc(data.end_at)
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            party = self._require_party(booking, user_id)
            if booking.status_enum is not BookingStatus.CONFIRMED:
                raise InvalidStateException(
                    "Only confirmed bookings can be rescheduled", current_status=booking.status
                )
            if booking.reschedule_count_for(party) >= settings.reschedule_limit_per_party:
                raise InvalidStateException(
                    "Reschedule limit reached",
                    current_status=booking.status,
                    code="RESCHEDULE_LIMIT_REACHED",
                    details={"limit": settings.reschedule_limit_per_party},
                )

            now = self.clock.now()
            min_lead = timedelta(hours=settings.reschedule_min_lead_hours)
            if now > booking.start_at - min_lead:
                raise InvalidStateException(
                    "It is too close to the session to reschedule",
                    current_status=booking.status,
                    code="RESCHEDULE_TOO_LATE",
                )
            if start_at < now + min_lead:
                raise ValidationException(
                    "The new time must leave enough notice",
                    code="INSUFFICIENT_NOTICE",
                    details={"required_hours": settings.reschedule_min_lead_hours},
                )
            if end_at - start_at != booking.end_at - booking.start_at:
                raise ValidationException(
                    "A reschedule must keep the session duration",
                    code="DURATION_MISMATCH",
                    details={"duration_minutes": booking.duration_minutes},
                )

            offering = self._get_offering(booking.offering_id)
            covering = self.slot_manager.find_covering_slots(
                booking.mentor_id,
                self._inventory_template_ids(offering),
                start_at,
                end_at,
                claimed_by_booking_id=booking.id,
            )
            if covering is None:
                raise ConflictException(
                    "The proposed time is not available", code="SLOT_UNAVAILABLE"
                )

            booking.propose_reschedule(start_at, end_at, user_id, now)
            self.db.flush()
            self._publish(
                BookingRescheduleProposed(
                    booking_id=booking.id,
                    requested_by=party.value,
                    proposed_start_at=start_at,
                    proposed_end_at=end_at,
                )
            )

        self.log_operation("propose_reschedule", booking_id=booking.id, requested_by=party.value)
        return booking

    def _require_counterparty(self, booking: Booking, user_id: str) -> Party:
        party = self._require_party(booking, user_id)
        if not booking.has_pending_reschedule:
            raise InvalidStateException(
                "No reschedule proposal is pending",
                current_status=booking.status,
                code="NO_PENDING_RESCHEDULE",
            )
        if booking.reschedule_requested_by_id == user_id:
            raise ForbiddenException(
                "The other participant must respond to this proposal",
                code="REQUESTER_CANNOT_RESPOND",
            )
        return party

    @BaseService.measure_operation("approve_reschedule")
    def approve_reschedule(self, booking_id: str) -> Booking:
        """
        Accept the pending proposal.

        Conflict detection is re-run against the current bookings, excluding
        this one, in the same transaction as the write. On conflict the whole
        unit of work rolls back and the booking keeps its proposal.
        """
        user_id = require_user_id(self.user_provider)
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            self._require_counterparty(booking, user_id)
            offering = self._get_offering(booking.offering_id)
            new_start = booking.pending_reschedule_start_at
            new_end = booking.pending_reschedule_end_at
            previous_start = booking.start_at
            now = self.clock.now()

            self.conflict_checker.ensure_no_conflict(
                booking.mentor_id,
                new_start,
                new_end,
                self.conflict_checker.resolve_buffer(offering),
                exclude_booking_id=booking.id,
            )
            self.slot_manager.release_slots(booking.id)
            self.slot_manager.claim_slots(
                booking.id,
                booking.mentor_id,
                self._inventory_template_ids(offering),
                new_start,
                new_end,
                now,
            )
            booking.apply_reschedule()
            self.db.flush()
            self._publish(
                BookingRescheduled(
                    booking_id=booking.id,
                    previous_start_at=previous_start,
                    start_at=booking.start_at,
                    end_at=booking.end_at,
                )
            )

        self.log_operation("approve_reschedule", booking_id=booking.id)
        return booking

    @BaseService.measure_operation("reject_reschedule")
    def reject_reschedule(self, booking_id: str) -> Booking:
        """Decline the pending proposal; only the pending fields change."""
        user_id = require_user_id(self.user_provider)
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            party = self._require_counterparty(booking, user_id)
            booking.clear_reschedule()
            self.db.flush()
            self._publish(BookingRescheduleRejected(booking_id=booking.id, rejected_by=party.value))

        self.log_operation("reject_reschedule", booking_id=booking.id, rejected_by=party.value)
        return booking

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    @BaseService.measure_operation("open_dispute")
    def open_dispute(self, booking_id: str, reason: Optional[str]) -> Booking:
        """Student disputes the outcome of a session that has ended."""
        user_id = require_user_id(self.user_provider)
        cleaned = self._validate_reason(
            reason, settings.max_dispute_reason_length, "dispute reason"
        )
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            if booking.party_of(user_id) is not Party.STUDENT:
                raise ForbiddenException("Only the student can dispute this booking")
            now = self.clock.now()
            booking.open_dispute(cleaned, now)
            self.db.flush()
            self._publish(BookingDisputed(booking_id=booking.id, disputed_at=now))

        self._record_transition(booking)
        self.log_operation("open_dispute", booking_id=booking.id)
        return booking

    @BaseService.measure_operation("resolve_dispute")
    def resolve_dispute(self, booking_id: str, data: DisputeResolutionRequest) -> Booking:
        """Admin closes a dispute in favor of the student (refund) or the mentor."""
        admin_id = self._require_admin()
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            now = self.clock.now()
            booking.resolve_dispute(data.resolution, admin_id, data.note, now)
            self.db.flush()
            self._publish(
                BookingDisputeResolved(
                    booking_id=booking.id,
                    resolution=data.resolution.value,
                    resolved_at=now,
                )
            )

        self._record_transition(booking)
        self.log_operation(
            "resolve_dispute", booking_id=booking.id, resolution=data.resolution.value
        )
        return booking

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @BaseService.measure_operation("get_booking_for_user")
    def get_booking(self, booking_id: str) -> Booking:
        user_id = require_user_id(self.user_provider)
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        if booking.party_of(user_id) is None:
            is_admin = self.role_checker is not None and self.role_checker.is_admin(user_id)
            if not is_admin:
                raise ForbiddenException("You are not a participant in this booking")
        return booking

    # ------------------------------------------------------------------
    # Sweeps (run by Celery beat)
    # ------------------------------------------------------------------

    @BaseService.measure_operation("expire_pending_bookings")
    def expire_pending_bookings(self) -> int:
        """Expire every PendingPayment booking older than the payment window."""
        cutoff = self.clock.now() - timedelta(minutes=settings.pending_payment_expiry_minutes)
        expired = 0
        for booking in self.repository.get_pending_payment_created_before(cutoff):
            try:
                self.expire_booking(booking.id)
                expired += 1
            except DomainException as e:
                # Paid or cancelled between the scan and the lock
                self.logger.info(f"Skipped expiring booking {booking.id}: {e.message}")
        if expired:
            self.logger.info(f"Expired {expired} unpaid bookings")
        return expired

    @BaseService.measure_operation("resolve_attendance")
    def resolve_attendance(self, booking_id: str) -> Booking:
        """
        Settle a confirmed booking whose session is over.

        Both joined -> completed; only the mentor -> StudentNoShow; only the
        student -> MentorNoShow; neither -> NoShow. Without a video lookup
        the session is assumed to have happened.
        """
        with self.unit_of_work():
            booking = self._load_for_update(booking_id)
            if booking.status_enum is not BookingStatus.CONFIRMED:
                raise InvalidStateException(
                    "Only confirmed bookings are swept", current_status=booking.status
                )
            now = self.clock.now()
            if now < booking.end_at + timedelta(minutes=settings.no_show_wait_minutes):
                raise InvalidStateException(
                    "The session has not finished its waiting period",
                    current_status=booking.status,
                )

            if self.video_lookup is None:
                outcome = BookingStatus.COMPLETED
            else:
                joined = self._participants(booking)
                mentor_joined = booking.mentor_id in joined
                student_joined = booking.student_id in joined
                if mentor_joined and student_joined:
                    outcome = BookingStatus.COMPLETED
                elif mentor_joined:
                    outcome = BookingStatus.STUDENT_NO_SHOW
                elif student_joined:
                    outcome = BookingStatus.MENTOR_NO_SHOW
                else:
                    outcome = BookingStatus.NO_SHOW

            if outcome is BookingStatus.COMPLETED:
                booking.complete(now)
                self.db.flush()
                self._publish(
                    BookingCompleted(booking_id=booking.id, completed_at=now, automatic=True)
                )
            else:
                booking.mark_no_show(outcome, now)
                self.db.flush()
                self._publish(
                    BookingNoShowRecorded(
                        booking_id=booking.id, outcome=outcome.value, recorded_at=now
                    )
                )

        self._record_transition(booking)
        self.log_operation("resolve_attendance", booking_id=booking.id, outcome=booking.status)
        return booking

    @BaseService.measure_operation("process_ended_bookings")
    def process_ended_bookings(self) -> Dict[str, int]:
        """
        Resolve attendance for every confirmed booking past its waiting period.

        Each booking is settled in its own unit of work; one failure does not
        stop the sweep.
        """
        cutoff = self.clock.now() - timedelta(minutes=settings.no_show_wait_minutes)
        results: Dict[str, int] = {"processed": 0, "failed": 0}
        for booking in self.repository.get_confirmed_ended_before(cutoff):
            try:
                settled = self.resolve_attendance(booking.id)
            except DomainException as e:
                results["failed"] += 1
                self.logger.error(f"Attendance sweep failed for booking {booking.id}: {e.message}")
                continue
            results["processed"] += 1
            results[settled.status] = results.get(settled.status, 0) + 1
        return results
