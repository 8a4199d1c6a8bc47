# backend/mentorhub/services/settlement_service.py
"""
Settlement Service for MentorHub

Reacts to booking, enrollment and group-class signals and decides which
ledger flow applies, how much is refunded, and which notifications and
delayed jobs follow. It owns no persistent state of its own.

Ledger work is subscribed in the IN_TRANSACTION phase so a posting commits
or rolls back together with the transition that caused it. Notifications
and job scheduling are AFTER_COMMIT and never fail the caller: errors are
logged and counted.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ForbiddenException, InvalidStateException, NotFoundException
from ..events.booking_events import (
    BookingCancelled,
    BookingCompleted,
    BookingConfirmed,
    BookingCreated,
    BookingDisputed,
    BookingDisputeResolved,
    BookingExpired,
    BookingNoShowRecorded,
    BookingReminder,
    BookingRescheduled,
    BookingRescheduleProposed,
    BookingRescheduleRejected,
)
from ..events.payout_events import PayoutCompleted, PayoutRejected
from ..events.publisher import EventPublisher, Phase
from ..events.settlement_events import GroupClassCancelled, RefundIssued
from ..integrations.interfaces import (
    Clock,
    JobKind,
    JobScheduler,
    NotificationKind,
    Notifier,
    SystemClock,
)
from ..integrations.notifier import LoggingNotifier
from ..models.booking import Booking, BookingStatus, DisputeResolution, Party
from ..models.group_class import ClassEnrollment, EnrollmentStatus, GroupClass, GroupClassStatus
from ..models.ledger import LedgerReferenceType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService, require_user_id
from .ledger_service import LedgerService
from .refund_policy_engine import RefundPolicyEngine, RefundTrigger

if TYPE_CHECKING:
    from ..integrations.interfaces import CurrentUserProvider

logger = logging.getLogger(__name__)

# Outcomes after which the mentor keeps the escrow
MENTOR_FAVORING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.STUDENT_NO_SHOW})

REFUNDING_NO_SHOWS = frozenset({BookingStatus.MENTOR_NO_SHOW, BookingStatus.NO_SHOW})


def reminder_label(offset_minutes: int) -> str:
    """1440 -> '24h', 60 -> '1h', 10 -> '10m'."""
    if offset_minutes % 60 == 0:
        return f"{offset_minutes // 60}h"
    return f"{offset_minutes}m"


class SettlementService(BaseService):
    """Orchestrates money movement and side effects around lifecycle events."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        event_publisher: Optional[EventPublisher] = None,
        notifier: Optional[Notifier] = None,
        job_scheduler: Optional[JobScheduler] = None,
        user_provider: Optional["CurrentUserProvider"] = None,
        ledger_service: Optional[LedgerService] = None,
        refund_engine: Optional[RefundPolicyEngine] = None,
    ):
        super().__init__(db, event_publisher)
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotifier()
        self.job_scheduler = job_scheduler
        self.user_provider = user_provider
        self.ledger = ledger_service or LedgerService(db)
        self.refund_engine = refund_engine or RefundPolicyEngine()
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.class_repository = RepositoryFactory.create_group_class_repository(db)

    def register(self, publisher: EventPublisher) -> None:
        """Subscribe every settlement handler to the publisher."""
        in_tx = Phase.IN_TRANSACTION
        after = Phase.AFTER_COMMIT
        subscriptions: Iterable[tuple[type, Callable[[Any], None], Phase]] = (
            (BookingConfirmed, self.on_booking_confirmed, in_tx),
            (BookingCancelled, self.on_booking_cancelled, in_tx),
            (BookingNoShowRecorded, self.on_no_show_recorded, in_tx),
            (BookingDisputeResolved, self.on_dispute_resolved, in_tx),
            (BookingCreated, self.after_booking_created, after),
            (BookingConfirmed, self.after_booking_confirmed, after),
            (BookingCancelled, self.after_booking_cancelled, after),
            (BookingCompleted, self.after_booking_completed, after),
            (BookingNoShowRecorded, self.after_no_show_recorded, after),
            (BookingExpired, self.after_booking_expired, after),
            (BookingRescheduleProposed, self.after_reschedule_proposed, after),
            (BookingRescheduled, self.after_rescheduled, after),
            (BookingRescheduleRejected, self.after_reschedule_rejected, after),
            (BookingDisputed, self.after_dispute_opened, after),
            (BookingDisputeResolved, self.after_dispute_resolved, after),
            (RefundIssued, self.after_refund_issued, after),
            (PayoutCompleted, self.after_payout_completed, after),
            (PayoutRejected, self.after_payout_rejected, after),
            (GroupClassCancelled, self.after_group_class_cancelled, after),
        )
        for event_type, handler, phase in subscriptions:
            publisher.subscribe(event_type, handler, phase)
        self.event_publisher = publisher

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _notify(
        self, user_id: Optional[str], kind: NotificationKind, payload: Mapping[str, Any]
    ) -> None:
        if not user_id:
            return
        try:
            self.notifier.notify(user_id, kind, payload)
        except Exception:
            prometheus_metrics.inc_collaborator_failure("notifier")
            self.logger.exception(f"Failed to send {kind.value} notification to {user_id}")

    def _schedule(self, job_kind: JobKind, payload: Mapping[str, Any], run_at: datetime) -> None:
        if self.job_scheduler is None:
            self.logger.debug(f"No job scheduler configured; dropping {job_kind.value}")
            return
        try:
            self.job_scheduler.schedule(job_kind, payload, run_at)
        except Exception:
            prometheus_metrics.inc_collaborator_failure("job_scheduler")
            self.logger.exception(f"Failed to schedule {job_kind.value} for {payload}")

    def _booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    def _notify_parties(self, booking: Booking, kind: NotificationKind, **extra: Any) -> None:
        payload = {"booking_id": booking.id, "start_at": booking.start_at.isoformat(), **extra}
        self._notify(booking.student_id, kind, payload)
        self._notify(booking.mentor_id, kind, payload)

    def _schedule_escrow_release(self, booking_id: str, from_time: datetime) -> None:
        self._schedule(
            JobKind.ESCROW_RELEASE,
            {"booking_id": booking_id},
            from_time + timedelta(hours=settings.escrow_release_delay_hours),
        )

    # ------------------------------------------------------------------
    # Ledger flows (in transaction)
    # ------------------------------------------------------------------

    def _refund_booking(self, booking: Booking, trigger: RefundTrigger, now: datetime) -> int:
        reference = LedgerReferenceType.BOOKING
        refundable = self.ledger.refundable_amount(reference, booking.id)
        decision = self.refund_engine.evaluate(trigger, refundable, booking.start_at, now)
        self.logger.info(
            f"Refund decision for booking {booking.id}: {decision.percent}% "
            f"({decision.policy_basis})"
        )
        refunded = 0
        if decision.eligible:
            refunded = self.ledger.record_refund(
                mentor_id=booking.mentor_id,
                student_id=booking.student_id,
                amount=decision.amount,
                reference_type=reference,
                reference_id=booking.id,
                occurred_at=now,
            )
            if refunded and self.event_publisher is not None:
                self.event_publisher.publish(
                    RefundIssued(
                        reference_type=reference.value,
                        reference_id=booking.id,
                        student_id=booking.student_id,
                        amount=refunded,
                        issued_at=now,
                    )
                )
        return refunded

    def on_booking_confirmed(self, event: BookingConfirmed) -> None:
        self.ledger.record_capture(
            mentor_id=event.mentor_id,
            gross_amount=event.amount,
            reference_type=LedgerReferenceType.BOOKING,
            reference_id=event.booking_id,
            occurred_at=event.confirmed_at,
        )

    def on_booking_cancelled(self, event: BookingCancelled) -> None:
        if not event.was_confirmed:
            return
        booking = self._booking(event.booking_id)
        trigger = (
            RefundTrigger.STUDENT_CANCELLATION
            if event.cancelled_by == Party.STUDENT.value
            else RefundTrigger.MENTOR_CANCELLATION
        )
        self._refund_booking(booking, trigger, event.cancelled_at)
        # Whatever the student forfeited is the mentor's to keep
        self.ledger.record_release(
            mentor_id=booking.mentor_id,
            reference_type=LedgerReferenceType.BOOKING,
            reference_id=booking.id,
            occurred_at=event.cancelled_at,
        )

    def on_no_show_recorded(self, event: BookingNoShowRecorded) -> None:
        outcome = BookingStatus(event.outcome)
        if outcome not in REFUNDING_NO_SHOWS:
            return
        trigger = (
            RefundTrigger.MENTOR_NO_SHOW
            if outcome is BookingStatus.MENTOR_NO_SHOW
            else RefundTrigger.NO_SHOW
        )
        self._refund_booking(self._booking(event.booking_id), trigger, event.recorded_at)

    def on_dispute_resolved(self, event: BookingDisputeResolved) -> None:
        booking = self._booking(event.booking_id)
        resolution = DisputeResolution(event.resolution)
        if resolution is DisputeResolution.STUDENT_FAVOR:
            self._refund_booking(booking, RefundTrigger.DISPUTE_STUDENT_FAVOR, event.resolved_at)
        elif resolution is DisputeResolution.MENTOR_FAVOR:
            self.ledger.record_release(
                mentor_id=booking.mentor_id,
                reference_type=LedgerReferenceType.BOOKING,
                reference_id=booking.id,
                occurred_at=event.resolved_at,
            )

    # ------------------------------------------------------------------
    # Side effects (after commit)
    # ------------------------------------------------------------------

    def after_booking_created(self, event: BookingCreated) -> None:
        self._schedule(
            JobKind.EXPIRE_PENDING_BOOKING,
            {"booking_id": event.booking_id},
            event.created_at + timedelta(minutes=settings.pending_payment_expiry_minutes),
        )
        self._notify(
            event.mentor_id,
            NotificationKind.BOOKING_CREATED,
            {"booking_id": event.booking_id, "start_at": event.start_at.isoformat()},
        )

    def after_booking_confirmed(self, event: BookingConfirmed) -> None:
        for offset in settings.reminder_offsets_minutes:
            run_at = event.start_at - timedelta(minutes=offset)
            if run_at <= event.confirmed_at:
                continue
            self._schedule(
                JobKind.BOOKING_REMINDER,
                {
                    "booking_id": event.booking_id,
                    "reminder_type": reminder_label(offset),
                    "start_at": event.start_at.isoformat(),
                },
                run_at,
            )
        self._notify_parties(self._booking(event.booking_id), NotificationKind.BOOKING_CONFIRMED)

    def after_booking_cancelled(self, event: BookingCancelled) -> None:
        booking = self._booking(event.booking_id)
        self._notify_parties(
            booking,
            NotificationKind.BOOKING_CANCELLED,
            cancelled_by=event.cancelled_by,
            reason=booking.cancellation_reason,
        )

    def after_booking_completed(self, event: BookingCompleted) -> None:
        booking = self._booking(event.booking_id)
        self._schedule_escrow_release(booking.id, event.completed_at)
        self._notify_parties(booking, NotificationKind.BOOKING_COMPLETED, automatic=event.automatic)

    def after_no_show_recorded(self, event: BookingNoShowRecorded) -> None:
        booking = self._booking(event.booking_id)
        if BookingStatus(event.outcome) in MENTOR_FAVORING_STATUSES:
            self._schedule_escrow_release(booking.id, event.recorded_at)
        self._notify_parties(booking, NotificationKind.BOOKING_NO_SHOW, outcome=event.outcome)

    def after_booking_expired(self, event: BookingExpired) -> None:
        booking = self._booking(event.booking_id)
        self._notify(
            booking.student_id, NotificationKind.BOOKING_EXPIRED, {"booking_id": booking.id}
        )

    def _counterparty_of(self, booking: Booking, party_value: str) -> str:
        return booking.mentor_id if party_value == Party.STUDENT.value else booking.student_id

    def after_reschedule_proposed(self, event: BookingRescheduleProposed) -> None:
        booking = self._booking(event.booking_id)
        self._notify(
            self._counterparty_of(booking, event.requested_by),
            NotificationKind.RESCHEDULE_PROPOSED,
            {
                "booking_id": booking.id,
                "proposed_start_at": event.proposed_start_at.isoformat(),
                "proposed_end_at": event.proposed_end_at.isoformat(),
            },
        )

    def after_rescheduled(self, event: BookingRescheduled) -> None:
        booking = self._booking(event.booking_id)
        now = self.clock.now()
        for offset in settings.reminder_offsets_minutes:
            run_at = event.start_at - timedelta(minutes=offset)
            if run_at > now:
                self._schedule(
                    JobKind.BOOKING_REMINDER,
                    {
                        "booking_id": booking.id,
                        "reminder_type": reminder_label(offset),
                        "start_at": event.start_at.isoformat(),
                    },
                    run_at,
                )
        self._notify_parties(
            booking,
            NotificationKind.RESCHEDULE_APPROVED,
            previous_start_at=event.previous_start_at.isoformat(),
        )

    def after_reschedule_rejected(self, event: BookingRescheduleRejected) -> None:
        booking = self._booking(event.booking_id)
        self._notify(
            self._counterparty_of(booking, event.rejected_by),
            NotificationKind.RESCHEDULE_REJECTED,
            {"booking_id": booking.id},
        )

    def after_dispute_opened(self, event: BookingDisputed) -> None:
        self._notify_parties(self._booking(event.booking_id), NotificationKind.DISPUTE_OPENED)

    def after_dispute_resolved(self, event: BookingDisputeResolved) -> None:
        self._notify_parties(
            self._booking(event.booking_id),
            NotificationKind.DISPUTE_RESOLVED,
            resolution=event.resolution,
        )

    def after_refund_issued(self, event: RefundIssued) -> None:
        self._notify(event.student_id, NotificationKind.REFUND_ISSUED, event.to_dict())

    def after_payout_completed(self, event: PayoutCompleted) -> None:
        self._notify(
            event.mentor_id,
            NotificationKind.PAYOUT_COMPLETED,
            {"payout_id": event.payout_id, "amount": event.amount},
        )

    def after_payout_rejected(self, event: PayoutRejected) -> None:
        self._notify(
            event.mentor_id,
            NotificationKind.PAYOUT_REJECTED,
            {"payout_id": event.payout_id, "admin_note": event.admin_note},
        )

    def after_group_class_cancelled(self, event: GroupClassCancelled) -> None:
        for enrollment in self.class_repository.get_enrollments(event.class_id):
            self._notify(
                enrollment.student_id,
                NotificationKind.CLASS_CANCELLED,
                {"class_id": event.class_id},
            )

    # ------------------------------------------------------------------
    # Delayed jobs
    # ------------------------------------------------------------------

    @BaseService.measure_operation("release_escrow")
    def release_escrow(self, booking_id: str) -> int:
        """
        Escrow release job.

        Posts only while the booking still favors the mentor and escrow for
        it is still held; a refund or an earlier release makes this a no-op.
        """
        with self.unit_of_work():
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found")
            if booking.status_enum not in MENTOR_FAVORING_STATUSES:
                self.logger.info(
                    f"Skipping escrow release for booking {booking_id} in status {booking.status}"
                )
                return 0
            return self.ledger.record_release(
                mentor_id=booking.mentor_id,
                reference_type=LedgerReferenceType.BOOKING,
                reference_id=booking.id,
                occurred_at=self.clock.now(),
            )

    @BaseService.measure_operation("send_booking_reminder")
    def send_booking_reminder(
        self, booking_id: str, reminder_type: str, start_at: Optional[str] = None
    ) -> bool:
        """
        Reminder job. Skipped when the booking is no longer confirmed or was
        rescheduled after the reminder was queued.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None or booking.status_enum is not BookingStatus.CONFIRMED:
            return False
        if start_at is not None and booking.start_at.isoformat() != start_at:
            self.logger.debug(f"Stale {reminder_type} reminder for booking {booking_id}")
            return False
        payload: Dict[str, Any] = BookingReminder(
            booking_id=booking.id, reminder_type=reminder_type
        ).to_dict()
        payload["start_at"] = booking.start_at.isoformat()
        self._notify(booking.student_id, NotificationKind.BOOKING_REMINDER, payload)
        self._notify(booking.mentor_id, NotificationKind.BOOKING_REMINDER, payload)
        return True

    # ------------------------------------------------------------------
    # Group classes
    # ------------------------------------------------------------------

    def _get_class(self, class_id: str) -> GroupClass:
        group_class = self.class_repository.get_for_update(class_id)
        if group_class is None:
            raise NotFoundException("Group class not found")
        return group_class

    def _get_enrollment(self, enrollment_id: str) -> ClassEnrollment:
        enrollment = self.class_repository.get_enrollment(enrollment_id)
        if enrollment is None:
            raise NotFoundException("Enrollment not found")
        return enrollment

    @BaseService.measure_operation("confirm_enrollment")
    def confirm_enrollment(self, enrollment_id: str) -> ClassEnrollment:
        """Payment captured for a class seat."""
        with self.unit_of_work():
            enrollment = self._get_enrollment(enrollment_id)
            if enrollment.status != EnrollmentStatus.PENDING_PAYMENT.value:
                raise InvalidStateException(
                    "Only enrollments awaiting payment can be confirmed",
                    current_status=enrollment.status,
                )
            group_class = self._get_class(enrollment.class_id)
            if group_class.status != GroupClassStatus.SCHEDULED.value:
                raise InvalidStateException(
                    "The class is no longer scheduled", current_status=group_class.status
                )
            enrollment.status = EnrollmentStatus.CONFIRMED.value
            self.ledger.record_capture(
                mentor_id=group_class.mentor_id,
                gross_amount=enrollment.price_amount,
                reference_type=LedgerReferenceType.ENROLLMENT,
                reference_id=enrollment.id,
                occurred_at=self.clock.now(),
            )
        return enrollment

    def _refund_enrollment(
        self,
        enrollment: ClassEnrollment,
        group_class: GroupClass,
        trigger: RefundTrigger,
        now: datetime,
    ) -> int:
        reference = LedgerReferenceType.ENROLLMENT
        refundable = self.ledger.refundable_amount(reference, enrollment.id)
        decision = self.refund_engine.evaluate(trigger, refundable, group_class.start_at, now)
        refunded = 0
        if decision.eligible:
            refunded = self.ledger.record_refund(
                mentor_id=group_class.mentor_id,
                student_id=enrollment.student_id,
                amount=decision.amount,
                reference_type=reference,
                reference_id=enrollment.id,
                occurred_at=now,
            )
        if refunded and self.event_publisher is not None:
            self.event_publisher.publish(
                RefundIssued(
                    reference_type=reference.value,
                    reference_id=enrollment.id,
                    student_id=enrollment.student_id,
                    amount=refunded,
                    issued_at=now,
                )
            )
        self.ledger.record_release(
            mentor_id=group_class.mentor_id,
            reference_type=reference,
            reference_id=enrollment.id,
            occurred_at=now,
        )
        return refunded

    @BaseService.measure_operation("cancel_enrollment")
    def cancel_enrollment(self, enrollment_id: str) -> ClassEnrollment:
        """Student leaves a class; confirmed seats are refunded by the time tiers."""
        user_id = require_user_id(self.user_provider)
        with self.unit_of_work():
            enrollment = self._get_enrollment(enrollment_id)
            if enrollment.student_id != user_id:
                raise ForbiddenException("You can only cancel your own enrollment")
            if enrollment.status == EnrollmentStatus.CANCELLED.value:
                raise InvalidStateException(
                    "Enrollment is already cancelled", current_status=enrollment.status
                )
            group_class = self._get_class(enrollment.class_id)
            now = self.clock.now()
            if enrollment.status == EnrollmentStatus.CONFIRMED.value:
                self._refund_enrollment(
                    enrollment, group_class, RefundTrigger.STUDENT_CANCELLATION, now
                )
            enrollment.status = EnrollmentStatus.CANCELLED.value
            enrollment.cancelled_at = now

        self.log_operation("cancel_enrollment", enrollment_id=enrollment_id)
        return enrollment

    @BaseService.measure_operation("cancel_group_class")
    def cancel_group_class(self, class_id: str) -> GroupClass:
        """
        Mentor cancels a class: confirmed enrollments are refunded in full
        and pending ones are cancelled.
        """
        user_id = require_user_id(self.user_provider)
        with self.unit_of_work():
            group_class = self._get_class(class_id)
            if group_class.mentor_id != user_id:
                raise ForbiddenException("Only the class mentor can cancel it")
            if group_class.status != GroupClassStatus.SCHEDULED.value:
                raise InvalidStateException(
                    "Only scheduled classes can be cancelled", current_status=group_class.status
                )
            now = self.clock.now()
            refunded = 0
            for enrollment in self.class_repository.get_enrollments(class_id):
                if enrollment.status == EnrollmentStatus.CONFIRMED.value:
                    self._refund_enrollment(
                        enrollment, group_class, RefundTrigger.CLASS_CANCELLED, now
                    )
                    refunded += 1
                if enrollment.status != EnrollmentStatus.CANCELLED.value:
                    enrollment.status = EnrollmentStatus.CANCELLED.value
                    enrollment.cancelled_at = now
            group_class.status = GroupClassStatus.CANCELLED.value
            group_class.cancelled_at = now
            if self.event_publisher is not None:
                self.event_publisher.publish(
                    GroupClassCancelled(
                        class_id=class_id, cancelled_at=now, refunded_enrollments=refunded
                    )
                )

        self.log_operation("cancel_group_class", class_id=class_id, refunded=refunded)
        return group_class
