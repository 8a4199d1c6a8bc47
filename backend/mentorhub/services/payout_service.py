# backend/mentorhub/services/payout_service.py
"""
Payout Service for MentorHub

Mentors withdraw their available balance through payout requests that an
admin approves or rejects. Approval re-reads the balance inside the same
transaction as the ledger posting and the status change, and the status
change itself is a compare-and-swap on ``Pending``; two admins approving
the same request, or a balance that shrank since the request was made,
both fail without touching anything.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConflictException,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from ..events.payout_events import PayoutCompleted, PayoutRejected
from ..integrations.interfaces import Clock, SystemClock
from ..models.ledger import LedgerAccountType
from ..models.payout import PayoutRequest, PayoutStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.payout import PayoutRequestCreate
from .base import BaseService, require_user_id
from .ledger_service import LedgerService

if TYPE_CHECKING:
    from ..events.publisher import EventPublisher
    from ..integrations.interfaces import CurrentUserProvider, RoleChecker

logger = logging.getLogger(__name__)


class PayoutService(BaseService):
    """Create, approve and reject payout requests."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        user_provider: Optional["CurrentUserProvider"] = None,
        role_checker: Optional["RoleChecker"] = None,
        event_publisher: Optional["EventPublisher"] = None,
        ledger_service: Optional[LedgerService] = None,
    ):
        super().__init__(db, event_publisher)
        self.clock = clock or SystemClock()
        self.user_provider = user_provider
        self.role_checker = role_checker
        self.repository = RepositoryFactory.create_payout_repository(db)
        self.ledger = ledger_service or LedgerService(db)

    def _require_admin(self) -> str:
        user_id = require_user_id(self.user_provider)
        if self.role_checker is None or not self.role_checker.is_admin(user_id):
            raise ForbiddenException("Admin access required", code="ADMIN_REQUIRED")
        return user_id

    def _get_payout(self, payout_id: str) -> PayoutRequest:
        payout = self.repository.get_by_id(payout_id)
        if payout is None:
            raise NotFoundException("Payout request not found")
        return payout

    @BaseService.measure_operation("create_payout_request")
    def create_request(self, data: PayoutRequestCreate) -> PayoutRequest:
        """
        Request a payout of available balance.

        Raises:
            ValidationException: Below the minimum payout amount
            InsufficientBalanceException: More than the available balance
            ConflictException: Another request is still pending
        """
        mentor_id = require_user_id(self.user_provider)
        if data.amount < settings.minimum_payout_amount:
            raise ValidationException(
                "Requested amount is below the minimum payout",
                code="PAYOUT_BELOW_MINIMUM",
                details={"minimum": settings.minimum_payout_amount, "requested": data.amount},
            )

        with self.unit_of_work():
            available = self.ledger.balance(mentor_id, LedgerAccountType.MENTOR_AVAILABLE)
            if data.amount > available:
                raise InsufficientBalanceException(data.amount, available)
            if self.repository.get_pending_for_mentor(mentor_id) is not None:
                raise ConflictException(
                    "A payout request is already pending", code="PAYOUT_ALREADY_PENDING"
                )
            now = self.clock.now()
            payout = self.repository.create(
                mentor_id=mentor_id,
                amount=data.amount,
                currency=settings.payout_currency,
                status=PayoutStatus.PENDING.value,
                mentor_note=data.mentor_note,
                requested_at=now,
            )

        prometheus_metrics.inc_payout_request(PayoutStatus.PENDING.value)
        self.log_operation("create_payout_request", payout_id=payout.id, mentor_id=mentor_id)
        return payout

    @BaseService.measure_operation("approve_payout_request")
    def approve(self, payout_id: str, admin_note: Optional[str] = None) -> PayoutRequest:
        """
        Approve a pending request: post the payout pair and mark it Completed.

        Raises:
            InvalidStateException: The request is no longer pending
            InsufficientBalanceException: Available balance no longer covers it
        """
        admin_id = self._require_admin()
        with self.unit_of_work():
            payout = self._get_payout(payout_id)
            if payout.status != PayoutStatus.PENDING.value:
                raise InvalidStateException(
                    "Only pending payout requests can be approved", current_status=payout.status
                )
            available = self.ledger.balance(payout.mentor_id, LedgerAccountType.MENTOR_AVAILABLE)
            if payout.amount > available:
                raise InsufficientBalanceException(payout.amount, available)

            now = self.clock.now()
            if not self.repository.transition_if_pending(
                payout_id,
                PayoutStatus.COMPLETED,
                processed_by_id=admin_id,
                processed_at=now,
                admin_note=admin_note,
            ):
                raise ConflictException(
                    "Payout request was processed concurrently", code="PAYOUT_ALREADY_PROCESSED"
                )
            self.ledger.record_payout(
                mentor_id=payout.mentor_id,
                amount=payout.amount,
                payout_id=payout.id,
                occurred_at=now,
            )
            if self.event_publisher is not None:
                self.event_publisher.publish(
                    PayoutCompleted(
                        payout_id=payout.id,
                        mentor_id=payout.mentor_id,
                        amount=payout.amount,
                        completed_at=now,
                    )
                )

        prometheus_metrics.inc_payout_request(PayoutStatus.COMPLETED.value)
        self.log_operation("approve_payout_request", payout_id=payout_id, admin_id=admin_id)
        return payout

    @BaseService.measure_operation("reject_payout_request")
    def reject(self, payout_id: str, admin_note: Optional[str] = None) -> PayoutRequest:
        admin_id = self._require_admin()
        with self.unit_of_work():
            payout = self._get_payout(payout_id)
            now = self.clock.now()
            if not self.repository.transition_if_pending(
                payout_id,
                PayoutStatus.REJECTED,
                processed_by_id=admin_id,
                processed_at=now,
                admin_note=admin_note,
            ):
                raise InvalidStateException(
                    "Only pending payout requests can be rejected", current_status=payout.status
                )
            if self.event_publisher is not None:
                self.event_publisher.publish(
                    PayoutRejected(
                        payout_id=payout.id,
                        mentor_id=payout.mentor_id,
                        admin_note=admin_note,
                        rejected_at=now,
                    )
                )

        prometheus_metrics.inc_payout_request(PayoutStatus.REJECTED.value)
        self.log_operation("reject_payout_request", payout_id=payout_id, admin_id=admin_id)
        return payout

    def list_for_current_mentor(self) -> List[PayoutRequest]:
        return self.repository.get_for_mentor(require_user_id(self.user_provider))
