# backend/mentorhub/services/ledger_service.py
"""
Ledger Service for MentorHub

Double-entry bookkeeping over an append-only log. Every economic event is
posted as a balanced pair: one credit and one debit of the same amount on
two different accounts. Balances are never stored; they are the sum of
credits minus the sum of debits for an owner and account.

Flows:
    capture  credit MentorEscrow / debit PlatformClearing (net of commission)
             credit Platform / debit PlatformClearing (commission)
    release  debit MentorEscrow / credit MentorAvailable
    refund   debit MentorEscrow or MentorAvailable / credit StudentRefund
             debit Platform / credit StudentRefund (commission share)
    payout   debit MentorAvailable / credit MentorPayout
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import LedgerImbalanceError
from ..core.ulid_helper import generate_ulid
from ..models.ledger import (
    OWNED_ACCOUNTS,
    LedgerAccountType,
    LedgerDirection,
    LedgerEntry,
    LedgerReferenceType,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

BalanceKey = Tuple[Optional[str], str]


@dataclass(frozen=True)
class LedgerLine:
    """One side of a posting before it is written."""

    account_type: LedgerAccountType
    direction: LedgerDirection
    amount: int
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class RefundBreakdown:
    mentor_amount: int
    commission_amount: int

    @property
    def total(self) -> int:
        return self.mentor_amount + self.commission_amount


def commission_for(gross_amount: int, rate: Optional[float] = None) -> int:
    """Platform commission on a gross amount, rounded half-up to the minor unit."""
    rate = settings.mentor_commission_rate if rate is None else rate
    value = (Decimal(gross_amount) * Decimal(str(rate))).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(value)


def replay(entries: Iterable[LedgerEntry]) -> Dict[BalanceKey, int]:
    """
    Recompute every balance from an empty state.

    Keys are ``(owner_id, account_type)``; the result must equal the
    balances the database reports for the same log.
    """
    balances: Dict[BalanceKey, int] = defaultdict(int)
    for entry in entries:
        balances[(entry.owner_id, entry.account_type)] += entry.signed_amount
    return dict(balances)


def validate_pair(lines: Sequence[LedgerLine]) -> None:
    """
    Reject anything other than one credit and one debit of the same
    positive amount on two distinct accounts.
    """
    if len(lines) != 2:
        raise LedgerImbalanceError(
            "A posting must contain exactly two entries", details={"entries": len(lines)}
        )
    first, second = lines
    if {first.direction, second.direction} != {LedgerDirection.CREDIT, LedgerDirection.DEBIT}:
        raise LedgerImbalanceError("A posting must pair one credit with one debit")
    if first.amount != second.amount or first.amount <= 0:
        raise LedgerImbalanceError(
            "Posting amounts must be positive and equal",
            details={"amounts": [first.amount, second.amount]},
        )
    if (first.account_type, first.owner_id) == (second.account_type, second.owner_id):
        raise LedgerImbalanceError("A posting must move funds between two different accounts")
    for line in lines:
        if line.account_type in OWNED_ACCOUNTS and not line.owner_id:
            raise LedgerImbalanceError(
                f"{line.account_type.value} entries require an owner",
                details={"account_type": line.account_type.value},
            )


class LedgerService(BaseService):
    """
    Append-only ledger operations.

    ``post`` joins the caller's transaction when there is one, so a flow
    posted from a booking transition commits or rolls back with it.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_ledger_repository(db)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    @BaseService.measure_operation("post")
    def post(
        self,
        lines: Sequence[LedgerLine],
        *,
        reference_type: LedgerReferenceType,
        reference_id: str,
        occurred_at: datetime,
        description: Optional[str] = None,
        currency: Optional[str] = None,
        flow: str = "manual",
    ) -> List[LedgerEntry]:
        """
        Append a balanced pair.

        Raises:
            LedgerImbalanceError: If the lines do not balance. Never retried.
        """
        validate_pair(lines)
        transaction_id = generate_ulid()
        entries = [
            LedgerEntry(
                transaction_id=transaction_id,
                account_type=line.account_type.value,
                direction=line.direction.value,
                amount=line.amount,
                currency=currency or settings.payout_currency,
                owner_id=line.owner_id,
                reference_type=reference_type.value,
                reference_id=reference_id,
                description=description,
                occurred_at=occurred_at,
            )
            for line in lines
        ]
        with self.transaction():
            self.repository.append(entries)

        prometheus_metrics.inc_ledger_posting(flow)
        self.logger.info(
            f"Posted {flow} {lines[0].amount} for {reference_type.value}:{reference_id} "
            f"(tx {transaction_id})"
        )
        return entries

    def _transfer(
        self,
        *,
        debit: Tuple[LedgerAccountType, Optional[str]],
        credit: Tuple[LedgerAccountType, Optional[str]],
        amount: int,
        reference_type: LedgerReferenceType,
        reference_id: str,
        occurred_at: datetime,
        flow: str,
        description: Optional[str] = None,
    ) -> List[LedgerEntry]:
        return self.post(
            [
                LedgerLine(credit[0], LedgerDirection.CREDIT, amount, credit[1]),
                LedgerLine(debit[0], LedgerDirection.DEBIT, amount, debit[1]),
            ],
            reference_type=reference_type,
            reference_id=reference_id,
            occurred_at=occurred_at,
            description=description,
            flow=flow,
        )

    def balance(self, owner_id: Optional[str], account_type: LedgerAccountType) -> int:
        """Credits minus debits for one owner and account."""
        return self.repository.get_balance(owner_id, account_type)

    def escrow_for(
        self, mentor_id: str, reference_type: LedgerReferenceType, reference_id: str
    ) -> int:
        """Escrow still held for a single booking or enrollment."""
        return self.repository.get_balance(
            mentor_id,
            LedgerAccountType.MENTOR_ESCROW,
            reference_type=reference_type.value,
            reference_id=reference_id,
        )

    def replay_balances(self) -> Dict[BalanceKey, int]:
        """Replay the full log; used by audits to cross-check derived balances."""
        return replay(self.repository.get_all_entries())

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def record_capture(
        self,
        *,
        mentor_id: str,
        gross_amount: int,
        reference_type: LedgerReferenceType,
        reference_id: str,
        occurred_at: datetime,
    ) -> List[LedgerEntry]:
        """Move captured funds into the mentor's escrow and the platform's commission."""
        commission = commission_for(gross_amount)
        net = gross_amount - commission
        entries: List[LedgerEntry] = []
        if net > 0:
            entries += self._transfer(
                debit=(LedgerAccountType.PLATFORM_CLEARING, None),
                credit=(LedgerAccountType.MENTOR_ESCROW, mentor_id),
                amount=net,
                reference_type=reference_type,
                reference_id=reference_id,
                occurred_at=occurred_at,
                flow="capture",
                description="Payment captured",
            )
        if commission > 0:
            entries += self._transfer(
                debit=(LedgerAccountType.PLATFORM_CLEARING, None),
                credit=(LedgerAccountType.PLATFORM, None),
                amount=commission,
                reference_type=reference_type,
                reference_id=reference_id,
                occurred_at=occurred_at,
                flow="commission",
                description="Platform commission",
            )
        return entries

    def record_release(
        self,
        *,
        mentor_id: str,
        reference_type: LedgerReferenceType,
        reference_id: str,
        occurred_at: datetime,
    ) -> int:
        """
        Release whatever escrow is still held for the reference.

        Returns the amount released; 0 when escrow was already released or
        refunded, which makes the flow safe to run twice.
        """
        held = self.escrow_for(mentor_id, reference_type, reference_id)
        if held <= 0:
            return 0
        self._transfer(
            debit=(LedgerAccountType.MENTOR_ESCROW, mentor_id),
            credit=(LedgerAccountType.MENTOR_AVAILABLE, mentor_id),
            amount=held,
            reference_type=reference_type,
            reference_id=reference_id,
            occurred_at=occurred_at,
            flow="release",
            description="Escrow released",
        )
        return held

    def refundable_amount(self, reference_type: LedgerReferenceType, reference_id: str) -> int:
        """Captured gross for the reference minus what was already refunded."""
        ref_type = reference_type.value
        captured = self.repository.get_reference_total(
            ref_type, reference_id, LedgerAccountType.PLATFORM_CLEARING, LedgerDirection.DEBIT
        )
        refunded = self.repository.get_reference_total(
            ref_type, reference_id, LedgerAccountType.STUDENT_REFUND, LedgerDirection.CREDIT
        )
        return max(0, captured - refunded)

    def split_refund(
        self, reference_type: LedgerReferenceType, reference_id: str, amount: int
    ) -> RefundBreakdown:
        """Split a refund between mentor funds and commission in the capture ratio."""
        ref_type = reference_type.value
        captured = self.repository.get_reference_total(
            ref_type, reference_id, LedgerAccountType.PLATFORM_CLEARING, LedgerDirection.DEBIT
        )
        if captured <= 0 or amount <= 0:
            return RefundBreakdown(0, 0)
        commission = self.repository.get_reference_total(
            ref_type, reference_id, LedgerAccountType.PLATFORM, LedgerDirection.CREDIT
        )
        commission_share = int(
            (Decimal(amount) * Decimal(commission) / Decimal(captured)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
        return RefundBreakdown(amount - commission_share, commission_share)

    def record_refund(
        self,
        *,
        mentor_id: str,
        student_id: str,
        amount: int,
        reference_type: LedgerReferenceType,
        reference_id: str,
        occurred_at: datetime,
    ) -> int:
        """
        Refund the student, bounded by what is still refundable.

        The mentor share comes out of the reference's escrow first, then out
        of MentorAvailable for anything already released. MentorAvailable is
        never taken below zero: whatever the mentor has already withdrawn is
        covered by the platform and logged as owed by the mentor.

        Returns:
            Amount actually refunded
        """
        amount = min(amount, self.refundable_amount(reference_type, reference_id))
        if amount <= 0:
            return 0
        breakdown = self.split_refund(reference_type, reference_id, amount)
        refund_account = (LedgerAccountType.STUDENT_REFUND, student_id)

        held = max(0, self.escrow_for(mentor_id, reference_type, reference_id))
        from_escrow = min(held, breakdown.mentor_amount)
        released = breakdown.mentor_amount - from_escrow
        available = max(0, self.balance(mentor_id, LedgerAccountType.MENTOR_AVAILABLE))
        from_available = min(available, released)
        shortfall = released - from_available
        to_student = "Refund to student"
        owed_note = f"Refund shortfall covered by platform; owed by mentor {mentor_id}"
        for source, portion, flow, description in (
            ((LedgerAccountType.MENTOR_ESCROW, mentor_id), from_escrow, "refund", to_student),
            ((LedgerAccountType.MENTOR_AVAILABLE, mentor_id), from_available, "refund", to_student),
            ((LedgerAccountType.PLATFORM, None), shortfall, "refund_shortfall", owed_note),
        ):
            if portion > 0:
                self._transfer(
                    debit=source,
                    credit=refund_account,
                    amount=portion,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    occurred_at=occurred_at,
                    flow=flow,
                    description=description,
                )
        if shortfall > 0:
            self.logger.warning(
                f"Mentor {mentor_id} balance short by {shortfall} for refund of "
                f"{reference_type.value}:{reference_id}; covered by platform"
            )
        if breakdown.commission_amount > 0:
            self._transfer(
                debit=(LedgerAccountType.PLATFORM, None),
                credit=refund_account,
                amount=breakdown.commission_amount,
                reference_type=reference_type,
                reference_id=reference_id,
                occurred_at=occurred_at,
                flow="refund_commission",
                description="Commission refunded",
            )
        return amount

    def record_payout(
        self, *, mentor_id: str, amount: int, payout_id: str, occurred_at: datetime
    ) -> List[LedgerEntry]:
        return self._transfer(
            debit=(LedgerAccountType.MENTOR_AVAILABLE, mentor_id),
            credit=(LedgerAccountType.MENTOR_PAYOUT, mentor_id),
            amount=amount,
            reference_type=LedgerReferenceType.PAYOUT,
            reference_id=payout_id,
            occurred_at=occurred_at,
            flow="payout",
            description="Payout to mentor",
        )
