"""Refund policy evaluation for bookings and class enrollments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum


class RefundTrigger(str, Enum):
    """What caused the refund to be considered."""

    STUDENT_CANCELLATION = "student_cancellation"
    MENTOR_CANCELLATION = "mentor_cancellation"
    MENTOR_NO_SHOW = "mentor_no_show"
    NO_SHOW = "no_show"  # Neither party joined
    CLASS_CANCELLED = "class_cancelled"
    DISPUTE_STUDENT_FAVOR = "dispute_student_favor"


FULL_REFUND_TRIGGERS = frozenset(
    {
        RefundTrigger.MENTOR_CANCELLATION,
        RefundTrigger.MENTOR_NO_SHOW,
        RefundTrigger.NO_SHOW,
        RefundTrigger.CLASS_CANCELLED,
        RefundTrigger.DISPUTE_STUDENT_FAVOR,
    }
)

FULL_REFUND_NOTICE = timedelta(hours=24)
PARTIAL_REFUND_NOTICE = timedelta(hours=2)
PARTIAL_REFUND_PERCENT = 50


@dataclass(frozen=True)
class RefundPolicyResult:
    eligible: bool
    percent: int
    amount: int
    policy_basis: str

    def to_payload(self) -> dict[str, object]:
        return {
            "eligible": self.eligible,
            "percent": int(self.percent),
            "amount": int(self.amount),
            "policy_basis": self.policy_basis,
        }


class RefundPolicyEngine:
    """Determines how much of a captured amount goes back to the student."""

    def evaluate(
        self,
        trigger: RefundTrigger,
        captured_amount: int,
        start_at: datetime,
        now: datetime,
    ) -> RefundPolicyResult:
        if captured_amount <= 0:
            return RefundPolicyResult(
                eligible=False, percent=0, amount=0, policy_basis="nothing_captured"
            )

        if trigger in FULL_REFUND_TRIGGERS:
            return self._result(100, captured_amount, trigger.value)

        notice = start_at - now
        if notice >= FULL_REFUND_NOTICE:
            return self._result(100, captured_amount, "student_cancel_24h_plus")
        if notice >= PARTIAL_REFUND_NOTICE:
            return self._result(PARTIAL_REFUND_PERCENT, captured_amount, "student_cancel_2h_to_24h")
        return self._result(0, captured_amount, "student_cancel_under_2h")

    @staticmethod
    def _result(percent: int, captured_amount: int, basis: str) -> RefundPolicyResult:
        amount = int(
            (Decimal(captured_amount) * Decimal(percent) / Decimal(100)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
        return RefundPolicyResult(
            eligible=amount > 0, percent=percent, amount=amount, policy_basis=basis
        )
