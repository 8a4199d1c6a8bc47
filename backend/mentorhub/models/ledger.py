"""
Ledger models.

Ledger entries are write-once. Nothing in the codebase updates or deletes a
row in ``ledger_entries``; balances are always derived by summing entries.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from .types import UTCDateTime


class LedgerAccountType(str, Enum):
    MENTOR_AVAILABLE = "MentorAvailable"
    MENTOR_ESCROW = "MentorEscrow"
    MENTOR_PAYOUT = "MentorPayout"
    PLATFORM = "Platform"  # Commission earned
    PLATFORM_CLEARING = "PlatformClearing"  # Funds captured by the gateway
    STUDENT_REFUND = "StudentRefund"


# Accounts that belong to a specific user; the rest are platform-wide
OWNED_ACCOUNTS = frozenset(
    {
        LedgerAccountType.MENTOR_AVAILABLE,
        LedgerAccountType.MENTOR_ESCROW,
        LedgerAccountType.MENTOR_PAYOUT,
        LedgerAccountType.STUDENT_REFUND,
    }
)


class LedgerDirection(str, Enum):
    CREDIT = "Credit"
    DEBIT = "Debit"


class LedgerReferenceType(str, Enum):
    BOOKING = "Booking"
    ENROLLMENT = "Enrollment"
    PAYOUT = "PayoutRequest"


class LedgerEntry(Base):
    """One side of a balanced ledger posting."""

    __tablename__ = "ledger_entries"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    transaction_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    account_type: Mapped[str] = mapped_column(String(30), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    owner_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(26), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_ledger_amount_positive"),
        CheckConstraint("direction IN ('Credit', 'Debit')", name="ck_ledger_direction"),
        Index("idx_ledger_owner_account", "owner_id", "account_type"),
        Index("idx_ledger_reference", "reference_type", "reference_id"),
    )

    @property
    def signed_amount(self) -> int:
        """Credits add to a balance, debits subtract."""
        return self.amount if self.direction == LedgerDirection.CREDIT else -self.amount

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.direction} {self.amount} {self.account_type} "
            f"owner={self.owner_id} ref={self.reference_type}:{self.reference_id}>"
        )
