"""
Payout request model.

A mentor withdraws MentorAvailable balance through a request that an admin
approves or rejects. Approval folds straight into Completed.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from .types import UTCDateTime


class PayoutStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    COMPLETED = "Completed"


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutStatus.PENDING.value
    )
    mentor_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payout_amount_positive"),
        CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rejected', 'Completed')",
            name="ck_payout_requests_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<PayoutRequest {self.id} mentor={self.mentor_id} {self.amount} {self.status}>"


# At most one request in flight per mentor
Index(
    "uq_payout_requests_mentor_pending",
    PayoutRequest.mentor_id,
    unique=True,
    sqlite_where=(PayoutRequest.status == PayoutStatus.PENDING.value),
    postgresql_where=(PayoutRequest.status == PayoutStatus.PENDING.value),
)
