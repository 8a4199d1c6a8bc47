"""Settlement domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict


@dataclass
class RefundIssued:
    """Fired when a refund pair has been posted for a booking or enrollment."""

    reference_type: str  # LedgerReferenceType value
    reference_id: str
    student_id: str
    amount: int
    issued_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GroupClassCancelled:
    class_id: str
    cancelled_at: datetime
    refunded_enrollments: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
