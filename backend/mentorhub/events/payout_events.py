"""Payout domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class PayoutCompleted:
    """Fired when an approved payout has been posted to the ledger."""

    payout_id: str
    mentor_id: str
    amount: int
    completed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PayoutRejected:
    payout_id: str
    mentor_id: str
    admin_note: Optional[str]
    rejected_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
