"""
Collaborator interfaces consumed by the core.

Identity, delivery of notifications, delayed-job infrastructure and video
sessions are owned elsewhere; the core only depends on these protocols.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Set, runtime_checkable


class JobKind(str, Enum):
    """Delayed jobs the core asks the scheduler to run."""

    BOOKING_REMINDER = "booking_reminder"
    ESCROW_RELEASE = "escrow_release"
    EXPIRE_PENDING_BOOKING = "expire_pending_booking"


class NotificationKind(str, Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_NO_SHOW = "booking_no_show"
    BOOKING_EXPIRED = "booking_expired"
    BOOKING_REMINDER = "booking_reminder"
    RESCHEDULE_PROPOSED = "reschedule_proposed"
    RESCHEDULE_APPROVED = "reschedule_approved"
    RESCHEDULE_REJECTED = "reschedule_rejected"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    REFUND_ISSUED = "refund_issued"
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_REJECTED = "payout_rejected"
    CLASS_CANCELLED = "class_cancelled"


@runtime_checkable
class Clock(Protocol):
    """Source of the current instant; injected so time-gated rules are testable."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class CurrentUserProvider(Protocol):
    def current_user_id(self) -> Optional[str]:
        """Id of the authenticated caller, or None when anonymous."""
        ...


class RoleChecker(Protocol):
    def is_admin(self, user_id: str) -> bool:
        """Whether the user may run back-office operations."""
        ...


class JobScheduler(Protocol):
    def schedule(self, job_kind: JobKind, payload: Mapping[str, Any], run_at: datetime) -> None:
        """Arrange for ``job_kind`` to run with ``payload`` at ``run_at``."""
        ...


class Notifier(Protocol):
    def notify(self, user_id: str, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        """Fire-and-forget delivery; callers log and swallow failures."""
        ...


class VideoSessionLookup(Protocol):
    def participants(self, resource_type: str, resource_id: str) -> Set[str]:
        """User ids recorded as having joined the session for a resource."""
        ...
