# backend/mentorhub/tasks/booking_tasks.py
"""Celery tasks for booking sweeps and the delayed jobs settlement schedules."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, Optional, ParamSpec, Protocol, TypedDict, TypeVar, cast

from sqlalchemy.orm import Session

from mentorhub.core.exceptions import DomainException
from mentorhub.database import get_db
from mentorhub.services.dependencies import ServiceContainer, build_services
from mentorhub.tasks.celery_app import celery_app
from mentorhub.tasks.scheduler import CeleryJobScheduler

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    def delay(self, *args: P.args, **kwargs: P.kwargs) -> Any:
        ...

    def apply_async(self, *args: Any, **kwargs: Any) -> Any:
        ...


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""
    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class ExpirySweepResults(TypedDict):
    expired: int
    processed_at: str


class AttendanceSweepResults(TypedDict):
    processed: int
    failed: int
    outcomes: Dict[str, int]
    processed_at: str


def _services(db: Session) -> ServiceContainer:
    return build_services(db, job_scheduler=CeleryJobScheduler(celery_app))


# ── Sweeps ───────────────────────────────────────────────────────────────


@typed_task(name="mentorhub.tasks.booking_tasks.expire_pending_bookings")
def expire_pending_bookings() -> ExpirySweepResults:
    """Expire bookings still waiting for payment past the payment window."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        expired = _services(db).bookings.expire_pending_bookings()
    finally:
        if db is not None:
            db.close()
    return {"expired": expired, "processed_at": datetime.now(timezone.utc).isoformat()}


@typed_task(name="mentorhub.tasks.booking_tasks.detect_attendance")
def detect_attendance() -> AttendanceSweepResults:
    """Settle confirmed bookings whose session and waiting period have ended."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        counts = _services(db).bookings.process_ended_bookings()
    finally:
        if db is not None:
            db.close()

    processed = counts.pop("processed", 0)
    failed = counts.pop("failed", 0)
    if failed:
        logger.warning(f"Attendance sweep: {failed} bookings failed, {processed} settled")
    return {
        "processed": processed,
        "failed": failed,
        "outcomes": counts,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


@typed_task(name="mentorhub.tasks.booking_tasks.reconcile_availability_inventory")
def reconcile_availability_inventory() -> Dict[str, int]:
    """Extend every template's slot inventory to the end of its booking window."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        results = _services(db).availability.reconcile_all_templates()
    finally:
        if db is not None:
            db.close()
    return {
        "templates": len(results),
        "created": sum(r.created for r in results),
        "deleted": sum(r.deleted for r in results),
    }


# ── Delayed jobs ─────────────────────────────────────────────────────────


@typed_task(name="mentorhub.tasks.booking_tasks.expire_pending_booking")
def expire_pending_booking(booking_id: str) -> bool:
    """Payment window elapsed for one booking; paid bookings are left alone."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        _services(db).bookings.expire_booking(booking_id)
        return True
    except DomainException as e:
        logger.info(f"Not expiring booking {booking_id}: {e.message}")
        return False
    finally:
        if db is not None:
            db.close()


@typed_task(name="mentorhub.tasks.booking_tasks.release_escrow")
def release_escrow(booking_id: str) -> int:
    """Move the booking's held escrow to the mentor's available balance."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        released = _services(db).settlement.release_escrow(booking_id)
    finally:
        if db is not None:
            db.close()
    if released:
        logger.info(f"Released {released} from escrow for booking {booking_id}")
    return released


@typed_task(name="mentorhub.tasks.booking_tasks.send_booking_reminder")
def send_booking_reminder(
    booking_id: str, reminder_type: str, start_at: Optional[str] = None
) -> bool:
    """Remind both parties of an upcoming session."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        return _services(db).settlement.send_booking_reminder(booking_id, reminder_type, start_at)
    finally:
        if db is not None:
            db.close()
