# backend/mentorhub/services/dependencies.py
"""
Dependency wiring for services.

All services built for one session share one EventPublisher, so ledger
handlers registered by SettlementService run inside the unit of work of
whichever service published the event.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..events.publisher import EventPublisher
from ..integrations.interfaces import (
    Clock,
    CurrentUserProvider,
    JobScheduler,
    Notifier,
    RoleChecker,
    SystemClock,
    VideoSessionLookup,
)
from .availability_service import AvailabilityService
from .booking_service import BookingService
from .conflict_checker import ConflictChecker
from .ledger_service import LedgerService
from .payout_service import PayoutService
from .settlement_service import SettlementService
from .slot_manager import SlotManager


@dataclass
class ServiceContainer:
    publisher: EventPublisher
    availability: AvailabilityService
    bookings: BookingService
    ledger: LedgerService
    payouts: PayoutService
    settlement: SettlementService


def build_services(
    db: Session,
    *,
    clock: Optional[Clock] = None,
    user_provider: Optional[CurrentUserProvider] = None,
    role_checker: Optional[RoleChecker] = None,
    notifier: Optional[Notifier] = None,
    job_scheduler: Optional[JobScheduler] = None,
    video_lookup: Optional[VideoSessionLookup] = None,
) -> ServiceContainer:
    """
    Build the service graph for one database session.

    Usage:
        services = build_services(db, user_provider=request_user)
        services.bookings.create_booking(data)
    """
    clock = clock or SystemClock()
    publisher = EventPublisher()
    conflict_checker = ConflictChecker(db)
    ledger = LedgerService(db)

    settlement = SettlementService(
        db,
        clock=clock,
        notifier=notifier,
        job_scheduler=job_scheduler,
        user_provider=user_provider,
        ledger_service=ledger,
    )
    settlement.register(publisher)

    return ServiceContainer(
        publisher=publisher,
        availability=AvailabilityService(
            db, clock=clock, user_provider=user_provider, conflict_checker=conflict_checker
        ),
        bookings=BookingService(
            db,
            clock=clock,
            user_provider=user_provider,
            role_checker=role_checker,
            event_publisher=publisher,
            video_lookup=video_lookup,
            slot_manager=SlotManager(db),
            conflict_checker=conflict_checker,
        ),
        ledger=ledger,
        payouts=PayoutService(
            db,
            clock=clock,
            user_provider=user_provider,
            role_checker=role_checker,
            event_publisher=publisher,
            ledger_service=ledger,
        ),
        settlement=settlement,
    )

