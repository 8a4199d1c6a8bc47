# backend/mentorhub/repositories/__init__.py
"""
Repository Pattern Implementation for MentorHub

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- IRepository: Interface defining required methods for all repositories
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Templates, weekly rules and date overrides
- SlotRepository: Slot inventory and slot claims
- BookingRepository: Booking queries, including conflict detection
- LedgerRepository: Append-only ledger entries and derived balances
- PayoutRepository: Payout requests with compare-and-swap processing

Usage:
    from mentorhub.repositories import RepositoryFactory

    repository = RepositoryFactory.create_booking_repository(db)
    conflicts = repository.get_conflicting_bookings(mentor_id, start, end, buffer)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .group_class_repository import GroupClassRepository
from .ledger_repository import LedgerRepository
from .offering_repository import OfferingRepository
from .payout_repository import PayoutRepository
from .slot_repository import SlotRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "GroupClassRepository",
    "IRepository",
    "LedgerRepository",
    "OfferingRepository",
    "PayoutRepository",
    "RepositoryFactory",
    "SlotRepository",
]
