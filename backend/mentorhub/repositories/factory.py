# backend/mentorhub/repositories/factory.py
"""
Repository Factory for MentorHub

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .group_class_repository import GroupClassRepository
    from .ledger_repository import LedgerRepository
    from .offering_repository import OfferingRepository
    from .payout_repository import PayoutRepository
    from .slot_repository import SlotRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for templates, rules and overrides."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_slot_repository(db: Session) -> "SlotRepository":
        """Create repository for slot inventory and claims."""
        from .slot_repository import SlotRepository

        return SlotRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking queries."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_offering_repository(db: Session) -> "OfferingRepository":
        from .offering_repository import OfferingRepository

        return OfferingRepository(db)

    @staticmethod
    def create_ledger_repository(db: Session) -> "LedgerRepository":
        """Create append-only ledger repository."""
        from .ledger_repository import LedgerRepository

        return LedgerRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> "PayoutRepository":
        from .payout_repository import PayoutRepository

        return PayoutRepository(db)

    @staticmethod
    def create_group_class_repository(db: Session) -> "GroupClassRepository":
        from .group_class_repository import GroupClassRepository

        return GroupClassRepository(db)
