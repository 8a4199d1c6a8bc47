# backend/mentorhub/repositories/ledger_repository.py
"""
Ledger Repository for MentorHub

Append-only access to ``ledger_entries``. There is deliberately no update
or delete method: entries are written once and balances are sums.
"""

import logging
from typing import Iterable, List, Optional, cast

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.ledger import LedgerAccountType, LedgerDirection, LedgerEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_SIGNED_AMOUNT = case(
    (LedgerEntry.direction == LedgerDirection.CREDIT.value, LedgerEntry.amount),
    else_=-LedgerEntry.amount,
)


class LedgerRepository(BaseRepository[LedgerEntry]):
    def __init__(self, db: Session):
        super().__init__(db, LedgerEntry)

    def append(self, entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
        rows = list(entries)
        try:
            self.db.add_all(rows)
            self.db.flush()
            return rows
        except SQLAlchemyError as e:
            self.logger.error(f"Error appending ledger entries: {str(e)}")
            raise RepositoryException(f"Failed to append ledger entries: {str(e)}")

    def delete(self, id: str) -> bool:
        raise RepositoryException("Ledger entries are append-only")

    def get_balance(
        self,
        owner_id: Optional[str],
        account_type: LedgerAccountType,
        *,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> int:
        """
        Sum of credits minus sum of debits for one owner and account.

        Optionally narrowed to the entries produced by one reference, which
        is how escrow held for a single booking is found.
        """
        query = self.db.query(func.coalesce(func.sum(_SIGNED_AMOUNT), 0)).filter(
            LedgerEntry.account_type == account_type.value
        )
        if owner_id is None:
            query = query.filter(LedgerEntry.owner_id.is_(None))
        else:
            query = query.filter(LedgerEntry.owner_id == owner_id)
        if reference_type is not None:
            query = query.filter(LedgerEntry.reference_type == reference_type)
        if reference_id is not None:
            query = query.filter(LedgerEntry.reference_id == reference_id)
        return int(self._execute_scalar(query) or 0)

    def get_reference_total(
        self,
        reference_type: str,
        reference_id: str,
        account_type: LedgerAccountType,
        direction: LedgerDirection,
    ) -> int:
        """Total amount moved in one direction on one account for a reference."""
        query = self.db.query(func.coalesce(func.sum(LedgerEntry.amount), 0)).filter(
            LedgerEntry.reference_type == reference_type,
            LedgerEntry.reference_id == reference_id,
            LedgerEntry.account_type == account_type.value,
            LedgerEntry.direction == direction.value,
        )
        return int(self._execute_scalar(query) or 0)

    def get_all_entries(self) -> List[LedgerEntry]:
        """Full log in append order, for audit replay."""
        try:
            return cast(
                List[LedgerEntry],
                self._build_query().order_by(LedgerEntry.occurred_at, LedgerEntry.id).all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error reading ledger: {str(e)}")
            raise RepositoryException(f"Failed to read ledger: {str(e)}")
