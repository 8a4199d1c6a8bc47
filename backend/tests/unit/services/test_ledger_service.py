"""Tests for the double-entry ledger."""

import pytest

from mentorhub.core.exceptions import LedgerImbalanceError, RepositoryException
from mentorhub.models.ledger import (
    LedgerAccountType,
    LedgerDirection,
    LedgerEntry,
    LedgerReferenceType,
)
from mentorhub.services.ledger_service import (
    LedgerLine,
    LedgerService,
    commission_for,
    validate_pair,
)
from tests.unit._helpers import BASE_NOW, MENTOR_ID, STUDENT_ID

BOOKING = LedgerReferenceType.BOOKING
A = LedgerAccountType


@pytest.fixture
def ledger(unit_db) -> LedgerService:
    return LedgerService(unit_db)


def _capture(ledger, reference_id="booking-1", gross=10000):
    return ledger.record_capture(
        mentor_id=MENTOR_ID,
        gross_amount=gross,
        reference_type=BOOKING,
        reference_id=reference_id,
        occurred_at=BASE_NOW,
    )


def _release(ledger, reference_id="booking-1"):
    return ledger.record_release(
        mentor_id=MENTOR_ID, reference_type=BOOKING, reference_id=reference_id, occurred_at=BASE_NOW
    )


def _assert_consistent(ledger):
    replayed = ledger.replay_balances()
    assert sum(replayed.values()) == 0
    for (owner_id, account_type), amount in replayed.items():
        assert ledger.balance(owner_id, LedgerAccountType(account_type)) == amount


class TestCommission:
    @pytest.mark.parametrize(
        "gross,expected", [(10000, 1500), (0, 0), (1, 0), (10, 2), (3333, 500), (99, 15)]
    )
    def test_rounds_half_up(self, gross, expected):
        assert commission_for(gross) == expected

    def test_explicit_rate(self):
        assert commission_for(10000, rate=0.2) == 2000


class TestValidatePair:
    def _line(self, account, direction, amount, owner=MENTOR_ID):
        return LedgerLine(account, direction, amount, owner)

    def test_balanced_pair_passes(self):
        validate_pair(
            [
                self._line(A.MENTOR_AVAILABLE, LedgerDirection.CREDIT, 500),
                self._line(A.MENTOR_ESCROW, LedgerDirection.DEBIT, 500),
            ]
        )

    @pytest.mark.parametrize(
        "lines",
        [
            [LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 100)],
            [
                LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 100),
                LedgerLine(A.PLATFORM_CLEARING, LedgerDirection.CREDIT, 100),
            ],
            [
                LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 100),
                LedgerLine(A.PLATFORM_CLEARING, LedgerDirection.DEBIT, 99),
            ],
            [
                LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 0),
                LedgerLine(A.PLATFORM_CLEARING, LedgerDirection.DEBIT, 0),
            ],
            [
                LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 100),
                LedgerLine(A.PLATFORM, LedgerDirection.DEBIT, 100),
            ],
            [
                LedgerLine(A.MENTOR_ESCROW, LedgerDirection.CREDIT, 100),
                LedgerLine(A.PLATFORM_CLEARING, LedgerDirection.DEBIT, 100),
            ],
        ],
        ids=["single", "same-direction", "unequal", "zero", "same-account", "missing-owner"],
    )
    def test_rejects_invalid_postings(self, lines):
        with pytest.raises(LedgerImbalanceError) as exc_info:
            validate_pair(lines)
        assert exc_info.value.code == "LEDGER_UNBALANCED"


class TestPosting:
    def test_unbalanced_post_writes_nothing(self, ledger, unit_db):
        with pytest.raises(LedgerImbalanceError):
            ledger.post(
                [
                    LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 100),
                    LedgerLine(A.PLATFORM_CLEARING, LedgerDirection.DEBIT, 90),
                ],
                reference_type=BOOKING,
                reference_id="booking-1",
                occurred_at=BASE_NOW,
            )

        assert unit_db.query(LedgerEntry).count() == 0

    def test_pair_shares_transaction_id(self, ledger):
        entries = ledger.post(
            [
                LedgerLine(A.PLATFORM, LedgerDirection.CREDIT, 100),
                LedgerLine(A.PLATFORM_CLEARING, LedgerDirection.DEBIT, 100),
            ],
            reference_type=BOOKING,
            reference_id="booking-1",
            occurred_at=BASE_NOW,
        )

        assert len(entries) == 2
        assert entries[0].transaction_id == entries[1].transaction_id
        assert {e.currency for e in entries} == {"TRY"}

    def test_entries_cannot_be_deleted(self, ledger):
        entries = _capture(ledger)

        with pytest.raises(RepositoryException):
            ledger.repository.delete(entries[0].id)


class TestFlows:
    def test_capture_splits_commission(self, ledger):
        _capture(ledger)

        assert ledger.balance(MENTOR_ID, A.MENTOR_ESCROW) == 8500
        assert ledger.balance(None, A.PLATFORM) == 1500
        assert ledger.balance(None, A.PLATFORM_CLEARING) == -10000
        assert ledger.escrow_for(MENTOR_ID, BOOKING, "booking-1") == 8500
        _assert_consistent(ledger)

    def test_release_is_idempotent(self, ledger):
        _capture(ledger)

        first = _release(ledger)
        second = _release(ledger)

        assert (first, second) == (8500, 0)
        assert ledger.balance(MENTOR_ID, A.MENTOR_AVAILABLE) == 8500
        assert ledger.balance(MENTOR_ID, A.MENTOR_ESCROW) == 0

    def test_half_refund_then_release(self, ledger):
        _capture(ledger)

        refunded = ledger.record_refund(
            mentor_id=MENTOR_ID,
            student_id=STUDENT_ID,
            amount=5000,
            reference_type=BOOKING,
            reference_id="booking-1",
            occurred_at=BASE_NOW,
        )
        released = _release(ledger)

        assert refunded == 5000
        assert released == 4250
        assert ledger.balance(STUDENT_ID, A.STUDENT_REFUND) == 5000
        assert ledger.balance(None, A.PLATFORM) == 750
        assert ledger.balance(MENTOR_ID, A.MENTOR_AVAILABLE) == 4250
        assert ledger.refundable_amount(BOOKING, "booking-1") == 5000
        _assert_consistent(ledger)

    def test_refund_after_release_draws_on_available(self, ledger):
        _capture(ledger)
        _release(ledger)

        ledger.record_refund(
            mentor_id=MENTOR_ID,
            student_id=STUDENT_ID,
            amount=10000,
            reference_type=BOOKING,
            reference_id="booking-1",
            occurred_at=BASE_NOW,
        )

        assert ledger.balance(MENTOR_ID, A.MENTOR_AVAILABLE) == 0
        assert ledger.balance(STUDENT_ID, A.STUDENT_REFUND) == 10000
        assert ledger.balance(None, A.PLATFORM) == 0

    def test_refund_after_payout_never_overdraws_available(self, ledger, caplog):
        _capture(ledger)
        _release(ledger)
        ledger.record_payout(
            mentor_id=MENTOR_ID, amount=6000, payout_id="payout-1", occurred_at=BASE_NOW
        )

        refunded = ledger.record_refund(
            mentor_id=MENTOR_ID,
            student_id=STUDENT_ID,
            amount=10000,
            reference_type=BOOKING,
            reference_id="booking-1",
            occurred_at=BASE_NOW,
        )

        assert refunded == 10000
        assert ledger.balance(MENTOR_ID, A.MENTOR_AVAILABLE) == 0
        assert ledger.balance(MENTOR_ID, A.MENTOR_PAYOUT) == 6000
        assert ledger.balance(STUDENT_ID, A.STUDENT_REFUND) == 10000
        # 2500 left in available, 6000 already withdrawn and covered by the platform
        assert ledger.balance(None, A.PLATFORM) == -6000
        assert ledger.refundable_amount(BOOKING, "booking-1") == 0
        assert "covered by platform" in caplog.text
        _assert_consistent(ledger)

    def test_refund_is_capped_at_refundable(self, ledger):
        _capture(ledger)
        kwargs = dict(
            mentor_id=MENTOR_ID,
            student_id=STUDENT_ID,
            reference_type=BOOKING,
            reference_id="booking-1",
            occurred_at=BASE_NOW,
        )

        assert ledger.record_refund(amount=8000, **kwargs) == 8000
        assert ledger.record_refund(amount=8000, **kwargs) == 2000
        assert ledger.record_refund(amount=8000, **kwargs) == 0
        assert ledger.balance(STUDENT_ID, A.STUDENT_REFUND) == 10000
        _assert_consistent(ledger)

    def test_refund_of_uncaptured_reference(self, ledger):
        assert (
            ledger.record_refund(
                mentor_id=MENTOR_ID,
                student_id=STUDENT_ID,
                amount=500,
                reference_type=BOOKING,
                reference_id="never-paid",
                occurred_at=BASE_NOW,
            )
            == 0
        )
        assert ledger.replay_balances() == {}

    def test_payout_moves_available_funds(self, ledger):
        _capture(ledger)
        _release(ledger)

        ledger.record_payout(
            mentor_id=MENTOR_ID, amount=3000, payout_id="payout-1", occurred_at=BASE_NOW
        )

        assert ledger.balance(MENTOR_ID, A.MENTOR_AVAILABLE) == 5500
        assert ledger.balance(MENTOR_ID, A.MENTOR_PAYOUT) == 3000
        _assert_consistent(ledger)
