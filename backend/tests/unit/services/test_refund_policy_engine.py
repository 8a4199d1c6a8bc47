from datetime import datetime, timedelta, timezone

import pytest

from mentorhub.services.refund_policy_engine import RefundPolicyEngine, RefundTrigger

START = datetime(2030, 1, 8, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return RefundPolicyEngine()


@pytest.mark.parametrize(
    "hours_before,percent,amount",
    [
        (48, 100, 10000),
        (24, 100, 10000),
        (23.9, 50, 5000),
        (2, 50, 5000),
        (1.9, 0, 0),
        (-1, 0, 0),
    ],
)
def test_student_cancellation_tiers(engine, hours_before, percent, amount):
    result = engine.evaluate(
        RefundTrigger.STUDENT_CANCELLATION, 10000, START, START - timedelta(hours=hours_before)
    )

    assert result.percent == percent
    assert result.amount == amount
    assert result.eligible is (amount > 0)


@pytest.mark.parametrize(
    "trigger",
    [
        RefundTrigger.MENTOR_CANCELLATION,
        RefundTrigger.MENTOR_NO_SHOW,
        RefundTrigger.NO_SHOW,
        RefundTrigger.CLASS_CANCELLED,
        RefundTrigger.DISPUTE_STUDENT_FAVOR,
    ],
)
def test_full_refund_triggers_ignore_timing(engine, trigger):
    result = engine.evaluate(trigger, 10000, START, START + timedelta(hours=1))

    assert (result.percent, result.amount) == (100, 10000)
    assert result.policy_basis == trigger.value


def test_half_refund_rounds_half_up(engine):
    result = engine.evaluate(
        RefundTrigger.STUDENT_CANCELLATION, 3333, START, START - timedelta(hours=3)
    )

    assert result.amount == 1667


def test_nothing_captured(engine):
    result = engine.evaluate(RefundTrigger.MENTOR_CANCELLATION, 0, START, START)

    assert result.to_payload() == {
        "eligible": False,
        "percent": 0,
        "amount": 0,
        "policy_basis": "nothing_captured",
    }
