"""Task wrappers: session handling and result shaping, services mocked."""

from unittest.mock import MagicMock

import pytest

from mentorhub.core.exceptions import InvalidStateException
from mentorhub.schemas.availability import ReconcileResult
from mentorhub.tasks import booking_tasks


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def container(monkeypatch, db):
    services = MagicMock()

    def fake_get_db():
        yield db

    monkeypatch.setattr(booking_tasks, "get_db", fake_get_db)
    monkeypatch.setattr(booking_tasks, "_services", lambda session: services)
    return services


def test_expire_pending_bookings(container, db):
    container.bookings.expire_pending_bookings.return_value = 3

    result = booking_tasks.expire_pending_bookings()

    assert result["expired"] == 3
    assert "processed_at" in result
    db.close.assert_called_once()


def test_detect_attendance_splits_counts(container, db):
    container.bookings.process_ended_bookings.return_value = {
        "processed": 3,
        "failed": 1,
        "COMPLETED": 2,
        "NO_SHOW": 1,
    }

    result = booking_tasks.detect_attendance()

    assert result["processed"] == 3
    assert result["failed"] == 1
    assert result["outcomes"] == {"COMPLETED": 2, "NO_SHOW": 1}


def test_reconcile_availability_inventory(container):
    container.availability.reconcile_all_templates.return_value = [
        ReconcileResult(template_id="t1", created=24, deleted=0, kept_booked=2),
        ReconcileResult(template_id="t2", created=4, deleted=1, kept_booked=0),
    ]

    assert booking_tasks.reconcile_availability_inventory() == {
        "templates": 2,
        "created": 28,
        "deleted": 1,
    }


def test_expire_pending_booking_skips_paid_booking(container, db):
    container.bookings.expire_booking.side_effect = InvalidStateException(
        "Only bookings awaiting payment can expire", current_status="CONFIRMED"
    )

    assert booking_tasks.expire_pending_booking("b1") is False
    db.close.assert_called_once()


def test_expire_pending_booking(container):
    assert booking_tasks.expire_pending_booking("b1") is True
    container.bookings.expire_booking.assert_called_once_with("b1")


def test_release_escrow(container):
    container.settlement.release_escrow.return_value = 8500

    assert booking_tasks.release_escrow("b1") == 8500


def test_send_booking_reminder_passes_start(container):
    container.settlement.send_booking_reminder.return_value = False

    assert booking_tasks.send_booking_reminder("b1", "1h", "2030-01-07T09:00:00+00:00") is False
    container.settlement.send_booking_reminder.assert_called_once_with(
        "b1", "1h", "2030-01-07T09:00:00+00:00"
    )


def test_session_closed_when_service_raises(container, db):
    container.settlement.release_escrow.side_effect = RuntimeError("db gone")

    with pytest.raises(RuntimeError):
        booking_tasks.release_escrow("b1")
    db.close.assert_called_once()
