# backend/mentorhub/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for MentorHub.

Periodic sweeps that back up the per-booking delayed jobs: anything a
missed or lost job left behind is picked up on the next run.
"""

from datetime import timedelta
from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE = {
    # Unpaid bookings past the payment window
    "expire-pending-bookings": {
        "task": "mentorhub.tasks.booking_tasks.expire_pending_bookings",
        "schedule": crontab(minute="*/5"),
        "options": {"priority": 6},
    },
    # Confirmed bookings whose session and waiting period are over
    "detect-attendance": {
        "task": "mentorhub.tasks.booking_tasks.detect_attendance",
        "schedule": crontab(minute="*/5"),
        "options": {"priority": 7},
    },
    # Roll the materialized inventory window forward by one day
    "reconcile-availability-inventory": {
        "task": "mentorhub.tasks.booking_tasks.reconcile_availability_inventory",
        "schedule": crontab(hour=3, minute=15),
        "options": {"priority": 3},
    },
}

# Schedule configuration for different environments
SCHEDULE_CONFIG = {
    "production": CELERYBEAT_SCHEDULE,
    "testing": {
        "expire-pending-bookings": {
            "task": "mentorhub.tasks.booking_tasks.expire_pending_bookings",
            "schedule": timedelta(seconds=30),
        },
        "detect-attendance": {
            "task": "mentorhub.tasks.booking_tasks.detect_attendance",
            "schedule": timedelta(seconds=30),
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
