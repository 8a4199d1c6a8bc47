# backend/mentorhub/tasks/__init__.py
"""
Celery tasks package for MentorHub.

This package contains the delayed jobs the settlement layer schedules
(reminders, escrow release, payment-window expiry) and the periodic
sweeps run by Celery beat.
"""

from mentorhub.tasks.celery_app import BaseTask, celery_app

__all__ = ["BaseTask", "celery_app"]
