# backend/mentorhub/tasks/scheduler.py
"""
JobScheduler backed by Celery.

Every JobKind maps to one task in booking_tasks; the payload becomes the
task's keyword arguments and ``run_at`` its ETA.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, Mapping, Optional

from celery import Celery

from mentorhub.core.timezone_utils import ensure_utc
from mentorhub.integrations.interfaces import JobKind

logger = logging.getLogger(__name__)

JOB_TASK_NAMES: Dict[JobKind, str] = {
    JobKind.BOOKING_REMINDER: "mentorhub.tasks.booking_tasks.send_booking_reminder",
    JobKind.ESCROW_RELEASE: "mentorhub.tasks.booking_tasks.release_escrow",
    JobKind.EXPIRE_PENDING_BOOKING: "mentorhub.tasks.booking_tasks.expire_pending_booking",
}


class CeleryJobScheduler:
    """Enqueue delayed jobs by task name so callers never import task modules."""

    def __init__(self, app: Optional[Celery] = None):
        self._app = app

    @property
    def app(self) -> Celery:
        if self._app is None:
            from mentorhub.tasks.celery_app import celery_app

            self._app = celery_app
        return self._app

    def schedule(self, job_kind: JobKind, payload: Mapping[str, Any], run_at: datetime) -> None:
        task_name = JOB_TASK_NAMES[job_kind]
        eta = ensure_utc(run_at)
        self.app.send_task(task_name, kwargs=dict(payload), eta=eta)
        logger.debug(
            f"Scheduled {task_name} at {eta.isoformat()}", extra={"payload": dict(payload)}
        )
