# backend/mentorhub/tasks/celery_app.py
"""
Celery application configuration for MentorHub.

Sets up the Celery app with the configured broker, task serialization,
timezone and the periodic sweep schedule.
"""

import logging
from typing import Any, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from mentorhub.core.config import settings
from mentorhub.core.exceptions import ConflictException, RepositoryException, ServiceException

logger = logging.getLogger(__name__)


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = settings.celery_broker_url
    result_backend = settings.celery_result_backend or broker_url

    celery_app = Celery(
        "mentorhub",
        broker=broker_url,
        backend=result_backend,
    )

    base_config = {
        # Task settings
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "timezone": "UTC",
        "enable_utc": True,
        # Worker settings
        "worker_prefetch_multiplier": 4,
        "worker_max_tasks_per_child": 1000,
        # Task execution settings
        "task_soft_time_limit": 300,  # 5 minutes soft limit
        "task_time_limit": 600,  # 10 minutes hard limit
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        # Error handling
        "task_default_retry_delay": 60,
        "task_max_retries": 3,
        "worker_hijack_root_logger": False,
        "worker_redirect_stdouts": True,
        "worker_redirect_stdouts_level": "INFO",
    }
    celery_app.conf.update(base_config)

    # Force import of task modules so tasks are registered on every runner
    celery_app.conf.imports = tuple(
        set((celery_app.conf.imports or ())) | {"mentorhub.tasks.booking_tasks"}
    )

    celery_app.conf.task_routes = {
        "mentorhub.tasks.booking_tasks.send_booking_reminder": {"queue": "notifications"},
        "mentorhub.tasks.booking_tasks.release_escrow": {"queue": "payments"},
    }

    from mentorhub.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings.environment)

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """
    Base task class with retry and logging hooks.

    Conflicts are retried: a concurrent writer won and the job should run
    again against the new state. Domain rejections are final.
    """

    autoretry_for = (ConflictException, RepositoryException, ServiceException)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        """Log task failures."""
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            exc_info=einfo,
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "task_args": str(args),
                "task_kwargs": str(kwargs),
            },
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        """Log task retries."""
        logger.warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "retry_count": self.request.retries,
            },
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


# Register BaseTask as default task base for the app
celery_app.Task = cast(Type[Task], BaseTask)
