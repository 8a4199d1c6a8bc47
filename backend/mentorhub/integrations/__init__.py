"""
Narrow interfaces to collaborators outside the scheduling and settlement core.
"""

from .interfaces import (
    Clock,
    CurrentUserProvider,
    JobKind,
    JobScheduler,
    Notifier,
    NotificationKind,
    RoleChecker,
    SystemClock,
    VideoSessionLookup,
)
from .notifier import LoggingNotifier

__all__ = [
    "Clock",
    "CurrentUserProvider",
    "JobKind",
    "JobScheduler",
    "LoggingNotifier",
    "NotificationKind",
    "Notifier",
    "RoleChecker",
    "SystemClock",
    "VideoSessionLookup",
]
