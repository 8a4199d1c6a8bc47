"""Default notifier used when no delivery channel is wired in."""

import logging
from typing import Any, Mapping

from .interfaces import NotificationKind

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Writes notifications to the log instead of delivering them."""

    def notify(self, user_id: str, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        logger.info(
            "Notification %s for user %s",
            kind.value,
            user_id,
            extra={"notification_kind": kind.value, "payload": dict(payload)},
        )
