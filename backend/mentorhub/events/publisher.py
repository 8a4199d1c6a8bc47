"""
Event publisher - dispatches domain events to in-process subscribers.

Handlers subscribe in one of two phases:

- ``IN_TRANSACTION`` handlers run synchronously inside the publishing unit
  of work. Their writes commit or roll back together with the state change
  that produced the event, and their exceptions abort it.
- ``AFTER_COMMIT`` handlers run only once the unit of work has committed.
  They are side effects (notifications, delayed jobs); a failure is logged
  and never reaches the caller.
"""
from collections import defaultdict
from enum import Enum
import logging
from typing import Any, Callable, DefaultDict, Dict, List, Protocol, Tuple, Type

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


class Phase(str, Enum):
    IN_TRANSACTION = "in_transaction"
    AFTER_COMMIT = "after_commit"


Handler = Callable[[Any], None]


class EventPublisher:
    """Routes domain events to subscribers by event class."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[Tuple[Type[Any], Phase], List[Handler]] = defaultdict(list)
        self._pending: List[Any] = []

    def subscribe(self, event_type: Type[Any], handler: Handler, phase: Phase) -> None:
        self._handlers[(event_type, phase)].append(handler)

    def publish(self, event: Event) -> None:
        """
        Run in-transaction handlers now and queue the event for after-commit handlers.
        """
        for handler in self._handlers.get((type(event), Phase.IN_TRANSACTION), []):
            handler(event)
        self._pending.append(event)

    def dispatch_pending(self) -> None:
        """Deliver queued events to after-commit handlers."""
        pending, self._pending = self._pending, []
        for event in pending:
            event_type = type(event).__name__
            for handler in self._handlers.get((type(event), Phase.AFTER_COMMIT), []):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "After-commit handler %s failed for %s",
                        getattr(handler, "__qualname__", repr(handler)),
                        event_type,
                    )

    def discard_pending(self) -> None:
        """Drop queued events after a rollback."""
        if self._pending:
            logger.debug("Discarding %d events after rollback", len(self._pending))
        self._pending = []
