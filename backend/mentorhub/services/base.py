# backend/mentorhub/services/base.py
"""
Base Service Pattern for MentorHub

Provides common functionality for all service classes including:
- Transaction management
- Logging
- Error translation at the unit-of-work boundary
- Performance monitoring
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ConflictException, ServiceException, UnauthorizedException
from ..monitoring.prometheus_metrics import prometheus_metrics

# Use TYPE_CHECKING to avoid circular imports
if TYPE_CHECKING:
    from ..events.publisher import EventPublisher
    from ..integrations.interfaces import CurrentUserProvider

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATEs for serialization_failure and deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
_TX_DEPTH_KEY = "mentorhub_tx_depth"

F = TypeVar("F", bound=Callable[..., Any])


def is_serialization_failure(exc: OperationalError) -> bool:
    """Whether the database aborted the transaction to preserve serializability."""
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _RETRYABLE_SQLSTATES:
        return True
    message = str(exc).lower()
    return "could not serialize access" in message or "deadlock detected" in message


def require_user_id(provider: Optional["CurrentUserProvider"]) -> str:
    """Id of the caller, or UnauthorizedException when there is none."""
    user_id = provider.current_user_id() if provider is not None else None
    if not user_id:
        raise UnauthorizedException("Authentication required", code="NOT_AUTHENTICATED")
    return user_id


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Logging
    - Transaction handling
    - Performance monitoring
    """

    # Class-level metrics storage
    _class_metrics: Dict[str, Dict[str, Dict[str, float]]] = {}

    def __init__(self, db: Session, event_publisher: Optional["EventPublisher"] = None):
        """
        Initialize base service.

        Args:
            db: Database session
            event_publisher: Optional publisher for domain events
        """
        self.db = db
        self.event_publisher = event_publisher
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Usage:
            with self.transaction():
                # Do multiple operations
                self.db.add(entity)
                # Note: commit is handled automatically

        Constraint violations and serialization failures are the database
        telling us a concurrent writer won, so they surface as conflicts.
        Everything in the block is rolled back on any error.

        Nested use joins the outermost transaction: only the outermost block
        commits or rolls back, so services can call each other and still
        produce a single unit of work.
        """
        depth = self.db.info.get(_TX_DEPTH_KEY, 0)
        if depth:
            self.db.info[_TX_DEPTH_KEY] = depth + 1
            try:
                yield self.db
            finally:
                self.db.info[_TX_DEPTH_KEY] = depth
            return

        self.db.info[_TX_DEPTH_KEY] = 1
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except IntegrityError as e:
            self.logger.warning(f"Transaction rejected by constraint: {str(e.orig)}")
            self.db.rollback()
            raise ConflictException(
                "The requested change conflicts with a concurrent update",
                code="CONCURRENT_CONFLICT",
            ) from e
        except OperationalError as e:
            self.db.rollback()
            if is_serialization_failure(e):
                self.logger.warning(f"Transaction aborted by serialization check: {str(e)}")
                raise ConflictException(
                    "The requested change conflicts with a concurrent update",
                    code="CONCURRENT_CONFLICT",
                ) from e
            self.logger.error(f"Transaction failed: {str(e)}")
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception as e:
            self.logger.info(f"Transaction rolled back: {type(e).__name__}: {str(e)}")
            self.db.rollback()
            raise
        finally:
            self.db.info[_TX_DEPTH_KEY] = 0

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """
        Transaction plus event delivery.

        Events published inside the block reach after-commit subscribers only
        once the outermost transaction has committed, and are dropped if it
        rolls back.
        """
        outermost = not self.db.info.get(_TX_DEPTH_KEY, 0)
        publisher = self.event_publisher
        try:
            with self.transaction() as session:
                yield session
        except Exception:
            if outermost and publisher is not None:
                publisher.discard_pending()
            raise
        if outermost and publisher is not None:
            publisher.dispatch_pending()

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("create_booking")
            def create_booking(self, data):
                # Method implementation

        Args:
            operation_name: Name of the operation for metrics

        Returns:
            Decorator function
        """

        def decorator(func: F) -> F:
            func._operation_name = operation_name  # type: ignore[attr-defined]
            func._is_measured = True  # type: ignore[attr-defined]

            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    if hasattr(self, "_record_metric"):
                        self._record_metric(operation_name, elapsed, success)

                    # Only log if it's actually slow
                    if elapsed > 1.0 and hasattr(self, "logger"):
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """
        Log an operation with context.

        Args:
            operation: Operation name
            **context: Additional context to log
        """
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        """
        Record performance metrics.

        Args:
            operation: Operation name
            elapsed: Time taken in seconds
            success: Whether operation succeeded
        """
        class_name = self.__class__.__name__
        metrics = BaseService._class_metrics.setdefault(class_name, {})

        if operation not in metrics:
            metrics[operation] = {
                "count": 0,
                "total_time": 0.0,
                "success_count": 0,
                "failure_count": 0,
                "min_time": float("inf"),
                "max_time": 0.0,
            }

        metric_data = metrics[operation]
        metric_data["count"] += 1
        metric_data["total_time"] += elapsed
        metric_data["min_time"] = min(metric_data["min_time"], elapsed)
        metric_data["max_time"] = max(metric_data["max_time"], elapsed)

        if success:
            metric_data["success_count"] += 1
        else:
            metric_data["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get performance metrics for this service.

        Returns:
            Dictionary with metrics for each measured operation
        """
        class_name = self.__class__.__name__
        result = {}
        for operation, data in BaseService._class_metrics.get(class_name, {}).items():
            count = data["count"]
            if count == 0:
                continue

            result[operation] = {
                "count": count,
                "avg_time": data["total_time"] / count,
                "min_time": data["min_time"],
                "max_time": data["max_time"],
                "total_time": data["total_time"],
                "success_rate": data["success_count"] / count,
                "success_count": data["success_count"],
                "failure_count": data["failure_count"],
            }

        return result

    def reset_metrics(self) -> None:
        """Reset all metrics for this service."""
        class_name = self.__class__.__name__
        if class_name in BaseService._class_metrics:
            BaseService._class_metrics[class_name].clear()
        self.logger.info(f"Metrics reset for {class_name}")
