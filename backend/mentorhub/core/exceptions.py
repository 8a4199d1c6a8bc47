# backend/mentorhub/core/exceptions.py
"""
Domain-specific exceptions for the MentorHub scheduling and settlement core.

Every exception carries an ErrorKind so callers can branch on the failure
class without inspecting messages, and converts to an HTTPException at the
API boundary.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class ErrorKind(str, Enum):
    """Failure taxonomy shared by all core operations."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
    UNBALANCED = "unbalanced"
    VALIDATION_ERROR = "validation_error"


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "kind": self.kind.value,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when input is malformed (bad duration, missing reason, ...)."""

    kind = ErrorKind.VALIDATION_ERROR
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested entity id does not resolve."""

    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class UnauthorizedException(DomainException):
    """Raised when there is no current user."""

    kind = ErrorKind.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(UnauthorizedException):
    """Raised when the actor is not a party to the resource or has the wrong role."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT


class InvalidStateException(DomainException):
    """Raised when a transition is attempted from a state that forbids it."""

    kind = ErrorKind.INVALID_STATE
    status_code = HTTP_422_UNPROCESSABLE

    def __init__(
        self,
        message: str,
        *,
        current_status: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if current_status is not None:
            merged["current_status"] = current_status
        super().__init__(message, code=code or "INVALID_STATE", details=merged)


class LedgerImbalanceError(DomainException):
    """
    Raised when a ledger post does not balance.

    This is an invariant violation in calling code, not a user error, so it
    maps to a 500 and should never be retried.
    """

    kind = ErrorKind.UNBALANCED
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="LEDGER_UNBALANCED", details=details)


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    kind = ErrorKind.INVALID_STATE
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class SlotClaimConflictException(ConflictException):
    """Raised when a slot has already been claimed by another booking."""

    def __init__(self, slot_id: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="This time slot has already been booked",
            code="SLOT_ALREADY_CLAIMED",
            details={"slot_id": slot_id, **(details or {})},
        )


class InsufficientNoticeException(ValidationException):
    """Raised when booking doesn't meet minimum advance notice."""

    def __init__(self, required_hours: int, provided_hours: float):
        super().__init__(
            message=f"Bookings must be made at least {required_hours} hours in advance",
            code="INSUFFICIENT_NOTICE",
            details={
                "required_hours": required_hours,
                "provided_hours": round(provided_hours, 2),
            },
        )


class InsufficientBalanceException(ConflictException):
    """Raised when a mentor's available balance does not cover a debit."""

    def __init__(self, requested: int, available: int):
        super().__init__(
            message="Requested amount exceeds available balance",
            code="INSUFFICIENT_BALANCE",
            details={"requested": requested, "available": available},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
