"""
Domain exceptions for the scheduling and billing core.

Services raise these; route handlers convert them with ``to_http_exception``.
Join refusals are not exceptions, they travel as data in ``JoinDecision``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

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

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationError(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DomainException):
    """Raised when a requested record does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidTimeFormat(ValidationError):
    """Raised for a wall-clock string that is not H:MM or HH:MM."""

    def __init__(self, value: Any) -> None:
        super().__init__(
            f"Invalid time format: {value!r}. Expected HH:MM (24-hour).",
            details={"value": str(value)},
        )


class SchedulingConflict(DomainException):
    """The tutor or a participant already has an overlapping occurrence."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflicts: Optional[list] = None) -> None:
        self.conflicts = conflicts or []
        super().__init__(message, details={"conflicts": [c.as_dict() for c in self.conflicts]})


class DuplicateLedgerEntry(DomainException):
    """An active ledger entry with different terms already exists for the key."""

    status_code = status.HTTP_409_CONFLICT


class ImmutableAfterPayment(DomainException):
    """Attempted to alter a ledger entry that has been paid."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entry_id: Optional[int], action: str) -> None:
        super().__init__(
            f"Ledger entry {entry_id} is paid; cannot {action}.",
            details={"entry_id": entry_id, "action": action},
        )
