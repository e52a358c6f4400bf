"""
Domain exceptions raised by the booking services.

Routes do not catch these one by one: the exception handler registered in
`kyros.main` turns any `BookingError` into the standard error envelope using
its `code` and `status_code`.
"""

from typing import Any, Optional

from .responses import ErrorCodes


class BookingError(Exception):
    """Base class for recoverable booking failures."""

    code = ErrorCodes.VALIDATION_ERROR
    status_code = 422

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(BookingError):
    code = ErrorCodes.NOT_FOUND
    status_code = 404


class OutsideBusinessHoursError(BookingError):
    code = ErrorCodes.OUTSIDE_BUSINESS_HOURS


class EmployeeServiceMismatchError(BookingError):
    code = ErrorCodes.EMPLOYEE_SERVICE_MISMATCH


class InvalidStatusTransitionError(BookingError):
    code = ErrorCodes.INVALID_STATUS_TRANSITION


class AppointmentConflictError(BookingError):
    code = ErrorCodes.APPOINTMENT_CONFLICT
    status_code = 409


class DependentRecordsError(BookingError):
    code = ErrorCodes.DEPENDENT_RECORDS
    status_code = 409


class BranchNotFoundError(NotFoundError):
    code = ErrorCodes.BRANCH_NOT_FOUND

    def __init__(self, message: str = "Branch not found.", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)


class ChatSessionNotFoundError(NotFoundError):
    code = ErrorCodes.CHAT_SESSION_NOT_FOUND
