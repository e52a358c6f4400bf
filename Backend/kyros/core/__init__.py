"""
Core module - configuration, database, errors, and response formatting.
"""
from .config import get_settings
from .db import get_session, Base, engine, AsyncSessionLocal
from .errors import (
    BookingError,
    NotFoundError,
    OutsideBusinessHoursError,
    EmployeeServiceMismatchError,
    InvalidStatusTransitionError,
    AppointmentConflictError,
    DependentRecordsError,
    BranchNotFoundError,
    ChatSessionNotFoundError,
)
from .responses import (
    ErrorDetail,
    ErrorResponse,
    ErrorCodes,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Errors
    "BookingError",
    "NotFoundError",
    "OutsideBusinessHoursError",
    "EmployeeServiceMismatchError",
    "InvalidStatusTransitionError",
    "AppointmentConflictError",
    "DependentRecordsError",
    "BranchNotFoundError",
    "ChatSessionNotFoundError",
    # Responses
    "ErrorDetail",
    "ErrorResponse",
    "ErrorCodes",
    "success_response",
    "error_response",
]
