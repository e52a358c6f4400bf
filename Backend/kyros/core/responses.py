"""
Standardized API Response Module

Write endpoints without a dedicated response model answer with the
success envelope; every domain error is rendered with the error envelope.

    Success:
        {
            "data": <response data>,
            "status": "success"
        }

    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

Booking validation problems (closed day, outside hours, break, overlapping
appointment) use the VALIDATION_ERROR / APPOINTMENT_CONFLICT codes and carry a
message naming the concrete constraint that was violated.
"""

from typing import Any, Optional
from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Structured error information."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Error envelope, used in route `responses=` declarations."""
    error: ErrorDetail
    status: str = "error"


# ============================================================================
# COMMON ERROR CODES
# ============================================================================

class ErrorCodes:
    """Standard error codes for API responses."""

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"

    # Authorization errors (403)
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"
    BRANCH_NOT_FOUND = "BRANCH_NOT_FOUND"
    CHAT_SESSION_NOT_FOUND = "CHAT_SESSION_NOT_FOUND"

    # Validation errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    OUTSIDE_BUSINESS_HOURS = "OUTSIDE_BUSINESS_HOURS"
    EMPLOYEE_SERVICE_MISMATCH = "EMPLOYEE_SERVICE_MISMATCH"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"

    # Conflict errors (409)
    APPOINTMENT_CONFLICT = "APPOINTMENT_CONFLICT"
    DEPENDENT_RECORDS = "DEPENDENT_RECORDS"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"data": data, "status": "success"}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Create a standardized error response dict."""
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
