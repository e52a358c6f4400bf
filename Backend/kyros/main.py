import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .core.config import get_settings
from .core.errors import BookingError
from .core.responses import ErrorCodes, error_response
from .routers import owner_router, public_router, staff_router


settings = get_settings()
app = FastAPI(title="Kyros Booking Backend")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: ErrorCodes.AUTHENTICATION_REQUIRED,
    status.HTTP_403_FORBIDDEN: ErrorCodes.AUTHORIZATION_DENIED,
    status.HTTP_404_NOT_FOUND: ErrorCodes.NOT_FOUND,
}


# ────────────────────────────────────────────────────────────────
# Error envelope
# ────────────────────────────────────────────────────────────────

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
    )


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        code = ErrorCodes.INTERNAL_ERROR
    else:
        code = HTTP_ERROR_CODES.get(exc.status_code, ErrorCodes.VALIDATION_ERROR)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, str(exc.detail)),
        headers=exc.headers,
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    # Raised when a route builds a domain request from an already parsed body
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response(
            ErrorCodes.VALIDATION_ERROR,
            "Invalid booking request.",
            {"errors": [err["msg"] for err in exc.errors()]},
        ),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response(ErrorCodes.DATABASE_ERROR, "A database error occurred. Please try again."),
    )


# ────────────────────────────────────────────────────────────────
# Routers
# ────────────────────────────────────────────────────────────────

app.include_router(public_router)
app.include_router(staff_router)
app.include_router(owner_router)


@app.get("/health")
async def health():
    return {"ok": True}
