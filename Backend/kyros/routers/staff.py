"""
Staff endpoints for one branch (requires auth).

Owners may call them for any branch of their business; branch accounts only
for their own branch.

    GET  /branches/{branch_id}/schedule
    PUT  /branches/{branch_id}/schedule
    GET  /branches/{branch_id}/services
    POST /branches/{branch_id}/services
    GET  /branches/{branch_id}/employees?service_ids=1&service_ids=2
    GET  /branches/{branch_id}/clients?q=
    POST /branches/{branch_id}/clients
    GET  /branches/{branch_id}/appointments?date=YYYY-MM-DD
    POST /branches/{branch_id}/appointments
    PUT  /branches/{branch_id}/appointments/{appointment_id}
    POST /branches/{branch_id}/appointments/{appointment_id}/status
    POST /branches/{branch_id}/availability/check
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..booking import (
    AppointmentRequest,
    AppointmentView,
    BookingPreview,
    create_appointment,
    get_appointment_view,
    register_client,
    list_appointments_for_day,
    list_qualified_employees,
    preview_booking,
    transition_status,
    update_appointment,
)
from ..catalog import ScheduleEntry, ServiceCreate, create_service, set_branch_schedule
from ..core.db import get_session
from ..core.errors import BookingError, BranchNotFoundError
from ..core.responses import ErrorResponse, success_response
from ..models import AppointmentStatus, Branch, BranchSchedule
from ..scheduling import format_clock, parse_clock
from ..tenancy import (
    ActorContext,
    get_actor_context,
    list_branch_schedules,
    list_services_for_branch,
    require_branch_access,
    require_owned,
    search_clients,
)
from .public import ServiceResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/branches/{branch_id}", tags=["staff"])

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# ────────────────────────────────────────────────────────────────
# Models
# ────────────────────────────────────────────────────────────────

class EmployeeResponse(BaseModel):
    id: int
    name: str
    specialty: Optional[str] = None


class AppointmentPayload(BaseModel):
    """Appointment form body; the branch comes from the URL."""
    date: date
    start_time: str
    service_ids: list[int] = Field(default_factory=list)
    employee_id: Optional[int] = None
    client_id: Optional[int] = None
    manual_client_name: Optional[str] = None

    def to_request(self, branch_id: int) -> AppointmentRequest:
        return AppointmentRequest(branch_id=branch_id, **self.model_dump())


class AvailabilityCheck(AppointmentPayload):
    exclude_appointment_id: Optional[int] = None


class ClientResponse(BaseModel):
    id: int
    name: str
    phone: Optional[str] = None


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)


class StatusChange(BaseModel):
    status: AppointmentStatus


class AvailabilityResult(BaseModel):
    available: bool
    code: Optional[str] = None
    message: Optional[str] = None
    preview: Optional[BookingPreview] = None


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

async def get_branch_actor(
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_actor_context),
) -> ActorContext:
    require_branch_access(actor, branch_id)
    return actor


async def get_staff_branch(
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
) -> Branch:
    branch = await require_owned(session, Branch, branch_id, actor.business_id)
    if not branch:
        raise BranchNotFoundError()
    return branch


def _schedule_entry(row: BranchSchedule) -> ScheduleEntry:
    return ScheduleEntry(
        day_of_week=row.day_of_week,
        open_time=format_clock(parse_clock(row.open_time)),
        close_time=format_clock(parse_clock(row.close_time)),
        break_start=format_clock(parse_clock(row.break_start)) if row.break_start else None,
        break_minutes=row.break_minutes,
    )


# ────────────────────────────────────────────────────────────────
# Schedule and catalog
# ────────────────────────────────────────────────────────────────

@router.get("/schedule", response_model=list[ScheduleEntry], responses=ERROR_RESPONSES)
async def get_schedule(
    branch: Branch = Depends(get_staff_branch),
    session: AsyncSession = Depends(get_session),
):
    return [_schedule_entry(row) for row in await list_branch_schedules(session, branch.id)]


@router.put("/schedule", response_model=list[ScheduleEntry], responses=ERROR_RESPONSES)
async def replace_schedule(
    entries: list[ScheduleEntry],
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    rows = await set_branch_schedule(session, actor, branch_id, entries)
    return [_schedule_entry(row) for row in rows]


@router.get("/services", response_model=list[ServiceResponse], responses=ERROR_RESPONSES)
async def list_branch_services(
    branch: Branch = Depends(get_staff_branch),
    session: AsyncSession = Depends(get_session),
):
    services = await list_services_for_branch(session, branch)
    return [
        ServiceResponse(
            id=s.id,
            name=s.name,
            base_price=s.base_price,
            duration_minutes=s.duration_minutes,
            description=s.description,
        )
        for s in services
    ]


@router.post("/services", status_code=201, responses=ERROR_RESPONSES)
async def add_branch_service(
    payload: ServiceCreate,
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    """
    Create a service. Without `branch_ids` it is offered at this branch.

    `branch_assignment_saved` is False when the service was stored but its
    branch assignments were not; the owner can retry the assignment.
    """
    if not payload.branch_ids:
        payload = payload.model_copy(update={"branch_ids": [branch_id]})
    service, assigned = await create_service(session, actor, payload)
    return success_response({"id": service.id, "branch_assignment_saved": assigned})


@router.get("/employees", response_model=list[EmployeeResponse], responses=ERROR_RESPONSES)
async def list_employees(
    service_ids: list[int] = Query(default=[]),
    branch: Branch = Depends(get_staff_branch),
    session: AsyncSession = Depends(get_session),
):
    """Employees of the branch who perform every listed service (all employees when none given)."""
    employees = await list_qualified_employees(session, branch, service_ids)
    return [EmployeeResponse(id=e.id, name=e.name, specialty=e.specialty) for e in employees]


# ────────────────────────────────────────────────────────────────
# Clients
# ────────────────────────────────────────────────────────────────

@router.get("/clients", response_model=list[ClientResponse], responses=ERROR_RESPONSES)
async def find_clients(
    q: str = Query(default="", max_length=100, description="Part of a name or phone"),
    limit: int = Query(default=20, ge=1, le=100),
    branch: Branch = Depends(get_staff_branch),
    session: AsyncSession = Depends(get_session),
):
    """Clients of the business for the appointment dialog's autocomplete."""
    clients = await search_clients(session, branch.business_id, q, limit=limit)
    return [ClientResponse(id=c.id, name=c.name, phone=c.phone) for c in clients]


@router.post("/clients", response_model=ClientResponse, status_code=201, responses=ERROR_RESPONSES)
async def add_client(
    payload: ClientCreate,
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    """Quick-create a client; a phone already on file returns that client."""
    client = await register_client(session, actor, branch_id, payload.name, payload.phone or None)
    return ClientResponse(id=client.id, name=client.name, phone=client.phone)


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

@router.get("/appointments", response_model=list[AppointmentView], responses=ERROR_RESPONSES)
async def list_day_appointments(
    day: date = Query(..., alias="date"),
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    return await list_appointments_for_day(session, actor, day, branch_id=branch_id)


@router.post("/appointments", response_model=AppointmentView, status_code=201, responses=ERROR_RESPONSES)
async def book_appointment(
    payload: AppointmentPayload,
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    appointment = await create_appointment(session, actor, payload.to_request(branch_id))
    return await get_appointment_view(session, actor, appointment.id)


@router.put("/appointments/{appointment_id}", response_model=AppointmentView, responses=ERROR_RESPONSES)
async def edit_appointment(
    payload: AppointmentPayload,
    appointment_id: int,
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    appointment = await update_appointment(session, actor, appointment_id, payload.to_request(branch_id))
    return await get_appointment_view(session, actor, appointment.id)


@router.post(
    "/appointments/{appointment_id}/status",
    response_model=AppointmentView,
    responses=ERROR_RESPONSES,
)
async def change_appointment_status(
    payload: StatusChange,
    appointment_id: int,
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    appointment = await transition_status(
        session, actor, appointment_id, payload.status, branch_id=branch_id
    )
    return await get_appointment_view(session, actor, appointment.id)


@router.post("/availability/check", response_model=AvailabilityResult, responses=ERROR_RESPONSES)
async def check_availability(
    payload: AvailabilityCheck,
    branch_id: int = Path(...),
    actor: ActorContext = Depends(get_branch_actor),
    session: AsyncSession = Depends(get_session),
):
    """
    Validate a prospective booking for the appointment dialog.

    Hours, service qualification and overlap problems come back as
    `available=False` with the reason; missing rows are still 404s.
    """
    request = AppointmentRequest(
        branch_id=branch_id,
        **payload.model_dump(exclude={"exclude_appointment_id"}),
    )
    try:
        preview = await preview_booking(
            session, actor, request, exclude_appointment_id=payload.exclude_appointment_id
        )
    except BookingError as e:
        if e.status_code == 404:
            raise
        logger.debug(f"Availability check rejected for branch {branch_id}: {e.message}")
        return AvailabilityResult(available=False, code=e.code, message=e.message)
    return AvailabilityResult(available=True, preview=preview)
