"""
Appointment booking service.

Shared by the staff endpoints and the public chat flow so both compute end
times, business hours and conflicts the same way.

Create / update pipeline:
    1. aggregate selected services   -> total duration and price
    2. business-hours check          -> closed day, opening, closing, break
    3. employee checks (if chosen)   -> performs every service, no overlap
    4. one transaction               -> appointment row + service line items

The overlap check in step 3 gives a readable message; the exclusion
constraint on `appointments` is what actually stops two concurrent bookings
of the same employee, and its violation is reported the same way.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import get_settings
from .core.errors import (
    AppointmentConflictError,
    BookingError,
    BranchNotFoundError,
    EmployeeServiceMismatchError,
    InvalidStatusTransitionError,
    NotFoundError,
    OutsideBusinessHoursError,
)
from .models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    Branch,
    Client,
    Employee,
    Service,
)
from .scheduling import (
    DaySchedule,
    aggregate_services,
    booked_intervals_for_day,
    compute_slots,
    format_clock,
    parse_clock,
    resolve_client,
    schedule_for_day,
    validate_within_hours,
)
from .tenancy import (
    ActorContext,
    find_client_by_phone,
    find_overlapping_appointments,
    get_appointment,
    get_services_by_ids,
    list_appointments_in_range,
    list_branch_employees,
    list_branch_schedules,
    list_employee_service_ids,
    list_employee_service_pairs,
    require_branch_access,
    require_owned,
)

settings = get_settings()
logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAME = "ex_appointments_employee_overlap"

ALLOWED_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELED,
    },
    AppointmentStatus.IN_PROGRESS: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELED,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELED: set(),
}


# ────────────────────────────────────────────────────────────────
# Request / view models
# ────────────────────────────────────────────────────────────────

class AppointmentRequest(BaseModel):
    branch_id: int
    date: date
    start_time: str = Field(..., description="HH:MM in branch local time")
    service_ids: list[int] = Field(default_factory=list)
    employee_id: Optional[int] = None
    client_id: Optional[int] = None
    manual_client_name: Optional[str] = None

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: str) -> str:
        return format_clock(parse_clock(v))

    @field_validator("service_ids")
    @classmethod
    def dedupe_services(cls, v: list[int]) -> list[int]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def require_client(self):
        if not self.client_id and not (self.manual_client_name or "").strip():
            raise ValueError("Either client_id or manual_client_name is required")
        return self


class AppointmentView(BaseModel):
    id: int
    branch_id: int
    employee_id: Optional[int]
    employee_name: Optional[str]
    client_name: str
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus
    services: list[str]
    total_price: Decimal
    total_paid: Optional[Decimal] = None
    completed_at: Optional[datetime] = None


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def branch_tz(branch: Branch) -> ZoneInfo:
    """Timezone appointments of the branch are expressed in."""
    return ZoneInfo(branch.timezone or settings.default_timezone)


def local_day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    return start, start + timedelta(days=1)


def can_transition(current: AppointmentStatus, new: AppointmentStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def line_items_total(line_items: Iterable[AppointmentService]) -> Decimal:
    """Sum of the prices charged at booking time."""
    return sum((Decimal(item.price_at_booking or 0) for item in line_items), Decimal("0"))


def summarize_appointment(appointment: Appointment) -> AppointmentView:
    """Flatten an appointment with its joined rows into a display view."""
    client = resolve_client(
        appointment.client.name if appointment.client else None,
        appointment.manual_client_name,
    )
    service_names = [
        item.service.name if item.service else "Service"
        for item in appointment.line_items
    ]
    return AppointmentView(
        id=appointment.id,
        branch_id=appointment.branch_id,
        employee_id=appointment.employee_id,
        employee_name=appointment.employee.name if appointment.employee else None,
        client_name=client.display_name,
        start_at=appointment.start_at,
        end_at=appointment.end_at,
        status=appointment.status,
        services=service_names,
        total_price=line_items_total(appointment.line_items),
        total_paid=appointment.total_paid,
        completed_at=appointment.completed_at,
    )


def _is_overlap_violation(error: IntegrityError) -> bool:
    return OVERLAP_CONSTRAINT_NAME in str(getattr(error, "orig", error))


async def load_day_schedule(session: AsyncSession, branch: Branch, day: date) -> Optional[DaySchedule]:
    rows = await list_branch_schedules(session, branch.id)
    return schedule_for_day([DaySchedule.from_row(row) for row in rows], day)


# ────────────────────────────────────────────────────────────────
# Availability
# ────────────────────────────────────────────────────────────────

async def is_employee_available(
    session: AsyncSession,
    business_id: int,
    employee_id: Optional[int],
    start_at: datetime,
    end_at: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> bool:
    """
    True when the employee has no live appointment overlapping [start_at, end_at).

    No employee ("no preference") is always available. A failed query counts
    as unavailable so a database hiccup cannot let a double booking through.
    """
    if not employee_id:
        return True

    try:
        clashes = await find_overlapping_appointments(
            session,
            business_id,
            employee_id,
            start_at,
            end_at,
            exclude_appointment_id=exclude_appointment_id,
        )
    except SQLAlchemyError as e:
        logger.error(f"Availability check failed for employee {employee_id}: {e}")
        return False

    if clashes:
        logger.debug(
            f"Employee {employee_id} busy between {start_at} and {end_at}: "
            f"{[c.id for c in clashes]}"
        )
    return not clashes


async def load_available_slots(
    session: AsyncSession,
    branch: Branch,
    day: date,
    interval_minutes: Optional[int] = None,
) -> list[str]:
    """
    Free slot start times of the branch on `day`.

    Branch-wide: an appointment with any employee takes the slot.
    """
    schedule = await load_day_schedule(session, branch, day)
    if schedule is None:
        return []

    tz = branch_tz(branch)
    day_start, day_end = local_day_bounds(day, tz)
    appointments = await list_appointments_in_range(
        session, branch.business_id, day_start, day_end, branch_id=branch.id
    )
    booked = booked_intervals_for_day(appointments, day, tz)
    slots = compute_slots(schedule, booked, interval_minutes or settings.slot_interval_minutes)
    logger.debug(f"Branch {branch.id} on {day}: {len(slots)} free slots")
    return slots


async def employee_missing_services(
    session: AsyncSession,
    employee_id: int,
    service_ids: Sequence[int],
) -> list[int]:
    """Ids from `service_ids` the employee is not assigned to perform."""
    if not service_ids:
        return []
    assigned = set(await list_employee_service_ids(session, employee_id, service_ids))
    return [sid for sid in service_ids if sid not in assigned]


async def list_qualified_employees(
    session: AsyncSession,
    branch: Branch,
    service_ids: Sequence[int],
) -> list[Employee]:
    """Employees of the branch able to perform every selected service."""
    employees = list(await list_branch_employees(session, branch))
    if not employees or not service_ids:
        return employees

    wanted = set(service_ids)
    skills: dict[int, set[int]] = {}
    for employee_id, service_id in await list_employee_service_pairs(session, list(wanted)):
        skills.setdefault(employee_id, set()).add(service_id)

    return [e for e in employees if wanted <= skills.get(e.id, set())]


# ────────────────────────────────────────────────────────────────
# Clients
# ────────────────────────────────────────────────────────────────

async def find_or_create_client(
    session: AsyncSession,
    business_id: int,
    name: str,
    phone: Optional[str],
    branch_id: Optional[int] = None,
    platform: str = "web_chat",
) -> Client:
    """Reuse the business client with this phone, or add a new one (flushed, not committed)."""
    if phone:
        existing = await find_client_by_phone(session, business_id, phone)
        if existing:
            return existing

    client = Client(
        business_id=business_id,
        branch_id=branch_id,
        name=name.strip(),
        phone=phone,
        platform=platform,
        chat_id=f"{platform}_{int(datetime.now(timezone.utc).timestamp() * 1000)}",
    )
    session.add(client)
    await session.flush()
    logger.info(f"Created client {client.id} for business {business_id} via {platform}")
    return client


async def register_client(
    session: AsyncSession,
    actor: ActorContext,
    branch_id: int,
    name: str,
    phone: Optional[str] = None,
) -> Client:
    """Quick-create a client from the appointment dialog; an existing phone is reused."""
    require_branch_access(actor, branch_id)
    branch = await require_owned(session, Branch, branch_id, actor.business_id)
    if not branch:
        raise BranchNotFoundError()

    client = await find_or_create_client(
        session, actor.business_id, name, phone, branch_id=branch.id, platform="manual"
    )
    await session.commit()
    return client


# ────────────────────────────────────────────────────────────────
# Create / update
# ────────────────────────────────────────────────────────────────

async def _validate_booking(
    session: AsyncSession,
    business_id: int,
    request: AppointmentRequest,
    now: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> tuple[Branch, Sequence[Service], datetime, datetime]:
    branch = await require_owned(session, Branch, request.branch_id, business_id)
    if not branch:
        raise BranchNotFoundError()

    services = await get_services_by_ids(session, business_id, request.service_ids)
    if len(services) != len(request.service_ids):
        raise NotFoundError("One or more services were not found.")

    totals = aggregate_services(services)
    tz = branch_tz(branch)
    start_minutes = parse_clock(request.start_time)
    start_at = datetime.combine(
        request.date, time(start_minutes // 60, start_minutes % 60), tzinfo=tz
    )
    end_at = start_at + timedelta(minutes=totals.total_duration_minutes)

    if exclude_appointment_id is None and start_at < now:
        raise BookingError("Appointments cannot be booked in the past.")

    if request.client_id and not await require_owned(session, Client, request.client_id, business_id):
        raise NotFoundError("Client not found.")

    schedule = await load_day_schedule(session, branch, request.date)
    check = validate_within_hours(
        request.date, request.start_time, totals.total_duration_minutes, schedule
    )
    if not check.valid:
        raise OutsideBusinessHoursError(check.message, {"reason": check.reason})

    if request.employee_id:
        employee = await require_owned(session, Employee, request.employee_id, business_id)
        if not employee or employee.branch_id != branch.id:
            raise NotFoundError("Employee not found in this branch.")

        missing = await employee_missing_services(session, employee.id, request.service_ids)
        if missing:
            names = ", ".join(s.name for s in services if s.id in missing)
            raise EmployeeServiceMismatchError(
                f"The selected employee does not perform: {names}",
                {"service_ids": missing},
            )

        available = await is_employee_available(
            session, business_id, employee.id, start_at, end_at, exclude_appointment_id
        )
        if not available:
            raise AppointmentConflictError("The employee already has an appointment at that time.")

    return branch, services, start_at, end_at


async def _commit_appointment(session: AsyncSession) -> None:
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if _is_overlap_violation(e):
            logger.warning("Concurrent booking rejected by overlap constraint")
            raise AppointmentConflictError("The employee already has an appointment at that time.")
        raise


async def create_appointment(
    session: AsyncSession,
    actor: ActorContext,
    request: AppointmentRequest,
    status: AppointmentStatus = AppointmentStatus.PENDING,
    now: Optional[datetime] = None,
) -> Appointment:
    """Validate and store an appointment with its service line items in one transaction."""
    require_branch_access(actor, request.branch_id)
    now = now or datetime.now(timezone.utc)

    branch, services, start_at, end_at = await _validate_booking(
        session, actor.business_id, request, now
    )

    appointment = Appointment(
        business_id=actor.business_id,
        branch_id=branch.id,
        employee_id=request.employee_id,
        client_id=request.client_id,
        manual_client_name=(request.manual_client_name or "").strip() or None,
        start_at=start_at,
        end_at=end_at,
        status=status,
        line_items=[
            AppointmentService(service_id=s.id, price_at_booking=s.base_price)
            for s in services
        ],
    )
    session.add(appointment)
    await _commit_appointment(session)

    logger.info(
        f"Appointment {appointment.id} created at branch {branch.id} "
        f"{start_at.isoformat()} - {end_at.isoformat()} by {actor.user_id}"
    )
    return appointment


async def update_appointment(
    session: AsyncSession,
    actor: ActorContext,
    appointment_id: int,
    request: AppointmentRequest,
    now: Optional[datetime] = None,
) -> Appointment:
    """Re-validate and rewrite an appointment; its line items are replaced atomically."""
    appointment = await get_appointment(session, actor.business_id, appointment_id)
    if not appointment:
        raise NotFoundError("Appointment not found.")
    require_branch_access(actor, appointment.branch_id)
    require_branch_access(actor, request.branch_id)

    if appointment.status in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED):
        raise InvalidStatusTransitionError(
            f"A {appointment.status.value} appointment cannot be edited."
        )

    now = now or datetime.now(timezone.utc)
    branch, services, start_at, end_at = await _validate_booking(
        session, actor.business_id, request, now, exclude_appointment_id=appointment.id
    )

    appointment.branch_id = branch.id
    appointment.employee_id = request.employee_id
    appointment.client_id = request.client_id
    appointment.manual_client_name = (request.manual_client_name or "").strip() or None
    appointment.start_at = start_at
    appointment.end_at = end_at
    appointment.line_items = [
        AppointmentService(service_id=s.id, price_at_booking=s.base_price)
        for s in services
    ]
    await _commit_appointment(session)

    logger.info(f"Appointment {appointment.id} updated by {actor.user_id}")
    return appointment


async def transition_status(
    session: AsyncSession,
    actor: ActorContext,
    appointment_id: int,
    new_status: AppointmentStatus,
    now: Optional[datetime] = None,
    branch_id: Optional[int] = None,
) -> Appointment:
    """
    Move an appointment to `new_status`.

    Completing stamps `total_paid` (sum of booked prices) and `completed_at`.
    With `branch_id`, appointments of other branches are treated as missing.
    """
    appointment = await get_appointment(session, actor.business_id, appointment_id)
    if not appointment or (branch_id is not None and appointment.branch_id != branch_id):
        raise NotFoundError("Appointment not found.")
    require_branch_access(actor, appointment.branch_id)

    if not can_transition(appointment.status, new_status):
        raise InvalidStatusTransitionError(
            f"Cannot change an appointment from {appointment.status.value} to {new_status.value}.",
            {"from": appointment.status.value, "to": new_status.value},
        )

    appointment.status = new_status
    if new_status == AppointmentStatus.COMPLETED:
        appointment.total_paid = line_items_total(appointment.line_items)
        appointment.completed_at = now or datetime.now(timezone.utc)

    await session.commit()
    logger.info(f"Appointment {appointment.id} -> {new_status.value} by {actor.user_id}")
    return appointment


async def list_appointments_for_day(
    session: AsyncSession,
    actor: ActorContext,
    day: date,
    branch_id: Optional[int] = None,
) -> list[AppointmentView]:
    """Non-canceled appointments of one local day, branch accounts see only their branch."""
    if not actor.is_owner:
        branch_id = actor.branch_id

    tz = ZoneInfo(settings.default_timezone)
    if branch_id is not None:
        require_branch_access(actor, branch_id)
        branch = await require_owned(session, Branch, branch_id, actor.business_id)
        if not branch:
            raise BranchNotFoundError()
        tz = branch_tz(branch)

    day_start, day_end = local_day_bounds(day, tz)
    appointments = await list_appointments_in_range(
        session,
        actor.business_id,
        day_start,
        day_end,
        branch_id=branch_id,
        with_details=True,
    )
    return [summarize_appointment(a) for a in appointments]


async def get_appointment_view(
    session: AsyncSession,
    actor: ActorContext,
    appointment_id: int,
) -> AppointmentView:
    """Fresh display view of one appointment, reloading rows written in this session."""
    appointment = await get_appointment(session, actor.business_id, appointment_id, refresh=True)
    if not appointment:
        raise NotFoundError("Appointment not found.")
    require_branch_access(actor, appointment.branch_id)
    return summarize_appointment(appointment)


class BookingPreview(BaseModel):
    start_at: datetime
    end_at: datetime
    total_duration_minutes: int
    total_price: Decimal


async def preview_booking(
    session: AsyncSession,
    actor: ActorContext,
    request: AppointmentRequest,
    exclude_appointment_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> BookingPreview:
    """
    Run every create/update check without writing anything.

    Raises the same errors `create_appointment` would.
    """
    require_branch_access(actor, request.branch_id)
    _, services, start_at, end_at = await _validate_booking(
        session,
        actor.business_id,
        request,
        now or datetime.now(timezone.utc),
        exclude_appointment_id=exclude_appointment_id,
    )
    totals = aggregate_services(services)
    return BookingPreview(
        start_at=start_at,
        end_at=end_at,
        total_duration_minutes=totals.total_duration_minutes,
        total_price=totals.total_price,
    )
