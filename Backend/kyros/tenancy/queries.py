"""
Tenant-scoped query helpers.

This module is the data-access surface the booking logic reads through.
Queries on tenant tables (Service, Employee, Client, Appointment) filter on
`business_id` here, or take a branch that was already loaded through a
business-scoped lookup.

Usage:
    from kyros.tenancy.queries import scoped_select, find_overlapping_appointments

    stmt = scoped_select(Service, actor.business_id).where(Service.name.ilike("%fade%"))
    clashes = await find_overlapping_appointments(session, actor.business_id, 7, start, end)
"""

from datetime import datetime
from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, selectinload

from ..models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    Branch,
    BranchSchedule,
    Client,
    Employee,
    EmployeeService,
    Service,
    ServiceBranch,
)

T = TypeVar("T", bound=DeclarativeBase)


# ────────────────────────────────────────────────────────────────
# Composable helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], business_id: int) -> Select:
    """SELECT pre-filtered by business_id."""
    return select(model).where(model.business_id == business_id)


def tenant_filter(model: Type[T], business_id: int):
    """Filter clause for business_id, for use inside a larger `where`."""
    return model.business_id == business_id


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id: int,
    business_id: int,
) -> Optional[T]:
    """Fetch an entity by id, or None if missing or owned by another business."""
    result = await session.execute(
        select(model).where(model.id == entity_id, model.business_id == business_id)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Branches and schedules
# ────────────────────────────────────────────────────────────────

async def get_branch(session: AsyncSession, branch_id: int) -> Optional[Branch]:
    """Unscoped lookup, only for the public chat which is keyed by branch id."""
    result = await session.execute(select(Branch).where(Branch.id == branch_id))
    return result.scalar_one_or_none()


async def list_branch_schedules(session: AsyncSession, branch_id: int) -> Sequence[BranchSchedule]:
    result = await session.execute(
        select(BranchSchedule)
        .where(BranchSchedule.branch_id == branch_id)
        .order_by(BranchSchedule.day_of_week, BranchSchedule.id)
    )
    return result.scalars().all()


async def list_open_days(session: AsyncSession, branch_id: int) -> list[int]:
    """Weekday numbers (0=Sunday) that have a schedule entry."""
    result = await session.execute(
        select(BranchSchedule.day_of_week)
        .where(BranchSchedule.branch_id == branch_id)
        .distinct()
        .order_by(BranchSchedule.day_of_week)
    )
    return list(result.scalars().all())


# ────────────────────────────────────────────────────────────────
# Services and employees
# ────────────────────────────────────────────────────────────────

def branch_services_clause(branch: Branch):
    """Services owned by the branch, global to the business, or assigned to it."""
    assigned = select(ServiceBranch.service_id).where(ServiceBranch.branch_id == branch.id)
    return or_(
        Service.branch_id == branch.id,
        Service.branch_id.is_(None),
        Service.id.in_(assigned),
    )


async def list_services_for_branch(session: AsyncSession, branch: Branch) -> Sequence[Service]:
    result = await session.execute(
        scoped_select(Service, branch.business_id)
        .where(branch_services_clause(branch))
        .order_by(Service.name)
    )
    return result.scalars().all()


async def get_services_by_ids(
    session: AsyncSession,
    business_id: int,
    service_ids: Sequence[int],
) -> Sequence[Service]:
    if not service_ids:
        return []
    result = await session.execute(
        scoped_select(Service, business_id).where(Service.id.in_(service_ids))
    )
    return result.scalars().all()


async def list_branch_employees(session: AsyncSession, branch: Branch) -> Sequence[Employee]:
    result = await session.execute(
        scoped_select(Employee, branch.business_id)
        .where(Employee.branch_id == branch.id)
        .order_by(Employee.name)
    )
    return result.scalars().all()


async def list_employee_service_pairs(
    session: AsyncSession,
    service_ids: Sequence[int],
) -> Sequence[tuple[int, int]]:
    """(employee_id, service_id) pairs for the given services."""
    if not service_ids:
        return []
    result = await session.execute(
        select(EmployeeService.employee_id, EmployeeService.service_id)
        .where(EmployeeService.service_id.in_(service_ids))
    )
    return [tuple(row) for row in result.all()]


async def list_employee_service_ids(
    session: AsyncSession,
    employee_id: int,
    service_ids: Sequence[int],
) -> list[int]:
    """Which of `service_ids` the employee is assigned to perform."""
    if not service_ids:
        return []
    result = await session.execute(
        select(EmployeeService.service_id).where(
            EmployeeService.employee_id == employee_id,
            EmployeeService.service_id.in_(service_ids),
        )
    )
    return list(result.scalars().all())


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

def _with_details(stmt: Select) -> Select:
    return stmt.options(
        selectinload(Appointment.employee),
        selectinload(Appointment.client),
        selectinload(Appointment.branch),
        selectinload(Appointment.line_items).selectinload(AppointmentService.service),
    )


async def find_overlapping_appointments(
    session: AsyncSession,
    business_id: int,
    employee_id: int,
    start_at: datetime,
    end_at: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> Sequence[Appointment]:
    """Non-canceled appointments of the employee sharing any instant with [start_at, end_at)."""
    stmt = scoped_select(Appointment, business_id).where(
        Appointment.employee_id == employee_id,
        Appointment.status != AppointmentStatus.CANCELED,
        Appointment.start_at < end_at,
        Appointment.end_at > start_at,
    )
    if exclude_appointment_id is not None:
        stmt = stmt.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_appointments_in_range(
    session: AsyncSession,
    business_id: int,
    start_at: datetime,
    end_at: datetime,
    branch_id: Optional[int] = None,
    include_canceled: bool = False,
    with_details: bool = False,
) -> Sequence[Appointment]:
    """Appointments sharing any instant with [start_at, end_at), ordered by start."""
    stmt = scoped_select(Appointment, business_id).where(
        Appointment.start_at < end_at,
        Appointment.end_at > start_at,
    )
    if branch_id is not None:
        stmt = stmt.where(Appointment.branch_id == branch_id)
    if not include_canceled:
        stmt = stmt.where(Appointment.status != AppointmentStatus.CANCELED)
    if with_details:
        stmt = _with_details(stmt)
    result = await session.execute(stmt.order_by(Appointment.start_at))
    return result.scalars().all()


async def get_appointment(
    session: AsyncSession,
    business_id: int,
    appointment_id: int,
    refresh: bool = False,
) -> Optional[Appointment]:
    """Appointment with its joined rows; `refresh` reloads one already in the session."""
    stmt = _with_details(
        scoped_select(Appointment, business_id).where(Appointment.id == appointment_id)
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Clients
# ────────────────────────────────────────────────────────────────

async def find_client_by_phone(
    session: AsyncSession,
    business_id: int,
    phone: str,
) -> Optional[Client]:
    result = await session.execute(
        scoped_select(Client, business_id).where(Client.phone == phone).order_by(Client.id).limit(1)
    )
    return result.scalar_one_or_none()


async def search_clients(
    session: AsyncSession,
    business_id: int,
    query: str = "",
    limit: int = 20,
) -> Sequence[Client]:
    """Clients of the business whose name or phone contains `query`, by name."""
    stmt = scoped_select(Client, business_id)
    query = query.strip()
    if query:
        pattern = f"%{query}%"
        stmt = stmt.where(or_(Client.name.ilike(pattern), Client.phone.ilike(pattern)))
    result = await session.execute(stmt.order_by(Client.name, Client.id).limit(limit))
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Branch dependents
# ────────────────────────────────────────────────────────────────

async def count_branch_dependents(session: AsyncSession, branch: Branch) -> dict[str, int]:
    """How many rows of each dependent table still point at the branch."""
    counts = {}
    for label, model in (
        ("appointments", Appointment),
        ("employees", Employee),
        ("services", Service),
        ("clients", Client),
    ):
        result = await session.execute(
            select(func.count())
            .select_from(model)
            .where(model.business_id == branch.business_id, model.branch_id == branch.id)
        )
        counts[label] = result.scalar_one()
    return counts
