"""
Branch catalog maintenance: weekly schedules, services, branch removal.
"""

import logging
from datetime import time
from decimal import Decimal
from typing import Optional, Sequence

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .core.errors import BookingError, BranchNotFoundError, DependentRecordsError
from .models import Branch, BranchSchedule, Service, ServiceBranch
from .scheduling import format_clock, parse_clock
from .tenancy import (
    ActorContext,
    count_branch_dependents,
    list_branch_schedules,
    require_branch_access,
    require_owned,
    require_owner,
)

logger = logging.getLogger(__name__)


class ScheduleEntry(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday .. 6=Saturday")
    open_time: str
    close_time: str
    break_start: Optional[str] = None
    break_minutes: Optional[int] = Field(default=None, ge=0)

    @field_validator("open_time", "close_time")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        return format_clock(parse_clock(v))

    @field_validator("break_start")
    @classmethod
    def validate_break_start(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return format_clock(parse_clock(v))

    @model_validator(mode="after")
    def validate_window(self):
        open_minutes = parse_clock(self.open_time)
        close_minutes = parse_clock(self.close_time)
        if close_minutes <= open_minutes:
            raise ValueError("close_time must be after open_time")
        if self.break_start and self.break_minutes:
            start = parse_clock(self.break_start)
            if start < open_minutes or start + self.break_minutes > close_minutes:
                raise ValueError("the break must fall within opening hours")
        return self


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    base_price: Decimal = Field(..., ge=0)
    duration_minutes: int = Field(..., gt=0)
    description: Optional[str] = None
    branch_ids: list[int] = Field(default_factory=list)


def _to_time(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    minutes = parse_clock(value)
    return time(minutes // 60, minutes % 60)


async def set_branch_schedule(
    session: AsyncSession,
    actor: ActorContext,
    branch_id: int,
    entries: Sequence[ScheduleEntry],
) -> Sequence[BranchSchedule]:
    """Replace the weekly schedule of a branch. One entry per weekday."""
    require_branch_access(actor, branch_id)
    branch = await require_owned(session, Branch, branch_id, actor.business_id)
    if not branch:
        raise BranchNotFoundError()

    days = [e.day_of_week for e in entries]
    if len(days) != len(set(days)):
        raise BookingError("Each weekday may appear only once in a schedule.")

    await session.execute(delete(BranchSchedule).where(BranchSchedule.branch_id == branch.id))
    for entry in entries:
        session.add(
            BranchSchedule(
                branch_id=branch.id,
                day_of_week=entry.day_of_week,
                open_time=_to_time(entry.open_time),
                close_time=_to_time(entry.close_time),
                break_start=_to_time(entry.break_start),
                break_minutes=entry.break_minutes if entry.break_start else None,
            )
        )
    await session.commit()

    logger.info(f"Schedule of branch {branch.id} replaced with {len(entries)} entries by {actor.user_id}")
    return await list_branch_schedules(session, branch.id)


async def assign_service_to_branches(
    session: AsyncSession,
    service: Service,
    branch_ids: Sequence[int],
) -> bool:
    """
    Point a saved service at extra branches.

    Failures are logged and reported as False; the service itself stays saved.
    """
    try:
        await session.execute(delete(ServiceBranch).where(ServiceBranch.service_id == service.id))
        for branch_id in dict.fromkeys(branch_ids):
            session.add(ServiceBranch(service_id=service.id, branch_id=branch_id))
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Could not assign service {service.id} to branches {list(branch_ids)}: {e}")
        return False
    return True


async def create_service(
    session: AsyncSession,
    actor: ActorContext,
    payload: ServiceCreate,
) -> tuple[Service, bool]:
    """
    Save a service, then its branch assignments.

    Branch accounts create services owned by their branch. Owners create
    global services unless exactly one branch is given. Returns the service
    and whether the branch assignment succeeded.
    """
    for branch_id in payload.branch_ids:
        require_branch_access(actor, branch_id)
        if not await require_owned(session, Branch, branch_id, actor.business_id):
            raise BranchNotFoundError(f"Branch {branch_id} not found.")

    if not actor.is_owner:
        owning_branch = actor.branch_id
    elif len(payload.branch_ids) == 1:
        owning_branch = payload.branch_ids[0]
    else:
        owning_branch = None

    service = Service(
        business_id=actor.business_id,
        branch_id=owning_branch,
        name=payload.name.strip(),
        base_price=payload.base_price,
        duration_minutes=payload.duration_minutes,
        description=payload.description,
    )
    session.add(service)
    await session.commit()
    logger.info(f"Service {service.id} created for business {actor.business_id}")

    assigned = True
    if payload.branch_ids:
        assigned = await assign_service_to_branches(session, service, payload.branch_ids)
    return service, assigned


async def delete_branch(session: AsyncSession, actor: ActorContext, branch_id: int) -> None:
    """
    Remove a branch and its schedule.

    Appointments, employees, services and clients are not cascaded: while any
    still reference the branch the call fails and lists what is left.
    """
    require_owner(actor)
    branch = await require_owned(session, Branch, branch_id, actor.business_id)
    if not branch:
        raise BranchNotFoundError()

    remaining = {k: v for k, v in (await count_branch_dependents(session, branch)).items() if v}
    if remaining:
        summary = ", ".join(f"{count} {label}" for label, count in remaining.items())
        raise DependentRecordsError(
            f"Delete or reassign {summary} before deleting this branch.",
            remaining,
        )

    await session.execute(delete(ServiceBranch).where(ServiceBranch.branch_id == branch.id))
    await session.execute(delete(BranchSchedule).where(BranchSchedule.branch_id == branch.id))
    await session.delete(branch)
    await session.commit()
    logger.info(f"Branch {branch_id} deleted by {actor.user_id}")
