"""
Owner statistics: appointments per branch, popular services, revenue.

Revenue is counted from completed appointments by their completion time, in
the branch timezone, over one of three periods:

    day    buckets 8:00 .. 20:00 by hour
    week   buckets Mon .. Sun, weeks start on Monday
    month  buckets 1 .. days-in-month
"""

import calendar
import logging
from collections import Counter
from datetime import date, datetime, time, timedelta, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .booking import branch_tz
from .core.config import get_settings
from .core.errors import BranchNotFoundError
from .models import Appointment, AppointmentService, AppointmentStatus, Branch, Service
from .tenancy import ActorContext, require_branch_access, require_owned, scoped_select, tenant_filter

settings = get_settings()
logger = logging.getLogger(__name__)

DAY_FIRST_HOUR = 8
DAY_LAST_HOUR = 20
WEEKDAY_LABELS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


class RevenuePeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class NamedValue(BaseModel):
    name: str
    value: float


class RevenueReport(BaseModel):
    branch_id: int
    mode: RevenuePeriod
    label: str
    start_at: datetime
    end_at: datetime
    buckets: list[NamedValue]
    total: Decimal


# ────────────────────────────────────────────────────────────────
# Pure helpers
# ────────────────────────────────────────────────────────────────

def rank_by_count(names: Iterable[str], limit: Optional[int] = None) -> list[NamedValue]:
    """Count occurrences and return them most frequent first."""
    counts = Counter(names)
    return [NamedValue(name=name, value=count) for name, count in counts.most_common(limit)]


def period_bounds(mode: RevenuePeriod, reference: date) -> tuple[date, date]:
    """First day of the period and first day after it."""
    if mode == RevenuePeriod.DAY:
        return reference, reference + timedelta(days=1)
    if mode == RevenuePeriod.WEEK:
        monday = reference - timedelta(days=reference.weekday())
        return monday, monday + timedelta(days=7)
    first = reference.replace(day=1)
    days = calendar.monthrange(first.year, first.month)[1]
    return first, first + timedelta(days=days)


def shift_period(mode: RevenuePeriod, reference: date, direction: int) -> date:
    """Reference date of the previous (-1) or next (+1) period."""
    if mode == RevenuePeriod.DAY:
        return reference + timedelta(days=direction)
    if mode == RevenuePeriod.WEEK:
        return reference + timedelta(days=7 * direction)
    month_index = reference.year * 12 + (reference.month - 1) + direction
    year, month = divmod(month_index, 12)
    month += 1
    day = min(reference.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_label(mode: RevenuePeriod, reference: date) -> str:
    start, end = period_bounds(mode, reference)
    if mode == RevenuePeriod.DAY:
        return start.strftime("%A, %B %d, %Y")
    if mode == RevenuePeriod.WEEK:
        last = end - timedelta(days=1)
        return f"{start.strftime('%b %d')} - {last.strftime('%b %d, %Y')}"
    return start.strftime("%B %Y")


def group_revenue(
    mode: RevenuePeriod,
    reference: date,
    rows: Iterable[tuple[Optional[datetime], Optional[Decimal]]],
    tz: tzinfo,
) -> list[NamedValue]:
    """
    Bucket (completed_at, total_paid) rows for a chart.

    Rows outside the buckets (e.g. a 7:00 completion in day mode) are dropped
    from the buckets; they still count toward the report total.
    """
    if mode == RevenuePeriod.DAY:
        labels = [f"{h}:00" for h in range(DAY_FIRST_HOUR, DAY_LAST_HOUR + 1)]
    elif mode == RevenuePeriod.WEEK:
        labels = list(WEEKDAY_LABELS)
    else:
        start, end = period_bounds(mode, reference)
        labels = [str(d) for d in range(1, (end - start).days + 1)]

    sums = {label: Decimal("0") for label in labels}
    for completed_at, paid in rows:
        if completed_at is None:
            continue
        local = completed_at.astimezone(tz)
        if mode == RevenuePeriod.DAY:
            key = f"{local.hour}:00"
        elif mode == RevenuePeriod.WEEK:
            key = WEEKDAY_LABELS[local.weekday()]
        else:
            key = str(local.day)
        if key in sums:
            sums[key] += Decimal(paid or 0)

    return [NamedValue(name=label, value=float(sums[label])) for label in labels]


# ────────────────────────────────────────────────────────────────
# Queries
# ────────────────────────────────────────────────────────────────

async def appointments_by_branch(session: AsyncSession, actor: ActorContext) -> list[NamedValue]:
    result = await session.execute(
        select(Branch.name)
        .select_from(Appointment)
        .outerjoin(Branch, Branch.id == Appointment.branch_id)
        .where(tenant_filter(Appointment, actor.business_id))
    )
    return rank_by_count(name or "No branch" for name in result.scalars().all())


async def popular_services(
    session: AsyncSession,
    actor: ActorContext,
    branch_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> list[NamedValue]:
    """Most booked services by line-item count, for the business or one branch."""
    stmt = (
        select(Service.name)
        .select_from(AppointmentService)
        .join(Appointment, Appointment.id == AppointmentService.appointment_id)
        .outerjoin(Service, Service.id == AppointmentService.service_id)
        .where(tenant_filter(Appointment, actor.business_id))
    )
    if branch_id is not None:
        require_branch_access(actor, branch_id)
        stmt = stmt.where(Appointment.branch_id == branch_id)

    result = await session.execute(stmt)
    return rank_by_count(
        (name or "Unnamed" for name in result.scalars().all()),
        limit or settings.top_services_limit,
    )


async def revenue_report(
    session: AsyncSession,
    actor: ActorContext,
    branch_id: int,
    mode: RevenuePeriod,
    reference: date,
) -> RevenueReport:
    require_branch_access(actor, branch_id)
    branch = await require_owned(session, Branch, branch_id, actor.business_id)
    if not branch:
        raise BranchNotFoundError()

    tz = branch_tz(branch)
    first_day, after_last = period_bounds(mode, reference)
    start_at = datetime.combine(first_day, time(0, 0), tzinfo=tz)
    end_at = datetime.combine(after_last, time(0, 0), tzinfo=tz)

    result = await session.execute(
        scoped_select(Appointment, actor.business_id).where(
            Appointment.branch_id == branch.id,
            Appointment.status == AppointmentStatus.COMPLETED,
            Appointment.completed_at >= start_at,
            Appointment.completed_at < end_at,
        )
    )
    rows = [(a.completed_at, a.total_paid) for a in result.scalars().all()]
    total = sum((Decimal(paid or 0) for _, paid in rows), Decimal("0"))
    logger.debug(f"Revenue {mode.value} for branch {branch.id} from {start_at}: {len(rows)} rows")

    return RevenueReport(
        branch_id=branch.id,
        mode=mode,
        label=period_label(mode, reference),
        start_at=start_at,
        end_at=end_at,
        buckets=group_revenue(mode, reference, rows, tz),
        total=total,
    )
