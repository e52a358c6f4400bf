"""
Owner dashboard endpoints (owner role required).

    GET    /owner/stats/appointments-by-branch
    GET    /owner/stats/popular-services?branch_id=&limit=
    GET    /owner/stats/revenue?branch_id=&mode=day|week|month&date=&offset=
    DELETE /owner/branches/{branch_id}
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..catalog import delete_branch
from ..core.db import get_session
from ..core.responses import ErrorResponse, success_response
from ..statistics import (
    NamedValue,
    RevenuePeriod,
    RevenueReport,
    appointments_by_branch,
    popular_services,
    revenue_report,
    shift_period,
)
from ..tenancy import ActorContext, get_actor_context, require_owner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/owner", tags=["owner"])

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


async def get_owner_actor(actor: ActorContext = Depends(get_actor_context)) -> ActorContext:
    require_owner(actor)
    return actor


@router.get("/stats/appointments-by-branch", response_model=list[NamedValue], responses=ERROR_RESPONSES)
async def stats_appointments_by_branch(
    actor: ActorContext = Depends(get_owner_actor),
    session: AsyncSession = Depends(get_session),
):
    return await appointments_by_branch(session, actor)


@router.get("/stats/popular-services", response_model=list[NamedValue], responses=ERROR_RESPONSES)
async def stats_popular_services(
    branch_id: Optional[int] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    actor: ActorContext = Depends(get_owner_actor),
    session: AsyncSession = Depends(get_session),
):
    return await popular_services(session, actor, branch_id=branch_id, limit=limit)


@router.get("/stats/revenue", response_model=RevenueReport, responses=ERROR_RESPONSES)
async def stats_revenue(
    branch_id: int,
    mode: RevenuePeriod = RevenuePeriod.DAY,
    reference: Optional[date] = Query(default=None, alias="date"),
    offset: int = Query(default=0, description="Periods before (<0) or after (>0) the reference date"),
    actor: ActorContext = Depends(get_owner_actor),
    session: AsyncSession = Depends(get_session),
):
    """
    Revenue of completed appointments for one branch.

    The chart navigates with `offset`: -1 is the previous day/week/month.
    """
    day = reference or date.today()
    if offset:
        day = shift_period(mode, day, offset)
    return await revenue_report(session, actor, branch_id, mode, day)


@router.delete("/branches/{branch_id}", responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}})
async def remove_branch(
    branch_id: int,
    actor: ActorContext = Depends(get_owner_actor),
    session: AsyncSession = Depends(get_session),
):
    await delete_branch(session, actor, branch_id)
    return success_response({"deleted": branch_id})
