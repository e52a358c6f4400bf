"""
Public branch endpoints (no auth required).

Used by the customer-facing booking page of a branch.

    GET  /public/branches/{branch_id}                         -> Branch info
    GET  /public/branches/{branch_id}/services                -> Bookable services
    GET  /public/branches/{branch_id}/open-days               -> Open weekdays (0=Sunday)
    GET  /public/branches/{branch_id}/slots?date=YYYY-MM-DD   -> Free slot start times
    POST /public/branches/{branch_id}/chat                    -> Start a booking chat
    POST /public/branches/{branch_id}/chat/{session_id}/...   -> Advance the chat
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..booking import load_available_slots
from ..booking_chat import BookingChat, ChatReply, get_chat_state, open_chat_session
from ..core.db import get_session
from ..core.errors import BranchNotFoundError, ChatSessionNotFoundError
from ..core.responses import ErrorResponse
from ..models import Branch
from ..tenancy import get_branch, list_open_days, list_services_for_branch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/public/branches/{branch_id}", tags=["public"])


# ────────────────────────────────────────────────────────────────
# Models
# ────────────────────────────────────────────────────────────────

class BranchInfoResponse(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None


class ServiceResponse(BaseModel):
    id: int
    name: str
    base_price: Decimal
    duration_minutes: Optional[int] = None
    description: Optional[str] = None


class OpenDaysResponse(BaseModel):
    branch_id: int
    days: list[int]


class SlotsResponse(BaseModel):
    date: date
    slots: list[str]


class ServicesSelection(BaseModel):
    service_ids: list[int] = Field(..., min_length=1)


class TextMessage(BaseModel):
    text: str = Field(..., max_length=500)


class DateSelection(BaseModel):
    date: date


class TimeSelection(BaseModel):
    time: str = Field(..., description="HH:MM, one of the offered slots")


class EmployeeSelection(BaseModel):
    employee_id: Optional[int] = Field(default=None, description="None means no preference")


# ────────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────────

async def get_public_branch(
    branch_id: int = Path(..., description="Branch id from the booking link"),
    session: AsyncSession = Depends(get_session),
) -> Branch:
    branch = await get_branch(session, branch_id)
    if not branch:
        raise BranchNotFoundError(f"Branch not found: {branch_id}.")
    return branch


async def get_booking_chat(
    session_id: str = Path(...),
    branch: Branch = Depends(get_public_branch),
    session: AsyncSession = Depends(get_session),
) -> BookingChat:
    state = get_chat_state(session_id, branch.id)
    if state is None:
        raise ChatSessionNotFoundError("This chat has expired. Please start again.")
    return BookingChat(session, branch, session_id, state)


# ────────────────────────────────────────────────────────────────
# Branch info
# ────────────────────────────────────────────────────────────────

@router.get("", response_model=BranchInfoResponse, responses={404: {"model": ErrorResponse}})
async def get_branch_info(branch: Branch = Depends(get_public_branch)):
    return BranchInfoResponse(
        id=branch.id,
        name=branch.name,
        address=branch.address,
        phone=branch.phone,
        timezone=branch.timezone,
    )


@router.get("/services", response_model=list[ServiceResponse], responses={404: {"model": ErrorResponse}})
async def list_public_services(
    branch: Branch = Depends(get_public_branch),
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


@router.get("/open-days", response_model=OpenDaysResponse, responses={404: {"model": ErrorResponse}})
async def get_open_days(
    branch: Branch = Depends(get_public_branch),
    session: AsyncSession = Depends(get_session),
):
    return OpenDaysResponse(branch_id=branch.id, days=await list_open_days(session, branch.id))


@router.get("/slots", response_model=SlotsResponse, responses={404: {"model": ErrorResponse}})
async def get_slots(
    day: date = Query(..., alias="date", description="YYYY-MM-DD in branch local time"),
    branch: Branch = Depends(get_public_branch),
    session: AsyncSession = Depends(get_session),
):
    """Free slot start times of the branch. A slot is taken by an appointment with any employee."""
    return SlotsResponse(date=day, slots=await load_available_slots(session, branch, day))


# ────────────────────────────────────────────────────────────────
# Guided booking chat
# ────────────────────────────────────────────────────────────────

@router.post("/chat", response_model=ChatReply, responses={404: {"model": ErrorResponse}})
async def start_chat(
    branch: Branch = Depends(get_public_branch),
    session: AsyncSession = Depends(get_session),
):
    session_id, state = open_chat_session(branch.id)
    logger.info(f"Chat session {session_id[:8]} started for branch {branch.id}")
    return await BookingChat(session, branch, session_id, state).start()


@router.post("/chat/{session_id}/services", response_model=ChatReply)
async def chat_show_services(chat: BookingChat = Depends(get_booking_chat)):
    return await chat.show_services()


@router.post("/chat/{session_id}/services/select", response_model=ChatReply)
async def chat_select_services(payload: ServicesSelection, chat: BookingChat = Depends(get_booking_chat)):
    return await chat.select_services(payload.service_ids)


@router.post("/chat/{session_id}/message", response_model=ChatReply)
async def chat_message(payload: TextMessage, chat: BookingChat = Depends(get_booking_chat)):
    return await chat.submit_text(payload.text)


@router.post("/chat/{session_id}/date", response_model=ChatReply)
async def chat_select_date(payload: DateSelection, chat: BookingChat = Depends(get_booking_chat)):
    return await chat.select_date(payload.date)


@router.post("/chat/{session_id}/time", response_model=ChatReply)
async def chat_select_time(payload: TimeSelection, chat: BookingChat = Depends(get_booking_chat)):
    return await chat.select_time(payload.time)


@router.post("/chat/{session_id}/employee", response_model=ChatReply)
async def chat_select_employee(payload: EmployeeSelection, chat: BookingChat = Depends(get_booking_chat)):
    return await chat.select_employee(payload.employee_id)


@router.get("/chat/{session_id}/summary", response_model=ChatReply)
async def chat_summary(chat: BookingChat = Depends(get_booking_chat)):
    return chat.summary()


@router.post("/chat/{session_id}/confirm", response_model=ChatReply)
async def chat_confirm(chat: BookingChat = Depends(get_booking_chat)):
    return await chat.confirm()
