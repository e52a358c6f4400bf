"""
Guided booking chat for the public branch page.

The customer walks through fixed steps; every reply tells the front-end which
widget to render next (service picker, dates, slots, employees, summary).

    welcome -> services -> customer_info -> datetime -> employee -> confirm -> done

Slots offered here are branch-wide: a slot is taken as soon as any employee
of the branch has an appointment covering it. The final write goes through
`kyros.booking.create_appointment`, so the chosen employee is still checked
for overlaps before anything is stored.

Conversation state lives in an in-memory store with a sliding TTL.
In production, consider Redis so several workers share sessions.
"""

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .booking import (
    AppointmentRequest,
    branch_tz,
    create_appointment,
    find_or_create_client,
    list_qualified_employees,
    load_available_slots,
)
from .core.config import get_settings
from .core.errors import BookingError
from .models import ActorRole, Branch
from .scheduling import aggregate_services, day_of_week, format_clock, parse_clock
from .tenancy import ActorContext, list_open_days, list_services_for_branch

settings = get_settings()
logger = logging.getLogger(__name__)

CHAT_PLATFORM = "web_chat"
NAME_MIN_LENGTH = 3
PHONE_DIGITS = 10


class ChatStep(str, Enum):
    WELCOME = "welcome"
    SERVICES = "services"
    CUSTOMER_INFO = "customer_info"
    DATETIME = "datetime"
    EMPLOYEE = "employee"
    CONFIRM = "confirm"
    DONE = "done"


@dataclass(frozen=True)
class ServiceChoice:
    id: int
    name: str
    base_price: Decimal
    duration_minutes: Optional[int]


@dataclass
class ChatState:
    branch_id: int
    step: ChatStep = ChatStep.WELCOME
    services: list[ServiceChoice] = field(default_factory=list)
    customer_name: str = ""
    customer_phone: str = ""
    selected_date: Optional[date] = None
    offered_slots: list[str] = field(default_factory=list)
    selected_time: str = ""
    offered_employees: dict[int, str] = field(default_factory=dict)
    employee_id: Optional[int] = None
    employee_name: str = ""
    appointment_id: Optional[int] = None


class ChatReply(BaseModel):
    session_id: str
    step: ChatStep
    messages: list[str]
    widget: Optional[str] = None  # services | dates | slots | employees | summary
    options: Optional[Any] = None


# ────────────────────────────────────────────────────────────────
# Session store
# ────────────────────────────────────────────────────────────────

# {session_id: (state, expires_at)}
_chat_sessions: dict[str, tuple[ChatState, datetime]] = {}


def _session_ttl() -> timedelta:
    return timedelta(minutes=settings.chat_session_ttl_minutes)


def _cleanup_expired_sessions(now: Optional[datetime] = None) -> None:
    now = now or datetime.now()
    expired = [sid for sid, (_, expires_at) in _chat_sessions.items() if expires_at < now]
    for sid in expired:
        del _chat_sessions[sid]
        logger.debug(f"Cleaned up expired chat session {sid[:8]}")


def open_chat_session(branch_id: int) -> tuple[str, ChatState]:
    _cleanup_expired_sessions()
    session_id = secrets.token_urlsafe(24)
    state = ChatState(branch_id=branch_id)
    _chat_sessions[session_id] = (state, datetime.now() + _session_ttl())
    return session_id, state


def get_chat_state(session_id: str, branch_id: int) -> Optional[ChatState]:
    """State of a live session for this branch, refreshing its TTL."""
    _cleanup_expired_sessions()
    entry = _chat_sessions.get(session_id)
    if not entry or entry[0].branch_id != branch_id:
        return None
    state = entry[0]
    _chat_sessions[session_id] = (state, datetime.now() + _session_ttl())
    return state


def close_chat_session(session_id: str) -> None:
    if session_id in _chat_sessions:
        del _chat_sessions[session_id]
        logger.debug(f"Chat session {session_id[:8]} closed")


# ────────────────────────────────────────────────────────────────
# Input validation
# ────────────────────────────────────────────────────────────────

def is_valid_name(text: str) -> bool:
    text = text.strip()
    return len(text) >= NAME_MIN_LENGTH and re.search(r"[^\W\d_]", text) is not None


def normalize_phone(text: str) -> Optional[str]:
    """Digits of a 10-digit phone number, or None."""
    digits = re.sub(r"\D", "", text)
    return digits if len(digits) == PHONE_DIGITS else None


def upcoming_open_dates(
    open_days: Sequence[int],
    today: date,
    days_ahead: int,
    max_options: int,
) -> list[date]:
    """Next open dates starting today, limited to `max_options`."""
    dates: list[date] = []
    for offset in range(days_ahead):
        candidate = today + timedelta(days=offset)
        if day_of_week(candidate) in open_days:
            dates.append(candidate)
            if len(dates) >= max_options:
                break
    return dates


def format_price(amount: Decimal) -> str:
    return f"${amount:.2f}"


# ────────────────────────────────────────────────────────────────
# Conversation
# ────────────────────────────────────────────────────────────────

class BookingChat:
    """
    One conversation turn bound to a branch and its state.

        chat = BookingChat(session, branch, session_id, state)
        reply = await chat.select_services([1, 3])
    """

    def __init__(
        self,
        session: AsyncSession,
        branch: Branch,
        session_id: str,
        state: ChatState,
        now: Optional[datetime] = None,
    ):
        self.session = session
        self.branch = branch
        self.session_id = session_id
        self.state = state
        self.now = (now or datetime.now(branch_tz(branch))).astimezone(branch_tz(branch))

    @property
    def today(self) -> date:
        return self.now.date()

    def _reply(self, *messages: str, widget: Optional[str] = None, options: Any = None) -> ChatReply:
        return ChatReply(
            session_id=self.session_id,
            step=self.state.step,
            messages=list(messages),
            widget=widget,
            options=options,
        )

    def _actor(self) -> ActorContext:
        return ActorContext(
            user_id=f"{CHAT_PLATFORM}:{self.session_id[:8]}",
            business_id=self.branch.business_id,
            role=ActorRole.BRANCH,
            branch_id=self.branch.id,
        )

    async def start(self) -> ChatReply:
        return self._reply(
            f"Hi! Welcome to {self.branch.name}. I'm your virtual assistant for booking appointments.",
            "What would you like to do?",
            widget="menu",
            options=["show_services"],
        )

    async def show_services(self) -> ChatReply:
        services = await list_services_for_branch(self.session, self.branch)
        self.state.step = ChatStep.SERVICES
        return self._reply(
            'These are our services. Pick the ones you want and press "Continue":',
            widget="services",
            options=[
                {
                    "id": s.id,
                    "name": s.name,
                    "base_price": str(s.base_price),
                    "duration_minutes": s.duration_minutes,
                    "description": s.description,
                }
                for s in services
            ],
        )

    async def select_services(self, service_ids: Sequence[int]) -> ChatReply:
        if self.state.step not in (ChatStep.WELCOME, ChatStep.SERVICES):
            return self._reply("Services are already chosen for this booking.")
        if not service_ids:
            return self._reply("Please select at least one service.")

        available = {s.id: s for s in await list_services_for_branch(self.session, self.branch)}
        unknown = [sid for sid in service_ids if sid not in available]
        if unknown:
            return self._reply("Some of the selected services are not offered at this branch.")

        self.state.services = [
            ServiceChoice(
                id=available[sid].id,
                name=available[sid].name,
                base_price=available[sid].base_price,
                duration_minutes=available[sid].duration_minutes,
            )
            for sid in dict.fromkeys(service_ids)
        ]
        self.state.step = ChatStep.CUSTOMER_INFO
        totals = aggregate_services(self.state.services)
        names = ", ".join(s.name for s in self.state.services)
        return self._reply(
            f"Great! You chose: {names} (Total: {format_price(totals.total_price)})",
            "Please tell me your full name:",
        )

    async def submit_text(self, text: str) -> ChatReply:
        """Free text typed by the customer, interpreted according to the current step."""
        text = text.strip()
        if not text:
            return self._reply("Please type a message.")

        if self.state.step == ChatStep.CUSTOMER_INFO:
            return await self._handle_customer_info(text)
        if self.state.step == ChatStep.DATETIME:
            return await self._handle_datetime_text(text)
        if self.state.step == ChatStep.EMPLOYEE:
            return await self._handle_employee_text(text)
        if self.state.step in (ChatStep.WELCOME, ChatStep.SERVICES):
            return await self.show_services()
        return self._reply("Please use the buttons to continue.")

    async def _handle_customer_info(self, text: str) -> ChatReply:
        if not self.state.customer_name:
            if not is_valid_name(text):
                return self._reply(f"Please enter a valid name (at least {NAME_MIN_LENGTH} characters):")
            self.state.customer_name = text
            return self._reply(f"Thanks, {text}. Now enter your phone number ({PHONE_DIGITS} digits):")

        phone = normalize_phone(text)
        if not phone:
            return self._reply(f"Please enter a valid phone number (exactly {PHONE_DIGITS} digits):")
        self.state.customer_phone = phone
        self.state.step = ChatStep.DATETIME
        return await self.date_options("Perfect. What date would you like the appointment?")

    async def date_options(self, *lead: str) -> ChatReply:
        open_days = await list_open_days(self.session, self.branch.id)
        dates = upcoming_open_dates(
            open_days,
            self.today,
            settings.chat_booking_days_ahead,
            settings.chat_max_date_options,
        )
        if not dates:
            return self._reply(
                *lead,
                "Sorry, there are no open days coming up. Please contact the branch.",
            )
        return self._reply(*lead, widget="dates", options=[d.isoformat() for d in dates])

    async def _handle_datetime_text(self, text: str) -> ChatReply:
        lowered = text.lower()
        if self.state.offered_slots and text[:5] in self.state.offered_slots:
            return await self.select_time(text[:5])
        if "tomorrow" in lowered:
            return await self.select_date(self.today + timedelta(days=1))
        if "today" in lowered:
            return await self.select_date(self.today)
        try:
            return await self.select_date(date.fromisoformat(text))
        except ValueError:
            return await self.date_options("Please pick one of the dates below.")

    async def select_date(self, day: date) -> ChatReply:
        if self.state.step != ChatStep.DATETIME:
            return self._reply("Let's finish the previous step first.")
        if day < self.today:
            return await self.date_options("That date has already passed. Please choose another one.")

        slots = await load_available_slots(self.session, self.branch, day)
        if day == self.today:
            now_minutes = self.now.hour * 60 + self.now.minute
            slots = [s for s in slots if parse_clock(s) > now_minutes]

        self.state.selected_date = day
        self.state.offered_slots = slots
        self.state.selected_time = ""
        if not slots:
            return await self.date_options("Sorry, there are no times available that day. Please choose another date.")
        return self._reply("Available times:", widget="slots", options=slots)

    async def select_time(self, slot: str) -> ChatReply:
        if self.state.step != ChatStep.DATETIME or not self.state.selected_date:
            return self._reply("Please choose a date first.")
        try:
            slot = format_clock(parse_clock(slot))
        except ValueError:
            return self._reply("Please pick one of the times shown.", widget="slots", options=self.state.offered_slots)
        if slot not in self.state.offered_slots:
            return self._reply("Please pick one of the times shown.", widget="slots", options=self.state.offered_slots)

        self.state.selected_time = slot
        employees = await list_qualified_employees(
            self.session, self.branch, [s.id for s in self.state.services]
        )
        self.state.offered_employees = {e.id: e.name for e in employees}

        if not employees:
            self.state.step = ChatStep.CONFIRM
            return self.summary()

        self.state.step = ChatStep.EMPLOYEE
        return self._reply(
            "Do you have a preference for any of our professionals?",
            widget="employees",
            options=[{"id": e.id, "name": e.name, "specialty": e.specialty} for e in employees],
        )

    async def _handle_employee_text(self, text: str) -> ChatReply:
        lowered = text.lower()
        match = next(
            (eid for eid, name in self.state.offered_employees.items() if lowered in name.lower()),
            None,
        )
        return await self.select_employee(match)

    async def select_employee(self, employee_id: Optional[int]) -> ChatReply:
        if self.state.step != ChatStep.EMPLOYEE:
            return self._reply("Please choose a time first.")
        if employee_id is not None and employee_id not in self.state.offered_employees:
            return self._reply("That professional is not available for these services.")

        self.state.employee_id = employee_id
        self.state.employee_name = self.state.offered_employees.get(employee_id, "") if employee_id else ""
        self.state.step = ChatStep.CONFIRM
        return self.summary()

    def summary(self) -> ChatReply:
        totals = aggregate_services(self.state.services)
        data = {
            "client": self.state.customer_name,
            "phone": self.state.customer_phone,
            "date": self.state.selected_date.isoformat() if self.state.selected_date else None,
            "time": self.state.selected_time,
            "services": [s.name for s in self.state.services],
            "employee": self.state.employee_name or "To be assigned",
            "duration_minutes": totals.total_duration_minutes,
            "total": str(totals.total_price),
        }
        return self._reply("Here is a summary of your appointment:", widget="summary", options=data)

    async def confirm(self) -> ChatReply:
        if self.state.step != ChatStep.CONFIRM:
            return self._reply("There is nothing to confirm yet.")

        try:
            client = await find_or_create_client(
                self.session,
                self.branch.business_id,
                self.state.customer_name,
                self.state.customer_phone,
                branch_id=self.branch.id,
                platform=CHAT_PLATFORM,
            )
            appointment = await create_appointment(
                self.session,
                self._actor(),
                AppointmentRequest(
                    branch_id=self.branch.id,
                    date=self.state.selected_date,
                    start_time=self.state.selected_time,
                    service_ids=[s.id for s in self.state.services],
                    employee_id=self.state.employee_id,
                    client_id=client.id,
                    manual_client_name=self.state.customer_name,
                ),
                now=self.now,
            )
        except BookingError as e:
            await self.session.rollback()
            logger.info(f"Chat booking rejected for branch {self.branch.id}: {e.message}")
            self.state.step = ChatStep.DATETIME
            self.state.selected_time = ""
            self.state.offered_slots = []
            return await self.date_options(f"{e.message} Please choose another date or time.")

        self.state.appointment_id = appointment.id
        self.state.step = ChatStep.DONE
        phone_line = f"Phone: {self.branch.phone}" if self.branch.phone else None
        messages = [
            "Your appointment is booked!",
            f"We look forward to seeing you at {self.branch.name}.",
        ]
        if phone_line:
            messages.append(phone_line)
        messages.append("If you need to cancel or change your appointment, please contact the branch.")
        return self._reply(*messages, options={"appointment_id": appointment.id})
