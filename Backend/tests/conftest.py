"""
Pytest configuration and shared fixtures.

No database is needed: sessions are AsyncMocks and the query helpers are
patched per test. Route tests drive the ASGI app in-process through httpx.
"""
import os
from datetime import time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

# Must be set before kyros reads its settings
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-hs256-signing-0001")
os.environ.setdefault("DEFAULT_TIMEZONE", "America/Mexico_City")

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from kyros.core.db import get_session
from kyros.main import app
from kyros.models import ActorRole
from kyros.tenancy import ActorContext, get_actor_context


# 2030-01-07 is a Monday (day_of_week 1)
MONDAY = "2030-01-07"
TZ_NAME = "America/Mexico_City"


@pytest.fixture
def mock_session():
    """AsyncSession stand-in; `add` stays synchronous like the real one."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    return session


@pytest.fixture
def owner_actor() -> ActorContext:
    return ActorContext(user_id="owner-user", business_id=1, role=ActorRole.OWNER)


@pytest.fixture
def branch_actor() -> ActorContext:
    return ActorContext(user_id="branch-user", business_id=1, role=ActorRole.BRANCH, branch_id=1)


@pytest.fixture
def branch():
    return SimpleNamespace(
        id=1,
        business_id=1,
        name="Centro",
        address="Av. Reforma 10",
        phone="5512345678",
        timezone=TZ_NAME,
    )


@pytest.fixture
def monday_schedule_row():
    """Monday 09:00-20:00 with a one hour break at 14:00."""
    return SimpleNamespace(
        day_of_week=1,
        open_time=time(9, 0),
        close_time=time(20, 0),
        break_start=time(14, 0),
        break_minutes=60,
    )


@pytest.fixture
def services():
    return [
        SimpleNamespace(id=1, name="Haircut", base_price=Decimal("150.00"), duration_minutes=20, description=None),
        SimpleNamespace(id=2, name="Beard trim", base_price=Decimal("100.00"), duration_minutes=45, description=None),
    ]


@pytest.fixture
async def client(mock_session, owner_actor):
    """
    HTTP client against the app with the session and actor overridden.

    Tests needing another actor (or the real auth dependency) replace or pop
    `app.dependency_overrides[get_actor_context]`.
    """
    async def override_session():
        yield mock_session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_actor_context] = lambda: owner_actor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
