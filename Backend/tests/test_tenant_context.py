"""
Tests for actor context resolution and tenant authorization.

Every staff operation takes an explicit ActorContext; these tests pin down
who may touch which branch.

Run with: pytest tests/test_tenant_context.py -v
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from kyros.models import ActorRole, Service
from kyros.tenancy import (
    ActorContext,
    list_appointments_in_range,
    require_branch_access,
    require_owner,
    resolve_actor_context,
    scoped_select,
    search_clients,
)


# ============================================================================
# ACTOR CONTEXT
# ============================================================================

class TestActorContext:

    def test_business_id_must_be_positive(self):
        with pytest.raises(ValueError, match="business_id"):
            ActorContext(user_id="u", business_id=0, role=ActorRole.OWNER)

    def test_branch_account_needs_branch(self):
        with pytest.raises(ValueError, match="branch_id"):
            ActorContext(user_id="u", business_id=1, role=ActorRole.BRANCH)

    def test_is_frozen(self, owner_actor):
        with pytest.raises(AttributeError):
            owner_actor.business_id = 2

    def test_owner_reaches_every_branch(self, owner_actor):
        assert owner_actor.is_owner
        assert owner_actor.can_access_branch(1)
        assert owner_actor.can_access_branch(99)

    def test_branch_account_reaches_only_its_branch(self, branch_actor):
        assert not branch_actor.is_owner
        assert branch_actor.can_access_branch(1)
        assert not branch_actor.can_access_branch(2)


# ============================================================================
# AUTHORIZATION GUARDS
# ============================================================================

class TestGuards:

    def test_require_branch_access_denies_foreign_branch(self, branch_actor):
        with pytest.raises(HTTPException) as exc:
            require_branch_access(branch_actor, 2)
        assert exc.value.status_code == 403

    def test_require_branch_access_allows_own_branch(self, branch_actor):
        require_branch_access(branch_actor, 1)

    def test_require_owner(self, owner_actor, branch_actor):
        require_owner(owner_actor)
        with pytest.raises(HTTPException) as exc:
            require_owner(branch_actor)
        assert exc.value.status_code == 403


# ============================================================================
# RESOLUTION
# ============================================================================

class TestResolveActorContext:

    async def test_profile_becomes_actor(self, mock_session):
        profile = SimpleNamespace(user_id="user-1", business_id=3, branch_id=4, role="branch")
        result = MagicMock()
        result.scalar_one_or_none.return_value = profile
        mock_session.execute.return_value = result

        actor = await resolve_actor_context(mock_session, "user-1")

        assert actor == ActorContext(user_id="user-1", business_id=3, role=ActorRole.BRANCH, branch_id=4)

    async def test_missing_profile(self, mock_session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_session.execute.return_value = result

        assert await resolve_actor_context(mock_session, "nobody") is None


class TestScopedSelect:

    def test_filters_on_business(self):
        sql = str(scoped_select(Service, 5).compile(compile_kwargs={"literal_binds": True}))
        assert "services.business_id = 5" in sql


class TestScopedQueries:

    def executed_sql(self, mock_session) -> str:
        return str(mock_session.execute.call_args.args[0])

    async def test_range_listing_matches_overlap(self, mock_session):
        """An appointment that started before the range but ends inside it is included."""
        mock_session.execute.return_value = MagicMock()
        start = datetime(2030, 1, 7, 6, 0, tzinfo=timezone.utc)
        await list_appointments_in_range(mock_session, 1, start, start.replace(day=8))

        sql = self.executed_sql(mock_session)
        assert "appointments.business_id = " in sql
        assert "appointments.start_at < " in sql
        assert "appointments.end_at > " in sql
        assert "appointments.start_at >= " not in sql

    async def test_client_search_on_name_and_phone(self, mock_session):
        mock_session.execute.return_value = MagicMock()
        await search_clients(mock_session, 3, "  ana ")

        statement = mock_session.execute.call_args.args[0]
        sql = str(statement.compile(compile_kwargs={"literal_binds": True})).lower()
        assert "clients.business_id = 3" in sql
        assert "lower(clients.name) like lower('%ana%')" in sql
        assert "lower(clients.phone) like lower('%ana%')" in sql

    async def test_empty_client_search_lists_business(self, mock_session):
        mock_session.execute.return_value = MagicMock()
        await search_clients(mock_session, 3, "")

        sql = self.executed_sql(mock_session).lower()
        assert "clients.business_id = " in sql
        assert " like " not in sql
