"""
Actor context for tenant isolation.

Every staff operation receives an explicit `ActorContext` naming the business
(tenant), the role, and for branch accounts the one branch they may touch.
Nothing reads the current tenant or role from ambient state.

Resolution:
    Authorization: Bearer <jwt>  ->  sub  ->  user_profiles row  ->  ActorContext
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import extract_bearer_token, verify_access_token
from ..core.db import get_session
from ..models import ActorRole, UserProfile


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable identity of the caller of a staff operation.

    Attributes:
        user_id: Auth platform user id (JWT `sub`)
        business_id: Tenant every query is scoped to
        role: owner (whole business) or branch (single branch account)
        branch_id: Required for branch accounts, optional for owners
    """

    user_id: str
    business_id: int
    role: ActorRole
    branch_id: Optional[int] = None

    def __post_init__(self):
        if self.business_id <= 0:
            raise ValueError(f"business_id must be positive, got {self.business_id}")
        if self.role == ActorRole.BRANCH and self.branch_id is None:
            raise ValueError("branch accounts must carry a branch_id")

    @property
    def is_owner(self) -> bool:
        return self.role == ActorRole.OWNER

    def can_access_branch(self, branch_id: int) -> bool:
        return self.is_owner or self.branch_id == branch_id


async def resolve_actor_context(session: AsyncSession, user_id: str) -> Optional[ActorContext]:
    """Look up the profile of an authenticated user. None when there is no profile."""
    result = await session.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        return None

    return ActorContext(
        user_id=profile.user_id,
        business_id=profile.business_id,
        role=ActorRole(profile.role),
        branch_id=profile.branch_id,
    )


def require_branch_access(actor: ActorContext, branch_id: int) -> None:
    """
    Raise 403 unless the actor may operate on `branch_id`.

    Owners pass for any id; whether the branch belongs to their business is
    enforced by the business-scoped queries (a foreign branch is a 404).
    """
    if not actor.can_access_branch(branch_id):
        logger.warning(
            f"Authorization failed: user {actor.user_id} (branch {actor.branch_id}) "
            f"tried to access branch {branch_id}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You can only manage your own branch.",
        )


def require_owner(actor: ActorContext) -> None:
    if not actor.is_owner:
        logger.warning(f"Authorization failed: user {actor.user_id} is not an owner")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Owner role required.",
        )


async def get_actor_context(
    authorization: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> ActorContext:
    """
    FastAPI dependency resolving the caller into an `ActorContext`.

        @router.get("/something")
        async def handler(actor: ActorContext = Depends(get_actor_context)):
            ...
    """
    token = extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(token)
    actor = await resolve_actor_context(session, payload["sub"])
    if actor is None:
        logger.warning(f"Authenticated user {payload['sub']} has no profile")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is not linked to a business yet.",
        )

    logger.debug(f"Actor resolved: user={actor.user_id} business={actor.business_id} role={actor.role}")
    return actor
