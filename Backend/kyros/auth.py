"""
JWT verification for tokens issued by the hosted auth platform.

The platform signs access tokens with a shared HS256 secret and sets the
audience to "authenticated". Only the `sub` claim (the auth user id) is used
here; tenant and role come from `user_profiles`, see `kyros.tenancy.context`.

Usage:
    payload = verify_access_token(token)
    user_id = payload["sub"]
"""

import logging
from typing import Optional

import jwt
from fastapi import HTTPException, status

from .core.config import get_settings

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an `Authorization: Bearer <token>` header, if any."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def verify_access_token(token: str) -> dict:
    """
    Verify an access token and return its decoded payload.

    Raises:
        HTTPException 401: expired token, bad signature, wrong audience,
            or a token without a subject
        HTTPException 500: JWT_SECRET is not configured
    """
    settings = get_settings()
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; cannot verify tokens")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured on the server.",
        )

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Token verification failed: token expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload
