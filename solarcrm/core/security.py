"""
SolarCRM Engine - Security Layer

Authentication for the version management endpoints.
Supports API key authentication and JWT (identity provider) authentication;
the tenant comes from the JWT ``tenant_id`` claim or the X-Tenant-ID header.
"""

import secrets
from dataclasses import dataclass
from typing import Literal

import jwt
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from ..config import get_settings


@dataclass
class AuthContext:
    """
    Authentication context for the current request.

    Attributes:
        subject: The authenticated user ID (from JWT) or None for API key auth
        tenant_id: Tenant the request acts on, if known
        via: How the caller was authenticated
    """

    subject: str | None
    tenant_id: str | None
    via: Literal["api_key", "jwt", "anonymous"]


def _get_api_key() -> str | None:
    """Configured API key; a missing key in production is logged."""
    settings = get_settings()
    key = settings.SOLARCRM_API_KEY
    if not key and settings.is_production:
        logger.warning("SOLARCRM_API_KEY not set in production - API key auth will fail")
    return key


def _get_jwt_secret() -> str | None:
    return get_settings().SUPABASE_JWT_SECRET


def _decode_jwt(token: str) -> dict | None:
    """
    Decode an identity-provider JWT.

    Returns the payload if valid, None otherwise.
    """
    secret = _get_jwt_secret()
    if not secret:
        logger.warning("SUPABASE_JWT_SECRET not configured, cannot validate JWT")
        return None

    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience="authenticated",
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token has expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {type(e).__name__}")
        return None


async def get_current_user(
    authorization: str | None = Header(default=None),
    x_solarcrm_api_key: str | None = Header(default=None, alias="X-SOLARCRM-API-KEY"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> AuthContext:
    """
    FastAPI dependency for authenticating requests.

    Authentication methods (in order of priority):
    1. X-SOLARCRM-API-KEY header (services)
    2. X-API-Key header (legacy integrations)
    3. Authorization: Bearer <token> (user JWTs)

    Raises:
        HTTPException 401: If authentication fails
    """
    api_key = x_solarcrm_api_key or x_api_key
    if api_key:
        configured_key = _get_api_key()
        if configured_key and secrets.compare_digest(api_key, configured_key):
            logger.debug("Authenticated via API key")
            return AuthContext(subject=None, tenant_id=x_tenant_id, via="api_key")
        logger.warning("Invalid API key attempted")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    if authorization:
        if not authorization.startswith("Bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authorization header format",
                headers={"WWW-Authenticate": "Bearer"},
            )

        payload = _decode_jwt(authorization[7:])
        if payload:
            subject = payload.get("sub")
            tenant_id = payload.get("tenant_id") or x_tenant_id
            logger.debug(f"Authenticated via JWT: subject={subject}")
            return AuthContext(subject=subject, tenant_id=tenant_id, via="jwt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": "Bearer, API-Key"},
    )


async def require_tenant(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
    """Authenticated context that must also name a tenant."""
    if not auth.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant context required (X-Tenant-ID header or tenant_id claim)",
        )
    return auth


async def get_optional_user(
    authorization: str | None = Header(default=None),
    x_solarcrm_api_key: str | None = Header(default=None, alias="X-SOLARCRM-API-KEY"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> AuthContext:
    """Like get_current_user, but returns an anonymous context instead of raising."""
    try:
        return await get_current_user(authorization, x_solarcrm_api_key, x_api_key, x_tenant_id)
    except HTTPException:
        return AuthContext(subject=None, tenant_id=None, via="anonymous")
