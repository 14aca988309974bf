"""
FastAPI Dependencies for Authentication and Authorization.

Key patterns:
1. get_current_user: Verifies the Supabase session JWT, returns an AuthUser
2. User-scoped queries: All service functions accept user_id to enforce ownership
3. No global "current user" state - always pass user explicitly

Security model:
- Supabase issues the session JWT; this service only verifies it (HS256,
  audience "authenticated") with the project JWT secret
- The JWT arrives in the Authorization header or the access_token cookie
- Users live in Supabase auth; there is no local users table
- All domain data queries are scoped by user_id at the SQL level
"""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Cookie, Depends, Header
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vox.config import get_settings
from vox.db.session import get_db
from vox.errors import AuthenticationError, NotFoundError

settings = get_settings()


@dataclass(frozen=True)
class AuthUser:
    """The authenticated Supabase user, as described by the session JWT."""

    id: UUID
    email: str | None = None
    role: str | None = None


# =============================================================================
# JWT UTILITIES
# =============================================================================


def decode_session_token(token: str) -> AuthUser | None:
    """
    Decode and validate a Supabase session JWT.

    Returns the user if valid, None if invalid/expired/wrong audience.
    """
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.supabase_jwt_audience,
        )
        user_id_str = payload.get("sub")
        if user_id_str is None:
            return None
        return AuthUser(id=UUID(user_id_str), email=payload.get("email"), role=payload.get("role"))
    except (JWTError, ValueError):
        return None


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_token_from_request(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """
    Extract the session JWT from the request.

    Supports two methods (in order of preference):
    1. Authorization header: 'Bearer <token>' (what the dashboard sends)
    2. Cookie named 'access_token'
    """
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    if access_token:
        return access_token

    raise AuthenticationError("Unauthorized")


async def get_current_user(
    token: Annotated[str, Depends(get_token_from_request)],
) -> AuthUser:
    """
    Validate the session JWT and return the current user.

        @router.get("/agents")
        async def list_agents(user: CurrentUser, db: DbSession):
            ...

    Raises AuthenticationError (401) if the token is invalid or expired.
    """
    user = decode_session_token(token)
    if user is None:
        raise AuthenticationError("Unauthorized", detail="Could not validate credentials")
    return user


async def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> AuthUser | None:
    """Like get_current_user, but None instead of 401. Used by browser redirects."""
    try:
        token = await get_token_from_request(authorization, access_token)
    except AuthenticationError:
        return None
    return decode_session_token(token)


# Type alias for dependency injection
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
OptionalUser = Annotated[AuthUser | None, Depends(get_optional_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# QUERY HELPERS (enforce user scoping at query level)
# =============================================================================


async def get_user_resource_or_404(
    db: AsyncSession,
    model: type,
    resource_id: UUID,
    user_id: UUID,
    *,
    label: str = "Resource",
):
    """
    Generic helper to fetch a user-owned resource by ID.

    Usage:
        agent = await get_user_resource_or_404(db, AIAgent, agent_id, user.id, label="Agent")

    Rows owned by someone else are indistinguishable from missing rows.
    """
    result = await db.execute(
        select(model).where(model.id == resource_id, model.user_id == user_id)
    )
    resource = result.scalar_one_or_none()

    if resource is None:
        raise NotFoundError(f"{label} not found")

    return resource
