"""Authentication utilities for the Homeflow backend.

Tokens carry the caller's id in ``sub`` and their role in ``role``.
Identity is issued upstream; this service only verifies tokens.
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from homeflow.jobs.models import Actor, Role

from .config import Settings, get_settings

security = HTTPBearer(auto_error=False)


def create_access_token(
    subject: str,
    role: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token for a customer, provider or admin."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode = {
        "sub": subject,
        "role": Role(role.upper()).value,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access",
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Actor:
    """Resolve the calling actor from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - provide Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or role not in {r.value for r in Role} or role == Role.SYSTEM.value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(role=Role(role), id=subject)


async def get_admin_actor(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    """Require an admin token."""
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


async def get_maintenance_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
    x_maintenance_token: Annotated[str | None, Header()] = None,
) -> Actor:
    """Allow either the cron maintenance token or an admin bearer token."""
    if settings.maintenance_token and x_maintenance_token:
        if hmac.compare_digest(x_maintenance_token, settings.maintenance_token):
            return Actor.system()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid maintenance token"
        )
    actor = await get_current_actor(credentials, settings)
    return await get_admin_actor(actor)


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(get_admin_actor)]
MaintenanceActor = Annotated[Actor, Depends(get_maintenance_actor)]
