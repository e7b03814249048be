"""JWT bearer authentication.

Tokens are minted by the Hire & Learn auth service (or ``create_access_token``
for tooling) and carry the user id in ``sub`` and the user's role in ``role``.

Provides:
- Token encoding/decoding
- FastAPI dependencies for authenticated and admin-only routes
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt

from core.config import get_settings
from core.logger import get_logger
from core.wide_event import set_wide_event_fields

logger = get_logger(__name__)

ROLES = ("admin", "employer", "employee")


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(
    user_id: str,
    role: str = "employee",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT for ``user_id`` with the given role."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")

    settings = get_settings()
    now = datetime.now(UTC)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    claims = {"sub": user_id, "role": role, "iat": now, "exp": expire}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AuthenticatedUser | None:
    """Return the token's user, or None if the token is invalid or expired."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    role = payload.get("role", "employee")
    if role not in ROLES:
        return None

    return AuthenticatedUser(id=str(user_id), role=role)


def get_user_from_request(request: Request) -> AuthenticatedUser | None:
    """Get authenticated user from the Authorization header, or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return decode_access_token(token.strip())


def require_auth(request: Request) -> AuthenticatedUser:
    """Raises 401 if not authenticated. Sets request.state.user_id."""
    user = get_user_from_request(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = user.id
    set_wide_event_fields(user_id=user.id, user_role=user.role)
    return user


def require_admin(user: AuthenticatedUser = Depends(require_auth)) -> AuthenticatedUser:
    """Raises 403 unless the authenticated user is an admin."""
    if not user.is_admin:
        logger.warning("auth.admin_required", user_id=user.id, role=user.role)
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


CurrentUser = Annotated[AuthenticatedUser, Depends(require_auth)]
AdminUser = Annotated[AuthenticatedUser, Depends(require_admin)]
