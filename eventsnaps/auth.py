"""
Bearer token verification and authorization policy.

Tokens are HS256 JWTs issued by the identity provider with the user id in
``sub`` and an optional ``role`` claim. Admin status comes either from that
claim or from ``user_profiles.role``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from .database import DatabaseManager
from .exceptions import AuthorizationError
from .models import UserProfile, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller"""
    user_id: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def issue_token(user_id: str, secret: str, role: Optional[str] = None, algorithm: str = "HS256",
                expires_in: int = 3600) -> str:
    """Sign a token (local development and tests)"""
    now = datetime.now(timezone.utc)
    claims = {"sub": user_id, "iat": now, "exp": now + timedelta(seconds=expires_in)}
    if role:
        claims["role"] = role
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> Principal:
    """Verify a bearer token and return its principal; raises AuthorizationError"""
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthorizationError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthorizationError(f"Invalid token: {str(e)}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthorizationError("Token has no subject")
    role = UserRole.ADMIN if payload.get("role") == UserRole.ADMIN.value else UserRole.USER
    return Principal(user_id=str(user_id), role=role)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_role(db_manager: DatabaseManager, principal: Principal) -> Principal:
    """Upgrade the principal to admin when their profile says so"""
    if principal.is_admin:
        return principal
    async with db_manager.get_session() as session:
        profile = await session.get(UserProfile, principal.user_id)
    if profile is not None and profile.role == UserRole.ADMIN:
        return Principal(user_id=principal.user_id, role=UserRole.ADMIN)
    return principal


def ensure_admin(principal: Optional[Principal]) -> Principal:
    if principal is None or not principal.is_admin:
        raise AuthorizationError("Admin role required")
    return principal


def ensure_owner_or_admin(principal: Optional[Principal], creator_id: str) -> Principal:
    """Only the event creator or an admin may manage an event"""
    if principal is None:
        raise AuthorizationError("Authentication required")
    if principal.is_admin or principal.user_id == creator_id:
        return principal
    logger.warning(
        "Access denied to event owned by another user",
        extra={"user_id": principal.user_id, "creator_id": creator_id}
    )
    raise AuthorizationError("Only the event owner or an admin may do this")
