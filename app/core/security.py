from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from app.config import settings


class UserRole(str, Enum):
    """Roles issued by the auth service."""
    SUPER_ADMIN = "SUPER_ADMIN"
    AGENCY_ADMIN = "AGENCY_ADMIN"
    BRANCH_ADMIN = "BRANCH_ADMIN"
    BRANCH_USER = "BRANCH_USER"
    SUPPORT = "SUPPORT"


# Roles allowed to see commission figures on sales
COMMISSION_VISIBLE_ROLES = {
    UserRole.SUPER_ADMIN.value,
    UserRole.AGENCY_ADMIN.value,
    UserRole.BRANCH_ADMIN.value,
}


@dataclass(frozen=True)
class Principal:
    """Caller identity decoded from an access token."""
    user_id: uuid.UUID
    role: str
    agency_id: Optional[uuid.UUID] = None
    branch_id: Optional[uuid.UUID] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value

    @property
    def can_view_commission(self) -> bool:
        return self.role in COMMISSION_VISIBLE_ROLES


def create_access_token(
    subject: str | uuid.UUID,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    Tokens are normally issued by the auth service; this is used by
    tooling and tests that need a signed token.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))

    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def _optional_uuid(value: Any) -> Optional[uuid.UUID]:
    if not value:
        return None
    return uuid.UUID(str(value))


def verify_access_token(token: str) -> Optional[Principal]:
    """
    Verify an access token and return the caller principal.

    Returns:
        Principal or None if the token is invalid, expired or malformed
    """
    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        return None

    try:
        return Principal(
            user_id=uuid.UUID(str(payload.get("sub"))),
            role=str(payload.get("role") or UserRole.BRANCH_USER.value),
            agency_id=_optional_uuid(payload.get("agency_id")),
            branch_id=_optional_uuid(payload.get("branch_id")),
        )
    except ValueError:
        return None
