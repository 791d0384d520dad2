from typing import Annotated
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import verify_access_token, Principal, UserRole
from app.services.paytr_service import PayTRService, get_paytr_service
from app.services.sms_service import SMSService, get_sms_service


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Principal:
    """
    Dependency to get the current authenticated caller.
    Validates the JWT token issued by the auth service.
    """
    principal = verify_access_token(credentials.credentials)

    if principal is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return principal


def require_roles(*roles: UserRole):
    """
    Dependency factory to require one of the given roles.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles(UserRole.SUPER_ADMIN))])
        async def create_agency():
            ...
    """
    allowed = {role.value for role in roles}

    async def role_dependency(
        user: Annotated[Principal, Depends(get_current_user)]
    ):
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required any of: {sorted(allowed)}"
            )
        return True

    return role_dependency


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[Principal, Depends(get_current_user)]
DB = Annotated[AsyncSession, Depends(get_db)]
PayTR = Annotated[PayTRService, Depends(get_paytr_service)]
SMS = Annotated[SMSService, Depends(get_sms_service)]
