"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; role checks replace client-side route protection.
"""

import uuid
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import (
    CLEANER_ROLES,
    MANAGER_ROLES,
    Profile,
    ProfileStatus,
    UserRole,
)
from shared.utils.errors import ErrorCode, api_error
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]


async def decode_token(token: str, redis) -> TokenData:
    """Validate a raw JWT and check the Redis deny-list. Raises 401."""
    try:
        payload = verify_access_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Check if token has been revoked (logged out)
    jti = payload.get("jti")
    if jti and await RedisCache(redis).is_token_revoked(jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )
    return TokenData(payload)


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """Extract and validate JWT from Authorization header."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await decode_token(credentials.credentials, redis)


async def load_active_profile(db: AsyncSession, user_id: str) -> Profile:
    result = await db.execute(select(Profile).where(Profile.id == uuid.UUID(str(user_id))))
    profile = result.scalar_one_or_none()

    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return profile


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Load the full Profile from the database using the JWT sub claim."""
    return await load_active_profile(db, token_data.user_id)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole, approved: bool = False):
        self.roles = roles
        self.approved = approved

    async def __call__(
        self,
        current_user: Profile = Depends(get_current_user),
    ) -> Profile:
        if current_user.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        if (
            self.approved
            and current_user.role != UserRole.ADMIN
            and current_user.status != ProfileStatus.APPROVED
        ):
            raise api_error(
                403,
                ErrorCode.ACCOUNT_PENDING,
                "Your account is awaiting moderation",
            )
        return current_user


# Convenience role dependencies
require_admin = RoleRequired(UserRole.ADMIN)
require_manager = RoleRequired(*MANAGER_ROLES, UserRole.ADMIN, approved=True)
require_cleaner = RoleRequired(*CLEANER_ROLES, approved=True)
require_participant = RoleRequired(*MANAGER_ROLES, *CLEANER_ROLES, UserRole.ADMIN, approved=True)
