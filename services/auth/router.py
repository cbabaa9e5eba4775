"""
services/auth/router.py
Email + password authentication.
Implements: Register → Login → JWT issue → Refresh → Logout, plus password reset.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import get_current_user
from shared.models.models import AdminNotification, Profile, ProfileStatus, RefreshToken, UserRole
from shared.schemas.schemas import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
)
from shared.utils.errors import ErrorCode, api_error
from shared.utils.security import (
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    reset_token_matches,
    verify_access_token,
    verify_password,
    verify_password_reset_token,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helper ────────────────────────────────────────────────────

async def _issue_tokens(
    user: Profile,
    db: AsyncSession,
    response: Response,
    request: Request,
) -> tuple[str, str]:
    """Issue access + refresh tokens. Store refresh token in DB and set cookie."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
    )

    raw_refresh, hashed_refresh = create_refresh_token()
    expires_at = datetime.now(timezone.utc) + timedelta(
        days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS
    )

    db.add(RefreshToken(
        user_id=user.id,
        token_hash=hashed_refresh,
        expires_at=expires_at,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    ))

    # Set httpOnly cookie for refresh token (web clients)
    response.set_cookie(
        key="refresh_token",
        value=raw_refresh,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/auth/refresh",
    )

    return access_token, raw_refresh


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a cleaner or manager account. New accounts start as `pending`
    and land in the admin moderation inbox.
    """
    email = data.email.lower()
    existing = await db.scalar(select(Profile.id).where(Profile.email == email))
    if existing:
        raise api_error(409, ErrorCode.EMAIL_TAKEN, "An account with this email already exists")

    user = Profile(
        email=email,
        name=data.name,
        password_hash=hash_password(data.password),
        role=UserRole(data.role),
        status=ProfileStatus.PENDING,
    )
    db.add(user)
    await db.flush()

    db.add(AdminNotification(
        notification_type="user_registration",
        user_id=user.id,
        user_email=user.email,
        user_role=user.role.value,
    ))

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()
    await db.refresh(user)
    logger.info(f"Registered {user.role.value} {user.email}")

    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=ProfileResponse.model_validate(user),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Profile).where(Profile.email == data.email.lower()))
    user = result.scalar_one_or_none()
    if not user or not verify_password(data.password, user.password_hash):
        raise api_error(401, ErrorCode.INVALID_CREDENTIALS, "Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=ProfileResponse.model_validate(user),
    )


@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    # Accept from cookie (web) or request body (mobile)
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Implements refresh token rotation: the old token is revoked.
    """
    raw_token = refresh_token_cookie or (body.refresh_token if body else None)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.is_revoked.is_(False),
        )
    )
    db_token = result.scalar_one_or_none()

    if not db_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked refresh token",
        )

    if _as_utc(db_token.expires_at) < datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token expired",
        )

    result = await db.execute(select(Profile).where(Profile.id == db_token.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    # Rotate: revoke old token, issue new ones
    db_token.is_revoked = True

    access_token, _ = await _issue_tokens(user, db, response, request)
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    request: Request,
    response: Response,
    current_user: Profile = Depends(get_current_user),
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Revoke refresh token + add JWT to deny-list in Redis. Clears httpOnly cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            payload = verify_access_token(auth_header[7:])
        except JWTError:
            payload = None
        if payload and payload.get("jti"):
            ttl = get_token_remaining_ttl(payload)
            if ttl > 0:
                await RedisCache(redis).revoke_token(payload["jti"], ttl)

    if refresh_token_cookie:
        result = await db.execute(
            select(RefreshToken).where(RefreshToken.token_hash == hash_token(refresh_token_cookie))
        )
        db_token = result.scalar_one_or_none()
        if db_token:
            db_token.is_revoked = True

    response.delete_cookie(key="refresh_token", path="/auth/refresh")
    await db.commit()

    return MessageResponse(message="Logged out successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(data: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    """
    Start a password reset. Always answers 200 so the endpoint cannot be
    used to find out which emails are registered.
    """
    result = await db.execute(select(Profile).where(Profile.email == data.email.lower()))
    user = result.scalar_one_or_none()
    if user and user.is_active:
        token = create_password_reset_token(str(user.id), user.password_hash)
        # Mail delivery is out of band; the link is logged for the operator
        logger.info(f"Password reset link for {user.email}: "
                    f"{settings.FRONTEND_URL}/reset-password?token={token}")
    return MessageResponse(message="If the account exists, a reset link has been sent")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(data: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    invalid = api_error(400, ErrorCode.VALIDATION_ERROR, "Invalid or expired reset token")
    try:
        payload = verify_password_reset_token(data.token)
    except JWTError:
        raise invalid

    result = await db.execute(select(Profile).where(Profile.id == uuid.UUID(payload["sub"])))
    user = result.scalar_one_or_none()
    if not user or not reset_token_matches(payload, user.password_hash):
        raise invalid

    user.password_hash = hash_password(data.new_password)
    await db.commit()
    return MessageResponse(message="Password updated")


@router.get("/me", response_model=ProfileResponse, summary="Get current user")
async def get_me(current_user: Profile = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return ProfileResponse.model_validate(current_user)
