"""
services/profile/router.py
Own profile and avatar, Telegram linking, and the cleaner directory managers book from.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_user, require_participant
from shared.models.models import Profile, ProfileStatus, UserRole
from shared.schemas.schemas import (
    CleanerCardResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    TelegramSettingsRequest,
)
from shared.utils.errors import ErrorCode, api_error, not_found
from shared.utils.storage import (
    build_avatar_key,
    delete_object,
    file_extension,
    key_from_public_url,
    public_url,
    upload_object,
)

router = APIRouter(prefix="/profiles", tags=["Profiles"])

AVATAR_TYPES = ("image/jpeg", "image/png", "image/webp")


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(current_user: Profile = Depends(get_current_user)):
    return ProfileResponse.model_validate(current_user)


@router.patch("/me", response_model=ProfileResponse)
async def update_my_profile(
    data: ProfileUpdateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Only non-None fields in the request body are updated."""
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return ProfileResponse.model_validate(current_user)

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return ProfileResponse.model_validate(current_user)


@router.post("/me/avatar", response_model=ProfileResponse)
async def upload_my_avatar(
    file: UploadFile = File(...),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Replace the profile picture. JPG, PNG or WebP up to MAX_AVATAR_BYTES.
    The new file is stored first, then the previous one is removed.
    """
    if file.content_type not in AVATAR_TYPES:
        raise api_error(400, ErrorCode.INVALID_FILE, "Only JPG, PNG and WebP images are accepted")
    body = await file.read()
    if len(body) > settings.MAX_AVATAR_BYTES:
        raise api_error(
            400, ErrorCode.INVALID_FILE,
            f"Avatar exceeds {settings.MAX_AVATAR_BYTES // (1024 * 1024)} MB",
        )

    bucket = settings.S3_BUCKET_AVATARS
    key = build_avatar_key(current_user.id, file_extension(file.filename, file.content_type))
    await run_in_threadpool(upload_object, bucket, key, body, file.content_type)

    old_key = key_from_public_url(bucket, current_user.avatar_url)
    current_user.avatar_url = public_url(bucket, key)
    await db.commit()
    if old_key and old_key != key:
        await run_in_threadpool(delete_object, bucket, old_key)

    await db.refresh(current_user)
    return ProfileResponse.model_validate(current_user)


@router.delete("/me/avatar", response_model=ProfileResponse)
async def remove_my_avatar(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    old_key = key_from_public_url(settings.S3_BUCKET_AVATARS, current_user.avatar_url)
    current_user.avatar_url = None
    await db.commit()
    if old_key:
        await run_in_threadpool(delete_object, settings.S3_BUCKET_AVATARS, old_key)

    await db.refresh(current_user)
    return ProfileResponse.model_validate(current_user)


@router.patch("/me/telegram", response_model=ProfileResponse)
async def update_my_telegram(
    data: TelegramSettingsRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Link a Telegram chat and switch delivery on or off."""
    chat_id = data.telegram_chat_id if data.telegram_chat_id is not None else current_user.telegram_chat_id
    if data.telegram_enabled and not chat_id:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Link a Telegram chat before enabling notifications")

    current_user.telegram_chat_id = chat_id
    current_user.telegram_enabled = data.telegram_enabled
    await db.commit()
    await db.refresh(current_user)
    return ProfileResponse.model_validate(current_user)


@router.get("/cleaners", response_model=List[CleanerCardResponse])
async def list_cleaners(
    search: Optional[str] = Query(None, max_length=100),
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """
    Approved, active cleaners, best rated first.
    Demo managers only see demo cleaners and vice versa.
    """
    if current_user.role == UserRole.ADMIN:
        roles = [UserRole.CLEANER, UserRole.DEMO_CLEANER]
    elif current_user.is_demo:
        roles = [UserRole.DEMO_CLEANER]
    else:
        roles = [UserRole.CLEANER]

    query = select(Profile).where(
        Profile.role.in_(roles),
        Profile.status == ProfileStatus.APPROVED,
        Profile.is_active.is_(True),
    )
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Profile.name.ilike(pattern), Profile.email.ilike(pattern)))

    result = await db.execute(
        query.order_by(Profile.rating.desc().nulls_last(), Profile.name)
    )
    return result.scalars().all()


@router.get("/{profile_id}", response_model=ProfileResponse)
async def get_profile(
    profile_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profile = await db.scalar(select(Profile).where(Profile.id == profile_id))
    if not profile:
        raise not_found("Profile")
    if (
        current_user.role != UserRole.ADMIN
        and profile.role != UserRole.ADMIN
        and profile.is_demo != current_user.is_demo
    ):
        raise not_found("Profile")
    return ProfileResponse.model_validate(profile)
