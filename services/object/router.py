"""
services/object/router.py
Manager-owned apartments. Archived objects stay visible in history but
cannot receive new orders.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.object.rules import archive_object
from shared.middleware.auth import require_manager
from shared.models.models import (
    MANAGER_ROLES,
    Profile,
    PropertyObject,
    ResidentialComplex,
    UserRole,
)
from shared.schemas.schemas import ObjectCreateRequest, ObjectResponse, ObjectUpdateRequest
from shared.utils.errors import ErrorCode, api_error, forbidden, not_found

router = APIRouter(prefix="/objects", tags=["Objects"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_own_object_or_404(object_id: UUID, user: Profile, db: AsyncSession) -> PropertyObject:
    obj = await db.scalar(select(PropertyObject).where(PropertyObject.id == object_id))
    if not obj:
        raise not_found("Object")
    if user.role != UserRole.ADMIN and obj.user_id != user.id:
        raise forbidden("Object does not belong to you")
    return obj


async def _check_complex(db: AsyncSession, complex_id) -> None:
    if complex_id is None:
        return
    exists = await db.scalar(select(ResidentialComplex.id).where(ResidentialComplex.id == complex_id))
    if not exists:
        raise not_found("Residential complex")


async def _saved(db: AsyncSession, obj: PropertyObject) -> ObjectResponse:
    await db.refresh(obj)
    return ObjectResponse.model_validate(obj)


# ── Endpoints ─────────────────────────────────────────────────

@router.post("", response_model=ObjectResponse, status_code=status.HTTP_201_CREATED)
async def create_object(
    data: ObjectCreateRequest,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """Managers add their own objects; admins add one on behalf of a manager via user_id."""
    owner_id = current_user.id
    if current_user.role == UserRole.ADMIN:
        if data.user_id is None:
            raise api_error(400, ErrorCode.VALIDATION_ERROR, "Fill in all fields")
        owner = await db.scalar(select(Profile).where(Profile.id == data.user_id))
        if not owner or owner.role not in MANAGER_ROLES:
            raise not_found("Manager")
        owner_id = owner.id

    await _check_complex(db, data.residential_complex_id)

    obj = PropertyObject(
        user_id=owner_id,
        complex_name=data.complex_name.strip(),
        apartment_number=data.apartment_number.strip(),
        apartment_type=data.apartment_type,
        residential_complex_id=data.residential_complex_id,
    )
    db.add(obj)
    await db.commit()
    return await _saved(db, obj)


@router.get("", response_model=List[ObjectResponse])
async def list_my_objects(
    include_archived: bool = Query(False),
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    query = select(PropertyObject).where(PropertyObject.user_id == current_user.id)
    if not include_archived:
        query = query.where(PropertyObject.is_archived.is_(False))
    result = await db.execute(
        query.order_by(PropertyObject.complex_name, PropertyObject.apartment_number)
    )
    return result.scalars().all()


@router.patch("/{object_id}", response_model=ObjectResponse)
async def update_object(
    object_id: UUID,
    data: ObjectUpdateRequest,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    obj = await _get_own_object_or_404(object_id, current_user, db)
    updates = data.model_dump(exclude_unset=True)
    if "residential_complex_id" in updates:
        await _check_complex(db, updates["residential_complex_id"])
    for field, value in updates.items():
        if value is None and field != "residential_complex_id":
            continue
        setattr(obj, field, value)
    await db.commit()
    return await _saved(db, obj)


@router.post("/{object_id}/archive", response_model=ObjectResponse)
async def archive_my_object(
    object_id: UUID,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """Rejected with 409 while the object has pending or confirmed orders from today on."""
    obj = await _get_own_object_or_404(object_id, current_user, db)
    await archive_object(db, obj)
    await db.commit()
    return await _saved(db, obj)


@router.post("/{object_id}/unarchive", response_model=ObjectResponse)
async def unarchive_my_object(
    object_id: UUID,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    obj = await _get_own_object_or_404(object_id, current_user, db)
    obj.is_archived = False
    await db.commit()
    return await _saved(db, obj)
