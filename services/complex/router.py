"""
services/complex/router.py
Residential complexes. Everyone can list them; only admins edit.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import Profile, PropertyObject, ResidentialComplex
from shared.schemas.schemas import (
    ComplexCreateRequest,
    ComplexResponse,
    ComplexUpdateRequest,
    MessageResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ErrorCode, api_error, not_found

router = APIRouter(prefix="/complexes", tags=["Residential Complexes"])


async def _get_complex_or_404(complex_id: UUID, db: AsyncSession) -> ResidentialComplex:
    rc = await db.scalar(select(ResidentialComplex).where(ResidentialComplex.id == complex_id))
    if not rc:
        raise not_found("Residential complex")
    return rc


async def _objects_count(db: AsyncSession, complex_id) -> int:
    return await db.scalar(
        select(func.count(PropertyObject.id)).where(PropertyObject.residential_complex_id == complex_id)
    ) or 0


async def _response(db: AsyncSession, rc: ResidentialComplex) -> ComplexResponse:
    return ComplexResponse(
        id=rc.id,
        name=rc.name,
        city=rc.city,
        manager_id=rc.manager_id,
        objects_count=await _objects_count(db, rc.id),
    )


@router.get("", response_model=List[ComplexResponse])
async def list_complexes(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    counts = (
        select(PropertyObject.residential_complex_id, func.count(PropertyObject.id).label("n"))
        .group_by(PropertyObject.residential_complex_id)
        .subquery()
    )
    rows = (await db.execute(
        select(ResidentialComplex, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.residential_complex_id == ResidentialComplex.id)
        .order_by(ResidentialComplex.name)
    )).all()
    return [
        ComplexResponse(id=rc.id, name=rc.name, city=rc.city, manager_id=rc.manager_id, objects_count=n)
        for rc, n in rows
    ]


@router.post("", response_model=ComplexResponse, status_code=status.HTTP_201_CREATED)
async def create_complex(
    data: ComplexCreateRequest,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rc = ResidentialComplex(name=data.name.strip(), city=data.city, manager_id=data.manager_id)
    db.add(rc)
    await db.commit()

    await log_admin_action(admin.id, "create_complex", "residential_complex", rc.id,
                           {"name": rc.name, "city": rc.city}, request)
    return await _response(db, rc)


@router.patch("/{complex_id}", response_model=ComplexResponse)
async def update_complex(
    complex_id: UUID,
    data: ComplexUpdateRequest,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rc = await _get_complex_or_404(complex_id, db)
    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(rc, field, value)
    await db.commit()

    await log_admin_action(admin.id, "update_complex", "residential_complex", rc.id,
                           {k: str(v) if v is not None else None for k, v in updates.items()}, request)
    return await _response(db, rc)


@router.delete("/{complex_id}", response_model=MessageResponse)
async def delete_complex(
    complex_id: UUID,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Refused while any object still points at the complex."""
    rc = await _get_complex_or_404(complex_id, db)
    linked = await _objects_count(db, rc.id)
    if linked:
        raise api_error(409, ErrorCode.COMPLEX_HAS_OBJECTS, f"{linked} objects linked")

    name = rc.name
    await db.delete(rc)
    await db.commit()

    await log_admin_action(admin.id, "delete_complex", "residential_complex", complex_id,
                           {"name": name}, request)
    return MessageResponse(message="Residential complex deleted")
