"""
services/cleaner/router.py
Cleaner calendars: per-day slot availability and unavailability management.
"""

from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.order.availability import available_slots, load_day
from shared.middleware.auth import require_cleaner, require_participant
from shared.models.models import (
    CLEANER_ROLES,
    TIME_SLOTS,
    CleanerUnavailability,
    Profile,
    UserRole,
)
from shared.schemas.schemas import (
    AvailabilityResponse,
    MessageResponse,
    SlotAvailability,
    UnavailabilityAddedResponse,
    UnavailabilityCreateRequest,
    UnavailabilityResponse,
)
from shared.utils.errors import ErrorCode, api_error, forbidden, not_found

router = APIRouter(prefix="/cleaners", tags=["Cleaners"])

MAX_RANGE_DAYS = 366


# ── Availability ──────────────────────────────────────────────

@router.get("/{cleaner_id}/availability", response_model=AvailabilityResponse)
async def get_cleaner_availability(
    cleaner_id: UUID,
    day: date = Query(..., alias="date", description="YYYY-MM-DD"),
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Free/busy flag for each of the five daily slots on one date."""
    cleaner = await db.scalar(select(Profile).where(Profile.id == cleaner_id))
    if not cleaner or cleaner.role not in CLEANER_ROLES:
        raise not_found("Cleaner")
    if current_user.role != UserRole.ADMIN and cleaner.is_demo != current_user.is_demo:
        raise not_found("Cleaner")

    busy, blocked = await load_day(db, cleaner.id, day)
    free = set(available_slots(day, busy, [day] if blocked else []))
    return AvailabilityResponse(
        cleaner_id=cleaner.id,
        date=day,
        unavailable=blocked,
        slots=[SlotAvailability(time=slot, available=slot in free) for slot in TIME_SLOTS],
    )


# ── Unavailability (cleaner's own) ────────────────────────────

@router.get("/me/unavailability", response_model=List[UnavailabilityResponse])
async def list_my_unavailability(
    from_date: Optional[date] = Query(None),
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    query = select(CleanerUnavailability).where(CleanerUnavailability.cleaner_id == current_user.id)
    if from_date:
        query = query.where(CleanerUnavailability.date >= from_date)
    result = await db.execute(query.order_by(CleanerUnavailability.date))
    return result.scalars().all()


@router.post(
    "/me/unavailability",
    response_model=UnavailabilityAddedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_my_unavailability(
    data: UnavailabilityCreateRequest,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """
    Block one day or an inclusive range of days.
    Days that are already blocked are skipped; the response counts only new ones.
    """
    end = data.end_date or data.date
    span = (end - data.date).days + 1
    if span > MAX_RANGE_DAYS:
        raise api_error(
            400, ErrorCode.VALIDATION_ERROR, f"A range can cover at most {MAX_RANGE_DAYS} days"
        )
    days = [data.date + timedelta(days=i) for i in range(span)]

    existing = set((await db.execute(
        select(CleanerUnavailability.date).where(
            CleanerUnavailability.cleaner_id == current_user.id,
            CleanerUnavailability.date.in_(days),
        )
    )).scalars().all())

    added = [
        CleanerUnavailability(cleaner_id=current_user.id, date=day, reason=data.reason)
        for day in days
        if day not in existing
    ]
    db.add_all(added)
    await db.commit()

    return UnavailabilityAddedResponse(
        added=len(added),
        items=[UnavailabilityResponse.model_validate(u) for u in added],
    )


@router.delete("/me/unavailability/{unavailability_id}", response_model=MessageResponse)
async def delete_my_unavailability(
    unavailability_id: UUID,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    record = await db.scalar(
        select(CleanerUnavailability).where(CleanerUnavailability.id == unavailability_id)
    )
    if not record:
        raise not_found("Unavailability")
    if record.cleaner_id != current_user.id:
        raise forbidden("Not your calendar")

    await db.delete(record)
    await db.commit()
    return MessageResponse(message="Day unblocked")
