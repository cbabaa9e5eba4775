"""
services/order/availability.py
Cleaner availability: which of the five daily slots are still bookable.

Availability is derived, never stored. A slot is taken by any non-cancelled
order of that cleaner on that date; an unavailability record blocks the
whole day.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from shared.models.models import (
    CLEANER_ROLES,
    TIME_SLOTS,
    CleanerUnavailability,
    Order,
    OrderStatus,
    Profile,
    ProfileStatus,
)
from shared.utils.errors import ErrorCode, api_error, not_found

logger = logging.getLogger(__name__)


def busy_slots(
    orders: Iterable,
    on_date: date,
    exclude_order_id: Optional[uuid.UUID] = None,
) -> set[str]:
    """Time slots occupied on `on_date` by non-cancelled orders."""
    return {
        o.scheduled_time
        for o in orders
        if o.scheduled_date == on_date
        and o.status != OrderStatus.CANCELLED
        and (exclude_order_id is None or o.id != exclude_order_id)
    }


def available_slots(on_date: date, busy: set[str], unavailable_dates: Iterable[date]) -> list[str]:
    if on_date in set(unavailable_dates):
        return []
    return [slot for slot in TIME_SLOTS if slot not in busy]


def is_slot_available(
    on_date: date,
    time_slot: str,
    busy: set[str],
    unavailable_dates: Iterable[date],
) -> bool:
    return time_slot in available_slots(on_date, busy, unavailable_dates)


async def load_day(
    db: AsyncSession,
    cleaner_id: uuid.UUID,
    on_date: date,
    exclude_order_id: Optional[uuid.UUID] = None,
) -> tuple[set[str], bool]:
    """Returns (busy slots, whole day blocked) for one cleaner and date."""
    orders = (await db.execute(
        select(Order).where(
            Order.cleaner_id == cleaner_id,
            Order.scheduled_date == on_date,
            Order.status != OrderStatus.CANCELLED,
        )
    )).scalars().all()
    blocked = await db.scalar(
        select(CleanerUnavailability.id).where(
            CleanerUnavailability.cleaner_id == cleaner_id,
            CleanerUnavailability.date == on_date,
        )
    )
    return busy_slots(orders, on_date, exclude_order_id), blocked is not None


async def ensure_slot_available(
    db: AsyncSession,
    cleaner_id: uuid.UUID,
    on_date: date,
    time_slot: str,
    exclude_order_id: Optional[uuid.UUID] = None,
) -> None:
    """Write-time check. Raises 409 cleaner_unavailable / slot_taken."""
    busy, blocked = await load_day(db, cleaner_id, on_date, exclude_order_id)
    if blocked:
        raise api_error(409, ErrorCode.CLEANER_UNAVAILABLE, "Cleaner unavailable on selected date")
    if time_slot in busy:
        raise api_error(
            409,
            ErrorCode.SLOT_TAKEN,
            f"Cleaner already has an order on {on_date.isoformat()} at {time_slot}",
        )


@asynccontextmanager
async def reserve_slot(
    db: AsyncSession,
    redis,
    cleaner_id: Optional[uuid.UUID],
    on_date: date,
    time_slot: str,
    exclude_order_id: Optional[uuid.UUID] = None,
):
    """
    Guard an order write that puts `cleaner_id` into a slot.

    Holds the Redis slot lock while availability is re-checked and the body
    commits. A commit that still trips the active-slot unique index (the
    lock expired, or Redis was flushed) surfaces as 409 slot_taken.

        async with reserve_slot(db, redis, cleaner_id, day, "10:00"):
            db.add(order)
            await db.commit()
    """
    if cleaner_id is None:
        yield
        return

    cache = RedisCache(redis)
    day = on_date.isoformat()
    holder = str(uuid.uuid4())
    if not await cache.lock_slot(str(cleaner_id), day, time_slot, holder):
        raise api_error(
            409,
            ErrorCode.SLOT_TAKEN,
            "This slot is being booked right now. Please try again in a moment.",
        )
    try:
        await ensure_slot_available(db, cleaner_id, on_date, time_slot, exclude_order_id)
        yield
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Active-slot index rejected {cleaner_id} {day} {time_slot}")
        raise api_error(
            409,
            ErrorCode.SLOT_TAKEN,
            f"Cleaner already has an order on {day} at {time_slot}",
        )
    finally:
        if not await cache.release_slot(str(cleaner_id), day, time_slot, holder):
            logger.warning(f"Slot lock for {cleaner_id} {day} {time_slot} expired before release")


async def load_bookable_cleaner(db: AsyncSession, cleaner_id: uuid.UUID, manager) -> Profile:
    """Cleaner must be active, approved and on the same side of the demo fence."""
    cleaner = await db.scalar(select(Profile).where(Profile.id == cleaner_id))
    if not cleaner or not cleaner.is_active or cleaner.role not in CLEANER_ROLES:
        raise not_found("Cleaner")
    if cleaner.status != ProfileStatus.APPROVED:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Cleaner is not approved yet")
    if manager is not None and cleaner.is_demo != manager.is_demo:
        raise not_found("Cleaner")
    return cleaner
