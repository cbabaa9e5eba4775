"""
services/object/rules.py
Archive rule shared by the manager and admin object endpoints.
"""

from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.order.state_machine import ACTIVE_STATUSES
from services.risk.detector import business_now
from shared.models.models import Order, PropertyObject
from shared.utils.errors import ErrorCode, api_error


async def count_future_orders(db: AsyncSession, object_id, today: Optional[date] = None) -> int:
    """Pending or confirmed orders on this object dated today or later."""
    today = today or business_now().date()
    return await db.scalar(
        select(func.count(Order.id)).where(
            Order.object_id == object_id,
            Order.scheduled_date >= today,
            Order.status.in_(ACTIVE_STATUSES),
        )
    ) or 0


async def archive_object(db: AsyncSession, obj: PropertyObject) -> None:
    """Raises 409 object_has_future_orders when live bookings remain."""
    pending = await count_future_orders(db, obj.id)
    if pending:
        raise api_error(
            409,
            ErrorCode.OBJECT_HAS_FUTURE_ORDERS,
            f"Object has {pending} future orders. Cancel or complete them before archiving.",
        )
    obj.is_archived = True
