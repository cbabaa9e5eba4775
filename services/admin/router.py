"""
services/admin/router.py
Admin-only endpoints: user moderation, object and order oversight,
registration inbox, dashboard counters, cleaner calendar and audit log.

Every mutation is committed first, then appended to AdminAuditLog best
effort (see shared/utils/audit.py).
"""

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from config.settings import settings
from services.object.rules import archive_object
from services.order.availability import load_bookable_cleaner, reserve_slot
from services.order.events import notify_order
from services.order.state_machine import ACTIVE_STATUSES
from services.risk.detector import business_now
from shared.middleware.auth import require_admin
from shared.models.models import (
    CLEANER_ROLES,
    DEMO_ROLES,
    AdminAuditLog,
    AdminNotification,
    CleanerUnavailability,
    NotificationStatus,
    Order,
    OrderStatus,
    Profile,
    ProfileStatus,
    PropertyObject,
    ResidentialComplex,
    UserRole,
)
from shared.schemas.schemas import (
    AdminDashboardResponse,
    AdminNotificationResponse,
    AdminOrdersCountRequest,
    AdminRoleUpdateRequest,
    AdminStatusUpdateRequest,
    AuditLogResponse,
    MessageResponse,
    NotificationResolveRequest,
    ObjectComplexRequest,
    ObjectResponse,
    OrderAssignRequest,
    OrderRescheduleRequest,
    OrderResponse,
    ProfileResponse,
)
from shared.utils.audit import log_admin_action
from shared.utils.errors import ErrorCode, api_error, not_found

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ────────────────────────────────────────────────────────────────────

def _page(items, total: int, page: int, page_size: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),  # ceiling division
    }


async def _get_user_or_404(user_id: UUID, db: AsyncSession) -> Profile:
    user = await db.scalar(select(Profile).where(Profile.id == user_id))
    if not user:
        raise not_found("User")
    return user


async def _get_object_or_404(object_id: UUID, db: AsyncSession) -> PropertyObject:
    obj = await db.scalar(select(PropertyObject).where(PropertyObject.id == object_id))
    if not obj:
        raise not_found("Object")
    return obj


async def _get_order_or_404(order_id: UUID, db: AsyncSession) -> Order:
    order = await db.scalar(select(Order).where(Order.id == order_id))
    if not order:
        raise not_found("Order")
    return order


def _overdue_cutoff() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=settings.NOTIFICATION_OVERDUE_HOURS)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _notification_response(n: AdminNotification) -> AdminNotificationResponse:
    response = AdminNotificationResponse.model_validate(n)
    response.is_overdue = (
        n.status == NotificationStatus.PENDING and _as_utc(n.created_at) < _overdue_cutoff()
    )
    return response


# ── User Moderation ────────────────────────────────────────────────────────────

@router.get("/users")
async def list_users(
    role: Optional[UserRole] = Query(None),
    status_filter: Optional[ProfileStatus] = Query(None, alias="status"),
    user_type: Literal["all", "demo", "real"] = Query("all"),
    show_inactive: bool = Query(False),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """All accounts, newest first. Soft-deleted users are hidden unless show_inactive."""
    query = select(Profile).order_by(Profile.created_at.desc())

    if role:
        query = query.where(Profile.role == role)
    if status_filter:
        query = query.where(Profile.status == status_filter)
    if user_type == "demo":
        query = query.where(Profile.role.in_(DEMO_ROLES))
    elif user_type == "real":
        query = query.where(Profile.role.notin_(DEMO_ROLES))
    if not show_inactive:
        query = query.where(Profile.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Profile.name.ilike(pattern), Profile.email.ilike(pattern)))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return _page(
        [ProfileResponse.model_validate(u) for u in result.scalars().all()],
        total, page, page_size,
    )


@router.patch("/users/{user_id}/role", response_model=ProfileResponse)
async def update_user_role(
    user_id: UUID,
    data: AdminRoleUpdateRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(user_id, db)
    if user.id == current_user.id and data.role != UserRole.ADMIN:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "You cannot remove your own admin role")

    old_role = user.role.value
    user.role = data.role
    await db.commit()
    await db.refresh(user)

    await log_admin_action(current_user.id, "update_user_role", "user", user.id,
                           {"old_role": old_role, "new_role": user.role.value}, request)
    return ProfileResponse.model_validate(user)


@router.patch("/users/{user_id}/status", response_model=ProfileResponse)
async def update_user_status(
    user_id: UUID,
    data: AdminStatusUpdateRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve or send back to pending. Only approved users can book or take orders."""
    user = await _get_user_or_404(user_id, db)
    old_status = user.status.value
    user.status = data.status
    await db.commit()
    await db.refresh(user)

    await log_admin_action(current_user.id, "update_user_status", "user", user.id,
                           {"old_status": old_status, "new_status": user.status.value}, request)
    return ProfileResponse.model_validate(user)


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: UUID,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Soft delete (is_active = false). Refused while the user still owns objects,
    appears on orders or has unavailability days, so history stays consistent.
    """
    user = await _get_user_or_404(user_id, db)
    if user.id == current_user.id:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "You cannot delete your own account")

    objects = await db.scalar(select(func.count(PropertyObject.id)).where(PropertyObject.user_id == user.id))
    orders = await db.scalar(
        select(func.count(Order.id)).where(or_(Order.manager_id == user.id, Order.cleaner_id == user.id))
    )
    days = await db.scalar(
        select(func.count(CleanerUnavailability.id)).where(CleanerUnavailability.cleaner_id == user.id)
    )
    if objects or orders or days:
        raise api_error(
            409,
            ErrorCode.USER_HAS_LINKS,
            f"User has linked data: {objects} objects, {orders} orders, {days} unavailability days",
        )

    user.is_active = False
    await db.commit()

    await log_admin_action(current_user.id, "delete_user", "user", user.id,
                           {"email": user.email}, request)
    return MessageResponse(message="User deactivated")


@router.post("/users/{user_id}/restore", response_model=ProfileResponse)
async def restore_user(
    user_id: UUID,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(user_id, db)
    user.is_active = True
    await db.commit()
    await db.refresh(user)

    await log_admin_action(current_user.id, "restore_user", "user", user.id,
                           {"email": user.email}, request)
    return ProfileResponse.model_validate(user)


@router.patch("/users/{user_id}/orders-count", response_model=ProfileResponse)
async def update_orders_count(
    user_id: UUID,
    data: AdminOrdersCountRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Manual correction of a cleaner's completed orders counter."""
    user = await _get_user_or_404(user_id, db)
    old_count = user.completed_orders_count
    user.completed_orders_count = data.completed_orders_count
    await db.commit()
    await db.refresh(user)

    await log_admin_action(current_user.id, "update_orders_count", "user", user.id,
                           {"old_count": old_count, "new_count": data.completed_orders_count}, request)
    return ProfileResponse.model_validate(user)


# ── Objects ────────────────────────────────────────────────────────────────────

@router.get("/objects")
async def list_objects(
    manager_id: Optional[UUID] = Query(None),
    residential_complex_id: Optional[str] = Query(None, description="Complex id or 'none'"),
    status_filter: Literal["all", "active", "archived"] = Query("active", alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(PropertyObject, Profile.name, Profile.email)
        .join(Profile, Profile.id == PropertyObject.user_id)
        .order_by(PropertyObject.complex_name, PropertyObject.apartment_number)
    )
    if manager_id:
        query = query.where(PropertyObject.user_id == manager_id)
    if residential_complex_id == "none":
        query = query.where(PropertyObject.residential_complex_id.is_(None))
    elif residential_complex_id:
        try:
            complex_uuid = UUID(residential_complex_id)
        except ValueError:
            raise api_error(400, ErrorCode.VALIDATION_ERROR, "residential_complex_id must be a UUID or 'none'")
        query = query.where(PropertyObject.residential_complex_id == complex_uuid)
    if status_filter == "active":
        query = query.where(PropertyObject.is_archived.is_(False))
    elif status_filter == "archived":
        query = query.where(PropertyObject.is_archived.is_(True))
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            PropertyObject.complex_name.ilike(pattern),
            PropertyObject.apartment_number.ilike(pattern),
            Profile.name.ilike(pattern),
            Profile.email.ilike(pattern),
        ))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    rows = (await db.execute(query.offset((page - 1) * page_size).limit(page_size))).all()

    items = []
    for obj, owner_name, owner_email in rows:
        item = ObjectResponse.model_validate(obj)
        item.owner_name = owner_name
        item.owner_email = owner_email
        items.append(item)
    return _page(items, total, page, page_size)


@router.patch("/objects/{object_id}/complex", response_model=ObjectResponse)
async def set_object_complex(
    object_id: UUID,
    data: ObjectComplexRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Link an object to a residential complex, or unlink it with null."""
    obj = await _get_object_or_404(object_id, db)
    if data.residential_complex_id is not None:
        exists = await db.scalar(
            select(ResidentialComplex.id).where(ResidentialComplex.id == data.residential_complex_id)
        )
        if not exists:
            raise not_found("Residential complex")

    old_complex = obj.residential_complex_id
    obj.residential_complex_id = data.residential_complex_id
    await db.commit()
    await db.refresh(obj)

    await log_admin_action(
        current_user.id, "update_object_complex", "object", obj.id,
        {
            "old_complex_id": str(old_complex) if old_complex else None,
            "new_complex_id": str(obj.residential_complex_id) if obj.residential_complex_id else None,
        },
        request,
    )
    return ObjectResponse.model_validate(obj)


@router.post("/objects/{object_id}/archive", response_model=ObjectResponse)
async def admin_archive_object(
    object_id: UUID,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    obj = await _get_object_or_404(object_id, db)
    await archive_object(db, obj)
    await db.commit()
    await db.refresh(obj)

    await log_admin_action(current_user.id, "archive_object", "object", obj.id,
                           {"name": obj.display_name}, request)
    return ObjectResponse.model_validate(obj)


@router.post("/objects/{object_id}/unarchive", response_model=ObjectResponse)
async def admin_unarchive_object(
    object_id: UUID,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    obj = await _get_object_or_404(object_id, db)
    obj.is_archived = False
    await db.commit()
    await db.refresh(obj)

    await log_admin_action(current_user.id, "unarchive_object", "object", obj.id,
                           {"name": obj.display_name}, request)
    return ObjectResponse.model_validate(obj)


# ── Order Oversight ────────────────────────────────────────────────────────────

@router.post("/orders/{order_id}/assign", response_model=OrderResponse)
async def assign_cleaner(
    order_id: UUID,
    data: OrderAssignRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Assign, reassign or (with cleaner_id null) unassign the cleaner of a
    pending or confirmed order. The new cleaner's slot is checked like a booking.
    """
    order = await _get_order_or_404(order_id, db)
    if order.status not in ACTIVE_STATUSES:
        raise api_error(
            400, ErrorCode.INVALID_TRANSITION,
            f"Cannot change the cleaner of a {OrderStatus(order.status).value} order",
        )

    previous = order.cleaner_id
    if data.cleaner_id == previous:
        return OrderResponse.model_validate(order)

    if data.cleaner_id is None:
        action = "unassign_cleaner"
        order.cleaner_id = None
        await db.commit()
    else:
        manager = await db.scalar(select(Profile).where(Profile.id == order.manager_id))
        cleaner = await load_bookable_cleaner(db, data.cleaner_id, manager)
        action = "reassign_cleaner" if previous else "assign_cleaner"
        async with reserve_slot(
            db, redis, cleaner.id, order.scheduled_date, order.scheduled_time,
            exclude_order_id=order.id,
        ):
            order.cleaner_id = cleaner.id
            await db.commit()

    await db.refresh(order)
    await log_admin_action(
        current_user.id, action, "order", order.id,
        {
            "cleaner_id": str(order.cleaner_id) if order.cleaner_id else None,
            "previous_cleaner_id": str(previous) if previous else None,
            "reason": data.reason,
        },
        request,
    )
    notify_order(order.cleaner_id, "new_order", order)
    notify_order(previous, "order_status_changed", order, reason="Order reassigned")
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/reschedule", response_model=OrderResponse)
async def reschedule_order(
    order_id: UUID,
    data: OrderRescheduleRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    order = await _get_order_or_404(order_id, db)
    if order.status not in ACTIVE_STATUSES:
        raise api_error(
            400, ErrorCode.INVALID_TRANSITION,
            f"Cannot reschedule a {OrderStatus(order.status).value} order",
        )

    old_date, old_time = order.scheduled_date, order.scheduled_time
    async with reserve_slot(
        db, redis, order.cleaner_id, data.scheduled_date, data.scheduled_time,
        exclude_order_id=order.id,
    ):
        order.scheduled_date = data.scheduled_date
        order.scheduled_time = data.scheduled_time
        await db.commit()

    await db.refresh(order)
    await log_admin_action(
        current_user.id, "reschedule_order", "order", order.id,
        {
            "old_date": old_date.isoformat(),
            "old_time": old_time,
            "new_date": order.scheduled_date.isoformat(),
            "new_time": order.scheduled_time,
            "reason": data.reason,
        },
        request,
    )
    notify_order(order.cleaner_id, "order_status_changed", order, reason=data.reason)
    notify_order(order.manager_id, "order_status_changed", order, reason=data.reason)
    return OrderResponse.model_validate(order)


# ── Registration Inbox ─────────────────────────────────────────────────────────

@router.get("/notifications")
async def list_notifications(
    status_filter: Optional[NotificationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Newest first. Pending items older than the overdue threshold are flagged."""
    query = select(AdminNotification).order_by(AdminNotification.created_at.desc())
    if status_filter:
        query = query.where(AdminNotification.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return _page(
        [_notification_response(n) for n in result.scalars().all()],
        total, page, page_size,
    )


@router.post("/notifications/{notification_id}/read", response_model=AdminNotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    notification = await db.scalar(
        select(AdminNotification).where(AdminNotification.id == notification_id)
    )
    if not notification:
        raise not_found("Notification")
    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(notification)
    return _notification_response(notification)


@router.post("/notifications/{notification_id}/resolve", response_model=AdminNotificationResponse)
async def resolve_notification(
    notification_id: UUID,
    data: NotificationResolveRequest,
    request: Request,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject. Approving a registration approves the account too."""
    notification = await db.scalar(
        select(AdminNotification).where(AdminNotification.id == notification_id)
    )
    if not notification:
        raise not_found("Notification")
    if notification.status != NotificationStatus.PENDING:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Notification is already resolved")

    now = datetime.now(timezone.utc)
    notification.status = NotificationStatus(data.action)
    notification.resolved_at = now
    notification.resolved_by = current_user.id
    if notification.read_at is None:
        notification.read_at = now

    if data.action == "approved" and notification.notification_type == "user_registration":
        user = await db.scalar(select(Profile).where(Profile.id == notification.user_id))
        if user:
            user.status = ProfileStatus.APPROVED

    await db.commit()
    await db.refresh(notification)

    await log_admin_action(
        current_user.id, f"resolve_notification_{data.action}", "notification", notification.id,
        {"user_id": str(notification.user_id), "notification_type": notification.notification_type},
        request,
    )
    return _notification_response(notification)


# ── Dashboard ──────────────────────────────────────────────────────────────────

@router.get("/dashboard", response_model=AdminDashboardResponse)
async def get_dashboard(
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Headline counters for the admin home screen."""
    active = Profile.is_active.is_(True)
    today = business_now().date()

    total_users = await db.scalar(select(func.count(Profile.id)).where(active))
    pending_users = await db.scalar(
        select(func.count(Profile.id)).where(active, Profile.status == ProfileStatus.PENDING)
    )
    approved_users = await db.scalar(
        select(func.count(Profile.id)).where(active, Profile.status == ProfileStatus.APPROVED)
    )
    total_cleaners = await db.scalar(
        select(func.count(Profile.id)).where(active, Profile.role.in_(CLEANER_ROLES))
    )
    total_objects = await db.scalar(select(func.count(PropertyObject.id)))
    active_objects = await db.scalar(
        select(func.count(PropertyObject.id)).where(PropertyObject.is_archived.is_(False))
    )
    cleaners_active_today = await db.scalar(
        select(func.count(distinct(Order.cleaner_id))).where(
            Order.scheduled_date == today,
            Order.cleaner_id.isnot(None),
            Order.status != OrderStatus.CANCELLED,
        )
    )
    overdue_notifications = await db.scalar(
        select(func.count(AdminNotification.id)).where(
            AdminNotification.status == NotificationStatus.PENDING,
            AdminNotification.created_at < _overdue_cutoff(),
        )
    )

    return AdminDashboardResponse(
        total_users=total_users or 0,
        pending_users=pending_users or 0,
        approved_users=approved_users or 0,
        total_cleaners=total_cleaners or 0,
        total_objects=total_objects or 0,
        active_objects=active_objects or 0,
        cleaners_active_today=cleaners_active_today or 0,
        overdue_notifications=overdue_notifications or 0,
    )


# ── Cleaner Calendar ───────────────────────────────────────────────────────────

@router.get("/cleaners/calendar")
async def cleaners_calendar(
    month: str = Query(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="YYYY-MM"),
    cleaner_id: Optional[UUID] = Query(None),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Orders and unavailability per day of one month, optionally for one cleaner."""
    year, month_no = (int(p) for p in month.split("-"))
    first = date(year, month_no, 1)
    last = date(year, month_no, calendar.monthrange(year, month_no)[1])

    order_query = (
        select(Order, Profile.name, PropertyObject.complex_name, PropertyObject.apartment_number)
        .join(Profile, Profile.id == Order.cleaner_id, isouter=True)
        .join(PropertyObject, PropertyObject.id == Order.object_id, isouter=True)
        .where(
            Order.scheduled_date.between(first, last),
            Order.status != OrderStatus.CANCELLED,
        )
        .order_by(Order.scheduled_date, Order.scheduled_time)
    )
    off_query = (
        select(CleanerUnavailability, Profile.name)
        .join(Profile, Profile.id == CleanerUnavailability.cleaner_id)
        .where(CleanerUnavailability.date.between(first, last))
        .order_by(CleanerUnavailability.date)
    )
    if cleaner_id:
        order_query = order_query.where(Order.cleaner_id == cleaner_id)
        off_query = off_query.where(CleanerUnavailability.cleaner_id == cleaner_id)

    days = {
        (first + timedelta(days=i)).isoformat(): {"orders": [], "unavailable": []}
        for i in range((last - first).days + 1)
    }
    for order, cleaner_name, complex_name, apartment_number in (await db.execute(order_query)).all():
        days[order.scheduled_date.isoformat()]["orders"].append({
            "id": str(order.id),
            "cleaner_id": str(order.cleaner_id) if order.cleaner_id else None,
            "cleaner_name": cleaner_name,
            "object_name": f"{complex_name}, apt. {apartment_number}" if complex_name else None,
            "scheduled_time": order.scheduled_time,
            "status": OrderStatus(order.status).value,
        })
    for record, cleaner_name in (await db.execute(off_query)).all():
        days[record.date.isoformat()]["unavailable"].append({
            "id": str(record.id),
            "cleaner_id": str(record.cleaner_id),
            "cleaner_name": cleaner_name,
            "reason": record.reason,
        })

    return {"month": month, "cleaner_id": str(cleaner_id) if cleaner_id else None, "days": days}


# ── Audit Log ──────────────────────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Exact action type e.g. reschedule_order"),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only admin audit log, newest first."""
    query = (
        select(AdminAuditLog, Profile.name, Profile.email)
        .join(Profile, Profile.id == AdminAuditLog.admin_id, isouter=True)
        .order_by(AdminAuditLog.created_at.desc())
    )
    if action:
        query = query.where(AdminAuditLog.action_type == action)
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)
    if entity_id:
        query = query.where(AdminAuditLog.entity_id == entity_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    rows = (await db.execute(query.offset((page - 1) * page_size).limit(page_size))).all()

    return _page(
        [
            {
                **AuditLogResponse.model_validate(log).model_dump(mode="json"),
                "admin_name": admin_name,
                "admin_email": admin_email,
            }
            for log, admin_name, admin_email in rows
        ],
        total, page, page_size,
    )
