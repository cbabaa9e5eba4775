"""
services/order/router.py
Order lifecycle and completion reports.
States: PENDING → CONFIRMED → COMPLETED, PENDING | CONFIRMED → CANCELLED
"""

import logging
import uuid
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from config.database import get_db
from config.redis_client import get_redis
from config.settings import settings
from services.order.availability import load_bookable_cleaner, reserve_slot
from services.order.events import notify_order
from services.order.state_machine import ACTIVE_STATUSES, InvalidTransition, can_transition, transition
from shared.middleware.auth import require_cleaner, require_manager, require_participant
from shared.models.models import (
    CLEANER_ROLES,
    CompletionReport,
    Order,
    OrderStatus,
    Profile,
    PropertyObject,
    ReportFile,
    ReportFileType,
    UserRole,
)
from shared.schemas.schemas import (
    OrderCreateRequest,
    OrderRatingRequest,
    OrderRescheduleRequest,
    OrderResponse,
    ReportFileResponse,
    ReportResponse,
)
from shared.utils.errors import ErrorCode, api_error, forbidden, not_found
from shared.utils.storage import (
    build_report_key,
    file_extension,
    generate_signed_url,
    media_kind,
    upload_object,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_order_or_404(order_id: UUID, db: AsyncSession) -> Order:
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if not order:
        raise not_found("Order")
    return order


def _ensure_participant(order: Order, user: Profile) -> None:
    if user.role == UserRole.ADMIN:
        return
    if user.id not in (order.manager_id, order.cleaner_id):
        raise forbidden("Not authorized to access this order")


def _ensure_assigned_cleaner(order: Order, user: Profile) -> None:
    if order.cleaner_id != user.id:
        raise forbidden("Only the assigned cleaner can do this")


def _ensure_owner(order: Order, user: Profile) -> None:
    if user.role != UserRole.ADMIN and order.manager_id != user.id:
        raise forbidden("Only the order's manager can do this")


def _move(order: Order, target: OrderStatus) -> OrderStatus:
    try:
        return transition(order, target)
    except InvalidTransition as e:
        raise api_error(400, ErrorCode.INVALID_TRANSITION, str(e))


async def _complete(db: AsyncSession, order: Order) -> None:
    _move(order, OrderStatus.COMPLETED)
    cleaner = await db.scalar(select(Profile).where(Profile.id == order.cleaner_id))
    if cleaner:
        cleaner.completed_orders_count = (cleaner.completed_orders_count or 0) + 1


async def _saved(db: AsyncSession, order: Order) -> OrderResponse:
    await db.refresh(order)
    return OrderResponse.model_validate(order)


def _report_response(report: CompletionReport, files: List[ReportFile]) -> ReportResponse:
    return ReportResponse(
        id=report.id,
        order_id=report.order_id,
        description=report.description,
        created_at=report.created_at,
        files=[
            ReportFileResponse(
                id=f.id,
                file_type=ReportFileType(f.file_type).value,
                file_path=f.file_path,
                url=generate_signed_url(settings.S3_BUCKET_REPORTS, f.file_path),
            )
            for f in files
        ],
    )


# ── Order Creation ────────────────────────────────────────────

@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreateRequest,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Book a cleaner for one of the manager's objects.
    1. Object must belong to the manager and not be archived
    2. Cleaner must be approved and match the manager's demo-ness
    3. Slot is locked in Redis, availability re-checked, order written
    Admins may create orders without a cleaner.
    """
    is_admin = current_user.role == UserRole.ADMIN
    if data.cleaner_id is None and not is_admin:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Fill in all fields")

    obj = await db.scalar(select(PropertyObject).where(PropertyObject.id == data.object_id))
    if not obj:
        raise not_found("Object")
    if not is_admin and obj.user_id != current_user.id:
        raise forbidden("Object does not belong to you")
    if obj.is_archived:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Object is archived")

    manager = current_user
    if is_admin:
        manager = await db.scalar(select(Profile).where(Profile.id == obj.user_id))

    cleaner = None
    if data.cleaner_id is not None:
        cleaner = await load_bookable_cleaner(db, data.cleaner_id, manager)

    order = Order(
        manager_id=obj.user_id,
        cleaner_id=cleaner.id if cleaner else None,
        object_id=obj.id,
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        status=OrderStatus.PENDING,
    )
    async with reserve_slot(db, redis, order.cleaner_id, data.scheduled_date, data.scheduled_time):
        db.add(order)
        await db.commit()

    logger.info(f"Order {order.id} created for {order.scheduled_date} {order.scheduled_time}")
    notify_order(order.cleaner_id, "new_order", order, object_name=obj.display_name)
    return await _saved(db, order)


# ── Cleaner Confirm / Decline / Complete ──────────────────────

@router.post("/{order_id}/confirm", response_model=OrderResponse)
async def confirm_order(
    order_id: UUID,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """Assigned cleaner accepts. PENDING → CONFIRMED."""
    order = await _get_order_or_404(order_id, db)
    _ensure_assigned_cleaner(order, current_user)
    _move(order, OrderStatus.CONFIRMED)
    await db.commit()

    notify_order(order.manager_id, "order_status_changed", order)
    return await _saved(db, order)


@router.post("/{order_id}/decline", response_model=OrderResponse)
async def decline_order(
    order_id: UUID,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """Assigned cleaner declines. The order is cancelled and its slot freed."""
    order = await _get_order_or_404(order_id, db)
    _ensure_assigned_cleaner(order, current_user)
    _move(order, OrderStatus.CANCELLED)
    await db.commit()

    notify_order(order.manager_id, "order_status_changed", order)
    return await _saved(db, order)


@router.post("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: UUID,
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """Assigned cleaner closes a confirmed order. A completion report must exist."""
    order = await _get_order_or_404(order_id, db)
    _ensure_assigned_cleaner(order, current_user)

    has_report = await db.scalar(
        select(CompletionReport.id).where(CompletionReport.order_id == order.id)
    )
    if not has_report:
        raise api_error(400, ErrorCode.REPORT_REQUIRED, "Submit a completion report first")

    await _complete(db, order)
    await db.commit()

    notify_order(order.manager_id, "order_completed", order)
    return await _saved(db, order)


# ── Manager Cancel / Reschedule / Rate ────────────────────────

@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    order = await _get_order_or_404(order_id, db)
    _ensure_owner(order, current_user)
    _move(order, OrderStatus.CANCELLED)
    await db.commit()

    notify_order(order.cleaner_id, "order_status_changed", order)
    if current_user.id != order.manager_id:
        notify_order(order.manager_id, "order_status_changed", order)
    return await _saved(db, order)


@router.patch("/{order_id}", response_model=OrderResponse)
async def reschedule_order(
    order_id: UUID,
    data: OrderRescheduleRequest,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Move a pending or confirmed order. The order's own slot does not count as busy."""
    order = await _get_order_or_404(order_id, db)
    _ensure_owner(order, current_user)
    if order.status not in ACTIVE_STATUSES:
        raise api_error(
            400,
            ErrorCode.INVALID_TRANSITION,
            f"Cannot reschedule a {OrderStatus(order.status).value} order",
        )

    async with reserve_slot(
        db, redis, order.cleaner_id, data.scheduled_date, data.scheduled_time,
        exclude_order_id=order.id,
    ):
        order.scheduled_date = data.scheduled_date
        order.scheduled_time = data.scheduled_time
        await db.commit()

    notify_order(order.cleaner_id, "order_status_changed", order, reason=data.reason)
    return await _saved(db, order)


@router.post("/{order_id}/rating", response_model=OrderResponse)
async def rate_order(
    order_id: UUID,
    data: OrderRatingRequest,
    current_user: Profile = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """Rate the cleaner 1..5. The cleaner's profile rating is the mean of rated orders."""
    order = await _get_order_or_404(order_id, db)
    _ensure_owner(order, current_user)
    if order.status != OrderStatus.COMPLETED or order.cleaner_id is None:
        raise api_error(400, ErrorCode.VALIDATION_ERROR, "Only completed orders can be rated")

    order.cleaner_rating = data.rating
    await db.flush()

    average = await db.scalar(
        select(func.avg(Order.cleaner_rating)).where(
            Order.cleaner_id == order.cleaner_id,
            Order.cleaner_rating.isnot(None),
        )
    )
    cleaner = await db.scalar(select(Profile).where(Profile.id == order.cleaner_id))
    if cleaner and average is not None:
        cleaner.rating = round(float(average), 2)
    await db.commit()
    return await _saved(db, order)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("")
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Managers see their own orders, cleaners their assignments, admins everything."""
    query = select(Order)
    if current_user.role in CLEANER_ROLES:
        query = query.where(Order.cleaner_id == current_user.id)
    elif current_user.role != UserRole.ADMIN:
        query = query.where(Order.manager_id == current_user.id)

    if status_filter:
        query = query.where(Order.status == status_filter)
    if date_from:
        query = query.where(Order.scheduled_date >= date_from)
    if date_to:
        query = query.where(Order.scheduled_date <= date_to)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    query = (
        query.order_by(Order.scheduled_date.desc(), Order.scheduled_time.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    orders = (await db.execute(query)).scalars().all()

    return {
        "items": [OrderResponse.model_validate(o) for o in orders],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    order = await _get_order_or_404(order_id, db)
    _ensure_participant(order, current_user)
    return OrderResponse.model_validate(order)


# ── Completion Reports ────────────────────────────────────────

@router.post("/{order_id}/report", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def submit_report(
    order_id: UUID,
    description: Optional[str] = Form(None),
    files: List[UploadFile] = File(default=[]),
    complete: bool = Form(True),
    current_user: Profile = Depends(require_cleaner),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload photo/video evidence and, by default, close the order.
    Files go to storage first; the report row is created (or reused if one
    already exists), file rows added, then the order moves to COMPLETED.
    With complete=false the report is only stored and the order stays open
    until POST /orders/{id}/complete.
    """
    order = await _get_order_or_404(order_id, db)
    _ensure_assigned_cleaner(order, current_user)
    if not can_transition(order.status, OrderStatus.COMPLETED):
        raise api_error(
            400,
            ErrorCode.INVALID_TRANSITION,
            f"Cannot report on a {OrderStatus(order.status).value} order",
        )

    uploads = []
    for upload in files:
        kind = media_kind(upload.content_type)
        if kind is None:
            raise api_error(
                400, ErrorCode.INVALID_FILE,
                f"{upload.filename}: only images and videos are accepted",
            )
        body = await upload.read()
        if len(body) > settings.MAX_UPLOAD_BYTES:
            raise api_error(
                400, ErrorCode.INVALID_FILE,
                f"{upload.filename}: file exceeds {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB",
            )
        uploads.append((upload, kind, body))

    draft_id = uuid.uuid4().hex
    stored = []
    for upload, kind, body in uploads:
        key = build_report_key(order.id, draft_id, file_extension(upload.filename, upload.content_type))
        await run_in_threadpool(
            upload_object, settings.S3_BUCKET_REPORTS, key, body, upload.content_type
        )
        stored.append((key, kind))

    report = await db.scalar(select(CompletionReport).where(CompletionReport.order_id == order.id))
    if report is None:
        report = CompletionReport(order_id=order.id, description=description)
        db.add(report)
        try:
            await db.flush()
        except IntegrityError:
            # A concurrent submission created it first; attach files to that one
            await db.rollback()
            order = await _get_order_or_404(order_id, db)
            report = await db.scalar(
                select(CompletionReport).where(CompletionReport.order_id == order.id)
            )
    elif description:
        report.description = description

    for key, kind in stored:
        db.add(ReportFile(report_id=report.id, file_path=key, file_type=ReportFileType(kind)))

    completed_now = complete and order.status != OrderStatus.COMPLETED
    if completed_now:
        await _complete(db, order)
    await db.commit()
    logger.info(f"Report {report.id} submitted for order {order.id} with {len(stored)} files")

    if completed_now:
        notify_order(order.manager_id, "order_completed", order, files_count=len(stored))

    await db.refresh(report)
    report_files = (await db.execute(
        select(ReportFile).where(ReportFile.report_id == report.id).order_by(ReportFile.created_at)
    )).scalars().all()
    return _report_response(report, report_files)


@router.get("/{order_id}/report", response_model=ReportResponse)
async def get_report(
    order_id: UUID,
    current_user: Profile = Depends(require_participant),
    db: AsyncSession = Depends(get_db),
):
    """Report with each file resolved to a short-lived signed URL."""
    order = await _get_order_or_404(order_id, db)
    _ensure_participant(order, current_user)

    report = await db.scalar(select(CompletionReport).where(CompletionReport.order_id == order.id))
    if not report:
        raise not_found("Report")
    report_files = (await db.execute(
        select(ReportFile).where(ReportFile.report_id == report.id).order_by(ReportFile.created_at)
    )).scalars().all()
    return _report_response(report, report_files)
