"""
services/risk/router.py
Admin risk board: problematic orders recomputed on demand, the last scheduled
scan from Redis, and the per-order accountability trail.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.risk.detector import RISK_CACHE_KEY, detect_risks
from services.risk.snapshot import load_snapshots
from shared.middleware.auth import require_admin
from shared.models.models import AdminAuditLog, CompletionReport, Order, Profile, ReportFile
from shared.schemas.schemas import (
    AccountabilityTrailResponse,
    AssignmentEntry,
    ReportHistoryEntry,
    RiskListResponse,
    ScheduleEntry,
)
from shared.utils.errors import not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/risks", tags=["Admin", "Risks"])


@router.get("", response_model=RiskListResponse)
async def list_risks(
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every order classified from scratch, highest-priority risk per order."""
    report = detect_risks(await load_snapshots(db))
    return RiskListResponse(**report.to_dict())


@router.get("/latest", response_model=RiskListResponse)
async def latest_risks(
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Result of the last scheduled scan; computed now when no scan is cached."""
    cached = await RedisCache(redis).get(RISK_CACHE_KEY)
    if cached:
        return RiskListResponse(**cached)
    logger.info("No cached risk scan, computing on demand")
    report = detect_risks(await load_snapshots(db))
    return RiskListResponse(**report.to_dict())


@router.get("/{order_id}/trail", response_model=AccountabilityTrailResponse)
async def order_trail(
    order_id: UUID,
    current_user: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Who assigned, moved and reported on an order, rebuilt from audit entries.
    Assignment actions mention "assign" or "cleaner"; schedule actions mention
    "schedule", "date" or "time".
    """
    exists = await db.scalar(select(Order.id).where(Order.id == order_id))
    if not exists:
        raise not_found("Order")

    logs = (await db.execute(
        select(AdminAuditLog)
        .where(AdminAuditLog.entity_type == "order", AdminAuditLog.entity_id == str(order_id))
        .order_by(AdminAuditLog.created_at)
    )).scalars().all()

    assignments, schedule = [], []
    for log in logs:
        action = log.action_type
        meta = log.metadata_ or {}
        if "assign" in action or "cleaner" in action:
            assignments.append(AssignmentEntry(
                id=log.id,
                cleaner_id=meta.get("cleaner_id"),
                assigned_at=log.created_at,
                assigned_by=log.admin_id,
                action_type="unassigned" if "unassign" in action else "assigned",
            ))
        if "schedule" in action or "date" in action or "time" in action:
            schedule.append(ScheduleEntry(
                id=log.id,
                old_date=meta.get("old_date"),
                old_time=meta.get("old_time"),
                new_date=meta.get("new_date") or "",
                new_time=meta.get("new_time") or "",
                changed_at=log.created_at,
                changed_by=log.admin_id,
                reason=meta.get("reason"),
            ))

    report_history = None
    report = await db.scalar(select(CompletionReport).where(CompletionReport.order_id == order_id))
    if report:
        files_count = await db.scalar(
            select(func.count(ReportFile.id)).where(ReportFile.report_id == report.id)
        )
        report_history = ReportHistoryEntry(
            report_id=report.id,
            submitted_at=report.created_at,
            description=report.description,
            files_count=files_count or 0,
        )

    return AccountabilityTrailResponse(
        order_id=order_id,
        assignment_history=assignments,
        schedule_history=schedule,
        report_history=report_history,
    )
