"""
services/risk/snapshot.py
Builds the joined order snapshot the risk detector runs over.
The same statements serve the async API session and the sync Celery session.
"""

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from services.risk.detector import OrderSnapshot, object_label
from shared.models.models import CompletionReport, Order, Profile, PropertyObject, ReportFile


def snapshot_statement():
    manager = aliased(Profile)
    cleaner = aliased(Profile)
    files_count = (
        select(func.count(ReportFile.id))
        .where(ReportFile.report_id == CompletionReport.id)
        .correlate(CompletionReport)
        .scalar_subquery()
    )
    return (
        select(
            Order,
            manager.name,
            manager.email,
            cleaner.name,
            cleaner.email,
            PropertyObject.complex_name,
            PropertyObject.apartment_number,
            CompletionReport.id,
            files_count,
        )
        .join(manager, manager.id == Order.manager_id, isouter=True)
        .join(cleaner, cleaner.id == Order.cleaner_id, isouter=True)
        .join(PropertyObject, PropertyObject.id == Order.object_id, isouter=True)
        .join(CompletionReport, CompletionReport.order_id == Order.id, isouter=True)
        .order_by(Order.scheduled_date.desc(), Order.scheduled_time.desc())
    )


def rows_to_snapshots(rows) -> list[OrderSnapshot]:
    snapshots = []
    for (order, manager_name, manager_email, cleaner_name, cleaner_email,
         complex_name, apartment_number, report_id, files) in rows:
        snapshots.append(OrderSnapshot(
            order_id=order.id,
            manager_id=order.manager_id,
            cleaner_id=order.cleaner_id,
            object_id=order.object_id,
            scheduled_date=order.scheduled_date,
            scheduled_time=order.scheduled_time,
            status=order.status,
            has_report=report_id is not None,
            report_files_count=(files or 0) if report_id is not None else 0,
            manager_name=manager_name,
            manager_email=manager_email,
            cleaner_name=cleaner_name,
            cleaner_email=cleaner_email,
            object_name=object_label(complex_name, apartment_number),
        ))
    return snapshots


async def load_snapshots(db) -> list[OrderSnapshot]:
    result = await db.execute(snapshot_statement())
    return rows_to_snapshots(result.all())


def load_snapshots_sync(db) -> list[OrderSnapshot]:
    return rows_to_snapshots(db.execute(snapshot_statement()).all())
