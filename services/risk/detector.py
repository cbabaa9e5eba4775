"""
services/risk/detector.py
Operational risk classification for orders.

Pure and restartable: takes a snapshot of orders joined with profile, object
and report data and labels every order with at most one risk. Checks run in
a fixed priority order and the first match wins:

    no_cleaner_assigned → unconfirmed_order → no_report
        → report_no_photos → delayed_order
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from shared.models.models import OrderStatus

NO_CLEANER_ASSIGNED = "no_cleaner_assigned"
UNCONFIRMED_ORDER = "unconfirmed_order"
NO_REPORT = "no_report"
REPORT_NO_PHOTOS = "report_no_photos"
DELAYED_ORDER = "delayed_order"

RISK_TYPES = (NO_CLEANER_ASSIGNED, UNCONFIRMED_ORDER, NO_REPORT, REPORT_NO_PHOTOS, DELAYED_ORDER)

UNKNOWN_OBJECT = "Unknown object"

# Redis key holding the last scheduled scan
RISK_CACHE_KEY = "risks:latest"


@dataclass
class OrderSnapshot:
    order_id: uuid.UUID
    manager_id: uuid.UUID
    cleaner_id: Optional[uuid.UUID]
    object_id: uuid.UUID
    scheduled_date: date
    scheduled_time: str
    status: OrderStatus
    has_report: bool = False
    report_files_count: int = 0
    manager_name: Optional[str] = None
    manager_email: Optional[str] = None
    cleaner_name: Optional[str] = None
    cleaner_email: Optional[str] = None
    object_name: str = UNKNOWN_OBJECT

    @property
    def scheduled_at(self) -> datetime:
        """Naive wall-clock time in the business time zone."""
        hour, minute = (int(p) for p in self.scheduled_time.split(":"))
        return datetime.combine(self.scheduled_date, datetime.min.time()).replace(
            hour=hour, minute=minute
        )


@dataclass
class RiskItem:
    order_id: uuid.UUID
    manager_id: uuid.UUID
    cleaner_id: Optional[uuid.UUID]
    object_id: uuid.UUID
    scheduled_date: date
    scheduled_time: str
    status: OrderStatus
    manager_name: Optional[str]
    manager_email: Optional[str]
    cleaner_name: Optional[str]
    cleaner_email: Optional[str]
    object_name: str
    risk_type: str
    risk_description: str
    risk_severity: str
    hours_overdue: Optional[int]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RiskCounters:
    total: int = 0
    no_cleaner: int = 0
    unconfirmed: int = 0
    no_report: int = 0
    report_no_photos: int = 0
    delayed: int = 0

    _FIELD_BY_TYPE = {
        NO_CLEANER_ASSIGNED: "no_cleaner",
        UNCONFIRMED_ORDER: "unconfirmed",
        NO_REPORT: "no_report",
        REPORT_NO_PHOTOS: "report_no_photos",
        DELAYED_ORDER: "delayed",
    }

    def add(self, risk_type: str) -> None:
        self.total += 1
        name = self._FIELD_BY_TYPE[risk_type]
        setattr(self, name, getattr(self, name) + 1)

    def to_dict(self) -> dict:
        return asdict(self)


def business_now(now: Optional[datetime] = None) -> datetime:
    """Current (or given) time as naive wall-clock time in the business zone."""
    tz = ZoneInfo(settings.BUSINESS_TIMEZONE)
    if now is None:
        return datetime.now(tz).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(tz).replace(tzinfo=None)
    return now


def hours_between(start: datetime, end: datetime) -> int:
    """Whole hours from start to end, truncated toward zero."""
    return int((end - start).total_seconds() / 3600)


def object_label(complex_name: Optional[str], apartment_number: Optional[str]) -> str:
    if complex_name is None:
        return UNKNOWN_OBJECT
    return f"{complex_name}, apt. {apartment_number}"


def _item(snap: OrderSnapshot, risk_type: str, description: str,
          severity: str, hours: Optional[int]) -> RiskItem:
    return RiskItem(
        order_id=snap.order_id,
        manager_id=snap.manager_id,
        cleaner_id=snap.cleaner_id,
        object_id=snap.object_id,
        scheduled_date=snap.scheduled_date,
        scheduled_time=snap.scheduled_time,
        status=OrderStatus(snap.status),
        manager_name=snap.manager_name,
        manager_email=snap.manager_email,
        cleaner_name=snap.cleaner_name if snap.cleaner_id else None,
        cleaner_email=snap.cleaner_email if snap.cleaner_id else None,
        object_name=snap.object_name,
        risk_type=risk_type,
        risk_description=description,
        risk_severity=severity,
        hours_overdue=hours,
    )


def classify_order(snap: OrderSnapshot, now: datetime) -> Optional[RiskItem]:
    """Label one order with its highest-priority risk, or None."""
    now = business_now(now)
    scheduled_at = snap.scheduled_at
    hours = hours_between(scheduled_at, now)
    status = OrderStatus(snap.status)

    if snap.cleaner_id is None:
        return _item(snap, NO_CLEANER_ASSIGNED, "Order created without an assigned cleaner",
                     "high", None)

    if status == OrderStatus.PENDING and hours > settings.UNCONFIRMED_ORDER_HOURS:
        return _item(snap, UNCONFIRMED_ORDER, f"Order awaiting confirmation for {hours} hours",
                     "high", hours)

    if status == OrderStatus.COMPLETED and not snap.has_report:
        return _item(snap, NO_REPORT, "Order completed without a completion report",
                     "medium", None)

    if snap.has_report and snap.report_files_count == 0:
        return _item(snap, REPORT_NO_PHOTOS, "Completion report has no photos or videos",
                     "medium", None)

    if status == OrderStatus.CONFIRMED and now > scheduled_at + timedelta(
        hours=settings.DELAYED_ORDER_HOURS
    ):
        return _item(snap, DELAYED_ORDER, f"Order overdue by {hours} hours", "high", hours)

    return None


@dataclass
class RiskReport:
    generated_at: datetime
    items: list[RiskItem] = field(default_factory=list)
    counters: RiskCounters = field(default_factory=RiskCounters)

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at,
            "counters": self.counters.to_dict(),
            "items": [i.to_dict() for i in self.items],
        }


def detect_risks(snapshots: Iterable[OrderSnapshot], now: Optional[datetime] = None) -> RiskReport:
    """Classify every order from scratch."""
    now = business_now(now)
    report = RiskReport(generated_at=now)
    for snap in snapshots:
        item = classify_order(snap, now)
        if item is not None:
            report.items.append(item)
            report.counters.add(item.risk_type)
    return report
