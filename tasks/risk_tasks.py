"""
tasks/risk_tasks.py
Periodic risk scan. Recomputes every order's risk label from scratch and
caches the result for the admin board.
"""

import json
import logging

import redis

from config.settings import settings
from services.risk.detector import RISK_CACHE_KEY, detect_risks
from services.risk.snapshot import load_snapshots_sync
from tasks.celery_app import celery_app
from tasks.notification_tasks import DatabaseTask

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, base=DatabaseTask)
def scan_order_risks(self):
    """Beat task: runs every RISK_SCAN_INTERVAL_SECONDS."""
    db = self.get_session()
    try:
        report = detect_risks(load_snapshots_sync(db))
    except Exception:
        logger.exception("Risk scan failed")
        raise
    finally:
        db.close()

    counters = report.counters.to_dict()
    logger.info(f"Risk scan: {counters}")
    if report.counters.total:
        logger.warning(f"{report.counters.total} orders flagged")

    client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        client.setex(
            RISK_CACHE_KEY,
            settings.RISK_SCAN_INTERVAL_SECONDS * 2,
            json.dumps(report.to_dict(), default=str),
        )
    finally:
        client.close()
    return counters
