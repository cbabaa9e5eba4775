"""
tasks/notification_tasks.py
Celery tasks for Telegram notification delivery.

Usage from a route (via the enqueue helper, which never raises):
    from services.notification.telegram import enqueue_telegram
    enqueue_telegram(order.cleaner_id, "new_order", {"order_id": str(order.id)})
"""

import logging
import uuid

from celery import Task
from sqlalchemy import select

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Base Task with DB session ──────────────────────────────────────────────────

def sync_database_url() -> str:
    """Convert the async URL (postgresql+asyncpg://) to its sync driver."""
    return (
        settings.DATABASE_URL
        .replace("+asyncpg", "+psycopg2")
        .replace("+aiosqlite", "")
    )


class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _sessionmaker = None

    def get_session(self):
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._sessionmaker is None:
            from sqlalchemy import create_engine
            from sqlalchemy.orm import sessionmaker

            engine = create_engine(sync_database_url(), pool_pre_ping=True)
            DatabaseTask._sessionmaker = sessionmaker(bind=engine)
        return DatabaseTask._sessionmaker()


# ── Telegram ───────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def send_telegram_notification(self, user_id: str, event_type: str, data: dict = None):
    """
    Deliver one event to a user's Telegram. Skips users without a linked,
    enabled chat. Retries with backoff when the webhook fails.
    """
    from services.notification.telegram import build_payload, deliver, is_enabled
    from shared.models.models import Profile

    db = self.get_session()
    try:
        profile = db.execute(
            select(Profile).where(Profile.id == uuid.UUID(user_id))
        ).scalar_one_or_none()
        if not profile:
            logger.error(f"send_telegram_notification: profile {user_id} not found")
            return "missing"
        if not is_enabled(profile):
            return "disabled"
        payload = build_payload(profile, event_type, data or {})
    finally:
        db.close()

    if not deliver(payload):
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    return "sent"
