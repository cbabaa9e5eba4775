"""
services/notification/telegram.py
Telegram delivery through an external workflow webhook.

The webhook receives {telegram_chat_id, event_type, user_name, data,
timestamp} and does the actual bot call. Delivery is gated per user by
telegram_enabled + a linked chat id.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from pybreaker import CircuitBreakerError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import settings
from shared.utils.resilience import circuit_breaker_manager

logger = logging.getLogger(__name__)

EVENT_TYPES = ("new_order", "order_status_changed", "new_message", "order_completed")
NOT_ENABLED_REASON = "Telegram not enabled"


def is_enabled(profile) -> bool:
    return bool(profile.telegram_enabled and profile.telegram_chat_id)


def build_payload(profile, event_type: str, data: dict, now: Optional[datetime] = None) -> dict:
    return {
        "telegram_chat_id": profile.telegram_chat_id,
        "event_type": event_type,
        "user_name": profile.name or profile.email,
        "data": data or {},
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, max=4),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
def _post(url: str, payload: dict) -> None:
    response = httpx.post(url, json=payload, timeout=settings.TELEGRAM_WEBHOOK_TIMEOUT)
    response.raise_for_status()


def deliver(payload: dict) -> bool:
    """POST the payload to the webhook. Returns False on any delivery failure."""
    if not settings.TELEGRAM_WEBHOOK_URL:
        logger.error("Telegram webhook URL is not configured")
        return False
    breaker = circuit_breaker_manager.get_breaker("telegram_webhook")
    try:
        breaker.call(_post, settings.TELEGRAM_WEBHOOK_URL, payload)
        return True
    except CircuitBreakerError:
        logger.warning("Telegram webhook circuit open, skipping delivery")
        return False
    except httpx.HTTPError as e:
        logger.warning(f"Telegram webhook call failed: {e}")
        return False


def enqueue_telegram(user_id, event_type: str, data: Optional[dict] = None) -> None:
    """
    Queue a Telegram notification for a user. Broker problems are logged;
    they never fail the request that triggered the notification.
    """
    if user_id is None:
        return
    try:
        from tasks.notification_tasks import send_telegram_notification
        send_telegram_notification.delay(str(user_id), event_type, data or {})
    except Exception as e:
        logger.warning(f"Could not enqueue telegram {event_type} for {user_id}: {e}")
