"""
services/order/events.py
Telegram notifications for order lifecycle events.
"""

from services.notification.telegram import enqueue_telegram
from shared.models.models import OrderStatus


def order_event_data(order, **extra) -> dict:
    data = {
        "order_id": str(order.id),
        "scheduled_date": order.scheduled_date.isoformat(),
        "scheduled_time": order.scheduled_time,
        "status": OrderStatus(order.status).value,
    }
    data.update({k: v for k, v in extra.items() if v is not None})
    return data


def notify_order(user_id, event_type: str, order, **extra) -> None:
    """Queue `event_type` for `user_id`. No-op for unassigned orders."""
    if user_id is None:
        return
    enqueue_telegram(user_id, event_type, order_event_data(order, **extra))
