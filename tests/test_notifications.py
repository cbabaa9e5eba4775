"""
tests/test_notifications.py
Telegram notifications: payload, gating, webhook delivery and the
fire-and-forget enqueue used by order and chat flows.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification import telegram
from services.notification.telegram import build_payload, deliver, enqueue_telegram, is_enabled
from tests.conftest import auth_headers


def _profile(enabled=True, chat_id="42", name="Ana"):
    return SimpleNamespace(
        telegram_enabled=enabled, telegram_chat_id=chat_id, name=name, email="ana@example.com"
    )


# ── Payload & Gating ───────────────────────────────────────────────────────────

def test_payload_shape():
    now = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
    payload = build_payload(_profile(), "new_order", {"order_id": "abc"}, now=now)
    assert payload == {
        "telegram_chat_id": "42",
        "event_type": "new_order",
        "user_name": "Ana",
        "data": {"order_id": "abc"},
        "timestamp": "2025-03-01T09:30:00+00:00",
    }


def test_user_name_falls_back_to_email():
    assert build_payload(_profile(name=None), "new_message", {})["user_name"] == "ana@example.com"


def test_delivery_needs_flag_and_chat():
    assert is_enabled(_profile())
    assert not is_enabled(_profile(enabled=False))
    assert not is_enabled(_profile(chat_id=None))


# ── Webhook Delivery ───────────────────────────────────────────────────────────

def test_deliver_posts_payload(monkeypatch):
    sent = []
    monkeypatch.setattr(telegram, "_post", lambda url, payload: sent.append((url, payload)))
    assert deliver({"event_type": "new_order"}) is True
    assert sent == [("https://hooks.example.test/telegram", {"event_type": "new_order"})]


def test_deliver_reports_http_failure(monkeypatch):
    def failing(url, payload):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(telegram, "_post", failing)
    assert deliver({"event_type": "new_order"}) is False


def test_enqueue_never_raises(telegram_mock):
    telegram_mock.side_effect = ConnectionError("broker down")
    enqueue_telegram("some-user", "new_order", {"order_id": "1"})
    telegram_mock.assert_called_once_with("some-user", "new_order", {"order_id": "1"})


def test_enqueue_skips_missing_user(telegram_mock):
    enqueue_telegram(None, "new_order")
    telegram_mock.assert_not_called()


# ── Endpoint ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_endpoint_skips_disabled_user(client: AsyncClient, manager_user, cleaner_user):
    response = await client.post(
        "/notifications/telegram",
        headers=auth_headers(manager_user),
        json={"user_id": str(cleaner_user.id), "event_type": "new_order", "data": {}},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "sent": False, "reason": "Telegram not enabled"}


@pytest.mark.asyncio
async def test_endpoint_delivers_to_linked_chat(
    client: AsyncClient, db: AsyncSession, monkeypatch, manager_user, cleaner_user
):
    cleaner_user.telegram_chat_id = "777"
    cleaner_user.telegram_enabled = True
    await db.commit()

    payloads = []
    monkeypatch.setattr(
        "services.notification.router.deliver", lambda payload: payloads.append(payload) or True
    )
    response = await client.post(
        "/notifications/telegram",
        headers=auth_headers(manager_user),
        json={"user_id": str(cleaner_user.id), "event_type": "order_completed", "data": {"order_id": "x"}},
    )
    assert response.status_code == 200
    assert response.json()["sent"] is True
    assert payloads[0]["telegram_chat_id"] == "777"
    assert payloads[0]["data"] == {"order_id": "x"}


@pytest.mark.asyncio
async def test_endpoint_webhook_failure(
    client: AsyncClient, db: AsyncSession, monkeypatch, manager_user, cleaner_user
):
    cleaner_user.telegram_chat_id = "777"
    cleaner_user.telegram_enabled = True
    await db.commit()

    monkeypatch.setattr("services.notification.router.deliver", lambda payload: False)
    response = await client.post(
        "/notifications/telegram",
        headers=auth_headers(manager_user),
        json={"user_id": str(cleaner_user.id), "event_type": "new_order"},
    )
    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "webhook_failed"


@pytest.mark.asyncio
async def test_endpoint_rejects_unknown_event(client: AsyncClient, manager_user, cleaner_user):
    response = await client.post(
        "/notifications/telegram",
        headers=auth_headers(manager_user),
        json={"user_id": str(cleaner_user.id), "event_type": "birthday"},
    )
    assert response.status_code == 422
