"""
tests/test_chat.py
Manager ↔ cleaner dialogs: opening, messaging, attachments, unread counts.
"""

import asyncio
import json

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import dialog_channel
from services.chat.router import stop_relay
from shared.models.models import UserRole
from tests.conftest import auth_headers, make_user


async def open_dialog(client, user, counterpart) -> dict:
    response = await client.post(
        "/chat/dialogs", headers=auth_headers(user), json={"counterpart_id": str(counterpart.id)}
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_open_dialog_is_idempotent(client: AsyncClient, manager_user, cleaner_user):
    first = await open_dialog(client, manager_user, cleaner_user)
    assert first["manager_id"] == str(manager_user.id)
    assert first["cleaner_id"] == str(cleaner_user.id)
    assert first["counterpart_name"] == "Ana Cleaner"

    # Same pair from the other side resolves to the same dialog
    second = await open_dialog(client, cleaner_user, manager_user)
    assert second["id"] == first["id"]
    assert second["counterpart_name"] == "Nino Manager"


@pytest.mark.asyncio
async def test_cannot_chat_with_same_side(client: AsyncClient, cleaner_user, other_cleaner):
    response = await client.post(
        "/chat/dialogs", headers=auth_headers(cleaner_user), json={"counterpart_id": str(other_cleaner.id)}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_demo_fence_applies_to_chat(client: AsyncClient, demo_manager, cleaner_user):
    response = await client.post(
        "/chat/dialogs", headers=auth_headers(demo_manager), json={"counterpart_id": str(cleaner_user.id)}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_send_message_publishes_and_notifies(
    client: AsyncClient, redis, manager_user, cleaner_user, telegram_mock
):
    dialog = await open_dialog(client, manager_user, cleaner_user)
    pubsub = redis.pubsub()
    await pubsub.subscribe(dialog_channel(dialog["id"]))
    await pubsub.get_message(timeout=1)  # subscribe confirmation

    response = await client.post(
        f"/chat/dialogs/{dialog['id']}/messages",
        headers=auth_headers(manager_user),
        data={"text": "  Key is under the mat  "},
    )
    assert response.status_code == 201
    message = response.json()
    assert message["text"] == "Key is under the mat"
    assert message["sender_role"] == "manager"

    event = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
    assert event is not None
    assert json.loads(event["data"])["message"]["id"] == message["id"]
    await pubsub.aclose()

    user_id, event_type, payload = telegram_mock.call_args.args
    assert user_id == str(cleaner_user.id)
    assert event_type == "new_message"
    assert payload["sender_name"] == "Nino Manager"


@pytest.mark.asyncio
async def test_attachments_any_type(client: AsyncClient, manager_user, cleaner_user, storage_mock):
    dialog = await open_dialog(client, manager_user, cleaner_user)
    response = await client.post(
        f"/chat/dialogs/{dialog['id']}/messages",
        headers=auth_headers(cleaner_user),
        files=[
            ("files", ("kitchen.jpg", b"jpeg", "image/jpeg")),
            ("files", ("invoice.pdf", b"%PDF", "application/pdf")),
        ],
    )
    assert response.status_code == 201
    files = response.json()["files"]
    assert [f["file_type"] for f in files] == ["image", "file"]
    assert all(f["url"] for f in files)
    assert len(storage_mock) == 2


@pytest.mark.asyncio
async def test_empty_message_rejected(client: AsyncClient, manager_user, cleaner_user):
    dialog = await open_dialog(client, manager_user, cleaner_user)
    response = await client.post(
        f"/chat/dialogs/{dialog['id']}/messages", headers=auth_headers(manager_user), data={"text": "   "}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_unread_count_and_mark_read(client: AsyncClient, manager_user, cleaner_user):
    dialog = await open_dialog(client, manager_user, cleaner_user)
    for text in ("Hello", "Are you free on Friday?"):
        await client.post(
            f"/chat/dialogs/{dialog['id']}/messages", headers=auth_headers(manager_user), data={"text": text}
        )

    listed = await client.get("/chat/dialogs", headers=auth_headers(cleaner_user))
    assert listed.json()[0]["unread_count"] == 2
    assert listed.json()[0]["last_message_at"] is not None

    # Own messages never count as unread
    sender_view = await client.get("/chat/dialogs", headers=auth_headers(manager_user))
    assert sender_view.json()[0]["unread_count"] == 0

    await client.post(f"/chat/dialogs/{dialog['id']}/read", headers=auth_headers(cleaner_user))
    listed = await client.get("/chat/dialogs", headers=auth_headers(cleaner_user))
    assert listed.json()[0]["unread_count"] == 0

    messages = await client.get(f"/chat/dialogs/{dialog['id']}/messages", headers=auth_headers(cleaner_user))
    assert {m["text"] for m in messages.json()} == {"Hello", "Are you free on Friday?"}


@pytest.mark.asyncio
async def test_outsider_cannot_read_dialog(
    client: AsyncClient, db: AsyncSession, manager_user, cleaner_user
):
    dialog = await open_dialog(client, manager_user, cleaner_user)
    outsider = await make_user(db, UserRole.MANAGER, name="Outsider")
    response = await client.get(f"/chat/dialogs/{dialog['id']}/messages", headers=auth_headers(outsider))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_open_dialog(client: AsyncClient, admin_user, cleaner_user):
    response = await client.post(
        "/chat/dialogs", headers=auth_headers(admin_user), json={"counterpart_id": str(cleaner_user.id)}
    )
    assert response.status_code == 403


# ── Realtime Relay ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stop_relay_cancels_running_task():
    relay = asyncio.create_task(asyncio.sleep(3600))
    await asyncio.sleep(0)
    await stop_relay(relay)
    assert relay.cancelled()


@pytest.mark.asyncio
async def test_stop_relay_collects_send_failure():
    async def send_to_closed_socket():
        raise RuntimeError('Cannot call "send" once a close message has been sent.')

    relay = asyncio.create_task(send_to_closed_socket())
    await asyncio.sleep(0)
    await stop_relay(relay)
    assert relay.done()
    assert isinstance(relay.exception(), RuntimeError)
