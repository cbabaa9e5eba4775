"""
tests/test_availability.py
Slot derivation and the cleaner's unavailability calendar.
"""

import uuid
from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from config.redis_client import RedisCache
from services.order.availability import available_slots, busy_slots, is_slot_available
from shared.models.models import TIME_SLOTS, OrderStatus
from tests.conftest import auth_headers, make_object

DAY = date.today() + timedelta(days=10)


def _order(slot: str, status=OrderStatus.PENDING, on: date = DAY):
    return SimpleNamespace(id=uuid.uuid4(), scheduled_date=on, scheduled_time=slot, status=status)


# ── Pure Functions ─────────────────────────────────────────────────────────────

def test_all_slots_free_without_orders():
    assert available_slots(DAY, set(), []) == list(TIME_SLOTS)


def test_cancelled_orders_do_not_block():
    orders = [_order("10:00"), _order("12:00", OrderStatus.CANCELLED), _order("14:00", on=DAY + timedelta(days=1))]
    busy = busy_slots(orders, DAY)
    assert busy == {"10:00"}
    assert available_slots(DAY, busy, []) == ["12:00", "14:00", "16:00", "18:00"]


def test_excluded_order_frees_its_slot():
    moving = _order("16:00", OrderStatus.CONFIRMED)
    assert busy_slots([moving], DAY, exclude_order_id=moving.id) == set()


def test_unavailable_day_blocks_everything():
    assert available_slots(DAY, set(), [DAY]) == []
    assert not is_slot_available(DAY, "18:00", set(), [DAY])
    assert is_slot_available(DAY, "18:00", {"10:00"}, [DAY + timedelta(days=1)])


# ── Availability Endpoint ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_availability_reflects_bookings(
    client: AsyncClient, manager_user, cleaner_user, property_object
):
    response = await client.post(
        "/orders",
        headers=auth_headers(manager_user),
        json={
            "object_id": str(property_object.id),
            "cleaner_id": str(cleaner_user.id),
            "scheduled_date": DAY.isoformat(),
            "scheduled_time": "12:00",
        },
    )
    assert response.status_code == 201

    response = await client.get(
        f"/cleaners/{cleaner_user.id}/availability",
        headers=auth_headers(manager_user),
        params={"date": DAY.isoformat()},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["unavailable"] is False
    slots = {s["time"]: s["available"] for s in data["slots"]}
    assert slots == {"10:00": True, "12:00": False, "14:00": True, "16:00": True, "18:00": True}


@pytest.mark.asyncio
async def test_availability_of_blocked_day(client: AsyncClient, manager_user, cleaner_user):
    await client.post(
        "/cleaners/me/unavailability",
        headers=auth_headers(cleaner_user),
        json={"date": DAY.isoformat(), "reason": "Doctor"},
    )
    response = await client.get(
        f"/cleaners/{cleaner_user.id}/availability",
        headers=auth_headers(manager_user),
        params={"date": DAY.isoformat()},
    )
    data = response.json()
    assert data["unavailable"] is True
    assert not any(s["available"] for s in data["slots"])


# ── Unavailability Calendar ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_add_unavailability_range_skips_existing(client: AsyncClient, cleaner_user):
    headers = auth_headers(cleaner_user)
    first = await client.post(
        "/cleaners/me/unavailability", headers=headers, json={"date": DAY.isoformat()}
    )
    assert first.status_code == 201
    assert first.json()["added"] == 1

    ranged = await client.post(
        "/cleaners/me/unavailability",
        headers=headers,
        json={"date": DAY.isoformat(), "end_date": (DAY + timedelta(days=2)).isoformat()},
    )
    assert ranged.status_code == 201
    assert ranged.json()["added"] == 2

    listed = await client.get("/cleaners/me/unavailability", headers=headers)
    assert [d["date"] for d in listed.json()] == [
        (DAY + timedelta(days=i)).isoformat() for i in range(3)
    ]


@pytest.mark.asyncio
async def test_delete_unavailability_only_own(client: AsyncClient, cleaner_user, other_cleaner):
    created = await client.post(
        "/cleaners/me/unavailability", headers=auth_headers(cleaner_user), json={"date": DAY.isoformat()}
    )
    record_id = created.json()["items"][0]["id"]

    foreign = await client.delete(
        f"/cleaners/me/unavailability/{record_id}", headers=auth_headers(other_cleaner)
    )
    assert foreign.status_code == 403

    own = await client.delete(
        f"/cleaners/me/unavailability/{record_id}", headers=auth_headers(cleaner_user)
    )
    assert own.status_code == 200


@pytest.mark.asyncio
async def test_manager_cannot_edit_unavailability(client: AsyncClient, manager_user):
    response = await client.post(
        "/cleaners/me/unavailability", headers=auth_headers(manager_user), json={"date": DAY.isoformat()}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_demo_manager_cannot_see_real_cleaner(
    client: AsyncClient, db, demo_manager, cleaner_user
):
    await make_object(db, demo_manager)
    response = await client.get(
        f"/cleaners/{cleaner_user.id}/availability",
        headers=auth_headers(demo_manager),
        params={"date": DAY.isoformat()},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_unavailability_range_longer_than_a_year_rejected(client: AsyncClient, cleaner_user):
    response = await client.post(
        "/cleaners/me/unavailability",
        headers=auth_headers(cleaner_user),
        json={"date": DAY.isoformat(), "end_date": (DAY + timedelta(days=400)).isoformat()},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"

    listed = await client.get("/cleaners/me/unavailability", headers=auth_headers(cleaner_user))
    assert listed.json() == []


# ── Slot Lock ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_release_slot_by_holder(redis):
    cache = RedisCache(redis)
    assert await cache.lock_slot("cleaner-1", "2025-03-10", "14:00", "holder-a")
    assert not await cache.lock_slot("cleaner-1", "2025-03-10", "14:00", "holder-b")

    assert await cache.release_slot("cleaner-1", "2025-03-10", "14:00", "holder-a")
    assert await redis.get("slot_lock:cleaner-1:2025-03-10:14:00") is None


@pytest.mark.asyncio
async def test_expired_holder_cannot_release_new_lock(redis):
    cache = RedisCache(redis)
    key = "slot_lock:cleaner-1:2025-03-10:14:00"
    assert await cache.lock_slot("cleaner-1", "2025-03-10", "14:00", "holder-a")
    await redis.delete(key)  # holder-a's TTL lapses
    assert await cache.lock_slot("cleaner-1", "2025-03-10", "14:00", "holder-b")

    assert await cache.release_slot("cleaner-1", "2025-03-10", "14:00", "holder-a") is False
    assert await redis.get(key) == "holder-b"
