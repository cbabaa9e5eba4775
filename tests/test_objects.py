"""
tests/test_objects.py
Managers' objects (apartments), the archive rule and residential complexes.
"""

from datetime import date, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.object.rules import count_future_orders
from shared.models.models import AdminAuditLog, Order, OrderStatus, ResidentialComplex
from tests.conftest import auth_headers, make_object


async def _order(db, obj, cleaner, on: date, status=OrderStatus.PENDING, slot="10:00") -> Order:
    order = Order(
        manager_id=obj.user_id,
        cleaner_id=cleaner.id,
        object_id=obj.id,
        scheduled_date=on,
        scheduled_time=slot,
        status=status,
    )
    db.add(order)
    await db.commit()
    return order


# ── Objects ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_and_list_objects(client: AsyncClient, manager_user):
    response = await client.post(
        "/objects",
        headers=auth_headers(manager_user),
        json={"complex_name": " Orbi City ", "apartment_number": "1204", "apartment_type": "2+1"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["complex_name"] == "Orbi City"
    assert data["apartment_type"] == "2+1"
    assert data["user_id"] == str(manager_user.id)

    listed = await client.get("/objects", headers=auth_headers(manager_user))
    assert [o["id"] for o in listed.json()] == [data["id"]]


@pytest.mark.asyncio
async def test_cleaner_cannot_create_object(client: AsyncClient, cleaner_user):
    response = await client.post(
        "/objects",
        headers=auth_headers(cleaner_user),
        json={"complex_name": "X", "apartment_number": "1", "apartment_type": "studio"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_creates_object_for_manager(client: AsyncClient, admin_user, manager_user):
    missing_owner = await client.post(
        "/objects",
        headers=auth_headers(admin_user),
        json={"complex_name": "X", "apartment_number": "1", "apartment_type": "studio"},
    )
    assert missing_owner.status_code == 400

    response = await client.post(
        "/objects",
        headers=auth_headers(admin_user),
        json={
            "complex_name": "X",
            "apartment_number": "1",
            "apartment_type": "studio",
            "user_id": str(manager_user.id),
        },
    )
    assert response.status_code == 201
    assert response.json()["user_id"] == str(manager_user.id)


@pytest.mark.asyncio
async def test_update_foreign_object_forbidden(client: AsyncClient, db, manager_user, demo_manager):
    obj = await make_object(db, demo_manager)
    response = await client.patch(
        f"/objects/{obj.id}", headers=auth_headers(manager_user), json={"apartment_number": "99"}
    )
    assert response.status_code == 403


# ── Archive Rule ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_archive_blocked_by_future_orders(
    client: AsyncClient, db: AsyncSession, manager_user, cleaner_user, property_object
):
    await _order(db, property_object, cleaner_user, date.today() + timedelta(days=2))
    await _order(db, property_object, cleaner_user, date.today() + timedelta(days=3), OrderStatus.CONFIRMED)

    response = await client.post(
        f"/objects/{property_object.id}/archive", headers=auth_headers(manager_user)
    )
    assert response.status_code == 409
    body = response.json()["detail"]
    assert body["code"] == "object_has_future_orders"
    assert "2 future orders" in body["message"]


@pytest.mark.asyncio
async def test_archive_ignores_past_and_closed_orders(
    client: AsyncClient, db: AsyncSession, manager_user, cleaner_user, property_object
):
    await _order(db, property_object, cleaner_user, date.today() - timedelta(days=2))
    await _order(db, property_object, cleaner_user, date.today() + timedelta(days=2), OrderStatus.CANCELLED)
    await _order(db, property_object, cleaner_user, date.today() + timedelta(days=2),
                 OrderStatus.COMPLETED, slot="12:00")

    assert await count_future_orders(db, property_object.id, today=date.today()) == 0

    response = await client.post(
        f"/objects/{property_object.id}/archive", headers=auth_headers(manager_user)
    )
    assert response.status_code == 200
    assert response.json()["is_archived"] is True

    hidden = await client.get("/objects", headers=auth_headers(manager_user))
    assert hidden.json() == []
    shown = await client.get(
        "/objects", headers=auth_headers(manager_user), params={"include_archived": True}
    )
    assert len(shown.json()) == 1

    restored = await client.post(
        f"/objects/{property_object.id}/unarchive", headers=auth_headers(manager_user)
    )
    assert restored.json()["is_archived"] is False


# ── Residential Complexes ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_manages_complexes_with_audit(
    client: AsyncClient, db: AsyncSession, admin_user, manager_user
):
    headers = auth_headers(admin_user)
    created = await client.post("/complexes", headers=headers, json={"name": "Black Sea Tower", "city": "Batumi"})
    assert created.status_code == 201
    complex_id = created.json()["id"]

    updated = await client.patch(f"/complexes/{complex_id}", headers=headers, json={"city": "Tbilisi"})
    assert updated.json()["city"] == "Tbilisi"

    listed = await client.get("/complexes", headers=auth_headers(manager_user))
    assert listed.json()[0]["objects_count"] == 0

    deleted = await client.delete(f"/complexes/{complex_id}", headers=headers)
    assert deleted.status_code == 200

    actions = (await db.execute(
        select(AdminAuditLog.action_type).order_by(AdminAuditLog.created_at)
    )).scalars().all()
    assert set(actions) == {"create_complex", "update_complex", "delete_complex"}


@pytest.mark.asyncio
async def test_complex_with_objects_cannot_be_deleted(
    client: AsyncClient, db: AsyncSession, admin_user, manager_user
):
    rc = ResidentialComplex(name="Orbi Beach")
    db.add(rc)
    await db.commit()
    await make_object(db, manager_user, residential_complex_id=rc.id)

    listed = await client.get("/complexes", headers=auth_headers(manager_user))
    assert listed.json()[0]["objects_count"] == 1

    response = await client.delete(f"/complexes/{rc.id}", headers=auth_headers(admin_user))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "complex_has_objects"


@pytest.mark.asyncio
async def test_manager_cannot_create_complex(client: AsyncClient, manager_user):
    response = await client.post("/complexes", headers=auth_headers(manager_user), json={"name": "Mine"})
    assert response.status_code == 403
