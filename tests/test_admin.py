"""
tests/test_admin.py
Tests for admin-only endpoints: user moderation, registration inbox,
object and order oversight, dashboard, calendar and audit log.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    AdminAuditLog,
    AdminNotification,
    CleanerUnavailability,
    NotificationStatus,
    Order,
    OrderStatus,
    ProfileStatus,
    UserRole,
)
from tests.conftest import auth_headers, make_object, make_user

DAY = date.today() + timedelta(days=4)


async def _audit_actions(db: AsyncSession) -> list:
    return (await db.execute(
        select(AdminAuditLog.action_type).order_by(AdminAuditLog.created_at)
    )).scalars().all()


async def _order(db, obj, cleaner, status=OrderStatus.PENDING, on=DAY, slot="10:00") -> Order:
    order = Order(
        manager_id=obj.user_id,
        cleaner_id=cleaner.id if cleaner else None,
        object_id=obj.id,
        scheduled_date=on,
        scheduled_time=slot,
        status=status,
    )
    db.add(order)
    await db.commit()
    return order


# ── Access Control ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_manager_cannot_access_admin_endpoints(client: AsyncClient, manager_user):
    response = await client.get("/admin/users", headers=auth_headers(manager_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cleaner_cannot_access_admin_endpoints(client: AsyncClient, cleaner_user):
    response = await client.get("/admin/dashboard", headers=auth_headers(cleaner_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_cannot_access_admin(client: AsyncClient):
    response = await client.get("/admin/audit-logs")
    assert response.status_code == 401


# ── User Moderation ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_users_filters(
    client: AsyncClient, admin_user, manager_user, cleaner_user, pending_cleaner, demo_manager
):
    headers = auth_headers(admin_user)

    everyone = await client.get("/admin/users", headers=headers)
    assert everyone.json()["total"] == 5

    pending = await client.get("/admin/users", headers=headers, params={"status": "pending"})
    assert [u["id"] for u in pending.json()["items"]] == [str(pending_cleaner.id)]

    demo = await client.get("/admin/users", headers=headers, params={"user_type": "demo"})
    assert [u["id"] for u in demo.json()["items"]] == [str(demo_manager.id)]

    cleaners = await client.get("/admin/users", headers=headers, params={"role": "cleaner"})
    assert cleaners.json()["total"] == 2


@pytest.mark.asyncio
async def test_approve_user_is_audited(
    client: AsyncClient, db: AsyncSession, admin_user, pending_cleaner
):
    response = await client.patch(
        f"/admin/users/{pending_cleaner.id}/status",
        headers=auth_headers(admin_user),
        json={"status": "approved"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.action_type == "update_user_status"
    assert log.entity_type == "user"
    assert log.entity_id == str(pending_cleaner.id)
    assert log.admin_id == admin_user.id
    assert log.metadata_ == {"old_status": "pending", "new_status": "approved"}


@pytest.mark.asyncio
async def test_change_role(client: AsyncClient, db: AsyncSession, admin_user, manager_user):
    response = await client.patch(
        f"/admin/users/{manager_user.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "demo_manager"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "demo_manager"
    assert await _audit_actions(db) == ["update_user_role"]


@pytest.mark.asyncio
async def test_admin_cannot_demote_self(client: AsyncClient, admin_user):
    response = await client.patch(
        f"/admin/users/{admin_user.id}/role",
        headers=auth_headers(admin_user),
        json={"role": "manager"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_audit_failure_does_not_block_action(
    client: AsyncClient, db: AsyncSession, monkeypatch, admin_user, pending_cleaner
):
    """Audit writes are best effort: the moderation still succeeds."""
    def broken_session():
        raise RuntimeError("audit store down")

    monkeypatch.setattr("shared.utils.audit.database", SimpleNamespace(AsyncSessionLocal=broken_session))

    response = await client.patch(
        f"/admin/users/{pending_cleaner.id}/status",
        headers=auth_headers(admin_user),
        json={"status": "approved"},
    )
    assert response.status_code == 200

    await db.refresh(pending_cleaner)
    assert pending_cleaner.status == ProfileStatus.APPROVED
    assert await _audit_actions(db) == []


@pytest.mark.asyncio
async def test_delete_user_with_links_refused(
    client: AsyncClient, admin_user, manager_user, property_object
):
    response = await client.delete(f"/admin/users/{manager_user.id}", headers=auth_headers(admin_user))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "user_has_links"


@pytest.mark.asyncio
async def test_soft_delete_and_restore(
    client: AsyncClient, db: AsyncSession, admin_user, pending_cleaner
):
    headers = auth_headers(admin_user)
    deleted = await client.delete(f"/admin/users/{pending_cleaner.id}", headers=headers)
    assert deleted.status_code == 200

    hidden = await client.get("/admin/users", headers=headers)
    assert str(pending_cleaner.id) not in [u["id"] for u in hidden.json()["items"]]
    shown = await client.get("/admin/users", headers=headers, params={"show_inactive": True})
    assert str(pending_cleaner.id) in [u["id"] for u in shown.json()["items"]]

    locked_out = await client.get("/auth/me", headers=auth_headers(pending_cleaner))
    assert locked_out.status_code == 403

    restored = await client.post(f"/admin/users/{pending_cleaner.id}/restore", headers=headers)
    assert restored.json()["is_active"] is True
    assert sorted(await _audit_actions(db)) == ["delete_user", "restore_user"]


@pytest.mark.asyncio
async def test_cleaner_with_unavailability_cannot_be_deleted(
    client: AsyncClient, db: AsyncSession, admin_user, cleaner_user
):
    db.add(CleanerUnavailability(cleaner_id=cleaner_user.id, date=DAY))
    await db.commit()
    response = await client.delete(f"/admin/users/{cleaner_user.id}", headers=auth_headers(admin_user))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_update_orders_count(client: AsyncClient, db: AsyncSession, admin_user, cleaner_user):
    response = await client.patch(
        f"/admin/users/{cleaner_user.id}/orders-count",
        headers=auth_headers(admin_user),
        json={"completed_orders_count": 42},
    )
    assert response.json()["completed_orders_count"] == 42
    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.metadata_ == {"old_count": 0, "new_count": 42}


# ── Registration Inbox ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_registration_approval_flow(client: AsyncClient, db: AsyncSession, admin_user):
    register = await client.post(
        "/auth/register",
        json={"name": "Fresh Cleaner", "email": "fresh@example.com", "password": "pass1234", "role": "cleaner"},
    )
    user_id = register.json()["user"]["id"]
    headers = auth_headers(admin_user)

    inbox = await client.get("/admin/notifications", headers=headers, params={"status": "pending"})
    assert inbox.json()["total"] == 1
    item = inbox.json()["items"][0]
    assert item["user_id"] == user_id
    assert item["is_overdue"] is False
    assert item["read_at"] is None

    read = await client.post(f"/admin/notifications/{item['id']}/read", headers=headers)
    assert read.json()["read_at"] is not None

    resolved = await client.post(
        f"/admin/notifications/{item['id']}/resolve", headers=headers, json={"action": "approved"}
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "approved"
    assert resolved.json()["resolved_by"] == str(admin_user.id)

    users = await client.get("/admin/users", headers=headers, params={"search": "fresh@"})
    assert users.json()["items"][0]["status"] == "approved"

    twice = await client.post(
        f"/admin/notifications/{item['id']}/resolve", headers=headers, json={"action": "rejected"}
    )
    assert twice.status_code == 400
    assert await _audit_actions(db) == ["resolve_notification_approved"]


@pytest.mark.asyncio
async def test_stale_notification_is_overdue(
    client: AsyncClient, db: AsyncSession, admin_user, pending_cleaner
):
    db.add(AdminNotification(
        notification_type="user_registration",
        user_id=pending_cleaner.id,
        user_email=pending_cleaner.email,
        user_role="cleaner",
        created_at=datetime.now(timezone.utc) - timedelta(hours=30),
    ))
    await db.commit()

    inbox = await client.get("/admin/notifications", headers=auth_headers(admin_user))
    assert inbox.json()["items"][0]["is_overdue"] is True

    dashboard = await client.get("/admin/dashboard", headers=auth_headers(admin_user))
    assert dashboard.json()["overdue_notifications"] == 1


@pytest.mark.asyncio
async def test_rejection_leaves_user_pending(
    client: AsyncClient, db: AsyncSession, admin_user, pending_cleaner
):
    notification = AdminNotification(
        notification_type="user_registration",
        user_id=pending_cleaner.id,
        user_email=pending_cleaner.email,
        user_role="cleaner",
    )
    db.add(notification)
    await db.commit()

    response = await client.post(
        f"/admin/notifications/{notification.id}/resolve",
        headers=auth_headers(admin_user),
        json={"action": "rejected"},
    )
    assert response.json()["status"] == NotificationStatus.REJECTED.value
    await db.refresh(pending_cleaner)
    assert pending_cleaner.status == ProfileStatus.PENDING


# ── Objects ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_object_list_filters(
    client: AsyncClient, db: AsyncSession, admin_user, manager_user, property_object
):
    archived = await make_object(db, manager_user, apartment_number="99", is_archived=True)
    headers = auth_headers(admin_user)

    active = await client.get("/admin/objects", headers=headers)
    assert [o["id"] for o in active.json()["items"]] == [str(property_object.id)]
    assert active.json()["items"][0]["owner_name"] == "Nino Manager"

    only_archived = await client.get("/admin/objects", headers=headers, params={"status": "archived"})
    assert [o["id"] for o in only_archived.json()["items"]] == [str(archived.id)]

    no_complex = await client.get(
        "/admin/objects", headers=headers, params={"status": "all", "residential_complex_id": "none"}
    )
    assert no_complex.json()["total"] == 2

    bad = await client.get("/admin/objects", headers=headers, params={"residential_complex_id": "nope"})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_admin_archive_respects_future_orders(
    client: AsyncClient, db: AsyncSession, admin_user, cleaner_user, property_object
):
    await _order(db, property_object, cleaner_user)
    response = await client.post(
        f"/admin/objects/{property_object.id}/archive", headers=auth_headers(admin_user)
    )
    assert response.status_code == 409
    assert await _audit_actions(db) == []


# ── Order Oversight ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assign_cleaner_to_unassigned_order(
    client: AsyncClient, db: AsyncSession, admin_user, cleaner_user, property_object, telegram_mock
):
    order = await _order(db, property_object, None)

    response = await client.post(
        f"/admin/orders/{order.id}/assign",
        headers=auth_headers(admin_user),
        json={"cleaner_id": str(cleaner_user.id)},
    )
    assert response.status_code == 200
    assert response.json()["cleaner_id"] == str(cleaner_user.id)
    assert response.json()["status"] == "pending"

    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.action_type == "assign_cleaner"
    assert log.entity_type == "order"
    assert log.metadata_["cleaner_id"] == str(cleaner_user.id)
    assert log.metadata_["previous_cleaner_id"] is None

    user_id, event_type, _ = telegram_mock.call_args.args
    assert (user_id, event_type) == (str(cleaner_user.id), "new_order")


@pytest.mark.asyncio
async def test_assign_busy_cleaner_refused(
    client: AsyncClient, db: AsyncSession, admin_user, cleaner_user, property_object
):
    await _order(db, property_object, cleaner_user)
    unassigned = await _order(db, property_object, None)

    response = await client.post(
        f"/admin/orders/{unassigned.id}/assign",
        headers=auth_headers(admin_user),
        json={"cleaner_id": str(cleaner_user.id)},
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "slot_taken"


@pytest.mark.asyncio
async def test_unassign_and_assign_closed_order(
    client: AsyncClient, db: AsyncSession, admin_user, cleaner_user, other_cleaner, property_object
):
    order = await _order(db, property_object, cleaner_user)
    headers = auth_headers(admin_user)

    unassigned = await client.post(f"/admin/orders/{order.id}/assign", headers=headers, json={"cleaner_id": None})
    assert unassigned.json()["cleaner_id"] is None
    assert await _audit_actions(db) == ["unassign_cleaner"]

    done = await _order(db, property_object, cleaner_user, OrderStatus.COMPLETED, slot="12:00")
    refused = await client.post(
        f"/admin/orders/{done.id}/assign", headers=headers, json={"cleaner_id": str(other_cleaner.id)}
    )
    assert refused.status_code == 400
    assert refused.json()["detail"]["code"] == "invalid_transition"


@pytest.mark.asyncio
async def test_admin_reschedule_notifies_both_sides(
    client: AsyncClient, db: AsyncSession, admin_user, manager_user, cleaner_user, property_object, telegram_mock
):
    order = await _order(db, property_object, cleaner_user, OrderStatus.CONFIRMED)
    new_day = DAY + timedelta(days=1)

    response = await client.post(
        f"/admin/orders/{order.id}/reschedule",
        headers=auth_headers(admin_user),
        json={"scheduled_date": new_day.isoformat(), "scheduled_time": "16:00", "reason": "Lift repairs"},
    )
    assert response.status_code == 200
    assert response.json()["scheduled_date"] == new_day.isoformat()
    assert response.json()["status"] == "confirmed"

    notified = {c.args[0] for c in telegram_mock.call_args_list}
    assert notified == {str(cleaner_user.id), str(manager_user.id)}

    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.metadata_ == {
        "old_date": DAY.isoformat(),
        "old_time": "10:00",
        "new_date": new_day.isoformat(),
        "new_time": "16:00",
        "reason": "Lift repairs",
    }


# ── Dashboard, Calendar, Audit Log ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dashboard_counters(
    client: AsyncClient, db: AsyncSession, admin_user, manager_user, cleaner_user, pending_cleaner, property_object
):
    await _order(db, property_object, cleaner_user, on=date.today())

    response = await client.get("/admin/dashboard", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total_users"] == 4
    assert data["pending_users"] == 1
    assert data["approved_users"] == 3
    assert data["total_cleaners"] == 2
    assert data["total_objects"] == 1
    assert data["active_objects"] == 1
    assert data["overdue_notifications"] == 0


@pytest.mark.asyncio
async def test_cleaner_calendar(
    client: AsyncClient, db: AsyncSession, admin_user, cleaner_user, other_cleaner, property_object
):
    on = date(2030, 5, 14)
    await _order(db, property_object, cleaner_user, on=on)
    await _order(db, property_object, other_cleaner, on=on, slot="12:00")
    await _order(db, property_object, cleaner_user, OrderStatus.CANCELLED, on=on, slot="14:00")
    db.add(CleanerUnavailability(cleaner_id=cleaner_user.id, date=date(2030, 5, 20), reason="Trip"))
    await db.commit()

    response = await client.get(
        "/admin/cleaners/calendar",
        headers=auth_headers(admin_user),
        params={"month": "2030-05", "cleaner_id": str(cleaner_user.id)},
    )
    assert response.status_code == 200
    days = response.json()["days"]
    assert len(days) == 31
    assert [o["scheduled_time"] for o in days["2030-05-14"]["orders"]] == ["10:00"]
    assert days["2030-05-14"]["orders"][0]["object_name"] == "Sea Towers, apt. 12"
    assert days["2030-05-20"]["unavailable"][0]["reason"] == "Trip"

    bad = await client.get(
        "/admin/cleaners/calendar", headers=auth_headers(admin_user), params={"month": "2030-13"}
    )
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_audit_log_listing(
    client: AsyncClient, admin_user, manager_user, pending_cleaner
):
    headers = auth_headers(admin_user)
    await client.patch(f"/admin/users/{pending_cleaner.id}/status", headers=headers, json={"status": "approved"})
    await client.patch(f"/admin/users/{manager_user.id}/role", headers=headers, json={"role": "demo_manager"})

    response = await client.get("/admin/audit-logs", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert {e["action_type"] for e in data["items"]} == {"update_user_status", "update_user_role"}
    assert all(e["admin_name"] == "Root Admin" for e in data["items"])

    filtered = await client.get(
        "/admin/audit-logs", headers=headers, params={"entity_id": str(manager_user.id)}
    )
    assert filtered.json()["total"] == 1
    assert filtered.json()["items"][0]["metadata"] == {"old_role": "manager", "new_role": "demo_manager"}


@pytest.mark.asyncio
async def test_unknown_user_404(client: AsyncClient, admin_user):
    response = await client.post(f"/admin/users/{uuid.uuid4()}/restore", headers=auth_headers(admin_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_demo_and_real_users_counted_separately(client: AsyncClient, db: AsyncSession, admin_user):
    await make_user(db, UserRole.DEMO_CLEANER)
    await make_user(db, UserRole.CLEANER)
    response = await client.get("/admin/users", headers=auth_headers(admin_user), params={"user_type": "real"})
    assert {u["role"] for u in response.json()["items"]} == {"admin", "cleaner"}
