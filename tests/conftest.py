"""
tests/conftest.py
Shared fixtures: SQLite test database, fake Redis, HTTP client, users.

Environment is set before any application import so settings, the engine
and the session factory all point at the test database.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("TELEGRAM_WEBHOOK_URL", "https://hooks.example.test/telegram")
os.environ.setdefault("S3_PUBLIC_URL", "https://cdn.storage.test")

import uuid
from unittest.mock import MagicMock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import database
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    ApartmentType,
    Profile,
    ProfileStatus,
    PropertyObject,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password
from tasks.notification_tasks import send_telegram_notification

TEST_PASSWORD = "secret123"


def auth_headers(user: Profile) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Infrastructure ─────────────────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    import shared.models.models  # noqa: F401

    async with database.engine.begin() as conn:
        await conn.run_sync(database.Base.metadata.create_all)
    yield
    async with database.engine.begin() as conn:
        await conn.run_sync(database.Base.metadata.drop_all)
    await database.engine.dispose()


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture(autouse=True)
def telegram_mock(monkeypatch):
    """Every notification goes through send_telegram_notification.delay."""
    mock = MagicMock()
    monkeypatch.setattr(send_telegram_notification, "delay", mock)
    return mock


@pytest.fixture(autouse=True)
def storage_mock(monkeypatch):
    """Uploads land in a dict; signed URLs are deterministic."""
    stored = {}

    def upload(bucket, key, body, content_type):
        stored[(bucket, key)] = body

    def signed(bucket, key, expires_in=None):
        return f"https://storage.test/{bucket}/{key}?sig=1"

    def delete(bucket, key):
        stored.pop((bucket, key), None)
        return True

    for module in ("services.order.router", "services.chat.router"):
        monkeypatch.setattr(f"{module}.upload_object", upload)
        monkeypatch.setattr(f"{module}.generate_signed_url", signed)
    monkeypatch.setattr("services.profile.router.upload_object", upload)
    monkeypatch.setattr("services.profile.router.delete_object", delete)
    return stored


@pytest_asyncio.fixture
async def db():
    async with database.AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(redis):
    app.dependency_overrides[get_redis] = lambda: redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Users ──────────────────────────────────────────────────────────────────────

async def make_user(
    db,
    role: UserRole,
    status: ProfileStatus = ProfileStatus.APPROVED,
    name: str = None,
    **fields,
) -> Profile:
    user = Profile(
        id=uuid.uuid4(),
        email=f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
        password_hash=hash_password(TEST_PASSWORD),
        name=name or role.value.replace("_", " ").title(),
        role=role,
        status=status,
        **fields,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_object(db, owner: Profile, **fields) -> PropertyObject:
    obj = PropertyObject(
        user_id=owner.id,
        complex_name=fields.pop("complex_name", "Sea Towers"),
        apartment_number=fields.pop("apartment_number", "12"),
        apartment_type=fields.pop("apartment_type", ApartmentType.STUDIO),
        **fields,
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def manager_user(db) -> Profile:
    return await make_user(db, UserRole.MANAGER, name="Nino Manager")


@pytest_asyncio.fixture
async def cleaner_user(db) -> Profile:
    return await make_user(
        db, UserRole.CLEANER, name="Ana Cleaner",
        price_studio=50, price_one_plus_one=70, price_two_plus_one=90,
    )


@pytest_asyncio.fixture
async def other_cleaner(db) -> Profile:
    return await make_user(db, UserRole.CLEANER, name="Eka Cleaner")


@pytest_asyncio.fixture
async def admin_user(db) -> Profile:
    return await make_user(db, UserRole.ADMIN, name="Root Admin")


@pytest_asyncio.fixture
async def pending_cleaner(db) -> Profile:
    return await make_user(db, UserRole.CLEANER, status=ProfileStatus.PENDING, name="New Cleaner")


@pytest_asyncio.fixture
async def demo_manager(db) -> Profile:
    return await make_user(db, UserRole.DEMO_MANAGER, name="Demo Manager")


@pytest_asyncio.fixture
async def property_object(db, manager_user) -> PropertyObject:
    return await make_object(db, manager_user)
