"""Shared fixtures: an in-memory SQLite database per test, row factories,
and an HTTP client wired to the same database.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

# Settings are read at import time, so the environment must be ready first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-for-tutor-credits")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.config import settings
from app.db.base import Base
from app.db.session import get_db
from app.models.people import Admin, Principal, Student, Superadmin, Tutor
from app.models.schedule import Schedule

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Replace the shared Redis client so nothing tries to reach a server."""
    client = AsyncMock()
    client.incr.return_value = 1
    monkeypatch.setattr("app.services.notifications.redis_client", client)
    monkeypatch.setattr("app.middleware.rate_limit.redis_client", client)
    return client


@pytest_asyncio.fixture()
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest_asyncio.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    from app.main import app

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user_id: str, **claims) -> dict[str, str]:
    payload = {"sub": user_id, "email": f"{user_id}@example.com", **claims}
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return {"Authorization": f"Bearer {token}"}


async def make_tutor(db: AsyncSession, **kwargs) -> Tutor:
    values = {
        "user_id": "tutor-1",
        "first_name": "Maria",
        "last_name": "Santos",
        "email": "maria@example.com",
        "pricing_region": "PH",
        "stripe_account_id": "acct_123",
    }
    values.update(kwargs)
    row = Tutor(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def make_student(db: AsyncSession, credits: Decimal | int = 0, **kwargs) -> Student:
    values = {"user_id": "student-1", "first_name": "Ana", "email": "ana@example.com", "credits": Decimal(credits)}
    values.update(kwargs)
    row = Student(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def make_principal(db: AsyncSession, credits: Decimal | int = 0, **kwargs) -> Principal:
    values = {"user_id": "principal-1", "school_name": "Rizal High", "credits": Decimal(credits)}
    values.update(kwargs)
    row = Principal(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def make_admin(db: AsyncSession, user_id: str = "admin-1", *, superadmin: bool = False) -> str:
    db.add(Superadmin(user_id=user_id) if superadmin else Admin(user_id=user_id))
    await db.commit()
    return user_id


async def make_session(db: AsyncSession, tutor: Tutor, **kwargs) -> Schedule:
    values = {
        "tutor_id": tutor.id,
        "start_time_utc": NOW + timedelta(days=2),
        "credits_required": Decimal("1"),
        "status": "confirmed",
    }
    values.update(kwargs)
    if values.get("student_id") is None and values.get("principal_user_id") is None:
        values["principal_user_id"] = "principal-1"
    row = Schedule(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def earn(db: AsyncSession, tutor: Tutor, credits: Decimal | int, **kwargs) -> Schedule:
    """A completed session worth ``credits`` to the tutor."""
    return await make_session(
        db,
        tutor,
        credits_required=Decimal(credits),
        status="confirmed",
        session_status="successful",
        **kwargs,
    )
