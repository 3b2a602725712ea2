from __future__ import annotations

import hmac
from datetime import datetime

from fastapi import Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ForbiddenError, NotFoundError
from app.models.people import Student, Tutor
from app.models.schedule import Schedule
from app.services.access import is_admin_or_superadmin
from app.services.auth import AuthUser


def as_iso(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.isoformat()


async def require_internal_secret(authorization: str | None = Header(default=None)) -> None:
    """Guard for cron and webhook callers, which present ``Bearer <CRON_SECRET>``."""
    if not settings.cron_secret:
        raise HTTPException(status_code=503, detail="CRON_SECRET is not configured")
    token = ""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not hmac.compare_digest(token, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def tutor_owned_by(db: AsyncSession, actor: AuthUser, tutor_id: int) -> Tutor:
    tutor = await db.get(Tutor, tutor_id)
    if tutor is None:
        raise NotFoundError("Tutor not found")
    if tutor.user_id != actor.user_id and not await is_admin_or_superadmin(db, actor.user_id):
        raise ForbiddenError("Forbidden")
    return tutor


async def session_party_user_ids(db: AsyncSession, row: Schedule) -> set[str]:
    ids: set[str] = set()
    tutor_user_id = (await db.execute(select(Tutor.user_id).where(Tutor.id == row.tutor_id))).scalar_one_or_none()
    if tutor_user_id:
        ids.add(tutor_user_id)
    if row.principal_user_id:
        ids.add(row.principal_user_id)
    if row.student_id is not None:
        student_user_id = (
            await db.execute(select(Student.user_id).where(Student.id == row.student_id))
        ).scalar_one_or_none()
        if student_user_id:
            ids.add(student_user_id)
    return ids


async def ensure_session_party_or_admin(db: AsyncSession, actor: AuthUser, row: Schedule) -> None:
    if actor.user_id in await session_party_user_ids(db, row):
        return
    if not await is_admin_or_superadmin(db, actor.user_id):
        raise ForbiddenError("Forbidden")
