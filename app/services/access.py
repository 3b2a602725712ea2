from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ForbiddenError
from app.models.people import Admin, Superadmin


async def is_superadmin(db: AsyncSession, user_id: str | None) -> bool:
    if not user_id:
        return False
    row = (await db.execute(select(Superadmin.id).where(Superadmin.user_id == str(user_id)))).scalar_one_or_none()
    return row is not None


async def is_admin_or_superadmin(db: AsyncSession, user_id: str | None) -> bool:
    if not user_id:
        return False
    admin = (await db.execute(select(Admin.id).where(Admin.user_id == str(user_id)))).scalar_one_or_none()
    if admin is not None:
        return True
    return await is_superadmin(db, user_id)


async def require_admin(db: AsyncSession, user_id: str | None) -> None:
    if not await is_admin_or_superadmin(db, user_id):
        raise ForbiddenError("Forbidden: admin or superadmin access required")


async def require_superadmin(db: AsyncSession, user_id: str | None) -> None:
    if not await is_superadmin(db, user_id):
        raise ForbiddenError("Forbidden: superadmin access required")
