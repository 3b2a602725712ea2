from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import ensure_session_party_or_admin, tutor_owned_by
from app.core.errors import ForbiddenError
from app.db.session import get_db
from app.models.people import Student
from app.models.schedule import Schedule
from app.schemas.sessions import NoShowIn, NoShowOut, SessionBookIn, SessionOut
from app.services.access import is_admin_or_superadmin
from app.services.auth import AuthUser, get_current_user
from app.services.session_policy import (
    book_session,
    cancel_session,
    complete_session,
    confirm_session,
    get_session,
    mark_no_show,
    submit_review,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _to_session_out(row: Schedule) -> SessionOut:
    return SessionOut(
        id=row.id,
        tutor_id=row.tutor_id,
        student_id=row.student_id,
        principal_user_id=row.principal_user_id,
        start_time_utc=row.start_time_utc,
        duration_minutes=row.duration_minutes,
        credits_required=row.credits_required,
        credits_refunded=row.credits_refunded,
        status=row.status,
        session_status=row.session_status,
        session_action=row.session_action,
        no_show_type=row.no_show_type,
        completed_at=row.completed_at,
        cancelled_at=row.cancelled_at,
        cancelled_by=row.cancelled_by,
    )


async def _ensure_payer_or_admin(db: AsyncSession, actor: AuthUser, payload: SessionBookIn) -> None:
    if payload.principal_user_id and payload.principal_user_id == actor.user_id:
        return
    if payload.student_id is not None and not payload.principal_user_id:
        student = await db.get(Student, payload.student_id)
        if student is not None and student.user_id == actor.user_id:
            return
    if not await is_admin_or_superadmin(db, actor.user_id):
        raise ForbiddenError("Forbidden: only the paying party can book this session")


@router.post("", response_model=SessionOut, status_code=201)
async def create_session(
    payload: SessionBookIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> SessionOut:
    await _ensure_payer_or_admin(db, actor, payload)
    row = await book_session(
        db,
        tutor_id=payload.tutor_id,
        credits_required=payload.credits_required,
        start_time_utc=payload.start_time_utc,
        student_id=payload.student_id,
        principal_user_id=payload.principal_user_id,
        duration_minutes=payload.duration_minutes,
    )
    return _to_session_out(row)


@router.get("/{session_id}", response_model=SessionOut)
async def read_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> SessionOut:
    row = await get_session(db, session_id)
    await ensure_session_party_or_admin(db, actor, row)
    return _to_session_out(row)


@router.post("/{session_id}/confirm", response_model=SessionOut)
async def confirm(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> SessionOut:
    row = await get_session(db, session_id)
    await tutor_owned_by(db, actor, row.tutor_id)
    return _to_session_out(await confirm_session(db, session_id))


@router.post("/{session_id}/complete", response_model=SessionOut)
async def complete(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> SessionOut:
    row = await get_session(db, session_id)
    await tutor_owned_by(db, actor, row.tutor_id)
    return _to_session_out(await complete_session(db, session_id))


@router.post("/{session_id}/review", response_model=SessionOut)
async def review(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> SessionOut:
    row = await get_session(db, session_id)
    await ensure_session_party_or_admin(db, actor, row)
    return _to_session_out(await submit_review(db, session_id))


@router.post("/{session_id}/cancel", response_model=SessionOut)
async def cancel(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> SessionOut:
    row = await get_session(db, session_id)
    await ensure_session_party_or_admin(db, actor, row)
    return _to_session_out(await cancel_session(db, session_id, cancelled_by=actor.user_id))


@router.post("/{session_id}/no-show", response_model=NoShowOut)
async def no_show(
    session_id: int,
    payload: NoShowIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> NoShowOut:
    row = await get_session(db, session_id)
    await ensure_session_party_or_admin(db, actor, row)
    outcome = await mark_no_show(db, session_id, payload.no_show_type)
    return NoShowOut(
        message=outcome.message,
        credits_awarded=outcome.credits_awarded,
        credits_refunded=outcome.credits_refunded,
        session=_to_session_out(outcome.session),
    )
