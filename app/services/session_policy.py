"""Session booking, completion, cancellation and no-show rules.

Every transition is a compare-and-set UPDATE guarded by the same conditions
that were checked on the loaded row, so two concurrent requests cannot both
apply a refund or an award for the same session.

No-show markings are final. There is no reversal path in this service;
disputes go through support, who correct the data by hand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.people import Tutor
from app.models.schedule import Schedule
from app.services.currency import quantize
from app.services.ledger import (
    REVIEW_SUBMITTED,
    SESSION_SUCCESSFUL,
    STUDENT_NO_SHOW,
    TUTOR_NO_SHOW,
    credit_payer,
    debit_payer,
    payer_for_session,
    record_ledger_entry,
    refresh_tutor_credits,
)
from app.services.notifications import notify

logger = logging.getLogger(__name__)

NO_SHOW_TYPES = (STUDENT_NO_SHOW, TUTOR_NO_SHOW)
ACTIVE_STATUSES = ("pending", "confirmed")


@dataclass(slots=True)
class NoShowOutcome:
    session: Schedule
    message: str
    credits_awarded: Decimal = Decimal("0.00")
    credits_refunded: Decimal = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class DailyLimit:
    count: int
    limit: int

    @property
    def can_book(self) -> bool:
        return self.count < self.limit


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_until_session(session_start: datetime, *, now: datetime | None = None) -> float:
    delta = _as_utc(session_start) - _as_utc(now or _utc_now())
    return round(delta.total_seconds() / 3600, 1)


def can_cancel_with_full_refund(
    session_start: datetime,
    *,
    now: datetime | None = None,
    required_hours_notice: int | None = None,
) -> bool:
    notice = settings.cancel_full_refund_hours if required_hours_notice is None else required_hours_notice
    delta = _as_utc(session_start) - _as_utc(now or _utc_now())
    return delta >= timedelta(hours=notice)


def can_reschedule_session(
    session_start: datetime,
    *,
    now: datetime | None = None,
    required_hours_notice: int | None = None,
) -> bool:
    return can_cancel_with_full_refund(session_start, now=now, required_hours_notice=required_hours_notice)


def meets_minimum_advance_booking(
    session_start: datetime,
    *,
    now: datetime | None = None,
    min_hours_advance: int | None = None,
) -> bool:
    hours = settings.min_booking_advance_hours if min_hours_advance is None else min_hours_advance
    return _as_utc(session_start) >= _as_utc(now or _utc_now()) + timedelta(hours=hours)


def _day_bounds(day: datetime) -> tuple[datetime, datetime]:
    start = _as_utc(day).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


async def _count_active_sessions(db: AsyncSession, column, value, day: datetime) -> int:
    start, end = _day_bounds(day)
    stmt = select(func.count(Schedule.id)).where(
        and_(
            column == value,
            Schedule.start_time_utc >= start,
            Schedule.start_time_utc < end,
            Schedule.status.in_(ACTIVE_STATUSES),
        )
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def check_daily_session_limit(
    db: AsyncSession, student_id: int, day: datetime, max_sessions: int | None = None
) -> DailyLimit:
    limit = settings.student_daily_session_limit if max_sessions is None else max_sessions
    count = await _count_active_sessions(db, Schedule.student_id, student_id, day)
    return DailyLimit(count=count, limit=limit)


async def check_tutor_daily_session_limit(
    db: AsyncSession, tutor_id: int, day: datetime, max_sessions: int | None = None
) -> DailyLimit:
    limit = settings.tutor_daily_session_limit if max_sessions is None else max_sessions
    count = await _count_active_sessions(db, Schedule.tutor_id, tutor_id, day)
    return DailyLimit(count=count, limit=limit)


async def get_session(db: AsyncSession, session_id: int) -> Schedule:
    row = (
        await db.execute(select(Schedule).where(Schedule.id == session_id).execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Session not found")
    return row


def _not_marked_no_show():
    return Schedule.no_show_type.is_(None)


def _not_successful():
    return and_(
        or_(Schedule.session_status.is_(None), Schedule.session_status != SESSION_SUCCESSFUL),
        or_(Schedule.session_action.is_(None), Schedule.session_action != REVIEW_SUBMITTED),
    )


def _not_successful_status():
    return or_(Schedule.session_status.is_(None), Schedule.session_status != SESSION_SUCCESSFUL)


def _is_successful(row: Schedule) -> bool:
    return row.session_status == SESSION_SUCCESSFUL or row.session_action == REVIEW_SUBMITTED


async def _compare_and_set(db: AsyncSession, session_id: int, guard, values: dict) -> None:
    result = await db.execute(
        update(Schedule)
        .where(and_(Schedule.id == session_id, guard))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Session was modified by another request, reload and retry")


async def book_session(
    db: AsyncSession,
    *,
    tutor_id: int,
    credits_required: Decimal | int | str,
    start_time_utc: datetime,
    student_id: int | None = None,
    principal_user_id: str | None = None,
    duration_minutes: int = 60,
    now: datetime | None = None,
) -> Schedule:
    credits = quantize(credits_required)
    if credits <= 0:
        raise ValidationError("credits_required must be positive")
    if student_id is None and not principal_user_id:
        raise ValidationError("A session needs a student or a principal payer")

    tutor = await db.get(Tutor, tutor_id)
    if tutor is None:
        raise NotFoundError("Tutor not found")

    start = _as_utc(start_time_utc)
    if not meets_minimum_advance_booking(start, now=now):
        raise ValidationError(
            f"Sessions must be booked at least {settings.min_booking_advance_hours} hours in advance"
        )
    if student_id is not None:
        student_limit = await check_daily_session_limit(db, student_id, start)
        if not student_limit.can_book:
            raise ValidationError(f"Student daily session limit reached ({student_limit.limit})")
    tutor_limit = await check_tutor_daily_session_limit(db, tutor_id, start)
    if not tutor_limit.can_book:
        raise ValidationError(f"Tutor daily session limit reached ({tutor_limit.limit})")

    row = Schedule(
        tutor_id=tutor_id,
        student_id=student_id,
        principal_user_id=principal_user_id or None,
        start_time_utc=start,
        duration_minutes=duration_minutes,
        credits_required=credits,
        status="pending",
    )
    payer = payer_for_session(row)
    await debit_payer(db, payer, credits)
    db.add(row)
    await db.flush()
    await record_ledger_entry(
        db,
        party_type=payer.party_type,
        party_id=payer.party_id,
        direction="debit",
        credits=credits,
        source="session_booking",
        reference_type="schedule",
        reference_id=row.id,
        note=f"Booked session #{row.id} with tutor #{tutor_id}",
    )
    await db.commit()
    await db.refresh(row)
    logger.info("Booked session id=%s tutor_id=%s payer=%s:%s credits=%s", row.id, tutor_id, payer.party_type, payer.party_id, credits)
    return row


async def confirm_session(db: AsyncSession, session_id: int) -> Schedule:
    row = await get_session(db, session_id)
    if row.status != "pending":
        raise ConflictError(f"Session is already {row.status}")
    await _compare_and_set(db, session_id, Schedule.status == "pending", {"status": "confirmed"})
    await db.commit()
    return await get_session(db, session_id)


async def _record_tutor_earning(db: AsyncSession, row: Schedule, source_note: str) -> None:
    await record_ledger_entry(
        db,
        party_type="tutor",
        party_id=row.tutor_id,
        direction="credit",
        credits=row.credits_required,
        source="session_earned",
        reference_type="schedule",
        reference_id=row.id,
        note=source_note,
    )
    await refresh_tutor_credits(db, row.tutor_id)


async def complete_session(db: AsyncSession, session_id: int, *, now: datetime | None = None) -> Schedule:
    row = await get_session(db, session_id)
    if row.status != "confirmed":
        raise ConflictError(f"Only confirmed sessions can be completed (status is {row.status})")
    if row.no_show_type:
        raise ConflictError(f"Session is already marked {row.no_show_type}")
    if row.session_status == SESSION_SUCCESSFUL:
        raise ConflictError("Session is already marked successful")

    await _compare_and_set(
        db,
        session_id,
        and_(Schedule.status == "confirmed", _not_marked_no_show(), _not_successful_status()),
        {"session_status": SESSION_SUCCESSFUL, "completed_at": now or _utc_now()},
    )
    row = await get_session(db, session_id)
    await _record_tutor_earning(db, row, f"Session #{row.id} completed")
    await db.commit()
    logger.info("Session id=%s completed, tutor_id=%s earns %s credits", row.id, row.tutor_id, row.credits_required)
    return await get_session(db, session_id)


async def submit_review(db: AsyncSession, session_id: int) -> Schedule:
    row = await get_session(db, session_id)
    if row.status != "confirmed":
        raise ConflictError(f"Only confirmed sessions can be reviewed (status is {row.status})")
    if row.no_show_type:
        raise ConflictError(f"Session is already marked {row.no_show_type}")
    if row.session_action == REVIEW_SUBMITTED:
        return row

    await _compare_and_set(
        db,
        session_id,
        and_(Schedule.status == "confirmed", _not_marked_no_show()),
        {"session_action": REVIEW_SUBMITTED},
    )
    row = await get_session(db, session_id)
    await _record_tutor_earning(db, row, f"Session #{row.id} reviewed")
    await db.commit()
    return await get_session(db, session_id)


async def cancel_session(
    db: AsyncSession,
    session_id: int,
    *,
    cancelled_by: str | None = None,
    now: datetime | None = None,
) -> Schedule:
    row = await get_session(db, session_id)
    if row.status not in ACTIVE_STATUSES:
        raise ConflictError(f"Session is already {row.status}")
    if row.no_show_type:
        raise ConflictError(f"Session is already marked {row.no_show_type}")
    if _is_successful(row):
        raise ConflictError("A completed session cannot be cancelled")

    moment = now or _utc_now()
    refund = row.credits_required if can_cancel_with_full_refund(row.start_time_utc, now=moment) else Decimal("0")
    refund = quantize(refund)

    await _compare_and_set(
        db,
        session_id,
        and_(Schedule.status.in_(ACTIVE_STATUSES), _not_marked_no_show(), _not_successful()),
        {
            "status": "cancelled",
            "cancelled_at": moment,
            "cancelled_by": cancelled_by,
            "credits_refunded": refund,
        },
    )
    payer = payer_for_session(row)
    if refund > 0 and payer is not None:
        await credit_payer(db, payer, refund)
        await record_ledger_entry(
            db,
            party_type=payer.party_type,
            party_id=payer.party_id,
            direction="credit",
            credits=refund,
            source="cancellation_refund",
            reference_type="schedule",
            reference_id=row.id,
            note=f"Session #{row.id} cancelled with full refund",
        )
    await db.commit()
    logger.info("Session id=%s cancelled by %s, refunded=%s", row.id, cancelled_by, refund)
    return await get_session(db, session_id)


def _ensure_markable(row: Schedule) -> None:
    if row.status == "cancelled":
        raise ConflictError("Session is cancelled")
    if _is_successful(row):
        raise ConflictError("Session has already been completed and earned by the tutor")
    if row.no_show_type or row.session_status in NO_SHOW_TYPES:
        raise ConflictError(f"Session is already marked {row.no_show_type or row.session_status}")


async def mark_student_no_show(db: AsyncSession, session_id: int) -> NoShowOutcome:
    row = await get_session(db, session_id)
    _ensure_markable(row)

    await _compare_and_set(
        db,
        session_id,
        and_(Schedule.status != "cancelled", _not_marked_no_show(), _not_successful()),
        {
            "no_show_type": STUDENT_NO_SHOW,
            "session_status": STUDENT_NO_SHOW,
            "session_action": STUDENT_NO_SHOW,
        },
    )
    row = await get_session(db, session_id)
    await _record_tutor_earning(db, row, f"Student no-show on session #{row.id}")
    await db.commit()

    awarded = quantize(row.credits_required)
    logger.info("Tutor id=%s earned %s credits for student no-show on session id=%s", row.tutor_id, awarded, row.id)
    tutor = await db.get(Tutor, row.tutor_id)
    await notify(
        user_id=tutor.user_id if tutor else None,
        kind="session.student_no_show",
        title="Student no-show recorded",
        body=f"You received {awarded} credits for session #{row.id}.",
        payload={"session_id": row.id, "credits": str(awarded)},
    )
    return NoShowOutcome(
        session=row,
        message="Student no-show recorded. Tutor will receive credits.",
        credits_awarded=awarded,
    )


async def mark_tutor_no_show(db: AsyncSession, session_id: int) -> NoShowOutcome:
    row = await get_session(db, session_id)
    if _is_successful(row):
        raise ConflictError(
            "This session has already been marked as successful by the tutor. "
            "Please contact support if you wish to dispute this."
        )
    _ensure_markable(row)

    amount = quantize(row.credits_required)
    await _compare_and_set(
        db,
        session_id,
        and_(Schedule.status != "cancelled", _not_marked_no_show(), _not_successful()),
        {
            "no_show_type": TUTOR_NO_SHOW,
            "session_status": TUTOR_NO_SHOW,
            "session_action": TUTOR_NO_SHOW,
            "credits_refunded": amount,
        },
    )
    payer = payer_for_session(row)
    if payer is not None and amount > 0:
        await credit_payer(db, payer, amount)
        await record_ledger_entry(
            db,
            party_type=payer.party_type,
            party_id=payer.party_id,
            direction="credit",
            credits=amount,
            source="tutor_no_show_refund",
            reference_type="schedule",
            reference_id=row.id,
            note=f"Tutor no-show on session #{row.id}",
        )
    await db.commit()
    logger.info("Tutor no-show on session id=%s, refunded %s credits to %s", row.id, amount, payer)
    return NoShowOutcome(
        session=await get_session(db, session_id),
        message="Tutor no-show recorded. Credits refunded.",
        credits_refunded=amount,
    )


async def mark_no_show(db: AsyncSession, session_id: int, no_show_type: str) -> NoShowOutcome:
    if no_show_type == STUDENT_NO_SHOW:
        return await mark_student_no_show(db, session_id)
    if no_show_type == TUTOR_NO_SHOW:
        return await mark_tutor_no_show(db, session_id)
    raise ValidationError("no_show_type must be student-no-show or tutor-no-show")
