from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.ledger import CreditLedgerEntry
from app.models.people import Principal, Student, Tutor
from app.services.ledger import compute_tutor_balance
from app.services.session_policy import (
    book_session,
    can_cancel_with_full_refund,
    can_reschedule_session,
    cancel_session,
    check_daily_session_limit,
    complete_session,
    confirm_session,
    hours_until_session,
    mark_no_show,
    mark_student_no_show,
    mark_tutor_no_show,
    meets_minimum_advance_booking,
    submit_review,
)
from conftest import NOW, make_principal, make_session, make_student, make_tutor


async def _reload(db, model, row_id):
    row = await db.get(model, row_id)
    await db.refresh(row)
    return row


def test_refund_window_is_24_hours() -> None:
    assert can_cancel_with_full_refund(NOW + timedelta(hours=24), now=NOW) is True
    assert can_cancel_with_full_refund(NOW + timedelta(hours=23, minutes=59), now=NOW) is False
    assert can_reschedule_session(NOW + timedelta(hours=30), now=NOW) is True
    assert hours_until_session(NOW + timedelta(minutes=90), now=NOW) == 1.5


def test_minimum_advance_booking() -> None:
    assert meets_minimum_advance_booking(NOW + timedelta(hours=2), now=NOW) is True
    assert meets_minimum_advance_booking(NOW + timedelta(hours=1), now=NOW) is False


@pytest.mark.asyncio
async def test_student_no_show_awards_tutor_without_refund(db) -> None:
    tutor = await make_tutor(db, pricing_region="US", credits=Decimal("0"))
    student = await make_student(db, credits=0)
    session = await make_session(db, tutor, student_id=student.id, credits_required=Decimal("5"))

    outcome = await mark_student_no_show(db, session.id)

    assert outcome.credits_awarded == Decimal("5.00")
    assert outcome.session.no_show_type == "student-no-show"
    assert outcome.session.session_status == "student-no-show"
    assert outcome.session.session_action == "student-no-show"
    assert (await _reload(db, Tutor, tutor.id)).credits == Decimal("5.00")
    assert (await _reload(db, Student, student.id)).credits == Decimal("0.00")


@pytest.mark.asyncio
async def test_tutor_no_show_refunds_principal(db) -> None:
    tutor = await make_tutor(db)
    principal = await make_principal(db, credits=0)
    session = await make_session(db, tutor, principal_user_id=principal.user_id, credits_required=Decimal("8"))

    outcome = await mark_tutor_no_show(db, session.id)

    assert outcome.credits_refunded == Decimal("8.00")
    assert outcome.session.credits_refunded == Decimal("8.00")
    assert (await _reload(db, Principal, principal.id)).credits == Decimal("8.00")
    entries = (await db.execute(select(CreditLedgerEntry))).scalars().all()
    assert [(e.party_type, e.direction, e.source) for e in entries] == [
        ("principal", "credit", "tutor_no_show_refund")
    ]


@pytest.mark.asyncio
async def test_tutor_no_show_refunds_student_when_no_principal(db) -> None:
    tutor = await make_tutor(db)
    student = await make_student(db, credits=1)
    session = await make_session(db, tutor, student_id=student.id, credits_required=Decimal("2"))

    await mark_tutor_no_show(db, session.id)

    assert (await _reload(db, Student, student.id)).credits == Decimal("3.00")


@pytest.mark.asyncio
async def test_tutor_no_show_on_successful_session_conflicts_and_mutates_nothing(db) -> None:
    tutor = await make_tutor(db)
    principal = await make_principal(db, credits=0)
    session = await make_session(
        db, tutor, principal_user_id=principal.user_id, credits_required=Decimal("8"), session_status="successful"
    )

    with pytest.raises(ConflictError, match="already been marked as successful"):
        await mark_tutor_no_show(db, session.id)

    refreshed = await _reload(db, type(session), session.id)
    assert refreshed.session_status == "successful"
    assert refreshed.no_show_type is None
    assert refreshed.credits_refunded == Decimal("0.00")
    assert (await _reload(db, Principal, principal.id)).credits == Decimal("0.00")


@pytest.mark.asyncio
async def test_student_no_show_on_successful_session_conflicts_and_awards_nothing(db) -> None:
    tutor = await make_tutor(db, pricing_region="US")
    session = await make_session(db, tutor, credits_required=Decimal("5"), session_status="successful")
    before = (await compute_tutor_balance(db, tutor.id)).available_credits

    with pytest.raises(ConflictError, match="already been completed"):
        await mark_student_no_show(db, session.id)

    refreshed = await _reload(db, type(session), session.id)
    assert refreshed.session_status == "successful"
    assert refreshed.no_show_type is None
    assert (await compute_tutor_balance(db, tutor.id)).available_credits == before == Decimal("5.00")
    entries = (await db.execute(select(CreditLedgerEntry))).scalars().all()
    assert entries == []


@pytest.mark.asyncio
async def test_review_submitted_also_blocks_student_no_show(db) -> None:
    tutor = await make_tutor(db)
    session = await make_session(db, tutor, session_action="review-submitted")
    with pytest.raises(ConflictError):
        await mark_student_no_show(db, session.id)


@pytest.mark.asyncio
async def test_review_submitted_also_blocks_tutor_no_show(db) -> None:
    tutor = await make_tutor(db)
    session = await make_session(db, tutor, session_action="review-submitted")
    with pytest.raises(ConflictError):
        await mark_tutor_no_show(db, session.id)


@pytest.mark.asyncio
async def test_no_show_cannot_be_applied_twice(db) -> None:
    tutor = await make_tutor(db)
    await make_principal(db, credits=0)
    session = await make_session(db, tutor, credits_required=Decimal("3"))

    await mark_tutor_no_show(db, session.id)
    with pytest.raises(ConflictError):
        await mark_tutor_no_show(db, session.id)
    with pytest.raises(ConflictError):
        await mark_student_no_show(db, session.id)

    principal = (await db.execute(select(Principal))).scalar_one()
    await db.refresh(principal)
    assert principal.credits == Decimal("3.00")


@pytest.mark.asyncio
async def test_no_show_on_missing_or_cancelled_session(db) -> None:
    with pytest.raises(NotFoundError):
        await mark_student_no_show(db, 999)

    tutor = await make_tutor(db)
    session = await make_session(db, tutor, status="cancelled")
    with pytest.raises(ConflictError):
        await mark_student_no_show(db, session.id)


@pytest.mark.asyncio
async def test_mark_no_show_dispatch_rejects_unknown_type(db) -> None:
    with pytest.raises(ValidationError):
        await mark_no_show(db, 1, "late")


@pytest.mark.asyncio
async def test_booking_debits_payer_and_lifecycle_earns_tutor(db) -> None:
    tutor = await make_tutor(db)
    student = await make_student(db, credits=10)

    session = await book_session(
        db,
        tutor_id=tutor.id,
        student_id=student.id,
        credits_required=Decimal("4"),
        start_time_utc=NOW + timedelta(days=1),
        now=NOW,
    )
    assert session.status == "pending"
    assert (await _reload(db, Student, student.id)).credits == Decimal("6.00")

    session = await confirm_session(db, session.id)
    assert session.status == "confirmed"
    with pytest.raises(ConflictError):
        await confirm_session(db, session.id)

    session = await complete_session(db, session.id, now=NOW + timedelta(days=1, hours=1))
    assert session.session_status == "successful"
    await submit_review(db, session.id)

    balance = await compute_tutor_balance(db, tutor.id)
    assert balance.available_credits == Decimal("4.00")
    assert (await _reload(db, Tutor, tutor.id)).credits == Decimal("4.00")
    earned = (
        await db.execute(select(CreditLedgerEntry).where(CreditLedgerEntry.source == "session_earned"))
    ).scalars().all()
    assert len(earned) == 1


@pytest.mark.asyncio
async def test_booking_rules(db) -> None:
    tutor = await make_tutor(db)
    student = await make_student(db, credits=2)

    with pytest.raises(ValidationError, match="in advance"):
        await book_session(
            db, tutor_id=tutor.id, student_id=student.id, credits_required=1,
            start_time_utc=NOW + timedelta(minutes=30), now=NOW,
        )
    with pytest.raises(ValidationError, match="Insufficient credits"):
        await book_session(
            db, tutor_id=tutor.id, student_id=student.id, credits_required=5,
            start_time_utc=NOW + timedelta(days=1), now=NOW,
        )
    with pytest.raises(NotFoundError):
        await book_session(
            db, tutor_id=999, student_id=student.id, credits_required=1,
            start_time_utc=NOW + timedelta(days=1), now=NOW,
        )
    with pytest.raises(ValidationError):
        await book_session(db, tutor_id=tutor.id, credits_required=1, start_time_utc=NOW + timedelta(days=1), now=NOW)


@pytest.mark.asyncio
async def test_student_daily_limit(db) -> None:
    tutor = await make_tutor(db)
    student = await make_student(db, credits=100)
    day = NOW + timedelta(days=3)
    for hour in range(5):
        await make_session(db, tutor, student_id=student.id, start_time_utc=day.replace(hour=hour), status="pending")
    await make_session(db, tutor, student_id=student.id, start_time_utc=day.replace(hour=6), status="cancelled")

    limit = await check_daily_session_limit(db, student.id, day)
    assert limit.count == 5
    assert limit.can_book is False

    with pytest.raises(ValidationError, match="daily session limit"):
        await book_session(
            db, tutor_id=tutor.id, student_id=student.id, credits_required=1,
            start_time_utc=day.replace(hour=20), now=NOW,
        )


@pytest.mark.asyncio
async def test_cancel_refund_depends_on_notice(db) -> None:
    tutor = await make_tutor(db)
    student = await make_student(db, credits=0)
    early = await make_session(
        db, tutor, student_id=student.id, credits_required=Decimal("3"), start_time_utc=NOW + timedelta(days=2)
    )
    late = await make_session(
        db, tutor, student_id=student.id, credits_required=Decimal("2"), start_time_utc=NOW + timedelta(hours=5)
    )

    early = await cancel_session(db, early.id, cancelled_by="student-1", now=NOW)
    late = await cancel_session(db, late.id, cancelled_by="student-1", now=NOW)

    assert early.status == "cancelled"
    assert early.credits_refunded == Decimal("3.00")
    assert late.credits_refunded == Decimal("0.00")
    assert (await _reload(db, Student, student.id)).credits == Decimal("3.00")
    with pytest.raises(ConflictError):
        await cancel_session(db, early.id, now=NOW)


@pytest.mark.asyncio
async def test_completed_session_cannot_be_cancelled(db) -> None:
    tutor = await make_tutor(db)
    session = await make_session(db, tutor, session_status="successful")
    with pytest.raises(ConflictError):
        await cancel_session(db, session.id, now=NOW)
