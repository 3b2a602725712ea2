from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.errors import NotFoundError, ValidationError
from app.models.ledger import CreditLedgerEntry
from app.models.people import Principal, Student, Tutor
from app.services.ledger import (
    PayerRef,
    compute_tutor_balance,
    credit_payer,
    debit_payer,
    debit_payer_floored,
    payer_credits,
    record_ledger_entry,
    refresh_tutor_credits,
)
from conftest import earn, make_principal, make_session, make_student, make_tutor


@pytest.mark.asyncio
async def test_balance_counts_only_earned_sessions(db) -> None:
    tutor = await make_tutor(db)
    await earn(db, tutor, 3)
    await make_session(db, tutor, credits_required=Decimal("4"), status="confirmed", session_action="review-submitted")
    await make_session(db, tutor, credits_required=Decimal("5"), status="pending", session_status="successful")
    await make_session(db, tutor, credits_required=Decimal("6"), status="confirmed")
    await make_session(db, tutor, credits_required=Decimal("2"), status="pending", session_status="student-no-show")
    await make_session(db, tutor, credits_required=Decimal("7"), status="cancelled", session_status="student-no-show")
    await make_session(db, tutor, credits_required=Decimal("8"), status="confirmed", session_status="tutor-no-show")

    balance = await compute_tutor_balance(db, tutor.id)

    assert balance.earned_credits == Decimal("9.00")
    assert balance.withdrawn_credits == Decimal("0.00")
    assert balance.available_credits == Decimal("9.00")


@pytest.mark.asyncio
async def test_missing_tutor_has_zero_balance(db) -> None:
    balance = await compute_tutor_balance(db, 404)
    assert balance.available_credits == Decimal("0.00")
    assert balance.as_dict()["available_credits"] == "0.00"


@pytest.mark.asyncio
async def test_refresh_writes_projection(db) -> None:
    tutor = await make_tutor(db)
    await earn(db, tutor, "2.5")
    await refresh_tutor_credits(db, tutor.id)
    await db.commit()

    stored = (await db.execute(select(Tutor.credits).where(Tutor.id == tutor.id))).scalar_one()
    assert Decimal(stored) == Decimal("2.50")


@pytest.mark.asyncio
async def test_debit_payer_refuses_overdraft(db) -> None:
    student = await make_student(db, credits=3)
    payer = PayerRef("student", student.id)

    with pytest.raises(ValidationError, match="Insufficient credits"):
        await debit_payer(db, payer, Decimal("4"))
    await debit_payer(db, payer, Decimal("3"))

    assert await payer_credits(db, payer) == Decimal("0.00")


@pytest.mark.asyncio
async def test_payer_updates_are_atomic_increments(db) -> None:
    await make_principal(db, credits=10)
    payer = PayerRef("principal", "principal-1")

    await credit_payer(db, payer, Decimal("2.25"))
    await debit_payer_floored(db, payer, Decimal("100"))
    await db.commit()

    row = (await db.execute(select(Principal).where(Principal.user_id == "principal-1"))).scalar_one()
    await db.refresh(row)
    assert row.credits == Decimal("0.00")


@pytest.mark.asyncio
async def test_unknown_payer_is_not_found(db) -> None:
    with pytest.raises(NotFoundError):
        await credit_payer(db, PayerRef("principal", "nobody"), Decimal("1"))
    with pytest.raises(NotFoundError):
        await debit_payer(db, PayerRef("student", 99), Decimal("1"))
    assert (await db.execute(select(Student))).first() is None


@pytest.mark.asyncio
async def test_ledger_entry_is_recorded_once_per_reference(db) -> None:
    for _ in range(2):
        await record_ledger_entry(
            db,
            party_type="tutor",
            party_id=1,
            direction="credit",
            credits=Decimal("5"),
            source="session_earned",
            reference_type="schedule",
            reference_id=10,
        )
    await db.commit()

    rows = (await db.execute(select(CreditLedgerEntry))).scalars().all()
    assert len(rows) == 1
    assert rows[0].reference_id == "10"
