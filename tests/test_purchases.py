from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.ledger import CreditLedgerEntry, CreditTransaction
from app.models.people import Principal, Student
from app.services import purchases
from app.services.purchases import adjust_credits, record_credit_purchase
from conftest import make_admin, make_principal, make_student


@pytest.mark.asyncio
async def test_purchase_is_idempotent_on_transaction_id(db) -> None:
    student = await make_student(db, credits=1)
    kwargs = dict(
        user_id=student.user_id,
        party_type="student",
        credits=Decimal("10"),
        amount=Decimal("900"),
        currency="php",
        source="paymongo",
        transaction_id="pay_abc",
        plan_id="starter",
    )

    row, created = await record_credit_purchase(db, **kwargs)
    again, created_again = await record_credit_purchase(db, **kwargs)

    assert created is True
    assert created_again is False
    assert again.id == row.id
    assert row.currency == "PHP"
    await db.refresh(student)
    assert student.credits == Decimal("11.00")
    assert (await db.execute(select(func.count(CreditTransaction.id)))).scalar_one() == 1


@pytest.mark.asyncio
async def test_purchase_for_unknown_or_tutor_party(db) -> None:
    with pytest.raises(NotFoundError):
        await record_credit_purchase(
            db, user_id="ghost", party_type="student", credits=1, amount=90,
            currency="PHP", source="stripe", transaction_id="t1",
        )
    with pytest.raises(ValidationError):
        await record_credit_purchase(
            db, user_id="tutor-1", party_type="tutor", credits=1, amount=90,
            currency="PHP", source="stripe", transaction_id="t2",
        )


@pytest.mark.asyncio
async def test_admin_adjustments_floor_at_zero(db) -> None:
    principal = await make_principal(db, credits=5)
    admin = await make_admin(db)

    balance = await adjust_credits(
        db, actor_user_id=admin, party_type="principal", user_id=principal.user_id, credits=3, direction="add"
    )
    assert balance == Decimal("8.00")

    balance = await adjust_credits(
        db, actor_user_id=admin, party_type="principal", user_id=principal.user_id, credits=20, direction="remove"
    )
    assert balance == Decimal("0.00")
    await db.refresh(principal)
    assert principal.credits == Decimal("0.00")


@pytest.mark.asyncio
async def test_adjustments_need_admin_and_payer(db) -> None:
    await make_student(db, credits=5)
    admin = await make_admin(db)

    with pytest.raises(ForbiddenError):
        await adjust_credits(
            db, actor_user_id="student-1", party_type="student", user_id="student-1", credits=1, direction="add"
        )
    with pytest.raises(ValidationError, match="derived"):
        await adjust_credits(
            db, actor_user_id=admin, party_type="tutor", user_id="tutor-1", credits=1, direction="add"
        )

    balance = await adjust_credits(
        db, actor_user_id=admin, party_type="student", user_id="student-1", credits=2, direction="remove"
    )
    assert balance == Decimal("3.00")
    student = (await db.execute(select(Student))).scalar_one()
    assert (await db.execute(select(func.count(Principal.id)))).scalar_one() == 0
    assert student.user_id == "student-1"


@pytest.mark.asyncio
async def test_over_removal_journals_only_what_was_held(db) -> None:
    principal = await make_principal(db, credits=3)
    admin = await make_admin(db)

    balance = await adjust_credits(
        db, actor_user_id=admin, party_type="principal", user_id=principal.user_id, credits=10, direction="remove"
    )

    assert balance == Decimal("0.00")
    entry = (await db.execute(select(CreditLedgerEntry))).scalar_one()
    assert entry.direction == "debit"
    assert entry.credits == Decimal("3.00")
    assert entry.source == "admin_adjustment"

    balance = await adjust_credits(
        db, actor_user_id=admin, party_type="principal", user_id=principal.user_id, credits=4, direction="remove"
    )
    assert balance == Decimal("0.00")
    assert (await db.execute(select(func.count(CreditLedgerEntry.id)))).scalar_one() == 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_purchase_returns_existing_row(db, monkeypatch: pytest.MonkeyPatch) -> None:
    student = await make_student(db, credits=0)
    first = CreditTransaction(
        user_id=student.user_id,
        party_type="student",
        amount=Decimal("90"),
        currency="PHP",
        source="paymongo",
        transaction_id="pay_race",
        status="completed",
        credits_amount=Decimal("1"),
    )
    db.add(first)
    await db.commit()
    first_id = first.id

    real_lookup = purchases._purchase_by_transaction_id
    calls: list[str] = []

    async def lookup_misses_once(session, transaction_id):
        calls.append(transaction_id)
        if len(calls) == 1:
            return None
        return await real_lookup(session, transaction_id)

    monkeypatch.setattr(purchases, "_purchase_by_transaction_id", lookup_misses_once)

    row, created = await record_credit_purchase(
        db, user_id=student.user_id, party_type="student", credits=1, amount=90,
        currency="PHP", source="paymongo", transaction_id="pay_race",
    )

    assert created is False
    assert row.id == first_id
    assert len(calls) == 2
    await db.refresh(student)
    assert student.credits == Decimal("0.00")
    assert (await db.execute(select(func.count(CreditTransaction.id)))).scalar_one() == 1
