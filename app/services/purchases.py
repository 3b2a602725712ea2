from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, ValidationError
from app.models.ledger import CreditTransaction
from app.models.people import Student
from app.services.access import require_admin
from app.services.currency import quantize
from app.services.ledger import PayerRef, credit_payer, debit_payer_floored, payer_credits, record_ledger_entry

logger = logging.getLogger(__name__)


async def _payer_ref(db: AsyncSession, party_type: str, user_id: str) -> PayerRef:
    if party_type == "principal":
        return PayerRef("principal", str(user_id))
    if party_type == "student":
        student_id = (
            await db.execute(select(Student.id).where(Student.user_id == str(user_id)))
        ).scalar_one_or_none()
        if student_id is None and str(user_id).isdigit():
            student_id = (await db.execute(select(Student.id).where(Student.id == int(user_id)))).scalar_one_or_none()
        if student_id is None:
            raise NotFoundError("Student not found")
        return PayerRef("student", student_id)
    if party_type == "tutor":
        raise ValidationError("Tutor credits are derived from sessions and withdrawals and cannot be adjusted")
    raise ValidationError(f"Unsupported party type: {party_type}")


async def _purchase_by_transaction_id(db: AsyncSession, transaction_id: str) -> CreditTransaction | None:
    return (
        await db.execute(select(CreditTransaction).where(CreditTransaction.transaction_id == transaction_id))
    ).scalar_one_or_none()


async def record_credit_purchase(
    db: AsyncSession,
    *,
    user_id: str,
    party_type: str,
    credits: Decimal | int | str,
    amount: Decimal | int | str,
    currency: str,
    source: str,
    transaction_id: str,
    plan_id: str | None = None,
) -> tuple[CreditTransaction, bool]:
    """Record a paid checkout. Returns ``(row, created)``; a replayed
    ``transaction_id`` returns the existing row and grants nothing."""
    if not transaction_id:
        raise ValidationError("transaction_id is required")
    credits = quantize(credits)
    if credits <= 0:
        raise ValidationError("Purchased credits must be positive")

    existing = await _purchase_by_transaction_id(db, transaction_id)
    if existing is not None:
        logger.info("Ignoring replayed purchase transaction_id=%s", transaction_id)
        return existing, False

    payer = await _payer_ref(db, party_type, user_id)
    row = CreditTransaction(
        user_id=str(user_id),
        party_type=party_type,
        amount=quantize(amount),
        currency=(currency or "").upper(),
        source=source,
        transaction_id=transaction_id,
        status="completed",
        plan_id=plan_id,
        credits_amount=credits,
    )
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent delivery of the same webhook inserted first.
        await db.rollback()
        existing = await _purchase_by_transaction_id(db, transaction_id)
        if existing is None:
            raise
        logger.info("Purchase transaction_id=%s recorded concurrently, returning replay", transaction_id)
        return existing, False
    await credit_payer(db, payer, credits)
    await record_ledger_entry(
        db,
        party_type=payer.party_type,
        party_id=payer.party_id,
        direction="credit",
        credits=credits,
        source="purchase",
        reference_type="transaction",
        reference_id=transaction_id,
        note=f"{source} purchase {plan_id or ''}".strip(),
    )
    await db.commit()
    await db.refresh(row)
    logger.info("Recorded %s purchase of %s credits for %s %s", source, credits, party_type, user_id)
    return row, True


async def adjust_credits(
    db: AsyncSession,
    *,
    actor_user_id: str,
    party_type: str,
    user_id: str,
    credits: Decimal | int | str,
    direction: str,
) -> Decimal:
    """Admin correction of a payer balance. Removing more than the balance stops at zero."""
    await require_admin(db, actor_user_id)
    if direction not in ("add", "remove"):
        raise ValidationError("direction must be add or remove")
    credits = quantize(credits)
    if credits <= 0:
        raise ValidationError("Credits must be positive")

    payer = await _payer_ref(db, party_type, user_id)
    if direction == "add":
        await credit_payer(db, payer, credits)
        moved = credits
    else:
        moved = await debit_payer_floored(db, payer, credits)
    if moved > 0:
        await record_ledger_entry(
            db,
            party_type=payer.party_type,
            party_id=payer.party_id,
            direction="credit" if direction == "add" else "debit",
            credits=moved,
            source="admin_adjustment",
            note=f"Adjusted by {actor_user_id}",
        )
    balance = await payer_credits(db, payer)
    await db.commit()
    logger.info(
        "Admin %s %s %s credits for %s %s, balance now %s",
        actor_user_id,
        "added" if direction == "add" else "removed",
        moved,
        party_type,
        user_id,
        balance,
    )
    return balance
