"""Credit balances and the credit journal.

A tutor's balance is derived from history: credits earned on sessions minus
credits held by live withdrawals. ``tutors.credits`` only mirrors that value
and is rewritten by one UPDATE inside the caller's transaction, so it cannot
drift from the history it summarises. Payer balances (students and
principals) are plain stored counters, moved only by atomic increments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.ledger import CreditLedgerEntry
from app.models.payouts import TutorWithdrawal
from app.models.people import Principal, Student, Tutor
from app.models.schedule import Schedule
from app.services.currency import quantize

logger = logging.getLogger(__name__)

# Withdrawals in these states still hold the tutor's credits.
HELD_WITHDRAWAL_STATUSES = ("pending", "approved", "processing", "completed")

SESSION_SUCCESSFUL = "successful"
REVIEW_SUBMITTED = "review-submitted"
STUDENT_NO_SHOW = "student-no-show"
TUTOR_NO_SHOW = "tutor-no-show"


@dataclass(frozen=True, slots=True)
class TutorBalance:
    tutor_id: int
    earned_credits: Decimal
    withdrawn_credits: Decimal
    available_credits: Decimal

    def as_dict(self) -> dict[str, str | int]:
        return {
            "tutor_id": self.tutor_id,
            "earned_credits": str(self.earned_credits),
            "withdrawn_credits": str(self.withdrawn_credits),
            "available_credits": str(self.available_credits),
        }


@dataclass(frozen=True, slots=True)
class PayerRef:
    """A party that pays for sessions: a student by id or a principal by user id."""

    party_type: str
    key: int | str

    @property
    def party_id(self) -> str:
        return str(self.key)


def earned_session_clause():
    return or_(
        and_(
            Schedule.status == "confirmed",
            or_(Schedule.session_status == SESSION_SUCCESSFUL, Schedule.session_action == REVIEW_SUBMITTED),
        ),
        and_(Schedule.session_status == STUDENT_NO_SHOW, Schedule.status != "cancelled"),
    )


def is_earning_session(row: Schedule) -> bool:
    if row.session_status == STUDENT_NO_SHOW:
        return row.status != "cancelled"
    return row.status == "confirmed" and (
        row.session_status == SESSION_SUCCESSFUL or row.session_action == REVIEW_SUBMITTED
    )


def _earned_credits_stmt(tutor_id: int):
    return select(func.coalesce(func.sum(Schedule.credits_required), 0)).where(
        and_(Schedule.tutor_id == tutor_id, earned_session_clause())
    )


def _held_credits_stmt(tutor_id: int):
    return select(func.coalesce(func.sum(TutorWithdrawal.credits), 0)).where(
        and_(
            TutorWithdrawal.tutor_id == tutor_id,
            TutorWithdrawal.status.in_(HELD_WITHDRAWAL_STATUSES),
        )
    )


async def compute_tutor_balance(db: AsyncSession, tutor_id: int) -> TutorBalance:
    earned = quantize((await db.execute(_earned_credits_stmt(tutor_id))).scalar_one())
    withdrawn = quantize((await db.execute(_held_credits_stmt(tutor_id))).scalar_one())
    return TutorBalance(
        tutor_id=tutor_id,
        earned_credits=earned,
        withdrawn_credits=withdrawn,
        available_credits=earned - withdrawn,
    )


async def refresh_tutor_credits(db: AsyncSession, tutor_id: int) -> None:
    earned = _earned_credits_stmt(tutor_id).scalar_subquery()
    held = _held_credits_stmt(tutor_id).scalar_subquery()
    await db.execute(
        update(Tutor)
        .where(Tutor.id == tutor_id)
        .values(credits=earned - held)
        .execution_options(synchronize_session=False)
    )


async def record_ledger_entry(
    db: AsyncSession,
    *,
    party_type: str,
    party_id: str | int,
    direction: str,
    credits: Decimal,
    source: str,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    note: str | None = None,
) -> CreditLedgerEntry:
    ref_id = str(reference_id) if reference_id is not None else None
    # Replays of the same event (retries, double clicks) are recorded once.
    if reference_type and ref_id:
        existing = (
            await db.execute(
                select(CreditLedgerEntry).where(
                    and_(
                        CreditLedgerEntry.party_type == party_type,
                        CreditLedgerEntry.party_id == str(party_id),
                        CreditLedgerEntry.direction == direction,
                        CreditLedgerEntry.source == source,
                        CreditLedgerEntry.reference_type == reference_type,
                        CreditLedgerEntry.reference_id == ref_id,
                    )
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing

    row = CreditLedgerEntry(
        party_type=party_type,
        party_id=str(party_id),
        direction=direction,
        credits=max(quantize(credits), Decimal("0.00")),
        source=source,
        reference_type=reference_type,
        reference_id=ref_id,
        note=(note or "")[:255] or None,
    )
    db.add(row)
    await db.flush()
    return row


def _payer_target(payer: PayerRef):
    if payer.party_type == "student":
        return Student, Student.id == int(payer.key)
    if payer.party_type == "principal":
        return Principal, Principal.user_id == str(payer.key)
    raise ValidationError(f"Unsupported payer type: {payer.party_type}")


async def credit_payer(db: AsyncSession, payer: PayerRef, credits: Decimal) -> None:
    model, where = _payer_target(payer)
    amount = quantize(credits)
    result = await db.execute(
        update(model)
        .where(where)
        .values(credits=model.credits + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"{payer.party_type.capitalize()} not found")
    logger.info("Credited %s %s with %s credits", payer.party_type, payer.party_id, amount)


async def debit_payer(db: AsyncSession, payer: PayerRef, credits: Decimal) -> None:
    model, where = _payer_target(payer)
    amount = quantize(credits)
    result = await db.execute(
        update(model)
        .where(and_(where, model.credits >= amount))
        .values(credits=model.credits - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        exists = (await db.execute(select(model.id).where(where))).scalar_one_or_none()
        if exists is None:
            raise NotFoundError(f"{payer.party_type.capitalize()} not found")
        raise ValidationError("Insufficient credits")
    logger.info("Debited %s %s by %s credits", payer.party_type, payer.party_id, amount)


async def debit_payer_floored(db: AsyncSession, payer: PayerRef, credits: Decimal) -> Decimal:
    """Remove up to ``credits`` and return what was actually removed; the balance stops at zero."""
    model, where = _payer_target(payer)
    amount = quantize(credits)
    balance = (await db.execute(select(model.credits).where(where).with_for_update())).scalar_one_or_none()
    if balance is None:
        raise NotFoundError(f"{payer.party_type.capitalize()} not found")
    removed = min(amount, quantize(balance))
    if removed <= 0:
        return Decimal("0.00")
    result = await db.execute(
        update(model)
        .where(and_(where, model.credits >= removed))
        .values(credits=model.credits - removed)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Balance changed during adjustment, reload and retry")
    logger.info("Debited %s %s by %s of %s requested credits", payer.party_type, payer.party_id, removed, amount)
    return removed


async def payer_credits(db: AsyncSession, payer: PayerRef) -> Decimal:
    model, where = _payer_target(payer)
    value = (await db.execute(select(model.credits).where(where))).scalar_one_or_none()
    if value is None:
        raise NotFoundError(f"{payer.party_type.capitalize()} not found")
    return quantize(value)


def payer_for_session(row: Schedule) -> PayerRef | None:
    if row.principal_user_id:
        return PayerRef("principal", row.principal_user_id)
    if row.student_id is not None:
        return PayerRef("student", row.student_id)
    return None
