"""Tutor withdrawal workflow.

pending -> approved -> processing -> completed
pending -> rejected
pending | approved | processing -> failed

A withdrawal holds its snapshotted credits from the moment it is requested.
Rejected and failed withdrawals stop holding them, which is how credits are
returned to the tutor. Every status change is a compare-and-set on the
expected prior status.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import LedgerError, NotFoundError, ValidationError
from app.models.payouts import TutorWithdrawal
from app.models.people import Tutor
from app.services.access import require_admin
from app.services.currency import (
    amount_to_credits_at_rate,
    credit_rate_for_region,
    credits_to_amount,
    currency_for_region,
    format_currency,
    normalize_region,
    quantize,
)
from app.services.ledger import compute_tutor_balance, record_ledger_entry, refresh_tutor_credits
from app.services.notifications import notify
from app.services.payments import PayoutGateway
from app.services.payout_reports import generate_payout_report

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "approved", "processing")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def get_withdrawal(db: AsyncSession, withdrawal_id: int) -> TutorWithdrawal:
    row = (
        await db.execute(
            select(TutorWithdrawal)
            .where(TutorWithdrawal.id == withdrawal_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Withdrawal not found")
    return row


async def list_withdrawals(
    db: AsyncSession,
    *,
    tutor_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[TutorWithdrawal], int]:
    filters = []
    if tutor_id is not None:
        filters.append(TutorWithdrawal.tutor_id == tutor_id)
    if status:
        filters.append(TutorWithdrawal.status == status)
    where = and_(*filters) if filters else None

    count_stmt = select(func.count(TutorWithdrawal.id))
    stmt = select(TutorWithdrawal)
    if where is not None:
        count_stmt = count_stmt.where(where)
        stmt = stmt.where(where)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    rows = (
        await db.execute(
            stmt.order_by(TutorWithdrawal.requested_at.desc(), TutorWithdrawal.id.desc())
            .limit(max(1, min(limit, 200)))
            .offset(max(0, offset))
        )
    ).scalars().all()
    return list(rows), total


async def _compare_and_set(
    db: AsyncSession,
    withdrawal_id: int,
    expected: tuple[str, ...],
    values: dict[str, Any],
) -> None:
    result = await db.execute(
        update(TutorWithdrawal)
        .where(and_(TutorWithdrawal.id == withdrawal_id, TutorWithdrawal.status.in_(expected)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = await get_withdrawal(db, withdrawal_id)
        raise ValidationError(f"Withdrawal is already {current.status}")


async def _release_hold(db: AsyncSession, row: TutorWithdrawal, *, source: str, note: str) -> None:
    await record_ledger_entry(
        db,
        party_type="tutor",
        party_id=row.tutor_id,
        direction="credit",
        credits=row.credits,
        source=source,
        reference_type="withdrawal",
        reference_id=row.id,
        note=note,
    )
    await refresh_tutor_credits(db, row.tutor_id)


async def _tutor_user_id(db: AsyncSession, tutor_id: int) -> str | None:
    return (await db.execute(select(Tutor.user_id).where(Tutor.id == tutor_id))).scalar_one_or_none()


async def request_withdrawal(
    db: AsyncSession,
    *,
    tutor_id: int,
    amount: Decimal | int | str | None = None,
    note: str | None = None,
    now: datetime | None = None,
) -> TutorWithdrawal:
    """Hold credits for a payout. ``amount`` is in the tutor's home currency;
    leave it out to withdraw the whole available balance."""
    tutor = (
        await db.execute(
            select(Tutor)
            .where(Tutor.id == tutor_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if tutor is None:
        raise NotFoundError("Tutor not found")
    if not tutor.stripe_account_id and not tutor.paymongo_account_id:
        raise ValidationError("Connect a Stripe or PayMongo account before requesting a payout")

    region = normalize_region(tutor.pricing_region)
    rate = credit_rate_for_region(region)
    currency = currency_for_region(region)
    payment_method = "stripe" if tutor.stripe_account_id else "paymongo"
    if payment_method == "paymongo" and currency != "PHP":
        raise ValidationError("PayMongo payouts are only available for PHP withdrawals")

    if amount is not None:
        amount = quantize(amount)
        if amount <= 0:
            raise ValidationError("Withdrawal amount must be positive")

    balance = await compute_tutor_balance(db, tutor_id)
    minimum = quantize(settings.min_payout_credits)
    if balance.available_credits < minimum:
        raise ValidationError(f"Minimum payout is {minimum} credits; available is {balance.available_credits}")

    if amount is None:
        credits = balance.available_credits
        amount = credits_to_amount(credits, region)
    else:
        credits = amount_to_credits_at_rate(amount, rate)
        if credits <= 0:
            raise ValidationError("Withdrawal amount is smaller than one cent of a credit")
        if credits > balance.available_credits:
            raise ValidationError(
                f"Insufficient credits: requested {credits}, available {balance.available_credits}"
            )

    row = TutorWithdrawal(
        tutor_id=tutor_id,
        amount=amount,
        currency=currency,
        pricing_region=region,
        credit_rate=rate,
        credits=credits,
        status="pending",
        payment_method=payment_method,
        note=(note or "").strip() or None,
        requested_at=now or _utc_now(),
    )
    db.add(row)
    await db.flush()
    await record_ledger_entry(
        db,
        party_type="tutor",
        party_id=tutor_id,
        direction="debit",
        credits=credits,
        source="withdrawal_hold",
        reference_type="withdrawal",
        reference_id=row.id,
        note=f"Withdrawal #{row.id} requested",
    )
    await refresh_tutor_credits(db, tutor_id)
    await db.commit()
    await db.refresh(row)
    logger.info(
        "Withdrawal id=%s requested by tutor_id=%s: %s (%s credits via %s)",
        row.id,
        tutor_id,
        format_currency(amount, region),
        credits,
        payment_method,
    )
    return row


async def approve_withdrawal(db: AsyncSession, *, withdrawal_id: int, actor_user_id: str) -> TutorWithdrawal:
    await require_admin(db, actor_user_id)
    await get_withdrawal(db, withdrawal_id)
    await _compare_and_set(
        db,
        withdrawal_id,
        ("pending",),
        {"status": "approved", "approved_by": str(actor_user_id), "approved_at": _utc_now()},
    )
    await db.commit()
    row = await get_withdrawal(db, withdrawal_id)
    logger.info("Withdrawal id=%s approved by %s", withdrawal_id, actor_user_id)
    await notify(
        user_id=await _tutor_user_id(db, row.tutor_id),
        kind="withdrawal.approved",
        title="Withdrawal approved",
        body=f"Your withdrawal of {format_currency(row.amount, row.pricing_region)} was approved.",
        payload={"withdrawal_id": row.id},
    )
    return row


async def reject_withdrawal(
    db: AsyncSession,
    *,
    withdrawal_id: int,
    actor_user_id: str,
    reason: str,
) -> TutorWithdrawal:
    clean_reason = (reason or "").strip()
    if not clean_reason:
        raise ValidationError("A rejection reason is required")
    await require_admin(db, actor_user_id)
    await get_withdrawal(db, withdrawal_id)
    await _compare_and_set(
        db,
        withdrawal_id,
        ("pending",),
        {
            "status": "rejected",
            "rejected_by": str(actor_user_id),
            "rejected_at": _utc_now(),
            "rejection_reason": clean_reason,
        },
    )
    row = await get_withdrawal(db, withdrawal_id)
    await _release_hold(db, row, source="withdrawal_reversal", note=f"Withdrawal #{row.id} rejected")
    await db.commit()
    logger.info("Withdrawal id=%s rejected by %s, %s credits returned", row.id, actor_user_id, row.credits)
    await notify(
        user_id=await _tutor_user_id(db, row.tutor_id),
        kind="withdrawal.rejected",
        title="Withdrawal rejected",
        body=f"Your withdrawal was rejected: {clean_reason}. The credits are back in your balance.",
        payload={"withdrawal_id": row.id, "credits": str(row.credits)},
    )
    return row


async def process_withdrawal(
    db: AsyncSession,
    *,
    withdrawal_id: int,
    actor_user_id: str,
    gateway: PayoutGateway | None = None,
) -> TutorWithdrawal:
    """Send an approved withdrawal over its payment rail.

    A failed gateway call puts the row back to ``approved`` with
    ``last_error`` filled in and re-raises; nothing is retried here.
    """
    await require_admin(db, actor_user_id)
    row = await get_withdrawal(db, withdrawal_id)
    if row.status != "approved":
        raise ValidationError(f"Withdrawal must be approved before processing (status is {row.status})")
    await _compare_and_set(db, withdrawal_id, ("approved",), {"status": "processing", "last_error": None})
    await db.commit()

    row = await get_withdrawal(db, withdrawal_id)
    tutor = await db.get(Tutor, row.tutor_id)
    gateway = gateway or PayoutGateway()
    try:
        result = await gateway.send(row, tutor)
    except Exception as exc:
        logger.exception("Payout for withdrawal id=%s failed", withdrawal_id)
        await _compare_and_set(
            db, withdrawal_id, ("processing",), {"status": "approved", "last_error": str(exc)[:2000]}
        )
        await db.commit()
        raise

    processed_at = _utc_now()
    await _compare_and_set(
        db,
        withdrawal_id,
        ("processing",),
        {
            "status": "completed",
            "payout_provider": result.provider,
            "payout_transaction_id": result.transaction_id,
            "processed_at": processed_at,
        },
    )
    await db.execute(
        update(Tutor)
        .where(Tutor.id == row.tutor_id)
        .values(last_payout_date=processed_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    row = await get_withdrawal(db, withdrawal_id)
    logger.info(
        "Withdrawal id=%s completed via %s (%s)", row.id, row.payout_provider, row.payout_transaction_id
    )
    await notify(
        user_id=tutor.user_id if tutor else None,
        kind="withdrawal.completed",
        title="Payout sent",
        body=f"{format_currency(row.amount, row.pricing_region)} is on its way.",
        payload={"withdrawal_id": row.id, "provider": row.payout_provider},
    )
    return row


async def fail_withdrawal(
    db: AsyncSession,
    *,
    withdrawal_id: int,
    actor_user_id: str,
    reason: str,
) -> TutorWithdrawal:
    clean_reason = (reason or "").strip()
    if not clean_reason:
        raise ValidationError("A failure reason is required")
    await require_admin(db, actor_user_id)
    await get_withdrawal(db, withdrawal_id)
    await _compare_and_set(
        db,
        withdrawal_id,
        OPEN_STATUSES,
        {"status": "failed", "failed_at": _utc_now(), "failure_reason": clean_reason},
    )
    row = await get_withdrawal(db, withdrawal_id)
    await _release_hold(db, row, source="withdrawal_reversal", note=f"Withdrawal #{row.id} failed")
    await db.commit()
    logger.warning("Withdrawal id=%s marked failed by %s: %s", row.id, actor_user_id, clean_reason)
    return row


def is_payout_day(day: date) -> bool:
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.day in (15, last_day)


@dataclass(slots=True)
class PayoutRunSummary:
    run_date: date
    is_payout_day: bool
    dry_run: bool
    skipped: bool = False
    created: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    report_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "is_payout_day": self.is_payout_day,
            "dry_run": self.dry_run,
            "skipped": self.skipped,
            "created": self.created,
            "failures": self.failures,
            "report_id": self.report_id,
        }


async def run_scheduled_payouts(
    db: AsyncSession,
    *,
    today: date | None = None,
    force: bool = False,
    dry_run: bool = False,
) -> PayoutRunSummary:
    run_date = today or _utc_now().date()
    summary = PayoutRunSummary(run_date=run_date, is_payout_day=is_payout_day(run_date), dry_run=dry_run)
    if not summary.is_payout_day and not force:
        summary.skipped = True
        logger.info("Skipping scheduled payouts, %s is not a payout day", run_date)
        return summary

    tutors = (
        await db.execute(
            select(Tutor)
            .where(or_(Tutor.stripe_account_id.is_not(None), Tutor.paymongo_account_id.is_not(None)))
            .order_by(Tutor.id)
        )
    ).scalars().all()
    tutor_ids = [t.id for t in tutors]
    requested_at = _utc_now() if today is None else datetime.combine(run_date, time(0, 5), tzinfo=timezone.utc)
    minimum = quantize(settings.min_payout_credits)

    for tutor_id in tutor_ids:
        balance = await compute_tutor_balance(db, tutor_id)
        if balance.available_credits < minimum:
            continue
        if dry_run:
            summary.created.append({"tutor_id": tutor_id, "credits": str(balance.available_credits)})
            continue
        try:
            row = await request_withdrawal(db, tutor_id=tutor_id, note="Automatic payout", now=requested_at)
        except LedgerError as exc:
            await db.rollback()
            logger.warning("Automatic payout for tutor_id=%s skipped: %s", tutor_id, exc.message)
            summary.failures.append({"tutor_id": tutor_id, "error": exc.message})
            continue
        summary.created.append(
            {
                "tutor_id": tutor_id,
                "withdrawal_id": row.id,
                "credits": str(row.credits),
                "amount": str(row.amount),
                "currency": row.currency,
            }
        )

    if summary.created and not dry_run:
        report = await generate_payout_report(
            db,
            run_date,
            run_date,
            generated_by="system",
            report_type="automatic_payout",
            notes=f"Automatic payout run: {len(summary.created)} withdrawals requested",
        )
        summary.report_id = report.id

    logger.info(
        "Scheduled payouts for %s: %s requested, %s failed (dry_run=%s)",
        run_date,
        len(summary.created),
        len(summary.failures),
        dry_run,
    )
    return summary
