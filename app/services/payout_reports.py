from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.models.payouts import PayoutReport, TutorWithdrawal
from app.models.people import Tutor
from app.services.currency import amount_to_credits, is_ph_region, normalize_region, quantize

logger = logging.getLogger(__name__)

SUCCESSFUL_STATUSES = ("completed",)
FAILED_STATUSES = ("failed", "rejected")
PENDING_STATUSES = ("pending", "approved", "processing")


def _as_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _period_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    if start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")
    return (
        datetime.combine(start_date, time.min, tzinfo=timezone.utc),
        datetime.combine(end_date, time.max, tzinfo=timezone.utc),
    )


def _payout_details(tutor: Tutor) -> dict[str, Any]:
    return {
        "payment_method": tutor.payment_method,
        "stripe_account_id": tutor.stripe_account_id,
        "paymongo_account_id": tutor.paymongo_account_id,
        "bank_name": tutor.bank_name,
        "bank_account_name": tutor.bank_account_name,
        "bank_account_number": tutor.bank_account_number,
        "bank_branch": tutor.bank_branch,
        "paypal_email": tutor.paypal_email,
        "gcash_name": tutor.gcash_name,
        "gcash_number": tutor.gcash_number,
    }


def _payout_row(withdrawal: TutorWithdrawal, tutor: Tutor) -> dict[str, Any]:
    return {
        "withdrawal_id": withdrawal.id,
        "tutor_id": tutor.id,
        "tutor_name": tutor.display_name,
        "tutor_email": tutor.email,
        "pricing_region": withdrawal.pricing_region,
        "current_pricing_region": normalize_region(tutor.pricing_region),
        "is_international": not is_ph_region(withdrawal.pricing_region),
        "currency": withdrawal.currency,
        "amount": str(quantize(withdrawal.amount)),
        "credits": str(quantize(withdrawal.credits)),
        "credit_rate": str(quantize(withdrawal.credit_rate)),
        # Audit only: what the amount would be worth under the tutor's region today.
        "credits_at_current_region": str(amount_to_credits(withdrawal.amount, tutor.pricing_region)),
        "status": withdrawal.status,
        "payment_method": withdrawal.payment_method,
        "payout_provider": withdrawal.payout_provider,
        "payout_transaction_id": withdrawal.payout_transaction_id,
        "requested_at": _as_iso(withdrawal.requested_at),
        "processed_at": _as_iso(withdrawal.processed_at),
        "note": withdrawal.note,
        "rejection_reason": withdrawal.rejection_reason,
        "payout_details": _payout_details(tutor),
        "tutor_current_credits": str(quantize(tutor.credits)),
    }


async def build_payout_report(db: AsyncSession, start_date: date, end_date: date) -> dict[str, Any]:
    """Collect the withdrawals requested in ``[start_date, end_date]`` (UTC days).

    PHP and USD totals are kept apart; they are never added together.
    """
    start_dt, end_dt = _period_bounds(start_date, end_date)
    rows = (
        await db.execute(
            select(TutorWithdrawal, Tutor)
            .join(Tutor, Tutor.id == TutorWithdrawal.tutor_id)
            .where(and_(TutorWithdrawal.requested_at >= start_dt, TutorWithdrawal.requested_at <= end_dt))
            .order_by(TutorWithdrawal.requested_at.desc(), TutorWithdrawal.id.desc())
        )
    ).all()

    payouts: list[dict[str, Any]] = []
    total_php = Decimal("0.00")
    total_usd = Decimal("0.00")
    total_credits = Decimal("0.00")
    successful = failed = pending = 0
    for withdrawal, tutor in rows:
        payouts.append(_payout_row(withdrawal, tutor))
        if withdrawal.currency == "PHP":
            total_php += quantize(withdrawal.amount)
        else:
            total_usd += quantize(withdrawal.amount)
        total_credits += quantize(withdrawal.credits)
        if withdrawal.status in SUCCESSFUL_STATUSES:
            successful += 1
        elif withdrawal.status in FAILED_STATUSES:
            failed += 1
        elif withdrawal.status in PENDING_STATUSES:
            pending += 1

    summary = {
        "total_payouts": len(payouts),
        "successful_payouts": successful,
        "failed_payouts": failed,
        "pending_payouts": pending,
        "total_amount_php": str(quantize(total_php)),
        "total_amount_usd": str(quantize(total_usd)),
        "total_credits": str(quantize(total_credits)),
        "credit_rate": str(settings.credit_to_php_rate),
        "credit_rate_usd": str(settings.credit_to_usd_rate),
        "period_start": start_date.isoformat(),
        "period_end": end_date.isoformat(),
    }
    return {"summary": summary, "payouts": payouts}


async def generate_payout_report(
    db: AsyncSession,
    start_date: date,
    end_date: date,
    *,
    generated_by: str | None = None,
    report_type: str = "manual",
    notes: str | None = None,
) -> PayoutReport:
    data = await build_payout_report(db, start_date, end_date)
    summary = data["summary"]
    row = PayoutReport(
        report_period_start=start_date,
        report_period_end=end_date,
        report_type=report_type,
        generated_by=generated_by,
        total_payouts=summary["total_payouts"],
        successful_payouts=summary["successful_payouts"],
        failed_payouts=summary["failed_payouts"],
        pending_payouts=summary["pending_payouts"],
        total_amount_php=Decimal(summary["total_amount_php"]),
        total_amount_usd=Decimal(summary["total_amount_usd"]),
        total_credits=Decimal(summary["total_credits"]),
        report_data=data,
        notes=notes,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.info(
        "Generated %s payout report id=%s for %s..%s with %s payouts",
        report_type,
        row.id,
        start_date,
        end_date,
        row.total_payouts,
    )
    return row


async def get_payout_report(db: AsyncSession, report_id: int) -> PayoutReport:
    row = await db.get(PayoutReport, report_id)
    if row is None:
        raise NotFoundError("Payout report not found")
    return row


async def list_payout_reports(
    db: AsyncSession, *, limit: int = 20, offset: int = 0
) -> tuple[list[PayoutReport], int]:
    limit = max(1, min(int(limit), 100))
    offset = max(0, int(offset))
    total = int((await db.execute(select(func.count(PayoutReport.id)))).scalar_one() or 0)
    rows = (
        await db.execute(
            select(PayoutReport)
            .order_by(PayoutReport.created_at.desc(), PayoutReport.id.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return list(rows), total
