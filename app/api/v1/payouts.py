from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import require_internal_secret, tutor_owned_by
from app.db.session import get_db
from app.models.payouts import PayoutReport, TutorWithdrawal
from app.schemas.payouts import (
    LinkOut,
    PayoutReportGenerateIn,
    PayoutReportListOut,
    PayoutReportOut,
    ScheduledPayoutRunIn,
    StripeConnectOut,
    StripeStatusOut,
    TutorBalanceOut,
    WithdrawalCreateIn,
    WithdrawalFailIn,
    WithdrawalListOut,
    WithdrawalOut,
    WithdrawalRejectIn,
)
from app.services.access import require_admin
from app.services.auth import AuthUser, get_current_user
from app.services.currency import credits_to_amount, currency_for_region, format_currency, normalize_region
from app.services.ledger import compute_tutor_balance
from app.services.payout_reports import (
    build_payout_report,
    generate_payout_report,
    get_payout_report,
    list_payout_reports,
)
from app.services.stripe_connect import (
    connect_stripe_account,
    disconnect_stripe_account,
    get_tutor_by_user_id,
    refresh_stripe_status,
    stripe_login_link,
)
from app.services.withdrawals import (
    approve_withdrawal,
    fail_withdrawal,
    list_withdrawals,
    process_withdrawal,
    reject_withdrawal,
    request_withdrawal,
    run_scheduled_payouts,
)

router = APIRouter(tags=["payouts"])


def _to_withdrawal_out(row: TutorWithdrawal) -> WithdrawalOut:
    return WithdrawalOut(
        id=row.id,
        tutor_id=row.tutor_id,
        amount=row.amount,
        currency=row.currency,
        pricing_region=row.pricing_region,
        credit_rate=row.credit_rate,
        credits=row.credits,
        status=row.status,
        payment_method=row.payment_method,
        note=row.note,
        requested_at=row.requested_at,
        approved_by=row.approved_by,
        approved_at=row.approved_at,
        rejected_by=row.rejected_by,
        rejected_at=row.rejected_at,
        rejection_reason=row.rejection_reason,
        failed_at=row.failed_at,
        failure_reason=row.failure_reason,
        last_error=row.last_error,
        payout_provider=row.payout_provider,
        payout_transaction_id=row.payout_transaction_id,
        processed_at=row.processed_at,
    )


def _to_report_out(row: PayoutReport) -> PayoutReportOut:
    return PayoutReportOut(
        id=row.id,
        report_period_start=row.report_period_start,
        report_period_end=row.report_period_end,
        report_type=row.report_type,
        generated_by=row.generated_by,
        total_payouts=row.total_payouts,
        successful_payouts=row.successful_payouts,
        failed_payouts=row.failed_payouts,
        pending_payouts=row.pending_payouts,
        total_amount_php=row.total_amount_php,
        total_amount_usd=row.total_amount_usd,
        total_credits=row.total_credits,
        report_data=row.report_data or {},
        notes=row.notes,
        created_at=row.created_at,
    )


@router.get("/tutors/{tutor_id}/balance", response_model=TutorBalanceOut)
async def get_tutor_balance(
    tutor_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> TutorBalanceOut:
    tutor = await tutor_owned_by(db, actor, tutor_id)
    balance = await compute_tutor_balance(db, tutor.id)
    region = normalize_region(tutor.pricing_region)
    return TutorBalanceOut(
        tutor_id=tutor.id,
        pricing_region=region,
        currency=currency_for_region(region),
        earned_credits=balance.earned_credits,
        withdrawn_credits=balance.withdrawn_credits,
        available_credits=balance.available_credits,
        available_amount=credits_to_amount(balance.available_credits, region),
        available_display=format_currency(credits_to_amount(balance.available_credits, region), region),
    )


@router.post("/tutors/{tutor_id}/withdrawals", response_model=WithdrawalOut, status_code=201)
async def create_withdrawal(
    tutor_id: int,
    payload: WithdrawalCreateIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalOut:
    tutor = await tutor_owned_by(db, actor, tutor_id)
    row = await request_withdrawal(db, tutor_id=tutor.id, amount=payload.amount, note=payload.note)
    return _to_withdrawal_out(row)


@router.get("/tutors/{tutor_id}/withdrawals", response_model=WithdrawalListOut)
async def list_tutor_withdrawals(
    tutor_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalListOut:
    tutor = await tutor_owned_by(db, actor, tutor_id)
    rows, total = await list_withdrawals(db, tutor_id=tutor.id, limit=limit, offset=offset)
    return WithdrawalListOut(items=[_to_withdrawal_out(row) for row in rows], total=total)


@router.get("/admin/withdrawals", response_model=WithdrawalListOut)
async def list_all_withdrawals(
    status: str | None = Query(default=None, pattern="^(pending|approved|rejected|processing|completed|failed)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalListOut:
    await require_admin(db, actor.user_id)
    rows, total = await list_withdrawals(db, status=status, limit=limit, offset=offset)
    return WithdrawalListOut(items=[_to_withdrawal_out(row) for row in rows], total=total)


@router.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalOut)
async def approve(
    withdrawal_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalOut:
    row = await approve_withdrawal(db, withdrawal_id=withdrawal_id, actor_user_id=actor.user_id)
    return _to_withdrawal_out(row)


@router.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalOut)
async def reject(
    withdrawal_id: int,
    payload: WithdrawalRejectIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalOut:
    row = await reject_withdrawal(
        db, withdrawal_id=withdrawal_id, actor_user_id=actor.user_id, reason=payload.reason
    )
    return _to_withdrawal_out(row)


@router.post("/admin/withdrawals/{withdrawal_id}/process", response_model=WithdrawalOut)
async def process(
    withdrawal_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalOut:
    row = await process_withdrawal(db, withdrawal_id=withdrawal_id, actor_user_id=actor.user_id)
    return _to_withdrawal_out(row)


@router.post("/admin/withdrawals/{withdrawal_id}/fail", response_model=WithdrawalOut)
async def mark_failed(
    withdrawal_id: int,
    payload: WithdrawalFailIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> WithdrawalOut:
    row = await fail_withdrawal(db, withdrawal_id=withdrawal_id, actor_user_id=actor.user_id, reason=payload.reason)
    return _to_withdrawal_out(row)


@router.get("/admin/payout-reports/preview")
async def preview_payout_report(
    start_date: date,
    end_date: date,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> dict:
    await require_admin(db, actor.user_id)
    return await build_payout_report(db, start_date, end_date)


@router.post("/admin/payout-reports", response_model=PayoutReportOut, status_code=201)
async def create_payout_report(
    payload: PayoutReportGenerateIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> PayoutReportOut:
    await require_admin(db, actor.user_id)
    row = await generate_payout_report(
        db,
        payload.start_date,
        payload.end_date,
        generated_by=actor.user_id,
        notes=payload.notes,
    )
    return _to_report_out(row)


@router.get("/admin/payout-reports", response_model=PayoutReportListOut)
async def list_reports(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> PayoutReportListOut:
    await require_admin(db, actor.user_id)
    rows, total = await list_payout_reports(db, limit=limit, offset=offset)
    return PayoutReportListOut(items=[_to_report_out(row) for row in rows], total=total)


@router.get("/admin/payout-reports/{report_id}", response_model=PayoutReportOut)
async def get_report(
    report_id: int,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> PayoutReportOut:
    await require_admin(db, actor.user_id)
    return _to_report_out(await get_payout_report(db, report_id))


@router.post("/tutors/me/stripe/connect", response_model=StripeConnectOut)
async def stripe_connect(
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> StripeConnectOut:
    tutor = await get_tutor_by_user_id(db, actor.user_id)
    return StripeConnectOut(**await connect_stripe_account(db, tutor))


@router.get("/tutors/me/stripe/status", response_model=StripeStatusOut)
async def stripe_status(
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> StripeStatusOut:
    tutor = await get_tutor_by_user_id(db, actor.user_id)
    return StripeStatusOut(**await refresh_stripe_status(db, tutor))


@router.post("/tutors/me/stripe/login-link", response_model=LinkOut)
async def stripe_dashboard_link(
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> LinkOut:
    tutor = await get_tutor_by_user_id(db, actor.user_id)
    return LinkOut(**await stripe_login_link(db, tutor))


@router.post("/tutors/me/stripe/disconnect", status_code=204)
async def stripe_disconnect(
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> None:
    tutor = await get_tutor_by_user_id(db, actor.user_id)
    await disconnect_stripe_account(db, tutor)


@router.post("/internal/payouts/run", dependencies=[Depends(require_internal_secret)])
async def trigger_scheduled_payouts(
    payload: ScheduledPayoutRunIn,
    db: AsyncSession = Depends(get_db),
) -> dict:
    summary = await run_scheduled_payouts(db, today=payload.today, force=payload.force, dry_run=payload.dry_run)
    return summary.as_dict()
