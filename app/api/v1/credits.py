from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import require_internal_secret
from app.db.session import get_db
from app.models.vouchers import VoucherRequest
from app.schemas.sessions import (
    CreditAdjustIn,
    CreditAdjustOut,
    CreditPurchaseIn,
    CreditPurchaseOut,
    VoucherDecisionIn,
    VoucherGrantIn,
    VoucherGrantOut,
    VoucherListOut,
    VoucherOut,
    VoucherSubmitIn,
)
from app.services.auth import AuthUser, get_current_user
from app.services.purchases import adjust_credits, record_credit_purchase
from app.services.vouchers import (
    decide_voucher,
    grant_voucher,
    list_my_vouchers,
    list_voucher_requests,
    submit_voucher,
)

router = APIRouter(tags=["credits"])


@router.post(
    "/credits/purchases",
    response_model=CreditPurchaseOut,
    dependencies=[Depends(require_internal_secret)],
)
async def record_purchase(
    payload: CreditPurchaseIn,
    db: AsyncSession = Depends(get_db),
) -> CreditPurchaseOut:
    row, created = await record_credit_purchase(
        db,
        user_id=payload.user_id,
        party_type=payload.party_type,
        credits=payload.credits,
        amount=payload.amount,
        currency=payload.currency,
        source=payload.source,
        transaction_id=payload.transaction_id,
        plan_id=payload.plan_id,
    )
    return CreditPurchaseOut(
        id=row.id,
        transaction_id=row.transaction_id,
        user_id=row.user_id,
        party_type=row.party_type,
        credits_amount=row.credits_amount,
        created=created,
    )


@router.post("/admin/credits/adjust", response_model=CreditAdjustOut)
async def admin_adjust_credits(
    payload: CreditAdjustIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> CreditAdjustOut:
    balance = await adjust_credits(
        db,
        actor_user_id=actor.user_id,
        party_type=payload.party_type,
        user_id=payload.user_id,
        credits=payload.credits,
        direction=payload.direction,
    )
    return CreditAdjustOut(party_type=payload.party_type, user_id=payload.user_id, credits=balance)


def _to_voucher_out(row: VoucherRequest) -> VoucherOut:
    return VoucherOut(
        id=row.id,
        code=row.code,
        principal_user_id=row.principal_user_id,
        status=row.status,
        credits_amount=row.credits_amount,
        submitted_at=row.submitted_at,
        decided_at=row.decided_at,
        decision_reason=row.decision_reason,
    )


@router.post("/vouchers", response_model=VoucherOut, status_code=201)
async def submit_voucher_request(
    payload: VoucherSubmitIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> VoucherOut:
    row = await submit_voucher(db, principal_user_id=actor.user_id, code=payload.code)
    return _to_voucher_out(row)


@router.get("/vouchers/me", response_model=VoucherListOut)
async def my_voucher_requests(
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> VoucherListOut:
    rows = await list_my_vouchers(db, actor.user_id)
    return VoucherListOut(items=[_to_voucher_out(row) for row in rows], total=len(rows))


@router.get("/admin/vouchers", response_model=VoucherListOut)
async def list_all_voucher_requests(
    status: str | None = Query(default=None, pattern="^(pending|approved|rejected)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> VoucherListOut:
    rows, total = await list_voucher_requests(
        db, actor_user_id=actor.user_id, status=status, limit=limit, offset=offset
    )
    return VoucherListOut(items=[_to_voucher_out(row) for row in rows], total=total)


@router.post("/admin/vouchers/{request_id}/decision", response_model=VoucherOut)
async def decide_voucher_request(
    request_id: int,
    payload: VoucherDecisionIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> VoucherOut:
    row = await decide_voucher(
        db,
        request_id,
        actor_user_id=actor.user_id,
        action=payload.action,
        credits=payload.credits,
        reason=payload.reason,
    )
    return _to_voucher_out(row)


@router.post("/admin/vouchers/grant", response_model=VoucherGrantOut)
async def grant_principal_credits(
    payload: VoucherGrantIn,
    db: AsyncSession = Depends(get_db),
    actor: AuthUser = Depends(get_current_user),
) -> VoucherGrantOut:
    row, balance = await grant_voucher(
        db,
        actor_user_id=actor.user_id,
        principal_email=payload.principal_email,
        credits=payload.credits,
        code=payload.code,
        reason=payload.reason,
    )
    return VoucherGrantOut(request=_to_voucher_out(row), principal_user_id=row.principal_user_id, credits=balance)
