"""Voucher codes redeemed by principals.

A principal submits a code, an admin approves it with a credit amount or
rejects it, and only pending requests can be decided. Superadmins can also
grant credits directly, which is recorded as an already-approved request.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.people import Principal
from app.models.vouchers import VoucherRequest
from app.services.access import require_admin, require_superadmin
from app.services.currency import quantize
from app.services.ledger import PayerRef, credit_payer, payer_credits, record_ledger_entry
from app.services.notifications import notify

logger = logging.getLogger(__name__)

VOUCHER_ACTIONS = ("approve", "reject")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(raw: str | None) -> str:
    return re.sub(r"\s+", " ", (raw or "").strip())


async def _require_principal(db: AsyncSession, user_id: str) -> Principal:
    principal = (
        await db.execute(select(Principal).where(Principal.user_id == str(user_id)))
    ).scalar_one_or_none()
    if principal is None:
        raise ForbiddenError("Forbidden: principal account required")
    return principal


async def get_voucher_request(db: AsyncSession, request_id: int) -> VoucherRequest:
    row = (
        await db.execute(
            select(VoucherRequest)
            .where(VoucherRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Voucher request not found")
    return row


async def submit_voucher(db: AsyncSession, *, principal_user_id: str, code: str) -> VoucherRequest:
    clean_code = normalize_code(code)
    if not clean_code:
        raise ValidationError("Voucher code is required")
    await _require_principal(db, principal_user_id)

    duplicate = (
        await db.execute(
            select(VoucherRequest.id).where(
                and_(
                    VoucherRequest.principal_user_id == str(principal_user_id),
                    VoucherRequest.code == clean_code,
                    VoucherRequest.status == "pending",
                )
            )
        )
    ).scalar_one_or_none()
    if duplicate is not None:
        raise ConflictError("You already have a pending request for this code.")

    row = VoucherRequest(
        code=clean_code,
        principal_user_id=str(principal_user_id),
        status="pending",
        credits_amount=Decimal("0"),
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("You already have a pending request for this code.") from exc
    await db.refresh(row)
    logger.info("Voucher request id=%s submitted by principal %s", row.id, principal_user_id)
    return row


async def list_my_vouchers(db: AsyncSession, principal_user_id: str) -> list[VoucherRequest]:
    await _require_principal(db, principal_user_id)
    rows = (
        await db.execute(
            select(VoucherRequest)
            .where(VoucherRequest.principal_user_id == str(principal_user_id))
            .order_by(VoucherRequest.submitted_at.desc(), VoucherRequest.id.desc())
        )
    ).scalars().all()
    return list(rows)


async def list_voucher_requests(
    db: AsyncSession,
    *,
    actor_user_id: str,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[VoucherRequest], int]:
    await require_admin(db, actor_user_id)
    count_stmt = select(func.count(VoucherRequest.id))
    stmt = select(VoucherRequest)
    if status:
        count_stmt = count_stmt.where(VoucherRequest.status == status)
        stmt = stmt.where(VoucherRequest.status == status)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    rows = (
        await db.execute(
            stmt.order_by(VoucherRequest.submitted_at.desc(), VoucherRequest.id.desc())
            .limit(max(1, min(limit, 200)))
            .offset(max(0, offset))
        )
    ).scalars().all()
    return list(rows), total


async def decide_voucher(
    db: AsyncSession,
    request_id: int,
    *,
    actor_user_id: str,
    action: str,
    credits: Decimal | int | str | None = None,
    reason: str | None = None,
) -> VoucherRequest:
    """Approve or reject a pending request. Approving credits the principal."""
    await require_admin(db, actor_user_id)
    if action not in VOUCHER_ACTIONS:
        raise ValidationError("action must be approve or reject")
    amount = quantize(credits or 0)
    if action == "approve" and amount <= 0:
        raise ValidationError("creditsAmount must be a positive number when approving")
    await get_voucher_request(db, request_id)

    values = {
        "status": "approved" if action == "approve" else "rejected",
        "credits_amount": amount if action == "approve" else Decimal("0"),
        "decided_by": str(actor_user_id),
        "decided_at": _utc_now(),
        "decision_reason": (reason or "").strip() or None,
    }
    result = await db.execute(
        update(VoucherRequest)
        .where(and_(VoucherRequest.id == request_id, VoucherRequest.status == "pending"))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = await get_voucher_request(db, request_id)
        raise ConflictError(f"Request already {current.status}")

    row = await get_voucher_request(db, request_id)
    if action == "approve":
        payer = PayerRef("principal", row.principal_user_id)
        await credit_payer(db, payer, amount)
        await record_ledger_entry(
            db,
            party_type="principal",
            party_id=row.principal_user_id,
            direction="credit",
            credits=amount,
            source="voucher",
            reference_type="voucher_request",
            reference_id=row.id,
            note=f"Voucher {row.code}",
        )
    await db.commit()
    logger.info("Voucher request id=%s %s by %s credits=%s", row.id, row.status, actor_user_id, row.credits_amount)

    await notify(
        user_id=row.principal_user_id,
        kind=f"voucher.{row.status}",
        title="Voucher approved" if action == "approve" else "Voucher rejected",
        body=(
            f"Your voucher {row.code} added {amount} credits."
            if action == "approve"
            else f"Your voucher {row.code} was rejected."
        ),
        payload={"voucher_request_id": row.id, "credits": str(row.credits_amount)},
    )
    return row


async def grant_voucher(
    db: AsyncSession,
    *,
    actor_user_id: str,
    principal_email: str,
    credits: Decimal | int | str,
    code: str | None = None,
    reason: str | None = None,
) -> tuple[VoucherRequest, Decimal]:
    """Credit a principal directly; the grant is kept as an approved voucher request."""
    await require_superadmin(db, actor_user_id)
    email = (principal_email or "").strip().lower()
    if not email:
        raise ValidationError("principalEmail is required")
    amount = quantize(credits)
    if amount <= 0:
        raise ValidationError("creditsAmount must be a positive number")

    principal = (
        await db.execute(select(Principal).where(func.lower(Principal.email) == email))
    ).scalar_one_or_none()
    if principal is None:
        raise NotFoundError("Principal not found for that email")

    now = _utc_now()
    row = VoucherRequest(
        code=normalize_code(code) or f"MANUAL-{int(now.timestamp() * 1000):X}",
        principal_user_id=principal.user_id,
        status="approved",
        credits_amount=amount,
        submitted_at=now,
        decided_at=now,
        decided_by=str(actor_user_id),
        decision_reason=(reason or "").strip() or "Manual credit by superadmin",
    )
    db.add(row)
    await db.flush()

    payer = PayerRef("principal", principal.user_id)
    await credit_payer(db, payer, amount)
    await record_ledger_entry(
        db,
        party_type="principal",
        party_id=principal.user_id,
        direction="credit",
        credits=amount,
        source="voucher_grant",
        reference_type="voucher_request",
        reference_id=row.id,
        note=f"Granted by {actor_user_id}",
    )
    balance = await payer_credits(db, payer)
    await db.commit()
    await db.refresh(row)
    logger.info("Superadmin %s granted %s credits to principal %s", actor_user_id, amount, principal.user_id)
    return row, balance
