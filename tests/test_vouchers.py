from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.ledger import CreditLedgerEntry
from app.models.people import Principal
from app.services.vouchers import (
    decide_voucher,
    grant_voucher,
    list_my_vouchers,
    list_voucher_requests,
    submit_voucher,
)
from conftest import make_admin, make_principal


async def _principal_credits(db, principal_id: int) -> Decimal:
    return (await db.execute(select(Principal.credits).where(Principal.id == principal_id))).scalar_one()


@pytest.mark.asyncio
async def test_submit_normalizes_code_and_blocks_duplicate_pending(db) -> None:
    principal = await make_principal(db)

    row = await submit_voucher(db, principal_user_id=principal.user_id, code="  SCHOOL   2026 ")

    assert row.code == "SCHOOL 2026"
    assert row.status == "pending"
    assert row.credits_amount == Decimal("0.00")
    with pytest.raises(ConflictError, match="already have a pending request"):
        await submit_voucher(db, principal_user_id=principal.user_id, code="SCHOOL 2026")


@pytest.mark.asyncio
async def test_only_principals_submit_and_code_is_required(db) -> None:
    await make_principal(db)
    with pytest.raises(ForbiddenError):
        await submit_voucher(db, principal_user_id="student-1", code="ABC")
    with pytest.raises(ValidationError):
        await submit_voucher(db, principal_user_id="principal-1", code="   ")


@pytest.mark.asyncio
async def test_approval_credits_principal_and_journals_once(db) -> None:
    principal = await make_principal(db, credits=2)
    admin = await make_admin(db)
    request = await submit_voucher(db, principal_user_id=principal.user_id, code="DEPED-1")

    decided = await decide_voucher(db, request.id, actor_user_id=admin, action="approve", credits=15)

    assert decided.status == "approved"
    assert decided.credits_amount == Decimal("15.00")
    assert decided.decided_by == admin
    assert await _principal_credits(db, principal.id) == Decimal("17.00")
    entry = (await db.execute(select(CreditLedgerEntry))).scalar_one()
    assert (entry.party_type, entry.direction, entry.source) == ("principal", "credit", "voucher")
    assert entry.credits == Decimal("15.00")

    with pytest.raises(ConflictError, match="Request already approved"):
        await decide_voucher(db, request.id, actor_user_id=admin, action="reject")
    assert await _principal_credits(db, principal.id) == Decimal("17.00")


@pytest.mark.asyncio
async def test_rejection_moves_no_credits(db) -> None:
    principal = await make_principal(db, credits=1)
    admin = await make_admin(db)
    request = await submit_voucher(db, principal_user_id=principal.user_id, code="BAD")

    decided = await decide_voucher(db, request.id, actor_user_id=admin, action="reject", reason="unknown code")

    assert decided.status == "rejected"
    assert decided.decision_reason == "unknown code"
    assert await _principal_credits(db, principal.id) == Decimal("1.00")
    with pytest.raises(ConflictError, match="Request already rejected"):
        await decide_voucher(db, request.id, actor_user_id=admin, action="approve", credits=5)

    again = await submit_voucher(db, principal_user_id=principal.user_id, code="BAD")
    assert again.id != request.id


@pytest.mark.asyncio
async def test_decision_validation(db) -> None:
    principal = await make_principal(db)
    admin = await make_admin(db)
    request = await submit_voucher(db, principal_user_id=principal.user_id, code="X")

    with pytest.raises(ForbiddenError):
        await decide_voucher(db, request.id, actor_user_id=principal.user_id, action="approve", credits=5)
    with pytest.raises(ValidationError, match="positive"):
        await decide_voucher(db, request.id, actor_user_id=admin, action="approve")
    with pytest.raises(ValidationError):
        await decide_voucher(db, request.id, actor_user_id=admin, action="cancel")
    with pytest.raises(NotFoundError):
        await decide_voucher(db, 999, actor_user_id=admin, action="reject")


@pytest.mark.asyncio
async def test_grant_is_superadmin_only_and_recorded_as_approved(db) -> None:
    principal = await make_principal(db, credits=3, email="Head@School.ph")
    admin = await make_admin(db)
    superadmin = await make_admin(db, "root-1", superadmin=True)

    with pytest.raises(ForbiddenError):
        await grant_voucher(db, actor_user_id=admin, principal_email="head@school.ph", credits=5)
    with pytest.raises(NotFoundError):
        await grant_voucher(db, actor_user_id=superadmin, principal_email="nobody@school.ph", credits=5)

    row, balance = await grant_voucher(db, actor_user_id=superadmin, principal_email=" HEAD@school.ph ", credits=5)

    assert balance == Decimal("8.00")
    assert row.status == "approved"
    assert row.code.startswith("MANUAL-")
    assert row.decision_reason == "Manual credit by superadmin"
    mine = await list_my_vouchers(db, principal.user_id)
    assert [r.id for r in mine] == [row.id]


@pytest.mark.asyncio
async def test_admin_list_filters_by_status(db) -> None:
    principal = await make_principal(db)
    admin = await make_admin(db)
    first = await submit_voucher(db, principal_user_id=principal.user_id, code="A")
    await submit_voucher(db, principal_user_id=principal.user_id, code="B")
    await decide_voucher(db, first.id, actor_user_id=admin, action="reject")

    rows, total = await list_voucher_requests(db, actor_user_id=admin, status="pending")

    assert total == 1
    assert rows[0].code == "B"
    _, everything = await list_voucher_requests(db, actor_user_id=admin)
    assert everything == 2
    with pytest.raises(ForbiddenError):
        await list_voucher_requests(db, actor_user_id=principal.user_id)
