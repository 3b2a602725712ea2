from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.models.people import Admin, Principal, Tutor
from app.models.schedule import Schedule
from conftest import auth_headers

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


async def _seed(session_factory) -> dict[str, int]:
    async with session_factory() as db:
        tutor = Tutor(user_id="tutor-1", first_name="Maria", last_name="Santos", pricing_region="PH", stripe_account_id="acct_1")
        db.add_all([tutor, Admin(user_id="admin-1"), Principal(user_id="principal-1", credits=Decimal("0"))])
        await db.flush()
        session = Schedule(
            tutor_id=tutor.id,
            principal_user_id="principal-1",
            start_time_utc=datetime.now(timezone.utc) + timedelta(days=3),
            credits_required=Decimal("10"),
            status="confirmed",
        )
        db.add(session)
        await db.commit()
        return {"tutor_id": tutor.id, "session_id": session.id}


@pytest.mark.asyncio
async def test_health(client) -> None:
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_requires_bearer_token(client, session_factory) -> None:
    ids = await _seed(session_factory)
    res = await client.get(f"/api/v1/tutors/{ids['tutor_id']}/balance")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_tutor_payout_flow_over_http(client, session_factory) -> None:
    ids = await _seed(session_factory)
    tutor_headers = auth_headers("tutor-1")
    admin_headers = auth_headers("admin-1")

    res = await client.post(f"/api/v1/sessions/{ids['session_id']}/complete", headers=tutor_headers)
    assert res.status_code == 200, res.text
    assert res.json()["session_status"] == "successful"

    res = await client.get(f"/api/v1/tutors/{ids['tutor_id']}/balance", headers=tutor_headers)
    assert res.status_code == 200
    body = res.json()
    assert Decimal(body["available_credits"]) == Decimal("10")
    assert body["available_display"] == "₱900.00"

    res = await client.post(
        f"/api/v1/tutors/{ids['tutor_id']}/withdrawals", json={"amount": "900"}, headers=tutor_headers
    )
    assert res.status_code == 201, res.text
    withdrawal_id = res.json()["id"]

    res = await client.post(f"/api/v1/admin/withdrawals/{withdrawal_id}/approve", headers=tutor_headers)
    assert res.status_code == 403

    res = await client.post(
        f"/api/v1/admin/withdrawals/{withdrawal_id}/reject",
        json={"reason": "bank details invalid"},
        headers=admin_headers,
    )
    assert res.status_code == 200
    assert res.json()["status"] == "rejected"

    res = await client.post(f"/api/v1/admin/withdrawals/{withdrawal_id}/approve", headers=admin_headers)
    assert res.status_code == 400
    assert res.json() == {"detail": "Withdrawal is already rejected"}

    res = await client.get(f"/api/v1/tutors/{ids['tutor_id']}/balance", headers=tutor_headers)
    assert Decimal(res.json()["available_credits"]) == Decimal("10")


@pytest.mark.asyncio
async def test_other_users_cannot_read_a_tutor_balance(client, session_factory) -> None:
    ids = await _seed(session_factory)
    res = await client.get(f"/api/v1/tutors/{ids['tutor_id']}/balance", headers=auth_headers("someone-else"))
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_no_show_conflict_over_http(client, session_factory) -> None:
    ids = await _seed(session_factory)
    principal_headers = auth_headers("principal-1")

    await client.post(f"/api/v1/sessions/{ids['session_id']}/complete", headers=auth_headers("tutor-1"))
    res = await client.post(
        f"/api/v1/sessions/{ids['session_id']}/no-show",
        json={"no_show_type": "tutor-no-show"},
        headers=principal_headers,
    )

    assert res.status_code == 409
    assert "already been marked as successful" in res.json()["detail"]


@pytest.mark.asyncio
async def test_tutor_no_show_over_http(client, session_factory) -> None:
    ids = await _seed(session_factory)

    res = await client.post(
        f"/api/v1/sessions/{ids['session_id']}/no-show",
        json={"no_show_type": "tutor-no-show"},
        headers=auth_headers("principal-1"),
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert Decimal(body["credits_refunded"]) == Decimal("10")
    assert body["session"]["no_show_type"] == "tutor-no-show"


@pytest.mark.asyncio
async def test_reports_are_admin_only(client, session_factory) -> None:
    await _seed(session_factory)
    payload = {"start_date": "2026-03-01", "end_date": "2026-03-07"}

    res = await client.post("/api/v1/admin/payout-reports", json=payload, headers=auth_headers("tutor-1"))
    assert res.status_code == 403

    res = await client.post("/api/v1/admin/payout-reports", json=payload, headers=auth_headers("admin-1"))
    assert res.status_code == 201
    report_id = res.json()["id"]
    assert res.json()["generated_by"] == "admin-1"

    res = await client.get("/api/v1/admin/payout-reports", headers=auth_headers("admin-1"))
    assert res.json()["total"] == 1
    res = await client.get(f"/api/v1/admin/payout-reports/{report_id}", headers=auth_headers("admin-1"))
    assert res.json()["report_data"]["summary"]["total_payouts"] == 0

    res = await client.get(
        "/api/v1/admin/payout-reports/preview",
        params={"start_date": "2026-03-08", "end_date": "2026-03-01"},
        headers=auth_headers("admin-1"),
    )
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_purchase_webhook_and_cron_need_secret(client, session_factory) -> None:
    await _seed(session_factory)
    purchase = {
        "user_id": "principal-1",
        "party_type": "principal",
        "credits": "5",
        "amount": "450",
        "currency": "PHP",
        "source": "paymongo",
        "transaction_id": "pay_1",
    }

    res = await client.post("/api/v1/credits/purchases", json=purchase)
    assert res.status_code == 401

    res = await client.post("/api/v1/credits/purchases", json=purchase, headers=CRON_HEADERS)
    assert res.status_code == 200, res.text
    assert res.json()["created"] is True
    res = await client.post("/api/v1/credits/purchases", json=purchase, headers=CRON_HEADERS)
    assert res.json()["created"] is False

    res = await client.post(
        "/api/v1/internal/payouts/run", json={"today": "2026-03-03"}, headers=CRON_HEADERS
    )
    assert res.status_code == 200
    assert res.json()["skipped"] is True


@pytest.mark.asyncio
async def test_voucher_flow_over_http(client, session_factory) -> None:
    await _seed(session_factory)
    principal_headers = auth_headers("principal-1")
    admin_headers = auth_headers("admin-1")

    res = await client.post("/api/v1/vouchers", json={"code": "DEPED 2026"}, headers=principal_headers)
    assert res.status_code == 201, res.text
    request_id = res.json()["id"]

    res = await client.post("/api/v1/vouchers", json={"code": "DEPED 2026"}, headers=principal_headers)
    assert res.status_code == 409

    res = await client.post(
        f"/api/v1/admin/vouchers/{request_id}/decision",
        json={"action": "approve", "credits": "12"},
        headers=admin_headers,
    )
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "approved"

    res = await client.post(
        f"/api/v1/admin/vouchers/{request_id}/decision", json={"action": "reject"}, headers=admin_headers
    )
    assert res.status_code == 409
    assert res.json() == {"detail": "Request already approved"}

    res = await client.get("/api/v1/vouchers/me", headers=principal_headers)
    assert res.json()["total"] == 1
    assert Decimal(res.json()["items"][0]["credits_amount"]) == Decimal("12")


@pytest.mark.asyncio
async def test_stripe_disconnect_over_http(client, session_factory) -> None:
    await _seed(session_factory)

    res = await client.post("/api/v1/tutors/me/stripe/disconnect", headers=auth_headers("tutor-1"))
    assert res.status_code == 204

    res = await client.post("/api/v1/tutors/me/stripe/disconnect", headers=auth_headers("principal-1"))
    assert res.status_code == 404
