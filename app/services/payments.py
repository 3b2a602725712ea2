from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import UpstreamPaymentError
from app.models.payouts import TutorWithdrawal
from app.models.people import Tutor
from app.services.currency import is_ph_region

logger = logging.getLogger(__name__)


def _to_minor_units(amount: Decimal) -> int:
    cents = (Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _stripe_headers(secret_key: str) -> dict[str, str]:
    if not secret_key:
        raise UpstreamPaymentError("STRIPE_SECRET_KEY missing")
    return {"Authorization": f"Bearer {secret_key}"}


def _paymongo_basic_auth(secret_key: str) -> str:
    raw = f"{secret_key}:".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


async def _stripe_post(path: str, *, secret_key: str, form: dict[str, str], what: str) -> dict[str, Any]:
    headers = _stripe_headers(secret_key)
    try:
        async with httpx.AsyncClient(timeout=30) as client:
            res = await client.post(f"{settings.stripe_api_base}{path}", data=form, headers=headers)
    except httpx.HTTPError as exc:
        raise UpstreamPaymentError(f"Stripe {what} request failed: {exc}") from exc
    if not res.is_success:
        raise UpstreamPaymentError(f"Stripe {what} error ({res.status_code}): {res.text}")
    return res.json()


async def create_stripe_connect_account(
    *,
    secret_key: str,
    email: str | None,
    country: str = "PH",
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    form: dict[str, str] = {
        "type": "express",
        "country": country,
        "capabilities[transfers][requested]": "true",
    }
    if email:
        form["email"] = email
    for key, value in (metadata or {}).items():
        form[f"metadata[{key}]"] = value
    payload = await _stripe_post("/accounts", secret_key=secret_key, form=form, what="account")
    account_id = str(payload.get("id") or "")
    if not account_id:
        raise UpstreamPaymentError("Stripe account creation did not return an id")
    return {"account_id": account_id}


async def create_stripe_account_link(
    *,
    secret_key: str,
    account_id: str,
    refresh_url: str,
    return_url: str,
) -> dict[str, Any]:
    form = {
        "account": account_id,
        "refresh_url": refresh_url,
        "return_url": return_url,
        "type": "account_onboarding",
    }
    payload = await _stripe_post("/account_links", secret_key=secret_key, form=form, what="account link")
    url = str(payload.get("url") or "")
    if not url:
        raise UpstreamPaymentError("Stripe account link did not return a url")
    return {"url": url, "expires_at": payload.get("expires_at")}


async def retrieve_stripe_account(*, secret_key: str, account_id: str) -> dict[str, Any]:
    if not account_id:
        raise UpstreamPaymentError("Stripe account id missing")
    headers = _stripe_headers(secret_key)
    try:
        async with httpx.AsyncClient(timeout=20) as client:
            res = await client.get(f"{settings.stripe_api_base}/accounts/{account_id}", headers=headers)
    except httpx.HTTPError as exc:
        raise UpstreamPaymentError(f"Stripe account fetch failed: {exc}") from exc
    if not res.is_success:
        raise UpstreamPaymentError(f"Stripe account fetch error ({res.status_code}): {res.text}")
    payload = res.json()
    details_submitted = bool(payload.get("details_submitted"))
    payouts_enabled = bool(payload.get("payouts_enabled"))
    return {
        "account_id": str(payload.get("id") or account_id),
        "details_submitted": details_submitted,
        "charges_enabled": bool(payload.get("charges_enabled")),
        "payouts_enabled": payouts_enabled,
        "is_onboarded": details_submitted and payouts_enabled,
    }


async def create_stripe_login_link(*, secret_key: str, account_id: str) -> dict[str, Any]:
    payload = await _stripe_post(
        f"/accounts/{account_id}/login_links", secret_key=secret_key, form={}, what="login link"
    )
    url = str(payload.get("url") or "")
    if not url:
        raise UpstreamPaymentError("Stripe login link did not return a url")
    return {"url": url}


async def create_stripe_transfer(
    *,
    secret_key: str,
    account_id: str,
    amount_cents: int,
    currency: str,
    description: str = "",
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    if not account_id:
        raise UpstreamPaymentError("Stripe destination account missing")
    if amount_cents <= 0:
        raise UpstreamPaymentError("Stripe transfer amount must be positive")
    form: dict[str, str] = {
        "amount": str(amount_cents),
        "currency": currency.lower(),
        "destination": account_id,
    }
    if description:
        form["description"] = description
    for key, value in (metadata or {}).items():
        form[f"metadata[{key}]"] = value
    payload = await _stripe_post("/transfers", secret_key=secret_key, form=form, what="transfer")
    transfer_id = str(payload.get("id") or "")
    if not transfer_id:
        raise UpstreamPaymentError("Stripe transfer did not return an id")
    return {"transfer_id": transfer_id, "amount": payload.get("amount"), "currency": payload.get("currency")}


async def create_paymongo_payout(
    *,
    secret_key: str,
    amount_cents: int,
    currency: str = "PHP",
    destination: str | None = None,
    description: str = "",
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    if not secret_key:
        raise UpstreamPaymentError("PAYMONGO_SECRET_KEY missing")
    if currency.upper() != "PHP":
        raise UpstreamPaymentError("PayMongo payouts only support PHP")
    if amount_cents <= 0:
        raise UpstreamPaymentError("PayMongo payout amount must be positive")

    attributes: dict[str, Any] = {
        "amount": amount_cents,
        "currency": "PHP",
        "description": description or "Tutor payout",
        "metadata": metadata or {},
    }
    if destination:
        attributes["destination"] = destination
    headers = {
        "Authorization": f"Basic {_paymongo_basic_auth(secret_key)}",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient(timeout=30) as client:
            res = await client.post(
                f"{settings.paymongo_api_base}/payouts",
                json={"data": {"attributes": attributes}},
                headers=headers,
            )
    except httpx.HTTPError as exc:
        raise UpstreamPaymentError(f"PayMongo payout request failed: {exc}") from exc
    if not res.is_success:
        raise UpstreamPaymentError(f"PayMongo payout error ({res.status_code}): {res.text}")
    payload = res.json()
    data = payload.get("data") if isinstance(payload, dict) else None
    payout_id = str(data.get("id") or "") if isinstance(data, dict) else ""
    if not payout_id:
        raise UpstreamPaymentError("PayMongo payout did not return an id")
    status = ""
    if isinstance(data, dict) and isinstance(data.get("attributes"), dict):
        status = str(data["attributes"].get("status") or "")
    return {"payout_id": payout_id, "status": status}


@dataclass(frozen=True, slots=True)
class PayoutResult:
    provider: str
    transaction_id: str


class PayoutGateway:
    """Sends one approved withdrawal over the rail recorded on it."""

    def __init__(
        self,
        *,
        stripe_secret_key: str | None = None,
        paymongo_secret_key: str | None = None,
        transfer_currency: str | None = None,
        usd_to_php_rate: Decimal | None = None,
    ) -> None:
        self.stripe_secret_key = settings.stripe_secret_key if stripe_secret_key is None else stripe_secret_key
        self.paymongo_secret_key = (
            settings.paymongo_secret_key if paymongo_secret_key is None else paymongo_secret_key
        )
        self.transfer_currency = (transfer_currency or settings.stripe_transfer_currency).lower()
        self.usd_to_php_rate = Decimal(usd_to_php_rate or settings.usd_to_php_rate)

    def stripe_transfer_amount(self, withdrawal: TutorWithdrawal) -> Decimal:
        amount = Decimal(withdrawal.amount)
        if is_ph_region(withdrawal.pricing_region) and self.transfer_currency == "usd":
            return amount / self.usd_to_php_rate
        return amount

    async def send(self, withdrawal: TutorWithdrawal, tutor: Tutor) -> PayoutResult:
        if withdrawal.payment_method == "stripe":
            result = await create_stripe_transfer(
                secret_key=self.stripe_secret_key,
                account_id=tutor.stripe_account_id or "",
                amount_cents=_to_minor_units(self.stripe_transfer_amount(withdrawal)),
                currency=self.transfer_currency,
                description=f"Payout #{withdrawal.id}",
                metadata={"withdrawal_id": str(withdrawal.id), "tutor_id": str(tutor.id)},
            )
            logger.info("Stripe transfer %s sent for withdrawal id=%s", result["transfer_id"], withdrawal.id)
            return PayoutResult(provider="stripe", transaction_id=result["transfer_id"])

        if withdrawal.payment_method == "paymongo":
            if withdrawal.currency != "PHP":
                raise UpstreamPaymentError("PayMongo payouts only support PHP withdrawals")
            result = await create_paymongo_payout(
                secret_key=self.paymongo_secret_key,
                amount_cents=_to_minor_units(withdrawal.amount),
                destination=tutor.paymongo_account_id,
                description=f"Payout #{withdrawal.id}",
                metadata={"withdrawal_id": str(withdrawal.id), "tutor_id": str(tutor.id)},
            )
            logger.info("PayMongo payout %s sent for withdrawal id=%s", result["payout_id"], withdrawal.id)
            return PayoutResult(provider="paymongo", transaction_id=result["payout_id"])

        raise UpstreamPaymentError(f"Unsupported payout method: {withdrawal.payment_method}")
