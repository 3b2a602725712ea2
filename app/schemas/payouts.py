from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class TutorBalanceOut(BaseModel):
    tutor_id: int
    pricing_region: str
    currency: str
    earned_credits: Decimal
    withdrawn_credits: Decimal
    available_credits: Decimal
    available_amount: Decimal
    available_display: str


class WithdrawalCreateIn(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    note: str | None = Field(default=None, max_length=2000)


class WithdrawalRejectIn(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class WithdrawalFailIn(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class WithdrawalOut(BaseModel):
    id: int
    tutor_id: int
    amount: Decimal
    currency: str
    pricing_region: str
    credit_rate: Decimal
    credits: Decimal
    status: str
    payment_method: str
    note: str | None = None
    requested_at: datetime
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    last_error: str | None = None
    payout_provider: str | None = None
    payout_transaction_id: str | None = None
    processed_at: datetime | None = None


class WithdrawalListOut(BaseModel):
    items: list[WithdrawalOut]
    total: int


class ScheduledPayoutRunIn(BaseModel):
    today: date | None = None
    force: bool = False
    dry_run: bool = False


class PayoutReportGenerateIn(BaseModel):
    start_date: date
    end_date: date
    notes: str | None = Field(default=None, max_length=4000)


class PayoutReportOut(BaseModel):
    id: int
    report_period_start: date
    report_period_end: date
    report_type: str
    generated_by: str | None = None
    total_payouts: int
    successful_payouts: int
    failed_payouts: int
    pending_payouts: int
    total_amount_php: Decimal
    total_amount_usd: Decimal
    total_credits: Decimal
    report_data: dict[str, Any]
    notes: str | None = None
    created_at: datetime


class PayoutReportListOut(BaseModel):
    items: list[PayoutReportOut]
    total: int


class StripeConnectOut(BaseModel):
    account_id: str
    url: str


class StripeStatusOut(BaseModel):
    connected: bool
    is_onboarded: bool
    account_id: str | None = None
    details_submitted: bool = False
    charges_enabled: bool = False
    payouts_enabled: bool = False


class LinkOut(BaseModel):
    url: str
