from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class SessionBookIn(BaseModel):
    tutor_id: int
    credits_required: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    start_time_utc: datetime
    duration_minutes: int = Field(default=60, ge=15, le=480)
    student_id: int | None = None
    principal_user_id: str | None = Field(default=None, max_length=64)


class NoShowIn(BaseModel):
    no_show_type: str = Field(pattern="^(student-no-show|tutor-no-show)$")


class SessionOut(BaseModel):
    id: int
    tutor_id: int
    student_id: int | None = None
    principal_user_id: str | None = None
    start_time_utc: datetime
    duration_minutes: int
    credits_required: Decimal
    credits_refunded: Decimal
    status: str
    session_status: str | None = None
    session_action: str | None = None
    no_show_type: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None


class NoShowOut(BaseModel):
    message: str
    credits_awarded: Decimal
    credits_refunded: Decimal
    session: SessionOut


class CreditPurchaseIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    party_type: str = Field(pattern="^(student|principal)$")
    credits: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(pattern="^(PHP|USD|php|usd)$")
    source: str = Field(pattern="^(stripe|paymongo)$")
    transaction_id: str = Field(min_length=1, max_length=120)
    plan_id: str | None = Field(default=None, max_length=64)


class CreditPurchaseOut(BaseModel):
    id: int
    transaction_id: str
    user_id: str
    party_type: str
    credits_amount: Decimal
    created: bool


class CreditAdjustIn(BaseModel):
    party_type: str = Field(pattern="^(student|principal|tutor)$")
    user_id: str = Field(min_length=1, max_length=64)
    credits: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    direction: str = Field(pattern="^(add|remove)$")


class CreditAdjustOut(BaseModel):
    party_type: str
    user_id: str
    credits: Decimal


class VoucherSubmitIn(BaseModel):
    code: str = Field(min_length=1, max_length=120)


class VoucherDecisionIn(BaseModel):
    action: str = Field(pattern="^(approve|reject)$")
    credits: Decimal | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    reason: str | None = Field(default=None, max_length=2000)


class VoucherGrantIn(BaseModel):
    principal_email: str = Field(min_length=3, max_length=255)
    credits: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    code: str | None = Field(default=None, max_length=120)
    reason: str | None = Field(default=None, max_length=2000)


class VoucherOut(BaseModel):
    id: int
    code: str
    principal_user_id: str
    status: str
    credits_amount: Decimal
    submitted_at: datetime
    decided_at: datetime | None = None
    decision_reason: str | None = None


class VoucherListOut(BaseModel):
    items: list[VoucherOut]
    total: int


class VoucherGrantOut(BaseModel):
    request: VoucherOut
    principal_user_id: str
    credits: Decimal
