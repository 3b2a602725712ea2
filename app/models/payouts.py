from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import CreditAmount, JSONDocument, TimestampMixin, UTCDateTime, utcnow


class TutorWithdrawal(TimestampMixin, Base):
    __tablename__ = "tutor_withdrawals"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_tutor_withdrawal_amount_positive"),
        CheckConstraint("credits > 0", name="ck_tutor_withdrawal_credits_positive"),
        CheckConstraint(
            "status in ('pending','approved','rejected','processing','completed','failed')",
            name="ck_tutor_withdrawal_status",
        ),
        CheckConstraint("currency in ('PHP','USD')", name="ck_tutor_withdrawal_currency"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tutor_id: Mapped[int] = mapped_column(ForeignKey("tutors.id", ondelete="CASCADE"), index=True)
    amount: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    # Region and rate as they were when the request was made.
    pricing_region: Mapped[str] = mapped_column(String(8), nullable=False)
    credit_rate: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    credits: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True, nullable=False)

    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    payout_provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payout_transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class PayoutReport(TimestampMixin, Base):
    """Point-in-time snapshot of a payout window. Rows are written once."""

    __tablename__ = "payout_reports"
    __table_args__ = (
        CheckConstraint("report_period_start <= report_period_end", name="ck_payout_report_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    report_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    report_type: Mapped[str] = mapped_column(String(40), default="manual", nullable=False)
    generated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_payouts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_payouts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_payouts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending_payouts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount_php: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)
    total_amount_usd: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)
    total_credits: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)
    report_data: Mapped[dict] = mapped_column(JSONDocument, default=dict, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
