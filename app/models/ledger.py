from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import CreditAmount, TimestampMixin


class CreditLedgerEntry(TimestampMixin, Base):
    """Append-only journal of every credit movement, for audit."""

    __tablename__ = "credit_ledger"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_credit_ledger_credits_non_negative"),
        CheckConstraint("direction in ('credit','debit')", name="ck_credit_ledger_direction"),
        CheckConstraint("party_type in ('tutor','student','principal')", name="ck_credit_ledger_party"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    party_type: Mapped[str] = mapped_column(String(20), nullable=False)
    party_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    direction: Mapped[str] = mapped_column(String(12), nullable=False)
    credits: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    source: Mapped[str] = mapped_column(String(40), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)


class CreditTransaction(TimestampMixin, Base):
    """A payer's credit purchase as reported by Stripe or PayMongo."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_transactions_transaction_id"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("credits_amount > 0", name="ck_transactions_credits_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    party_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="succeeded", nullable=False)
    plan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    credits_amount: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
