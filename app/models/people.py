from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import CreditAmount, TimestampMixin, UTCDateTime


class Tutor(TimestampMixin, Base):
    __tablename__ = "tutors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pricing_region: Mapped[str | None] = mapped_column(String(8), default="PH", nullable=True)
    # Projection of the derived balance, written only by refresh_tutor_credits.
    credits: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)

    stripe_account_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    stripe_onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paymongo_account_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    bank_branch: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paypal_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gcash_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gcash_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    last_payout_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        if self.first_name and self.last_name and full:
            return full
        return self.email or "Unknown"


class Student(TimestampMixin, Base):
    __tablename__ = "students"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_student_credits_non_negative"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credits: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)


class Principal(TimestampMixin, Base):
    __tablename__ = "principals"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_principal_credits_non_negative"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    school_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credits: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)


class Admin(TimestampMixin, Base):
    __tablename__ = "admins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)


class Superadmin(TimestampMixin, Base):
    __tablename__ = "superadmins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
