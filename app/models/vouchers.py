from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import CreditAmount, TimestampMixin, UTCDateTime, utcnow


class VoucherRequest(TimestampMixin, Base):
    """A principal's request to redeem a voucher code for credits."""

    __tablename__ = "voucher_requests"
    __table_args__ = (
        CheckConstraint("status in ('pending','approved','rejected')", name="ck_voucher_request_status"),
        CheckConstraint("credits_amount >= 0", name="ck_voucher_request_credits_non_negative"),
        # One open request per code and principal; decided rows may repeat.
        Index(
            "uq_voucher_requests_pending_code",
            "principal_user_id",
            "code",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(120), nullable=False)
    principal_user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    credits_amount: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True, nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
