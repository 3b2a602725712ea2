from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import CreditAmount, TimestampMixin, UTCDateTime


class Schedule(TimestampMixin, Base):
    """A booked tutoring session."""

    __tablename__ = "schedules"
    __table_args__ = (
        CheckConstraint("credits_required > 0", name="ck_schedule_credits_positive"),
        CheckConstraint("credits_refunded >= 0", name="ck_schedule_refund_non_negative"),
        CheckConstraint("status in ('pending','confirmed','cancelled')", name="ck_schedule_status"),
        CheckConstraint(
            "student_id is not null or principal_user_id is not null",
            name="ck_schedule_has_payer",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tutor_id: Mapped[int] = mapped_column(ForeignKey("tutors.id", ondelete="CASCADE"), index=True)
    student_id: Mapped[int | None] = mapped_column(
        ForeignKey("students.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    principal_user_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    start_time_utc: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    credits_required: Mapped[Decimal] = mapped_column(CreditAmount, nullable=False)
    credits_refunded: Mapped[Decimal] = mapped_column(CreditAmount, default=Decimal("0"), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    session_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    session_action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    no_show_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
