"""credit ledger and payouts schema

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

CREDITS = sa.Numeric(12, 2)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "tutors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("pricing_region", sa.String(length=8), nullable=True),
        sa.Column("credits", CREDITS, nullable=False, server_default="0"),
        sa.Column("stripe_account_id", sa.String(length=120), nullable=True),
        sa.Column("stripe_onboarding_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("paymongo_account_id", sa.String(length=120), nullable=True),
        sa.Column("payment_method", sa.String(length=20), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("bank_account_name", sa.String(length=255), nullable=True),
        sa.Column("bank_account_number", sa.String(length=120), nullable=True),
        sa.Column("bank_branch", sa.String(length=255), nullable=True),
        sa.Column("paypal_email", sa.String(length=255), nullable=True),
        sa.Column("gcash_name", sa.String(length=255), nullable=True),
        sa.Column("gcash_number", sa.String(length=40), nullable=True),
        sa.Column("last_payout_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_tutors"),
    )
    op.create_index("ix_tutors_user_id", "tutors", ["user_id"], unique=True)

    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("credits", CREDITS, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("credits >= 0", name="ck_student_credits_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_students"),
    )
    op.create_index("ix_students_user_id", "students", ["user_id"], unique=False)

    op.create_table(
        "principals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("school_name", sa.String(length=255), nullable=True),
        sa.Column("credits", CREDITS, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("credits >= 0", name="ck_principal_credits_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_principals"),
    )
    op.create_index("ix_principals_user_id", "principals", ["user_id"], unique=True)

    for table in ("admins", "superadmins"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"], unique=True)

    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tutor_id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=True),
        sa.Column("principal_user_id", sa.String(length=64), nullable=True),
        sa.Column("start_time_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("credits_required", CREDITS, nullable=False),
        sa.Column("credits_refunded", CREDITS, nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("session_status", sa.String(length=30), nullable=True),
        sa.Column("session_action", sa.String(length=30), nullable=True),
        sa.Column("no_show_type", sa.String(length=30), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credits_required > 0", name="ck_schedule_credits_positive"),
        sa.CheckConstraint("credits_refunded >= 0", name="ck_schedule_refund_non_negative"),
        sa.CheckConstraint("status in ('pending','confirmed','cancelled')", name="ck_schedule_status"),
        sa.CheckConstraint(
            "student_id is not null or principal_user_id is not null",
            name="ck_schedule_has_payer",
        ),
        sa.ForeignKeyConstraint(
            ["tutor_id"], ["tutors.id"], name="fk_schedules_tutor_id_tutors", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_schedules_student_id_students", ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_schedules"),
    )
    op.create_index("ix_schedules_tutor_id", "schedules", ["tutor_id"], unique=False)
    op.create_index("ix_schedules_student_id", "schedules", ["student_id"], unique=False)
    op.create_index("ix_schedules_principal_user_id", "schedules", ["principal_user_id"], unique=False)

    op.create_table(
        "tutor_withdrawals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tutor_id", sa.Integer(), nullable=False),
        sa.Column("amount", CREDITS, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("pricing_region", sa.String(length=8), nullable=False),
        sa.Column("credit_rate", CREDITS, nullable=False),
        sa.Column("credits", CREDITS, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=64), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payout_provider", sa.String(length=20), nullable=True),
        sa.Column("payout_transaction_id", sa.String(length=120), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_tutor_withdrawal_amount_positive"),
        sa.CheckConstraint("credits > 0", name="ck_tutor_withdrawal_credits_positive"),
        sa.CheckConstraint(
            "status in ('pending','approved','rejected','processing','completed','failed')",
            name="ck_tutor_withdrawal_status",
        ),
        sa.CheckConstraint("currency in ('PHP','USD')", name="ck_tutor_withdrawal_currency"),
        sa.ForeignKeyConstraint(
            ["tutor_id"], ["tutors.id"], name="fk_tutor_withdrawals_tutor_id_tutors", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_tutor_withdrawals"),
    )
    op.create_index("ix_tutor_withdrawals_tutor_id", "tutor_withdrawals", ["tutor_id"], unique=False)
    op.create_index("ix_tutor_withdrawals_requested_at", "tutor_withdrawals", ["requested_at"], unique=False)

    op.create_table(
        "payout_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("report_period_start", sa.Date(), nullable=False),
        sa.Column("report_period_end", sa.Date(), nullable=False),
        sa.Column("report_type", sa.String(length=40), nullable=False, server_default="manual"),
        sa.Column("generated_by", sa.String(length=64), nullable=True),
        sa.Column("total_payouts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_payouts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_payouts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_payouts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount_php", CREDITS, nullable=False, server_default="0"),
        sa.Column("total_amount_usd", CREDITS, nullable=False, server_default="0"),
        sa.Column("total_credits", CREDITS, nullable=False, server_default="0"),
        sa.Column("report_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("report_period_start <= report_period_end", name="ck_payout_report_period"),
        sa.PrimaryKeyConstraint("id", name="pk_payout_reports"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("party_type", sa.String(length=20), nullable=False),
        sa.Column("amount", CREDITS, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("transaction_id", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("plan_id", sa.String(length=64), nullable=True),
        sa.Column("credits_amount", CREDITS, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        sa.CheckConstraint("credits_amount > 0", name="ck_transactions_credits_positive"),
        sa.UniqueConstraint("transaction_id", name="uq_transactions_transaction_id"),
        sa.PrimaryKeyConstraint("id", name="pk_transactions"),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"], unique=False)

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("party_type", sa.String(length=20), nullable=False),
        sa.Column("party_id", sa.String(length=64), nullable=False),
        sa.Column("direction", sa.String(length=12), nullable=False),
        sa.Column("credits", CREDITS, nullable=False),
        sa.Column("source", sa.String(length=40), nullable=False),
        sa.Column("reference_type", sa.String(length=40), nullable=True),
        sa.Column("reference_id", sa.String(length=120), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credits >= 0", name="ck_credit_ledger_credits_non_negative"),
        sa.CheckConstraint("direction in ('credit','debit')", name="ck_credit_ledger_direction"),
        sa.CheckConstraint("party_type in ('tutor','student','principal')", name="ck_credit_ledger_party"),
        sa.PrimaryKeyConstraint("id", name="pk_credit_ledger"),
    )
    op.create_index("ix_credit_ledger_party_id", "credit_ledger", ["party_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_credit_ledger_party_id", table_name="credit_ledger")
    op.drop_table("credit_ledger")

    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")

    op.drop_table("payout_reports")

    op.drop_index("ix_tutor_withdrawals_requested_at", table_name="tutor_withdrawals")
    op.drop_index("ix_tutor_withdrawals_tutor_id", table_name="tutor_withdrawals")
    op.drop_table("tutor_withdrawals")

    op.drop_index("ix_schedules_principal_user_id", table_name="schedules")
    op.drop_index("ix_schedules_student_id", table_name="schedules")
    op.drop_index("ix_schedules_tutor_id", table_name="schedules")
    op.drop_table("schedules")

    for table in ("superadmins", "admins"):
        op.drop_index(f"ix_{table}_user_id", table_name=table)
        op.drop_table(table)

    op.drop_index("ix_principals_user_id", table_name="principals")
    op.drop_table("principals")
    op.drop_index("ix_students_user_id", table_name="students")
    op.drop_table("students")
    op.drop_index("ix_tutors_user_id", table_name="tutors")
    op.drop_table("tutors")
