"""voucher requests for principal credits

Revision ID: 0002_voucher_requests
Revises: 0001_initial
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_voucher_requests"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "voucher_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=120), nullable=False),
        sa.Column("principal_user_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("credits_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=64), nullable=True),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status in ('pending','approved','rejected')", name="ck_voucher_request_status"),
        sa.CheckConstraint("credits_amount >= 0", name="ck_voucher_request_credits_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_voucher_requests"),
    )
    op.create_index(
        "ix_voucher_requests_principal_user_id", "voucher_requests", ["principal_user_id"], unique=False
    )
    op.create_index("ix_voucher_requests_submitted_at", "voucher_requests", ["submitted_at"], unique=False)
    op.create_index(
        "uq_voucher_requests_pending_code",
        "voucher_requests",
        ["principal_user_id", "code"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_voucher_requests_pending_code", table_name="voucher_requests")
    op.drop_index("ix_voucher_requests_submitted_at", table_name="voucher_requests")
    op.drop_index("ix_voucher_requests_principal_user_id", table_name="voucher_requests")
    op.drop_table("voucher_requests")
