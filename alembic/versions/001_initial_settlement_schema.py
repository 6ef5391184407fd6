# alembic/versions/001_initial_settlement_schema.py
"""Initial settlement schema - wallets, escrow, payouts and webhook ledger

Revision ID: 001_initial_settlement_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates every table the settlement core owns. Money columns are integers
in minor units (kobo). Statuses are VARCHAR with CHECK constraints rather
than native enums so new states only need a constraint change.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001_initial_settlement_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json() -> sa.types.TypeEngine:
    return JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"])

    op.create_table(
        "teacher_profiles",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(26),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("automatic_payouts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payout_recipient_code", sa.String(100), nullable=True),
        sa.Column(
            "payout_method_verified", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("last_payout_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(26),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )
    op.create_index("ix_wallets_id", "wallets", ["id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("teacher_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="awaiting_payment"),
        sa.Column("payment_status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("funds_held_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funds_released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funds_refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("amount_released", sa.Integer(), nullable=True),
        sa.Column("amount_refunded", sa.Integer(), nullable=True),
        sa.Column("session_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("teacher_attended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("student_attended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completion_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("no_show_warning_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_by", sa.String(10), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("dispute_raised_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_raised_by", sa.String(26), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("dispute_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_resolution", sa.Text(), nullable=True),
        sa.Column("dispute_resolved_by", sa.String(26), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(26), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_price > 0", name="ck_bookings_total_price_positive"),
        sa.CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100", name="ck_bookings_commission_rate"
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"])
    op.create_index("ix_bookings_teacher_id", "bookings", ["teacher_id"])
    op.create_index("ix_bookings_start_time", "bookings", ["start_time"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_payment_status", "bookings", ["payment_status"])
    op.create_index(
        "ix_bookings_payment_status_end_time", "bookings", ["payment_status", "end_time"]
    )

    op.create_table(
        "payouts",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("teacher_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("status", sa.String(20), nullable=False, server_default="processing"),
        sa.Column("reference", sa.String(100), nullable=False, unique=True),
        sa.Column("transfer_code", sa.String(100), nullable=True),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("is_automatic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_payouts_amount_positive"),
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'failed')", name="ck_payouts_status"
        ),
    )
    op.create_index("ix_payouts_id", "payouts", ["id"])
    op.create_index("ix_payouts_teacher_id", "payouts", ["teacher_id"])
    op.create_index("ix_payouts_teacher_status", "payouts", ["teacher_id", "status"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("wallet_id", sa.String(26), sa.ForeignKey("wallets.id"), nullable=True),
        sa.Column("user_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("purpose", sa.String(40), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reference", sa.String(100), nullable=False, unique=True),
        sa.Column("payment_gateway", sa.String(30), nullable=True),
        sa.Column("booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("payout_id", sa.String(26), sa.ForeignKey("payouts.id"), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint("type IN ('credit', 'debit')", name="ck_transactions_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_transactions_status"
        ),
    )
    op.create_index("ix_transactions_id", "transactions", ["id"])
    op.create_index("ix_transactions_wallet_id", "transactions", ["wallet_id"])
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_booking_id", "transactions", ["booking_id"])
    op.create_index("ix_transactions_payout_id", "transactions", ["payout_id"])
    op.create_index(
        "ix_transactions_booking_purpose", "transactions", ["booking_id", "purpose"]
    )
    op.create_index(
        "ix_transactions_status_created_at", "transactions", ["status", "created_at"]
    )

    op.create_table(
        "platform_earnings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=False, unique=True
        ),
        sa.Column(
            "transaction_id", sa.String(26), sa.ForeignKey("transactions.id"), nullable=True
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("payload", _json(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("last_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])
    op.create_index("ix_webhook_events_reference", "webhook_events", ["reference"])

    op.create_table(
        "background_jobs",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("payload", _json(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_background_jobs_id", "background_jobs", ["id"])
    op.create_index("ix_background_jobs_status", "background_jobs", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "user_id", sa.String(26), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_notifications_user_read_at", "notifications", ["user_id", "read_at"])


def downgrade() -> None:
    for table in (
        "notifications",
        "background_jobs",
        "webhook_events",
        "platform_earnings",
        "transactions",
        "payouts",
        "bookings",
        "wallets",
        "teacher_profiles",
        "users",
    ):
        op.drop_table(table)
