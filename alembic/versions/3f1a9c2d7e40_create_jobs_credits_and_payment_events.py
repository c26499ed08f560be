"""create_jobs_credits_and_payment_events

Revision ID: 3f1a9c2d7e40
Revises:
Create Date: 2026-10-17 09:12:44.218305

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7e40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_status = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="jobstatus")
payment_event_status = sa.Enum("RECEIVED", "PROCESSED", "FAILED", name="paymenteventstatus")
credit_transaction_type = sa.Enum(
    "USAGE", "PURCHASE", "REFUND", "ADJUSTMENT", name="credittransactiontype"
)


def upgrade() -> None:
    """Create image jobs, payment events, credit packs and the credit ledger."""
    op.create_table(
        "credit_packs",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sqlmodel.sql.sqltypes.AutoString(length=3), nullable=False),
        sa.Column(
            "stripe_price_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("popular", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "image_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("project_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("provider", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column(
            "external_task_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True
        ),
        sa.Column("status", job_status, nullable=False),
        sa.Column(
            "transformation_type", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False
        ),
        sa.Column("original_url", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("prompt", sqlmodel.sql.sqltypes.AutoString(length=2000), nullable=True),
        sa.Column("input_metadata", sa.JSON(), nullable=True),
        sa.Column("output_url", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("error_message", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True),
        sa.Column("credit_cost", sa.Integer(), nullable=False),
        sa.Column("poll_attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_image_jobs_user_id"), "image_jobs", ["user_id"])
    op.create_index(op.f("ix_image_jobs_project_id"), "image_jobs", ["project_id"])
    op.create_index(op.f("ix_image_jobs_external_task_id"), "image_jobs", ["external_task_id"])
    op.create_index(op.f("ix_image_jobs_status"), "image_jobs", ["status"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "external_event_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False
        ),
        sa.Column("event_type", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("status", payment_event_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error_detail", sqlmodel.sql.sqltypes.AutoString(length=2000), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_payment_events_external_event_id"),
        "payment_events",
        ["external_event_id"],
        unique=True,
    )
    op.create_index(op.f("ix_payment_events_status"), "payment_events", ["status"])

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", credit_transaction_type, nullable=False),
        sa.Column("related_job_id", sa.Uuid(), nullable=True),
        sa.Column("related_payment_event_id", sa.Uuid(), nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column("credit_pack_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column(
            "stripe_payment_intent_id",
            sqlmodel.sql.sqltypes.AutoString(length=255),
            nullable=True,
        ),
        sa.Column(
            "stripe_checkout_session_id",
            sqlmodel.sql.sqltypes.AutoString(length=255),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "related_job_id IS NULL OR related_payment_event_id IS NULL",
            name="ck_credit_transactions_single_reference",
        ),
        sa.ForeignKeyConstraint(["related_job_id"], ["image_jobs.id"]),
        sa.ForeignKeyConstraint(["related_payment_event_id"], ["payment_events.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("related_job_id"),
        sa.UniqueConstraint("related_payment_event_id"),
    )
    op.create_index(op.f("ix_credit_transactions_user_id"), "credit_transactions", ["user_id"])
    op.create_index(op.f("ix_credit_transactions_type"), "credit_transactions", ["type"])
    op.create_index(
        op.f("ix_credit_transactions_stripe_payment_intent_id"),
        "credit_transactions",
        ["stripe_payment_intent_id"],
    )
    op.create_index(
        op.f("ix_credit_transactions_created_at"), "credit_transactions", ["created_at"]
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table("credit_transactions")
    op.drop_table("payment_events")
    op.drop_table("image_jobs")
    op.drop_table("credit_packs")

    bind = op.get_bind()
    credit_transaction_type.drop(bind, checkfirst=True)
    payment_event_status.drop(bind, checkfirst=True)
    job_status.drop(bind, checkfirst=True)
