"""production sync: triggers_production flag, stage mappings, one active job per order, notification outbox

Revision ID: 002
Revises: 001
Create Date: 2026-10-09
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("ALTER TABLE stages ADD COLUMN IF NOT EXISTS triggers_production BOOLEAN NOT NULL DEFAULT FALSE")
    # Stages the lab already treats as production keep doing so.
    op.execute("UPDATE stages SET triggers_production = TRUE WHERE id IN ('in_progress', 'em_producao')")

    op.create_table(
        "stage_mappings",
        sa.Column("kanban_stage_id", sa.String(100), sa.ForeignKey("stages.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "production_stage_id",
            sa.String(100),
            sa.ForeignKey("production_stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )

    # Older rows may hold several active jobs per order; keep the most recent one.
    op.execute(
        """
        UPDATE production p
        SET is_active = FALSE
        WHERE p.is_active
          AND EXISTS (
            SELECT 1 FROM production newer
            WHERE newer.order_id = p.order_id
              AND newer.is_active
              AND (newer.updated_at, newer.id) > (p.updated_at, p.id)
          )
        """
    )
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_production_active_order "
        "ON production (order_id) WHERE is_active = TRUE"
    )

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("order_number", sa.String(32), nullable=True),
        sa.Column("triggered_by_id", sa.String(255), nullable=True),
        sa.Column("recipient_user_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "type IN ('order_created', 'order_updated', 'status_changed', "
            "'comment_added', 'order_assigned', 'system')",
            name="chk_outbox_type",
        ),
        sa.CheckConstraint("status IN ('pending', 'sent', 'failed')", name="chk_outbox_status"),
    )
    op.create_index("ix_notification_outbox_order_id", "notification_outbox", ["order_id"])
    op.create_index("ix_notification_outbox_recipient_user_id", "notification_outbox", ["recipient_user_id"])
    op.create_index("ix_notification_outbox_status", "notification_outbox", ["status"])
    op.create_index("ix_notification_outbox_next_retry_at", "notification_outbox", ["next_retry_at"])
    op.create_index("ix_notification_outbox_created_at", "notification_outbox", ["created_at"])
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_outbox_pending_retry "
        "ON notification_outbox (status, next_retry_at) WHERE status = 'pending'"
    )


def downgrade() -> None:
    op.drop_table("notification_outbox")
    op.execute("DROP INDEX IF EXISTS uq_production_active_order")
    op.drop_table("stage_mappings")
    op.execute("ALTER TABLE stages DROP COLUMN IF EXISTS triggers_production")
