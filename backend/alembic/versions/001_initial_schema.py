"""initial schema: users, orders, comments, stage catalogs, production, notifications

Revision ID: 001
Revises:
Create Date: 2026-09-28
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(120), nullable=True),
        sa.Column("last_name", sa.String(120), nullable=True),
        sa.Column("company", sa.String(255), nullable=True),
        sa.Column("role", sa.String(50), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("patient_name", sa.String(255), nullable=False),
        sa.Column("work_type", sa.String(50), nullable=False),
        sa.Column("selected_material", sa.String(100), nullable=False, server_default=""),
        sa.Column("selected_vita_shade", sa.String(50), nullable=False, server_default=""),
        sa.Column("tooth_constructions", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("selected_teeth", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("uploaded_files", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("case_observations", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(100), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("estimated_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=False, server_default="system"),
        sa.Column("assigned_to", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_orders_external_id", "orders", ["external_id"], unique=True)
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_created_by", "orders", ["created_by"])
    op.create_index("ix_orders_assigned_to", "orders", ["assigned_to"])
    op.create_index("ix_orders_is_active", "orders", ["is_active"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "order_comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("user_name", sa.String(255), nullable=False, server_default="Usuário"),
        sa.Column("user_role", sa.String(50), nullable=False, server_default="user"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("attachments", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_order_comments_order_id", "order_comments", ["order_id"])
    op.create_index("ix_order_comments_created_at", "order_comments", ["created_at"])

    op.create_table(
        "stages",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("color", sa.String(20), nullable=False),
        sa.Column("stroke", sa.String(20), nullable=True),
        sa.Column("background_color", sa.String(20), nullable=True),
        sa.Column("primary_color", sa.String(20), nullable=True),
        sa.Column("card_bg_color", sa.String(20), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_stages_order", "stages", ["order"])

    op.create_table(
        "production_stages",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("primary_color", sa.String(20), nullable=True),
        sa.Column("card_bg_color", sa.String(20), nullable=True),
        sa.Column("is_backward_allowed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_production_stages_order_index", "production_stages", ["order_index"])

    op.create_table(
        "production_stage_materials",
        sa.Column(
            "stage_id",
            sa.String(100),
            sa.ForeignKey("production_stages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("material", sa.String(100), primary_key=True),
    )

    op.create_table(
        "production",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("work_type", sa.String(50), nullable=True),
        sa.Column("material", sa.String(100), nullable=True),
        sa.Column("stage_id", sa.String(100), nullable=True),
        sa.Column("operator_id", sa.String(255), nullable=True),
        sa.Column("operator_name", sa.String(255), nullable=True),
        sa.Column("lot", sa.String(100), nullable=True),
        sa.Column("cam_files", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("cad_files", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("priority", sa.String(20), nullable=True),
        sa.Column("estimated_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_production_order_id", "production", ["order_id"])
    op.create_index("ix_production_material", "production", ["material"])
    op.create_index("ix_production_stage_id", "production", ["stage_id"])
    op.create_index("ix_production_operator_id", "production", ["operator_id"])
    op.create_index("ix_production_created_at", "production", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "type IN ('order_created', 'order_updated', 'status_changed', "
            "'comment_added', 'order_assigned', 'system')",
            name="chk_notification_type",
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("production")
    op.drop_table("production_stage_materials")
    op.drop_table("production_stages")
    op.drop_table("stages")
    op.drop_table("order_comments")
    op.drop_table("orders")
    op.drop_table("users")
