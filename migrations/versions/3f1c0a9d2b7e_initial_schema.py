"""initial schema: causes, orders, donations, audit_log

Revision ID: 3f1c0a9d2b7e
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f1c0a9d2b7e"
down_revision = None
branch_labels = None
depends_on = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _jsonb(sa_json):
    # Portable: JSON on SQLite, JSONB on Postgres
    return sa_json.with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade():
    # --- causes ---
    op.create_table(
        "causes",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("raised_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("goal_cents", sa.Integer(), nullable=False, server_default="77700"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("raised_cents >= 0", name="ck_causes_raised_nonneg"),
        sa.CheckConstraint("goal_cents > 0", name="ck_causes_goal_positive"),
    )
    with op.batch_alter_table("causes") as batch_op:
        batch_op.create_index(batch_op.f("ix_causes_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_causes_updated_at"), ["updated_at"], unique=False)

    # --- orders ---
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_number", sa.String(length=120), nullable=False),
        sa.Column("session_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("amount_total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("donation_cents", sa.Integer(), nullable=False),
        sa.Column("cause_id", sa.String(length=64), nullable=True),
        sa.Column("cause_name", sa.String(length=200), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_name", sa.String(length=160), nullable=True),
        sa.Column("payment_mode", sa.String(length=10), nullable=True),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_total_cents >= 0", name="ck_orders_amount_nonneg"),
        sa.CheckConstraint("donation_cents >= 0", name="ck_orders_donation_nonneg"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_orders_status"),
    )
    with op.batch_alter_table("orders") as batch_op:
        batch_op.create_index(batch_op.f("ix_orders_order_number"), ["order_number"], unique=True)
        batch_op.create_index(batch_op.f("ix_orders_session_id"), ["session_id"], unique=True)
        batch_op.create_index(batch_op.f("ix_orders_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_cause_id"), ["cause_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_customer_email"), ["customer_email"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_updated_at"), ["updated_at"], unique=False)
        batch_op.create_index("ix_orders_status_created", ["status", "created_at"], unique=False)

    # --- donations ---
    op.create_table(
        "donations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("submission_id", sa.String(length=120), nullable=True),
        sa.Column("cause_id", sa.String(length=64), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("order_id", name="uq_donations_order_id"),
        sa.UniqueConstraint("submission_id", name="uq_donations_submission_id"),
        sa.CheckConstraint("amount_cents > 0", name="ck_donations_amount_positive"),
    )
    with op.batch_alter_table("donations") as batch_op:
        batch_op.create_index(batch_op.f("ix_donations_cause_id"), ["cause_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_customer_email"), ["customer_email"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_created_at"), ["created_at"], unique=False)
        batch_op.create_index("ix_donations_cause_created", ["cause_id", "created_at"], unique=False)

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=120), nullable=True),
        sa.Column("details", _jsonb(sa.JSON()), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    with op.batch_alter_table("audit_log") as batch_op:
        batch_op.create_index(batch_op.f("ix_audit_log_action"), ["action"], unique=False)
        batch_op.create_index(batch_op.f("ix_audit_log_created_at"), ["created_at"], unique=False)
        batch_op.create_index("ix_audit_log_entity", ["entity_type", "entity_id"], unique=False)


def downgrade():
    with op.batch_alter_table("audit_log") as batch_op:
        batch_op.drop_index("ix_audit_log_entity")
        batch_op.drop_index(batch_op.f("ix_audit_log_created_at"))
        batch_op.drop_index(batch_op.f("ix_audit_log_action"))
    op.drop_table("audit_log")

    with op.batch_alter_table("donations") as batch_op:
        batch_op.drop_index("ix_donations_cause_created")
        batch_op.drop_index(batch_op.f("ix_donations_created_at"))
        batch_op.drop_index(batch_op.f("ix_donations_customer_email"))
        batch_op.drop_index(batch_op.f("ix_donations_cause_id"))
    op.drop_table("donations")

    with op.batch_alter_table("orders") as batch_op:
        batch_op.drop_index("ix_orders_status_created")
        batch_op.drop_index(batch_op.f("ix_orders_updated_at"))
        batch_op.drop_index(batch_op.f("ix_orders_created_at"))
        batch_op.drop_index(batch_op.f("ix_orders_customer_email"))
        batch_op.drop_index(batch_op.f("ix_orders_cause_id"))
        batch_op.drop_index(batch_op.f("ix_orders_status"))
        batch_op.drop_index(batch_op.f("ix_orders_session_id"))
        batch_op.drop_index(batch_op.f("ix_orders_order_number"))
    op.drop_table("orders")

    with op.batch_alter_table("causes") as batch_op:
        batch_op.drop_index(batch_op.f("ix_causes_updated_at"))
        batch_op.drop_index(batch_op.f("ix_causes_created_at"))
    op.drop_table("causes")
