"""initial schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("metadata", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("type_id IN (1, 2, 3)", name="ck_transactions_type_id"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])

    op.create_table(
        "scheduled_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "recurrence_pattern",
            sa.Enum(
                "once",
                "daily",
                "weekly",
                "monthly",
                "yearly",
                name="recurrencepattern",
            ),
            nullable=False,
        ),
        sa.Column(
            "recurrence_interval", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("next_execution_date", sa.Date(), nullable=False),
        sa.Column("anchor_day", sa.Integer()),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column("last_executed_date", sa.Date()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "recurrence_interval > 0", name="ck_scheduled_interval_positive"
        ),
        sa.CheckConstraint("amount >= 0", name="ck_scheduled_amount_positive"),
        sa.CheckConstraint("type_id IN (1, 2, 3)", name="ck_scheduled_type_id"),
    )
    op.create_index(
        "ix_scheduled_user_next",
        "scheduled_transactions",
        ["user_id", "next_execution_date"],
    )

    op.create_table(
        "scheduled_transaction_executions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "scheduled_transaction_id",
            sa.Integer(),
            sa.ForeignKey("scheduled_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("execution_date", sa.Date(), nullable=False),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "scheduled_transaction_id",
            "execution_date",
            name="uq_scheduled_execution_date",
        ),
    )

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("goal_name", sa.Text(), nullable=False),
        sa.Column("target_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column(
            "current_amount", sa.Numeric(14, 2), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("current_amount >= 0", name="ck_goal_current_positive"),
        sa.CheckConstraint("target_amount >= 0", name="ck_goal_target_positive"),
    )
    op.create_index("ix_savings_goals_user", "savings_goals", ["user_id"])


def downgrade():
    op.drop_index("ix_savings_goals_user", table_name="savings_goals")
    op.drop_table("savings_goals")
    op.drop_table("scheduled_transaction_executions")
    op.drop_index("ix_scheduled_user_next", table_name="scheduled_transactions")
    op.drop_table("scheduled_transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
