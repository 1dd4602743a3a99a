"""initial schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None

MOOD = sa.Enum(
    "happy", "sad", "angry", "stressed", "bored", "excited", "neutral", name="mood"
)


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("mood", MOOD),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_occurred", "transactions", ["user_id", "occurred_at"]
    )
    op.create_index(
        "ix_transactions_user_type_occurred",
        "transactions",
        ["user_id", "type", "occurred_at"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("monthly_budget", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "spent_so_far", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "month", name="uq_budget_user_month"),
        sa.CheckConstraint("monthly_budget > 0", name="ck_budget_positive"),
        sa.CheckConstraint("spent_so_far >= 0", name="ck_budget_spent_non_negative"),
    )

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column(
            "status", sa.Enum("pending", "paid", name="billstatus"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_bills_amount_positive"),
    )
    op.create_index(
        "ix_bills_user_status_due", "bills", ["user_id", "status", "due_date"]
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "type",
            sa.Enum("budget", "bill", "trend", "goal", name="alerttype"),
            nullable=False,
        ),
        sa.Column(
            "severity",
            sa.Enum("high", "medium", "low", name="alertseverity"),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("budget_usage", sa.Integer()),
        sa.Column("month", sa.String(length=7)),
        sa.Column("bill_id", sa.Integer()),
        sa.Column("bill_name", sa.String(length=120)),
        sa.Column("due_date", sa.DateTime()),
        sa.Column("trend_percentage", sa.Integer()),
        sa.Column("category", sa.String(length=100)),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_alerts_user_read_created", "alerts", ["user_id", "is_read", "created_at"]
    )
    op.create_index("ix_alerts_user_type", "alerts", ["user_id", "type"])
    op.create_index("ix_alerts_expires", "alerts", ["expires_at"])

    op.create_table(
        "user_preferences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("enable_ai", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("forecast", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "personality", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "suggestions", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("challenges", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "risk_tolerance",
            sa.Enum("low", "medium", "high", name="risktolerance"),
            nullable=False,
            server_default="medium",
        ),
        sa.Column(
            "notify_email", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "notify_bills", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "notify_budget", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "weekly_reports", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("user_preferences")
    op.drop_index("ix_alerts_expires", table_name="alerts")
    op.drop_index("ix_alerts_user_type", table_name="alerts")
    op.drop_index("ix_alerts_user_read_created", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_bills_user_status_due", table_name="bills")
    op.drop_table("bills")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_type_occurred", table_name="transactions")
    op.drop_index("ix_transactions_user_occurred", table_name="transactions")
    op.drop_table("transactions")
