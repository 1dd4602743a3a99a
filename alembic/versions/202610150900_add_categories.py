"""add custom categories

Revision ID: 202610150900
Revises: 202610010900
Create Date: 2026-10-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610150900"
down_revision = "202610010900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum("income", "expense", name="transactiontype"),
            nullable=False,
            server_default="expense",
        ),
        sa.Column(
            "color", sa.String(length=7), nullable=False, server_default="#000000"
        ),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


def downgrade():
    op.drop_table("categories")
