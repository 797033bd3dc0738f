"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _transaction_type():
    # PostgreSQL gets one named type shared by both tables; other dialects
    # store a plain VARCHAR.
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        enum = postgresql.ENUM(
            "income", "expense", name="transactiontype", create_type=False
        )
        enum.create(bind, checkfirst=True)
        return enum
    return sa.Enum("income", "expense", name="transactiontype")


def upgrade():
    transaction_type = _transaction_type()
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column(
            "color", sa.String(length=7), nullable=False, server_default="#667eea"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.UniqueConstraint("name", "type", name="idx_categories_name_type"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    )
    op.create_index("ix_transactions_date", "transactions", ["date"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "period", sa.String(length=20), nullable=False, server_default="monthly"
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    )


def downgrade():
    op.drop_table("budgets")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
