"""initial clinic finance schema

Revision ID: 202410190900
Revises:
Create Date: 2024-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "treatment_catalog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("treatment_name", sa.String(length=120), nullable=False),
        sa.Column("category", sa.String(length=100)),
        sa.Column(
            "default_price_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "typical_product_cost_cents",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("treatment_name"),
        sa.CheckConstraint(
            "default_price_cents >= 0", name="ck_catalog_price_positive"
        ),
    )

    op.create_table(
        "treatments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("patient_name", sa.String(length=120)),
        sa.Column("treatment_name", sa.String(length=120)),
        sa.Column("practitioner_name", sa.String(length=120)),
        sa.Column("price_paid_cents", sa.Integer(), nullable=False),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "payment_status",
            sa.Enum("paid", "pending", "partially_paid", name="paymentstatus"),
            nullable=False,
        ),
        sa.Column(
            "product_cost_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("price_paid_cents >= 0", name="ck_treatments_price_positive"),
        sa.CheckConstraint(
            "amount_paid_cents >= 0", name="ck_treatments_amount_paid_positive"
        ),
    )
    op.create_index("ix_treatments_date", "treatments", ["date"])
    op.create_index("ix_treatments_status", "treatments", ["payment_status"])

    op.create_table(
        "recurring_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "recurrence_frequency",
            sa.Enum("weekly", "monthly", "yearly", name="recurrencefrequency"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_generated_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=100)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "is_auto_generated", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "origin_recurring_id",
            sa.Integer(),
            sa.ForeignKey("recurring_expenses.id", ondelete="SET NULL"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_date", "expenses", ["date"])
    op.create_index("ix_expenses_category_date", "expenses", ["category", "date"])


def downgrade():
    op.drop_index("ix_expenses_category_date", table_name="expenses")
    op.drop_index("ix_expenses_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("recurring_expenses")
    op.drop_index("ix_treatments_status", table_name="treatments")
    op.drop_index("ix_treatments_date", table_name="treatments")
    op.drop_table("treatments")
    op.drop_table("treatment_catalog")
