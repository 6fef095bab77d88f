"""add payments for money lent and borrowed

Revision ID: 202601121000
Revises: 202601050900
Create Date: 2026-01-12 10:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601121000"
down_revision = "202601050900"
branch_labels = None
depends_on = None


PAYMENT_TYPE = sa.Enum("LENT", "BORROWED", name="paymenttype")
PAYMENT_STATUS = sa.Enum("PENDING", "PAID", "OVERDUE", name="paymentstatus")


def upgrade():
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("person_name", sa.String(length=100), nullable=False),
        sa.Column("type", PAYMENT_TYPE, nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("due_at", sa.DateTime()),
        sa.Column("status", PAYMENT_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("ix_payments_user_status", "payments", ["user_id", "status"])


def downgrade():
    op.drop_index("ix_payments_user_status", table_name="payments")
    op.drop_table("payments")
