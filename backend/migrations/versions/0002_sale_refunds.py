"""Whole-sale refunds: refund audit trail on sales

Revision ID: 0002_sale_refunds
Revises: 0001_settlement_core
Create Date: 2026-10-18 15:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_sale_refunds"
down_revision = "0001_settlement_core"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.add_column(sa.Column("refunded_by_user_id", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("refund_reason", sa.String(length=255), nullable=True))
        batch_op.add_column(sa.Column("refund_shift_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_sales_refund_shift_id_shifts", "shifts", ["refund_shift_id"], ["id"],
        )
        batch_op.create_index("ix_sales_refund_shift_id", ["refund_shift_id"], unique=False)


def downgrade():
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.drop_index("ix_sales_refund_shift_id")
        batch_op.drop_constraint("fk_sales_refund_shift_id_shifts", type_="foreignkey")
        batch_op.drop_column("refund_shift_id")
        batch_op.drop_column("refund_reason")
        batch_op.drop_column("refunded_at")
        batch_op.drop_column("refunded_by_user_id")
