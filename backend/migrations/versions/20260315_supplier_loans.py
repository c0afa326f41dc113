"""Supplier cylinder loans

Cylinders borrowed from a supplier, tracked apart from warehouse stock.

Revision ID: 20260315_supplier_loans
Revises: 20260301_initial
Create Date: 2026-03-15
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260315_supplier_loans"
down_revision = "20260301_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "supplier_loans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cylinder_type_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("loan_date", sa.Date(), nullable=False),
        sa.Column("supplier_info", sa.String(255), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("recorded_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_supplier_loans_quantity_positive"),
        sa.ForeignKeyConstraint(["cylinder_type_id"], ["cylinder_types.id"]),
        sa.ForeignKeyConstraint(["recorded_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_supplier_loans_cylinder_type_id", "supplier_loans", ["cylinder_type_id"], unique=False)


def downgrade():
    op.drop_index("ix_supplier_loans_cylinder_type_id", table_name="supplier_loans")
    op.drop_table("supplier_loans")
