"""registro único de códigos canjeables

Revision ID: 0002_redeemable_codes
Revises: 0001_initial
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0002_redeemable_codes"
down_revision = "0001_initial"
branch_labels = None
depends_on = None

UNIT_TABLES = (
    ("SEAT", "seat_reservations"),
    ("TABLE", "table_reservations"),
    ("AREA", "area_admissions"),
    ("GENERAL", "general_admission_tickets"),
)


def upgrade() -> None:
    op.create_table(
        "redeemable_codes",
        sa.Column("code", sa.String(5), primary_key=True),
        sa.Column("unit_type", sa.String(), nullable=False),
        sa.Column("unit_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_redeemable_codes_purchase_id", "redeemable_codes", ["purchase_id"])

    # Códigos ya emitidos; un duplicado entre tablas hace fallar la migración
    for unit_type, table in UNIT_TABLES:
        op.execute(
            f"INSERT INTO redeemable_codes (code, unit_type, unit_id, purchase_id) "
            f"SELECT scan_code, '{unit_type}', id, purchase_id FROM {table} WHERE scan_code IS NOT NULL"
        )


def downgrade() -> None:
    op.drop_index("ix_redeemable_codes_purchase_id", table_name="redeemable_codes")
    op.drop_table("redeemable_codes")
