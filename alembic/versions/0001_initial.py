from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATES = sa.text("state IN ('RESERVED', 'CONFIRMED')")


def _scan_columns():
    return [
        sa.Column("scan_code", sa.String(5), nullable=True),
        sa.Column("scanned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("scanned_at", sa.DateTime(timezone=True)),
        sa.Column("scanned_by", sa.String()),
    ]


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # Layout (lo administra el CRUD de eventos)
    op.create_table(
        "events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False, server_default="GENERAL"),
        sa.Column("ticket_limit", sa.Integer()),
        sa.Column("starts_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_table(
        "layout_areas",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("area_type", sa.String(), nullable=False, server_default="SEATS"),
        sa.Column("capacity", sa.Integer()),
    )
    op.create_index("ix_layout_areas_event_id", "layout_areas", ["event_id"])
    op.create_table(
        "venue_tables",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("area_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("layout_areas.id", ondelete="SET NULL")),
        sa.Column("table_number", sa.Integer(), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_venue_tables_event_id", "venue_tables", ["event_id"])
    op.create_table(
        "seats",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("table_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("venue_tables.id", ondelete="SET NULL")),
        sa.Column("area_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("layout_areas.id", ondelete="SET NULL")),
        sa.Column("seat_number", sa.Integer(), nullable=False),
    )
    op.create_index("ix_seats_event_id", "seats", ["event_id"])
    op.create_index("ix_seats_table_id", "seats", ["table_id"])

    # Compras
    op.create_table(
        "purchases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(30), nullable=False),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("buyer_name", sa.String(), nullable=False),
        sa.Column("buyer_email", sa.String()),
        sa.Column("buyer_phone", sa.String()),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="PENDING_PAYMENT"),
        *_timestamps(),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_purchases_code", "purchases", ["code"], unique=True)
    op.create_index("ix_purchases_event_id", "purchases", ["event_id"])
    op.create_index("ix_purchases_buyer_email", "purchases", ["buyer_email"])
    op.create_index("ix_purchases_state", "purchases", ["state"])

    op.create_table(
        "seat_reservations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seat_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("seats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("state", sa.String(), nullable=False, server_default="RESERVED"),
        *_scan_columns(),
        *_timestamps(),
    )
    op.create_index("ix_seat_reservations_purchase_id", "seat_reservations", ["purchase_id"])
    op.create_index("ix_seat_reservations_seat_id", "seat_reservations", ["seat_id"])
    op.create_index("ix_seat_reservations_scan_code", "seat_reservations", ["scan_code"], unique=True)
    # Un asiento solo puede tener una reserva activa
    op.create_index(
        "uq_seat_reservations_active_seat", "seat_reservations", ["seat_id"],
        unique=True, postgresql_where=ACTIVE_STATES,
    )

    op.create_table(
        "table_reservations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("table_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("venue_tables.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("state", sa.String(), nullable=False, server_default="RESERVED"),
        *_scan_columns(),
        *_timestamps(),
    )
    op.create_index("ix_table_reservations_purchase_id", "table_reservations", ["purchase_id"])
    op.create_index("ix_table_reservations_table_id", "table_reservations", ["table_id"])
    op.create_index("ix_table_reservations_scan_code", "table_reservations", ["scan_code"], unique=True)
    op.create_index(
        "uq_table_reservations_active_table", "table_reservations", ["table_id"],
        unique=True, postgresql_where=ACTIVE_STATES,
    )

    op.create_table(
        "area_admissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("area_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("layout_areas.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("state", sa.String(), nullable=False, server_default="RESERVED"),
        *_scan_columns(),
        *_timestamps(),
    )
    op.create_index("ix_area_admissions_purchase_id", "area_admissions", ["purchase_id"])
    op.create_index("ix_area_admissions_area_id", "area_admissions", ["area_id"])
    op.create_index("ix_area_admissions_scan_code", "area_admissions", ["scan_code"], unique=True)

    op.create_table(
        "general_admission_tickets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scan_code", sa.String(5), nullable=False),
        sa.Column("scanned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("scanned_at", sa.DateTime(timezone=True)),
        sa.Column("scanned_by", sa.String()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_general_admission_tickets_purchase_id", "general_admission_tickets", ["purchase_id"])
    op.create_index("ix_general_admission_tickets_scan_code", "general_admission_tickets", ["scan_code"], unique=True)

    # Auditoría de escaneos (solo inserción)
    op.create_table(
        "scan_audit_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("unit_type", sa.String(), nullable=False),
        sa.Column("seat_reservation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("seat_reservations.id", ondelete="CASCADE")),
        sa.Column("table_reservation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("table_reservations.id", ondelete="CASCADE")),
        sa.Column("area_admission_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("area_admissions.id", ondelete="CASCADE")),
        sa.Column("general_ticket_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("general_admission_tickets.id", ondelete="CASCADE")),
        sa.Column("purchase_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scanned_by", sa.String()),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("payload", sa.Text()),
    )
    op.create_index("ix_scan_audit_entries_purchase_id", "scan_audit_entries", ["purchase_id"])
    op.create_index("ix_scan_audit_entries_event_id", "scan_audit_entries", ["event_id"])
    op.create_index("ix_scan_audit_entries_scanned_by", "scan_audit_entries", ["scanned_by"])
    op.create_index("ix_scan_audit_entries_scanned_at", "scan_audit_entries", ["scanned_at"])


def downgrade() -> None:
    for table in (
        "scan_audit_entries",
        "general_admission_tickets",
        "area_admissions",
        "table_reservations",
        "seat_reservations",
        "purchases",
        "seats",
        "venue_tables",
        "layout_areas",
        "events",
    ):
        op.drop_table(table)
