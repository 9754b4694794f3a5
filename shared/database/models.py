"""Modelos SQLAlchemy: layout del evento (solo lectura) y núcleo de compras/escaneos"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, Index, Uuid, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
import uuid
from shared.database.connection import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Estados de compra
PURCHASE_PENDING = "PENDING_PAYMENT"
PURCHASE_CONFIRMED = "PAYMENT_CONFIRMED"
PURCHASE_CANCELLED = "CANCELLED"
PURCHASE_STATES = (PURCHASE_PENDING, PURCHASE_CONFIRMED, PURCHASE_CANCELLED)
# Estado derivado (filtro): compra confirmada con todas sus entradas escaneadas
PURCHASE_ENTRY_USED = "ENTRY_USED"

# Estados de reserva (asiento, mesa, área)
RESERVATION_RESERVED = "RESERVED"
RESERVATION_CONFIRMED = "CONFIRMED"
RESERVATION_CANCELLED = "CANCELLED"
ACTIVE_RESERVATION_STATES = (RESERVATION_RESERVED, RESERVATION_CONFIRMED)

# Tipos de evento y de área
EVENT_SEATED = "SEATED"
EVENT_GENERAL = "GENERAL"
AREA_SEATS = "SEATS"
AREA_STANDING = "STANDING"

# Tipos de unidad escaneable
UNIT_SEAT = "SEAT"
UNIT_TABLE = "TABLE"
UNIT_AREA = "AREA"
UNIT_GENERAL = "GENERAL"
UNIT_TYPES = (UNIT_SEAT, UNIT_TABLE, UNIT_AREA, UNIT_GENERAL)

_ACTIVE_WHERE = text("state IN ('RESERVED', 'CONFIRMED')")


# ============ LAYOUT (administrado por el CRUD de eventos) ============

class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    event_type = Column(String, nullable=False, server_default=EVENT_GENERAL)  # SEATED, GENERAL
    ticket_limit = Column(Integer, nullable=True)  # Solo eventos GENERAL; NULL/0 = sin límite
    starts_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    # Relaciones
    areas = relationship("LayoutArea", back_populates="event")
    tables = relationship("VenueTable", back_populates="event")
    seats = relationship("Seat", back_populates="event")


class LayoutArea(Base):
    __tablename__ = "layout_areas"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    area_type = Column(String, nullable=False, server_default=AREA_SEATS)  # SEATS, STANDING
    capacity = Column(Integer, nullable=True)  # Solo áreas STANDING (personas de pie)

    event = relationship("Event", back_populates="areas")


class VenueTable(Base):
    __tablename__ = "venue_tables"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    area_id = Column(Uuid(as_uuid=True), ForeignKey("layout_areas.id", ondelete="SET NULL"), nullable=True)
    table_number = Column(Integer, nullable=False)
    seat_count = Column(Integer, nullable=False, server_default="0")
    active = Column(Boolean, nullable=False, server_default=text("true"), default=True)

    event = relationship("Event", back_populates="tables")
    seats = relationship("Seat", back_populates="table")


class Seat(Base):
    __tablename__ = "seats"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    table_id = Column(Uuid(as_uuid=True), ForeignKey("venue_tables.id", ondelete="SET NULL"), nullable=True, index=True)
    area_id = Column(Uuid(as_uuid=True), ForeignKey("layout_areas.id", ondelete="SET NULL"), nullable=True)
    seat_number = Column(Integer, nullable=False)

    event = relationship("Event", back_populates="seats")
    table = relationship("VenueTable", back_populates="seats")


# ============ NÚCLEO: COMPRAS ============

class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(30), unique=True, nullable=False, index=True)  # ENT-<millis>-<nnnn>
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_name = Column(String, nullable=False)
    buyer_email = Column(String, nullable=True, index=True)
    buyer_phone = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    state = Column(String, nullable=False, server_default=PURCHASE_PENDING, default=PURCHASE_PENDING, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones (el borrado real lo hace ON DELETE CASCADE en la base)
    event = relationship("Event")
    seat_reservations = relationship(
        "SeatReservation", back_populates="purchase", passive_deletes=True, order_by="SeatReservation.created_at"
    )
    table_reservations = relationship(
        "TableReservation", back_populates="purchase", passive_deletes=True, order_by="TableReservation.created_at"
    )
    area_admissions = relationship(
        "AreaAdmission", back_populates="purchase", passive_deletes=True, order_by="AreaAdmission.created_at"
    )
    general_tickets = relationship(
        "GeneralAdmissionTicket", back_populates="purchase", passive_deletes=True,
        order_by="GeneralAdmissionTicket.created_at",
    )


class ScanFieldsMixin:
    """Campos de escaneo compartidos por todas las unidades canjeables"""

    scan_code = Column(String(5), unique=True, nullable=True, index=True)
    scanned = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    scanned_at = Column(DateTime(timezone=True), nullable=True)
    scanned_by = Column(String, nullable=True)  # user_id del staff que escaneó


class SeatReservation(ScanFieldsMixin, Base):
    __tablename__ = "seat_reservations"
    __table_args__ = (
        # Un asiento solo puede tener una reserva activa a la vez
        Index(
            "uq_seat_reservations_active_seat", "seat_id", unique=True,
            postgresql_where=_ACTIVE_WHERE, sqlite_where=_ACTIVE_WHERE,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    purchase_id = Column(Uuid(as_uuid=True), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    seat_id = Column(Uuid(as_uuid=True), ForeignKey("seats.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    state = Column(String, nullable=False, server_default=RESERVATION_RESERVED, default=RESERVATION_RESERVED)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    purchase = relationship("Purchase", back_populates="seat_reservations")
    seat = relationship("Seat")


class TableReservation(ScanFieldsMixin, Base):
    __tablename__ = "table_reservations"
    __table_args__ = (
        Index(
            "uq_table_reservations_active_table", "table_id", unique=True,
            postgresql_where=_ACTIVE_WHERE, sqlite_where=_ACTIVE_WHERE,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    purchase_id = Column(Uuid(as_uuid=True), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    table_id = Column(Uuid(as_uuid=True), ForeignKey("venue_tables.id", ondelete="CASCADE"), nullable=False, index=True)
    seat_count = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    state = Column(String, nullable=False, server_default=RESERVATION_RESERVED, default=RESERVATION_RESERVED)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    purchase = relationship("Purchase", back_populates="table_reservations")
    table = relationship("VenueTable")


class AreaAdmission(ScanFieldsMixin, Base):
    __tablename__ = "area_admissions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    purchase_id = Column(Uuid(as_uuid=True), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    area_id = Column(Uuid(as_uuid=True), ForeignKey("layout_areas.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, server_default="0")
    total_price = Column(Numeric(12, 2), nullable=False, server_default="0")
    state = Column(String, nullable=False, server_default=RESERVATION_RESERVED, default=RESERVATION_RESERVED)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    purchase = relationship("Purchase", back_populates="area_admissions")
    area = relationship("LayoutArea")


class GeneralAdmissionTicket(Base):
    """Una entrada por unidad comprada en eventos sin asientos; se crea al confirmar"""
    __tablename__ = "general_admission_tickets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    purchase_id = Column(Uuid(as_uuid=True), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_code = Column(String(5), unique=True, nullable=False, index=True)
    scanned = Column(Boolean, nullable=False, server_default=text("false"), default=False)
    scanned_at = Column(DateTime(timezone=True), nullable=True)
    scanned_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    purchase = relationship("Purchase", back_populates="general_tickets")


# ============ REGISTRO DE CÓDIGOS CANJEABLES ============

class RedeemableCode(Base):
    """
    Un código de escaneo vale para una sola unidad, sin importar su tabla.

    La clave primaria sobre `code` es la que impide que dos confirmaciones
    concurrentes asignen el mismo código a un asiento y a una mesa.
    """
    __tablename__ = "redeemable_codes"

    code = Column(String(5), primary_key=True)
    unit_type = Column(String, nullable=False)  # SEAT, TABLE, AREA, GENERAL
    unit_id = Column(Uuid(as_uuid=True), nullable=False)
    purchase_id = Column(Uuid(as_uuid=True), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


# ============ AUDITORÍA DE ESCANEOS ============

class ScanAuditEntry(Base):
    """Registro inmutable de cada escaneo efectivo (no duplicado)"""
    __tablename__ = "scan_audit_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    unit_type = Column(String, nullable=False)  # SEAT, TABLE, AREA, GENERAL
    seat_reservation_id = Column(Uuid(as_uuid=True), ForeignKey("seat_reservations.id", ondelete="CASCADE"), nullable=True)
    table_reservation_id = Column(Uuid(as_uuid=True), ForeignKey("table_reservations.id", ondelete="CASCADE"), nullable=True)
    area_admission_id = Column(Uuid(as_uuid=True), ForeignKey("area_admissions.id", ondelete="CASCADE"), nullable=True)
    general_ticket_id = Column(Uuid(as_uuid=True), ForeignKey("general_admission_tickets.id", ondelete="CASCADE"), nullable=True)
    purchase_id = Column(Uuid(as_uuid=True), ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    scanned_by = Column(String, nullable=True, index=True)
    scanned_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)
    payload = Column(Text, nullable=True)  # JSON con los datos de la búsqueda


# Columna FK de auditoría por tipo de unidad
AUDIT_FK_BY_UNIT = {
    UNIT_SEAT: "seat_reservation_id",
    UNIT_TABLE: "table_reservation_id",
    UNIT_AREA: "area_admission_id",
    UNIT_GENERAL: "general_ticket_id",
}
