"""Servicio de inventario: bloqueo y reserva de asientos, mesas y áreas de pie"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Sequence
from decimal import Decimal
from uuid import UUID
import logging

from app.core.config import settings
from shared.cache.redis_client import cache_get, cache_set, cache_delete, make_key
from shared.database.models import (
    Event, LayoutArea, VenueTable, Seat, Purchase,
    SeatReservation, TableReservation, AreaAdmission,
    ACTIVE_RESERVATION_STATES, RESERVATION_RESERVED,
    PURCHASE_PENDING, PURCHASE_CONFIRMED,
    EVENT_SEATED, EVENT_GENERAL, AREA_STANDING,
)
from shared.errors import ValidationError, NotFoundError, ConflictError
from services.ticket_purchase.models.purchase import (
    PurchaseRequest, SeatSelection, TableSelection, AreaSelection
)

logger = logging.getLogger(__name__)


def occupied_cache_key(event_id) -> str:
    return make_key("inventory", "occupied", event_id)


class InventoryService:
    """Servicio para validar y reclamar inventario dentro de la transacción de compra"""

    @staticmethod
    def validate_selection_shape(request: PurchaseRequest):
        """Validaciones que no requieren base de datos (ids duplicados)"""
        for field, ids in (
            ("seats", [s.seat_id for s in request.seats]),
            ("tables", [t.table_id for t in request.tables]),
            ("areas", [a.area_id for a in request.areas]),
        ):
            if len(ids) != len(set(ids)):
                raise ValidationError(f"Hay elementos repetidos en {field}", field=field)

    @staticmethod
    async def lock_event(db: AsyncSession, event_id: UUID) -> Event:
        """Obtener el evento bloqueando su fila (serializa el control de cupo general)"""
        stmt = select(Event).where(Event.id == event_id).with_for_update()
        result = await db.execute(stmt)
        event = result.scalar_one_or_none()
        if not event:
            raise NotFoundError("Evento no encontrado", {"event_id": str(event_id)})
        return event

    @staticmethod
    def check_inventory_kind(event: Event, request: PurchaseRequest):
        has_selection = bool(request.seats or request.tables or request.areas)
        if event.event_type == EVENT_SEATED and not has_selection:
            raise ValidationError(
                "Debe seleccionar asientos, mesas o cupos de área para eventos con ubicación",
                field="seats",
            )
        if event.event_type == EVENT_GENERAL and has_selection:
            raise ValidationError(
                "Los eventos de entrada general no admiten selección de asientos, mesas o áreas",
                field="seats",
            )

    @staticmethod
    async def check_general_capacity(db: AsyncSession, event: Event, quantity: int):
        """limite - suma(cantidad de compras pendientes/confirmadas) >= cantidad"""
        limit = event.ticket_limit or 0
        if limit <= 0:
            return

        stmt = select(func.coalesce(func.sum(Purchase.quantity), 0)).where(
            Purchase.event_id == event.id,
            Purchase.state.in_((PURCHASE_PENDING, PURCHASE_CONFIRMED)),
        )
        reserved = int((await db.execute(stmt)).scalar() or 0)
        if reserved + quantity > limit:
            available = max(limit - reserved, 0)
            raise ConflictError(
                f"No hay suficientes entradas disponibles. Disponibles: {available}",
                {"available": available, "requested": quantity},
            )

    @staticmethod
    async def _lock_rows(db: AsyncSession, model, ids: Sequence[UUID]) -> Dict[UUID, object]:
        """SELECT ... FOR UPDATE en orden de id para evitar deadlocks"""
        if not ids:
            return {}
        stmt = select(model).where(model.id.in_(list(ids))).order_by(model.id).with_for_update()
        result = await db.execute(stmt)
        return {row.id: row for row in result.scalars().all()}

    async def reserve_units(
        self,
        db: AsyncSession,
        event: Event,
        purchase: Purchase,
        request: PurchaseRequest,
    ) -> List[object]:
        """
        Reclamar todos los asientos, mesas y cupos de área seleccionados.

        Debe llamarse dentro de la transacción de compra: cualquier error
        hace rollback de la compra completa.
        """
        seat_ids = [s.seat_id for s in request.seats]
        table_ids = [t.table_id for t in request.tables]
        area_ids = [a.area_id for a in request.areas]

        # Los asientos de mesa también bloquean su mesa: así compra de mesa y de silla se serializan
        seat_parents = []
        if seat_ids:
            result = await db.execute(select(Seat.table_id).where(Seat.id.in_(seat_ids), Seat.table_id.is_not(None)))
            seat_parents = [row[0] for row in result.all()]

        tables = await self._lock_rows(db, VenueTable, sorted(set(table_ids) | set(seat_parents)))
        seats = await self._lock_rows(db, Seat, seat_ids)
        areas = await self._lock_rows(db, LayoutArea, area_ids)

        # Pertenencia al evento
        for seat_id in seat_ids:
            seat = seats.get(seat_id)
            if seat is None or seat.event_id != event.id:
                raise NotFoundError(f"Asiento {seat_id} no válido para este evento", {"seat_id": str(seat_id)})
        for table_id in table_ids:
            table = tables.get(table_id)
            if table is None or table.event_id != event.id or not table.active:
                raise NotFoundError(f"Mesa {table_id} no válida para este evento", {"table_id": str(table_id)})
        for area_id in area_ids:
            area = areas.get(area_id)
            if area is None or area.event_id != event.id:
                raise NotFoundError(f"Área {area_id} no válida para este evento", {"area_id": str(area_id)})

        created = []
        for selection in request.seats:
            created.append(await self._reserve_seat(db, purchase, seats[selection.seat_id], selection))
        for selection in request.tables:
            created.append(await self._reserve_table(db, purchase, tables[selection.table_id], selection))
        for selection in request.areas:
            created.append(await self._reserve_area(db, purchase, areas[selection.area_id], selection))
        return created

    @staticmethod
    async def _reserve_seat(db: AsyncSession, purchase: Purchase, seat: Seat, selection: SeatSelection) -> SeatReservation:
        stmt = select(SeatReservation.id).where(
            SeatReservation.seat_id == seat.id,
            SeatReservation.state.in_(ACTIVE_RESERVATION_STATES),
        )
        if (await db.execute(stmt)).first() is not None:
            raise ConflictError(
                f"El asiento {seat.seat_number} ya está reservado u ocupado",
                {"seat_id": str(seat.id)},
            )

        if seat.table_id is not None:
            stmt_table = select(TableReservation.id).where(
                TableReservation.table_id == seat.table_id,
                TableReservation.state.in_(ACTIVE_RESERVATION_STATES),
            )
            if (await db.execute(stmt_table)).first() is not None:
                raise ConflictError(
                    "Esta mesa ya está ocupada completamente y no está disponible para comprar sillas individuales",
                    {"seat_id": str(seat.id), "table_id": str(seat.table_id)},
                )

        reservation = SeatReservation(
            purchase_id=purchase.id,
            seat_id=seat.id,
            price=selection.price,
            state=RESERVATION_RESERVED,
        )
        db.add(reservation)
        await db.flush()
        return reservation

    @staticmethod
    async def _reserve_table(db: AsyncSession, purchase: Purchase, table: VenueTable, selection: TableSelection) -> TableReservation:
        stmt = select(TableReservation.id).where(
            TableReservation.table_id == table.id,
            TableReservation.state.in_(ACTIVE_RESERVATION_STATES),
        )
        if (await db.execute(stmt)).first() is not None:
            raise ConflictError(
                f"La mesa M{table.table_number} ya está reservada u ocupada",
                {"table_id": str(table.id)},
            )

        # Una mesa completa no puede venderse si alguna de sus sillas ya se vendió suelta
        stmt_seats = (
            select(SeatReservation.id)
            .join(Seat, SeatReservation.seat_id == Seat.id)
            .where(
                Seat.table_id == table.id,
                SeatReservation.state.in_(ACTIVE_RESERVATION_STATES),
            )
        )
        if (await db.execute(stmt_seats)).first() is not None:
            raise ConflictError(
                f"La mesa M{table.table_number} tiene sillas vendidas individualmente",
                {"table_id": str(table.id)},
            )

        reservation = TableReservation(
            purchase_id=purchase.id,
            table_id=table.id,
            seat_count=selection.seat_count or table.seat_count,
            price=selection.price,
            state=RESERVATION_RESERVED,
        )
        db.add(reservation)
        await db.flush()
        return reservation

    @staticmethod
    async def _reserve_area(db: AsyncSession, purchase: Purchase, area: LayoutArea, selection: AreaSelection) -> AreaAdmission:
        capacity = area.capacity or 0
        if area.area_type != AREA_STANDING or capacity <= 0:
            raise ValidationError(
                f"El área {area.name} no se vende por cupos",
                field="areas",
                details={"area_id": str(area.id)},
            )

        stmt = select(func.coalesce(func.sum(AreaAdmission.quantity), 0)).where(
            AreaAdmission.area_id == area.id,
            AreaAdmission.state.in_(ACTIVE_RESERVATION_STATES),
        )
        reserved = int((await db.execute(stmt)).scalar() or 0)
        if reserved + selection.quantity > capacity:
            available = max(capacity - reserved, 0)
            raise ConflictError(
                f"Capacidad insuficiente en {area.name}. Disponible: {available}, Solicitado: {selection.quantity}",
                {"area_id": str(area.id), "available": available, "requested": selection.quantity},
            )

        admission = AreaAdmission(
            purchase_id=purchase.id,
            area_id=area.id,
            quantity=selection.quantity,
            unit_price=selection.unit_price,
            total_price=selection.unit_price * Decimal(selection.quantity),
            state=RESERVATION_RESERVED,
        )
        db.add(admission)
        await db.flush()
        return admission

    @staticmethod
    async def get_occupied_inventory(db: AsyncSession, event_id: UUID) -> Dict:
        """
        Asientos y mesas no disponibles + cupos de áreas de pie.

        Un asiento está ocupado si tiene reserva activa o si su mesa está reservada completa.
        Una mesa está ocupada si está reservada o si alguna de sus sillas se vendió suelta.
        """
        cache_key = occupied_cache_key(event_id)
        cached = await cache_get(cache_key)
        if cached:
            return cached

        event = (await db.execute(select(Event).where(Event.id == event_id))).scalar_one_or_none()
        if not event:
            raise NotFoundError("Evento no encontrado", {"event_id": str(event_id)})

        stmt_seats = (
            select(SeatReservation.seat_id, Seat.table_id)
            .join(Seat, SeatReservation.seat_id == Seat.id)
            .where(Seat.event_id == event_id, SeatReservation.state.in_(ACTIVE_RESERVATION_STATES))
        )
        seat_rows = (await db.execute(stmt_seats)).all()

        stmt_tables = (
            select(TableReservation.table_id)
            .join(VenueTable, TableReservation.table_id == VenueTable.id)
            .where(VenueTable.event_id == event_id, TableReservation.state.in_(ACTIVE_RESERVATION_STATES))
        )
        reserved_tables = {row[0] for row in (await db.execute(stmt_tables)).all()}

        seats_of_tables = set()
        if reserved_tables:
            result = await db.execute(select(Seat.id).where(Seat.table_id.in_(reserved_tables)))
            seats_of_tables = {row[0] for row in result.all()}

        occupied_seats = {row[0] for row in seat_rows} | seats_of_tables
        occupied_tables = reserved_tables | {row[1] for row in seat_rows if row[1] is not None}

        stmt_areas = (
            select(
                LayoutArea.id,
                LayoutArea.name,
                LayoutArea.capacity,
                func.coalesce(func.sum(AreaAdmission.quantity), 0),
            )
            .outerjoin(
                AreaAdmission,
                (AreaAdmission.area_id == LayoutArea.id) & AreaAdmission.state.in_(ACTIVE_RESERVATION_STATES),
            )
            .where(LayoutArea.event_id == event_id, LayoutArea.area_type == AREA_STANDING)
            .group_by(LayoutArea.id, LayoutArea.name, LayoutArea.capacity)
            .order_by(LayoutArea.name)
        )
        areas = []
        for area_id, name, capacity, reserved in (await db.execute(stmt_areas)).all():
            capacity = capacity or 0
            reserved = int(reserved or 0)
            areas.append({
                "area_id": str(area_id),
                "name": name,
                "capacity": capacity,
                "reserved": reserved,
                "available": max(capacity - reserved, 0),
            })

        response = {
            "event_id": str(event_id),
            "seats": sorted(str(s) for s in occupied_seats),
            "tables": sorted(str(t) for t in occupied_tables),
            "areas": areas,
        }

        await cache_set(cache_key, response, expire=settings.OCCUPIED_CACHE_TTL)
        return response

    @staticmethod
    async def invalidate_occupied(event_id):
        """Invalidar el mapa de ocupación después de cualquier cambio de inventario"""
        await cache_delete(occupied_cache_key(event_id))
        logger.debug(f"Cache de ocupación invalidado para evento {event_id}")
